import json
from typing import List

from chatglue.schemas.chat import FilePart, ImagePart, Message


def redact_prompt(prompt: List[Message]) -> List[Message]:
    """
    Return a copy of the conversation with inline binary payloads removed.
    Attachment references (url, mime type, name) are kept.
    """
    redacted = []
    for message in prompt:
        if isinstance(message.content, str):
            redacted.append(message)
            continue
        parts = []
        for part in message.content:
            if isinstance(part, FilePart) and part.data is not None:
                part = part.model_copy(update={"data": None})
            elif isinstance(part, ImagePart) and part.image is not None:
                part = part.model_copy(update={"image": None})
            parts.append(part)
        redacted.append(message.model_copy(update={"content": parts}))
    return redacted


def prompt_as_text(prompt: List[Message]) -> str:
    """Serialise a (redacted) conversation as indented JSON."""
    return json.dumps(
        [message.model_dump(exclude_none=True) for message in redact_prompt(prompt)],
        indent=2,
    )
