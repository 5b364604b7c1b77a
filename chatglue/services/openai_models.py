import logging
import re
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from openai import AsyncOpenAI

from chatglue.schemas.chat import (
    FilePart,
    Finish,
    GenerateResult,
    ImagePart,
    Message,
    ModelCall,
    ReasoningDelta,
    StreamEvent,
    TextDelta,
    TextPart,
    Usage,
)
from chatglue.services.language_model import LanguageModel

logger = logging.getLogger(__name__)


def _usage_from(raw) -> Usage:
    if raw is None:
        return Usage()
    return Usage(prompt_tokens=raw.prompt_tokens, completion_tokens=raw.completion_tokens)


def _image_url(url: Optional[str], data: Optional[str], mime_type: Optional[str]) -> Optional[str]:
    if url:
        return url
    if data:
        return f"data:{mime_type or 'image/png'};base64,{data}"
    return None


def to_openai_messages(prompt: List[Message]) -> List[Dict[str, Any]]:
    messages = []
    for message in prompt:
        if isinstance(message.content, str) or message.role != "user":
            messages.append({"role": message.role, "content": message.text()})
            continue

        content = []
        for part in message.content:
            if isinstance(part, TextPart):
                content.append({"type": "text", "text": part.text})
            elif isinstance(part, ImagePart):
                url = _image_url(part.url, part.image, part.mime_type)
                if url:
                    content.append({"type": "image_url", "image_url": {"url": url}})
            elif isinstance(part, FilePart):
                if part.mime_type.startswith("image/"):
                    url = _image_url(part.url, part.data, part.mime_type)
                    if url:
                        content.append({"type": "image_url", "image_url": {"url": url}})
                else:
                    label = part.name or part.url or part.mime_type
                    content.append({"type": "text", "text": f"[attachment: {label}]"})
        messages.append({"role": "user", "content": content})
    return messages


class OpenAIChatModel(LanguageModel):
    """Chat completion model served by OpenAI or an OpenAI-compatible provider."""

    def __init__(
        self,
        model_id: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        provider: str = "openai",
        include_usage: bool = True,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model_id = model_id
        self.provider = provider
        self.include_usage = include_usage
        self._api_key = api_key
        self._base_url = base_url
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._api_key, base_url=self._base_url)
        return self._client

    def _request_args(self, call: ModelCall) -> Dict[str, Any]:
        args: Dict[str, Any] = {
            "model": self.model_id,
            "messages": to_openai_messages(call.prompt),
        }
        if call.max_tokens is not None:
            args["max_tokens"] = call.max_tokens
        if call.temperature is not None:
            args["temperature"] = call.temperature
        return args

    async def generate(self, call: ModelCall) -> GenerateResult:
        response = await self.client.chat.completions.create(**self._request_args(call))
        choice = response.choices[0]
        return GenerateResult(
            text=choice.message.content or "",
            finish_reason=choice.finish_reason or "stop",
            usage=_usage_from(response.usage),
        )

    async def stream(self, call: ModelCall) -> AsyncIterator[StreamEvent]:
        args = self._request_args(call)
        if self.include_usage:
            args["stream_options"] = {"include_usage": True}
        response_stream = await self.client.chat.completions.create(stream=True, **args)

        finish_reason = "stop"
        usage = Usage()
        async for chunk in response_stream:
            if chunk.choices:
                choice = chunk.choices[0]
                if choice.delta and choice.delta.content:
                    yield TextDelta(text=choice.delta.content)
                if choice.finish_reason:
                    finish_reason = choice.finish_reason
            if getattr(chunk, "usage", None):
                usage = _usage_from(chunk.usage)
        yield Finish(reason=finish_reason, usage=usage, metadata={self.provider: {}})


class OpenAIImageModel:
    provider = "openai"

    def __init__(self, model_id: str, api_key: Optional[str] = None, client: Optional[AsyncOpenAI] = None):
        self.model_id = model_id
        self._api_key = api_key
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client

    async def generate(self, prompt: str, n: int = 1, size: str = "1024x1024") -> List[str]:
        """Generate images and return them as base64 strings."""
        response = await self.client.images.generate(
            model=self.model_id,
            prompt=prompt,
            n=n,
            size=size,
            response_format="b64_json",
        )
        return [image.b64_json for image in response.data]


def _partial_tag_length(text: str, tag: str) -> int:
    """Length of the longest suffix of `text` that is a prefix of `tag`."""
    for size in range(min(len(tag) - 1, len(text)), 0, -1):
        if text.endswith(tag[:size]):
            return size
    return 0


def extract_reasoning(text: str, tag_name: str = "think") -> Tuple[Optional[str], str]:
    pattern = re.compile(rf"<{tag_name}>(.*?)</{tag_name}>", re.DOTALL)
    matches = pattern.findall(text)
    if not matches:
        return None, text
    return "\n".join(matches), pattern.sub("", text).lstrip()


class ReasoningExtractionModel(LanguageModel):
    """
    Wraps a model that writes its chain of thought between `<think>` tags
    and reports that text separately from the answer.
    """

    def __init__(self, inner: LanguageModel, tag_name: str = "think"):
        self.inner = inner
        self.tag_name = tag_name
        self.provider = inner.provider
        self.model_id = inner.model_id

    async def generate(self, call: ModelCall) -> GenerateResult:
        result = await self.inner.generate(call)
        reasoning, text = extract_reasoning(result.text, self.tag_name)
        return result.model_copy(update={"text": text, "reasoning": reasoning})

    async def stream(self, call: ModelCall) -> AsyncIterator[StreamEvent]:
        open_tag, close_tag = f"<{self.tag_name}>", f"</{self.tag_name}>"
        buffer = ""
        in_reasoning = False

        def emit(text: str):
            if not text:
                return None
            return ReasoningDelta(text=text) if in_reasoning else TextDelta(text=text)

        async for event in self.inner.stream(call):
            if not isinstance(event, TextDelta):
                pending = emit(buffer)
                buffer = ""
                if pending:
                    yield pending
                yield event
                continue

            buffer += event.text
            while True:
                tag = close_tag if in_reasoning else open_tag
                index = buffer.find(tag)
                if index != -1:
                    pending = emit(buffer[:index])
                    if pending:
                        yield pending
                    buffer = buffer[index + len(tag):]
                    in_reasoning = not in_reasoning
                    continue
                keep = _partial_tag_length(buffer, tag)
                pending = emit(buffer[: len(buffer) - keep])
                if pending:
                    yield pending
                buffer = buffer[len(buffer) - keep:]
                break

        pending = emit(buffer)
        if pending:
            yield pending
