import json
import logging
from typing import AsyncIterator, Callable, Optional

from google import genai
from google.genai import types

from chatglue.errors import NotSupported
from chatglue.schemas.chat import Finish, GenerateResult, ModelCall, StreamEvent, TextDelta, Usage
from chatglue.services.language_model import LanguageModel
from chatglue.utils.redaction import prompt_as_text

logger = logging.getLogger(__name__)

VIDEO_MIME_TYPE = "video/mp4"


class GeminiVideoModel(LanguageModel):
    """
    Streaming-only video analysis model backed by Gemini.

    The conversation is sent as JSON text with inline attachment bytes
    stripped; a processed video is attached by reference through
    `provider_metadata["google"]["experimental_geminiUri"]`.

    The streaming API does not report token counts here, so the finish
    event carries a Usage with both counts left as None.
    """

    provider = "google"

    def __init__(self, model_id: str, client_factory: Callable[[], genai.Client]):
        self.model_id = model_id
        self._client_factory = client_factory
        self._client: Optional[genai.Client] = None

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            self._client = self._client_factory()
        return self._client

    async def generate(self, call: ModelCall) -> GenerateResult:
        raise NotSupported(f"{self.model_id} only supports streaming generation")

    def build_contents(self, call: ModelCall) -> list:
        parts = []
        if call.gemini_uri:
            parts.append(types.Part.from_uri(file_uri=call.gemini_uri, mime_type=VIDEO_MIME_TYPE))
        parts.append(types.Part.from_text(text=prompt_as_text(call.prompt)))
        return [types.Content(role="user", parts=parts)]

    async def stream(self, call: ModelCall) -> AsyncIterator[StreamEvent]:
        logger.debug(f"prompt: {prompt_as_text(call.prompt)}")
        logger.debug(
            "options: "
            + json.dumps(call.model_dump(exclude={"prompt"}), indent=2, default=str)
        )

        response_stream = await self.client.aio.models.generate_content_stream(
            model=self.model_id,
            contents=self.build_contents(call),
        )
        async for chunk in response_stream:
            text = chunk.text
            if text:
                yield TextDelta(text=text)

        yield Finish(
            reason="stop",
            usage=Usage(),
            metadata={"google": {"groundingMetadata": None, "safetyRatings": None}},
        )
