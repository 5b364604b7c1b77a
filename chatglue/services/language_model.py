from typing import AsyncIterator

from chatglue.schemas.chat import GenerateResult, ModelCall, StreamEvent


class LanguageModel:
    """Common shape of every entry in the model registry."""

    provider: str = ""
    model_id: str = ""

    async def generate(self, call: ModelCall) -> GenerateResult:
        raise NotImplementedError

    def stream(self, call: ModelCall) -> AsyncIterator[StreamEvent]:
        raise NotImplementedError
