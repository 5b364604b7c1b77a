from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImagePart(BaseModel):
    type: Literal["image"] = "image"
    image: Optional[str] = None  # base64 payload
    url: Optional[str] = None
    mime_type: Optional[str] = None


class FilePart(BaseModel):
    type: Literal["file"] = "file"
    mime_type: str
    data: Optional[str] = None  # base64 payload
    url: Optional[str] = None
    name: Optional[str] = None


ContentPart = Annotated[Union[TextPart, ImagePart, FilePart], Field(discriminator="type")]


class Message(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: Union[str, List[ContentPart]]

    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return "".join(part.text for part in self.content if isinstance(part, TextPart))


class ModelCall(BaseModel):
    prompt: List[Message]
    provider_metadata: Dict[str, Dict[str, Any]] = {}
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None

    @property
    def gemini_uri(self) -> Optional[str]:
        return self.provider_metadata.get("google", {}).get("experimental_geminiUri")


class Usage(BaseModel):
    # None means the provider did not report the count
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None


class TextDelta(BaseModel):
    kind: Literal["text-delta"] = "text-delta"
    text: str


class ReasoningDelta(BaseModel):
    kind: Literal["reasoning-delta"] = "reasoning-delta"
    text: str


class Finish(BaseModel):
    kind: Literal["finish"] = "finish"
    reason: str
    usage: Usage = Usage()
    metadata: Dict[str, Any] = {}


StreamEvent = Union[TextDelta, ReasoningDelta, Finish]


class GenerateResult(BaseModel):
    text: str
    reasoning: Optional[str] = None
    finish_reason: str = "stop"
    usage: Usage = Usage()


class ChatModelInfo(BaseModel):
    id: str
    name: str
    description: str


class ChatModelCatalog(BaseModel):
    default: str
    models: List[ChatModelInfo]
