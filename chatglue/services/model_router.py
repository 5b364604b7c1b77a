import logging
from typing import AsyncIterator, Callable, Dict, List, Optional

from google import genai

from chatglue.configs.config import Settings, get_settings
from chatglue.errors import UnknownModel
from chatglue.schemas.chat import ChatModelInfo, GenerateResult, ModelCall, StreamEvent
from chatglue.services.language_model import LanguageModel
from chatglue.services.openai_models import OpenAIChatModel, OpenAIImageModel, ReasoningExtractionModel
from chatglue.services.video_model import GeminiVideoModel

logger = logging.getLogger(__name__)

DEFAULT_CHAT_MODEL = "chat-model-small"

# Models offered to users in the chat model picker
CHAT_MODELS: List[ChatModelInfo] = [
    ChatModelInfo(
        id="video-model",
        name="Video analysis model",
        description="Specialized model for analyzing video content",
    ),
]


class ModelRegistry:
    """
    Maps logical model ids to model instances. Entries are registered as
    factories and built on first use, so provider clients (and their API
    keys) are only required for the models actually called.
    """

    def __init__(self):
        self._language_factories: Dict[str, Callable[[], LanguageModel]] = {}
        self._image_factories: Dict[str, Callable[[], OpenAIImageModel]] = {}
        self._instances: Dict[str, object] = {}

    def register_language_model(self, model_id: str, factory: Callable[[], LanguageModel]) -> None:
        self._language_factories[model_id] = factory
        self._instances.pop(model_id, None)

    def register_image_model(self, model_id: str, factory: Callable[[], OpenAIImageModel]) -> None:
        self._image_factories[model_id] = factory
        self._instances.pop(f"image:{model_id}", None)

    @property
    def language_model_ids(self) -> List[str]:
        return list(self._language_factories)

    @property
    def image_model_ids(self) -> List[str]:
        return list(self._image_factories)

    def language_model(self, model_id: str) -> LanguageModel:
        if model_id not in self._language_factories:
            raise UnknownModel(model_id)
        if model_id not in self._instances:
            logger.info(f"initialising language model {model_id}")
            self._instances[model_id] = self._language_factories[model_id]()
        return self._instances[model_id]

    def image_model(self, model_id: str) -> OpenAIImageModel:
        if model_id not in self._image_factories:
            raise UnknownModel(model_id)
        key = f"image:{model_id}"
        if key not in self._instances:
            logger.info(f"initialising image model {model_id}")
            self._instances[key] = self._image_factories[model_id]()
        return self._instances[key]

    async def generate(self, model_id: str, call: ModelCall) -> GenerateResult:
        return await self.language_model(model_id).generate(call)

    def stream(self, model_id: str, call: ModelCall) -> AsyncIterator[StreamEvent]:
        return self.language_model(model_id).stream(call)


def build_default_registry(settings: Settings) -> ModelRegistry:
    registry = ModelRegistry()

    def openai_chat(model_id: str) -> Callable[[], LanguageModel]:
        return lambda: OpenAIChatModel(model_id, api_key=settings.OPENAI_API_KEY)

    registry.register_language_model("chat-model-small", openai_chat("gpt-4o-mini"))
    registry.register_language_model("chat-model-large", openai_chat("gpt-4o"))
    registry.register_language_model(
        "chat-model-reasoning",
        lambda: ReasoningExtractionModel(
            OpenAIChatModel(
                "accounts/fireworks/models/deepseek-r1",
                api_key=settings.FIREWORKS_API_KEY,
                base_url=settings.FIREWORKS_BASE_URL,
                provider="fireworks",
                include_usage=False,
            ),
            tag_name="think",
        ),
    )
    registry.register_language_model("title-model", openai_chat("gpt-4-turbo"))
    registry.register_language_model("block-model", openai_chat("gpt-4o-mini"))
    registry.register_language_model(
        "video-model",
        lambda: GeminiVideoModel(
            settings.GEMINI_VIDEO_MODEL,
            client_factory=lambda: genai.Client(api_key=settings.GEMINI_API_KEY),
        ),
    )
    registry.register_image_model(
        "small-model", lambda: OpenAIImageModel("dall-e-3", api_key=settings.OPENAI_API_KEY)
    )
    return registry


_registry: Optional[ModelRegistry] = None


def get_model_registry() -> ModelRegistry:
    global _registry
    if _registry is None:
        _registry = build_default_registry(get_settings())
    return _registry
