from fastapi import APIRouter, Depends

from chatglue.schemas.chat import ChatModelCatalog
from chatglue.services.model_router import (
    CHAT_MODELS,
    DEFAULT_CHAT_MODEL,
    ModelRegistry,
    get_model_registry,
)

router = APIRouter(prefix="/api", tags=["models"])


@router.get("/models", response_model=ChatModelCatalog)
async def list_chat_models(registry: ModelRegistry = Depends(get_model_registry)):
    """Chat models offered to users, limited to those the registry can serve."""
    available = set(registry.language_model_ids)
    return ChatModelCatalog(
        default=DEFAULT_CHAT_MODEL,
        models=[model for model in CHAT_MODELS if model.id in available],
    )
