import importlib
import logging
import pkgutil
from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import chatglue.routes
from chatglue.configs.config import get_settings

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)
logger = logging.getLogger(__name__)

hide_router = ["_init"]


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError):
    message = ", ".join(error["msg"] for error in exc.errors())
    return JSONResponse(status_code=400, content={"error": message})


def create_app() -> FastAPI:
    app = FastAPI(title="chatglue")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # For automatic route registration
    for module_info in pkgutil.iter_modules(chatglue.routes.__path__):
        if module_info.name in hide_router:
            continue
        module = importlib.import_module(f"chatglue.routes.{module_info.name}")
        if hasattr(module, "router") and isinstance(module.router, APIRouter):
            app.include_router(module.router)
            logger.debug(f"registered routes from {module_info.name}")

    @app.get("/")
    async def root():
        return {"message": "Healthcheck Passed"}

    return app


app = create_app()
