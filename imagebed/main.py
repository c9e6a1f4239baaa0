import logging
from contextlib import asynccontextmanager
from typing import Optional

import aioboto3
import uvicorn
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from mangum import Mangum
from starlette.exceptions import HTTPException as StarletteHTTPException

from imagebed.auth import LoginRequired
from imagebed.config import Settings, fetch_ssm_params
from imagebed.errors import AuthConfigError
from imagebed.order_store import DynamoOrderBackend, OrderStore
from imagebed.ratelimit import RateLimiter
from imagebed.routers import auth, images, pages, upload
from imagebed.storage import ObjectStore

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    logger.info("Starting up...")

    # 1. Fetch SSM Params, the order backend may change with them
    if settings.SSM_PARAMETER_PREFIX:
        await fetch_ssm_params(settings, app.state.session)
        app.state.order_store = OrderStore.from_settings(settings, app.state.object_store)

    # 2. Bootstrap LocalStack (Ensure Bucket and Table exist)
    if settings.is_local:
        try:
            await app.state.object_store.ensure_bucket()
        except (ClientError, BotoCoreError) as e:
            logger.warning("Failed to bootstrap S3: %s", e)

        backend = app.state.order_store.backend
        if isinstance(backend, DynamoOrderBackend):
            try:
                await backend.ensure_table()
            except (ClientError, BotoCoreError) as e:
                logger.warning("Failed to bootstrap DynamoDB: %s", e)

    yield
    logger.info("Shutting down...")


def _message_body(detail) -> dict:
    if isinstance(detail, dict):
        return {key: value for key, value in detail.items() if value}
    return {"message": detail}


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=_message_body(exc.detail),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        in_query = any(error.get("loc", ("",))[0] == "query" for error in exc.errors())
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"message": "Invalid query" if in_query else "Invalid payload"},
        )

    @app.exception_handler(AuthConfigError)
    async def auth_config_error(request: Request, exc: AuthConfigError):
        logger.error("Authentication is not configured: %s", exc)
        return JSONResponse(status_code=500, content={"message": str(exc)})

    @app.exception_handler(LoginRequired)
    async def login_required(request: Request, exc: LoginRequired):
        return RedirectResponse(exc.location, status_code=status.HTTP_303_SEE_OTHER)


def create_app(
    settings: Optional[Settings] = None,
    object_store: Optional[ObjectStore] = None,
    order_store: Optional[OrderStore] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> FastAPI:
    settings = settings or Settings()
    configure_logging(settings.LOG_LEVEL)

    session = aioboto3.Session()
    object_store = object_store or ObjectStore(settings, session)

    app = FastAPI(title="Imagebed", lifespan=lifespan, root_path=settings.ROOT_PATH)
    app.state.settings = settings
    app.state.session = session
    app.state.object_store = object_store
    app.state.order_store = order_store or OrderStore.from_settings(settings, object_store)
    app.state.rate_limiter = rate_limiter or RateLimiter()

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        response = await call_next(request)
        logger.info("%s %s -> %s", request.method, request.url.path, response.status_code)
        return response

    register_exception_handlers(app)

    app.include_router(auth.router)
    app.include_router(images.router)
    app.include_router(upload.router)
    app.include_router(pages.router)

    @app.get("/health", include_in_schema=False)
    def health():
        return {"status": "ok", "backend": app.state.order_store.backend_name}

    return app


app = create_app()

# Adapter for AWS Lambda
handler = Mangum(app)

if __name__ == "__main__":
    uvicorn.run("imagebed.main:app", host="0.0.0.0", port=8000, reload=True)
