from contextlib import asynccontextmanager
from pathlib import Path

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import SQLAlchemyError

from tokenmarket.api.router import api_router
from tokenmarket.core.config import settings
from tokenmarket.core.errors import ChainError, ChainUnavailable, InternalError, MarketplaceError
from tokenmarket.core.logging import configure_logging
from tokenmarket.core.message_broker import MessageBroker
from tokenmarket.services.contract_gateway import ContractGateway
from tokenmarket.services.event_publisher import ALL_EVENTS, EventPublisher
from tokenmarket.services.storage import LocalStorage

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level, settings.log_json)

    app.state.contract_gateway = None
    if settings.chain_configured:
        try:
            app.state.contract_gateway = ContractGateway(settings)
        except ChainUnavailable as e:
            # retried lazily on the first chain request
            logger.warning("contract_gateway_unavailable", error=str(e))

    broker = None
    forward_subscription = None
    if settings.redis_url:
        broker = MessageBroker(settings.redis_url)
        forward_subscription = app.state.publisher.subscribe(ALL_EVENTS, broker.forward)

    logger.info("startup_complete", chain=app.state.contract_gateway is not None, redis=broker is not None)
    try:
        yield
    finally:
        if forward_subscription is not None:
            forward_subscription.unsubscribe()
        if broker is not None:
            broker.close()


def create_app() -> FastAPI:
    app = FastAPI(title="Token Market", lifespan=lifespan)

    app.state.publisher = EventPublisher()
    app.state.storage = LocalStorage(settings.upload_dir, settings.upload_url_prefix, settings.max_upload_bytes)
    app.state.contract_gateway = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(MarketplaceError)
    async def marketplace_error_handler(request: Request, exc: MarketplaceError):
        body = {"error": exc.message}
        if isinstance(exc, ChainError):
            body["retryable"] = True
        return JSONResponse(status_code=exc.status_code, content=body)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if errors:
            first = errors[0]
            location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
        else:
            message = "Invalid request"
        return JSONResponse(status_code=400, content={"error": message})

    @app.exception_handler(SQLAlchemyError)
    async def storage_error_handler(request: Request, exc: SQLAlchemyError):
        logger.error("storage_error", path=request.url.path, error=str(exc))
        err = InternalError("Internal storage error")
        return JSONResponse(status_code=err.status_code, content={"error": err.message})

    app.include_router(api_router, prefix="/api")

    Path(settings.upload_dir).mkdir(parents=True, exist_ok=True)
    app.mount(settings.upload_url_prefix, StaticFiles(directory=settings.upload_dir), name="uploads")
    return app


app = create_app()
