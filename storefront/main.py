import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.datastructures import Headers
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront import routes, web
from storefront.config import Settings, load_settings
from storefront.database import Base, build_engine, build_session_factory
from storefront.errors import StorefrontError
from storefront.invoices import InvoiceRenderer
from storefront.logging_config import configure_logging
from storefront.mailer import Mailer
from storefront.repository import Repository
from storefront.stripe_service import StripeGateway
from storefront.workflow import TransactionWorkflow

logger = logging.getLogger(__name__)

MAX_BODY_BYTES = 1048576
BODY_TOO_LARGE = "request body must not be larger than 1MB"
LOCATION_PREFIXES = {"body", "query", "path", "header", "cookie", "form"}


def _envelope(status_code: int, message: str, content=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": True, "message": message, "content": content},
    )


def _field_name(loc) -> str:
    parts = [str(p) for p in loc if p not in LOCATION_PREFIXES]
    return ".".join(parts) or "body"


async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return _envelope(exc.status_code, exc.message, exc.content)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if any(err.get("type") == "json_invalid" for err in errors):
        return _envelope(400, "body must contain a single valid JSON value")

    fields = {}
    for err in errors:
        fields.setdefault(_field_name(err.get("loc", ())), err.get("msg", "invalid value"))
    return JSONResponse(
        status_code=422,
        content={"error": True, "message": "failed validation", "errors": fields},
    )


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error(f"{request.method} {request.url.path} database error: {exc}")
    return _envelope(500, "internal server error")


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _envelope(exc.status_code, str(exc.detail))


class BodySizeLimit:
    """
    Caps request bodies whether or not a Content-Length is sent. A declared
    length over the limit is refused up front; a streamed body is counted as
    it is read and the read fails once the limit is passed.
    """

    def __init__(self, app, max_bytes: int = MAX_BODY_BYTES):
        self.app = app
        self.max_bytes = max_bytes

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        length = Headers(scope=scope).get("content-length")
        if length is not None and (not length.isdigit() or int(length) > self.max_bytes):
            response = _envelope(400, BODY_TOO_LARGE)
            await response(scope, receive, send)
            return

        received = 0

        async def limited_receive():
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_bytes:
                    raise HTTPException(status_code=400, detail=BODY_TOO_LARGE)
            return message

        await self.app(scope, limited_receive, send)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    engine = build_engine(settings.database_url)
    Base.metadata.create_all(bind=engine)
    settings.invoice_dir.mkdir(parents=True, exist_ok=True)

    repository = Repository(build_session_factory(engine))
    mailer = Mailer(settings.smtp)
    workflow = TransactionWorkflow(
        gateway=StripeGateway(settings.stripe),
        repository=repository,
        mailer=mailer,
        renderer=InvoiceRenderer(settings.invoice_dir),
        settings=settings,
    )

    app = FastAPI(title="Widgets Storefront")
    app.state.settings = settings
    app.state.engine = engine
    app.state.repository = repository
    app.state.mailer = mailer
    app.state.workflow = workflow

    app.add_middleware(BodySizeLimit, max_bytes=MAX_BODY_BYTES)
    app.add_exception_handler(StorefrontError, storefront_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)

    app.include_router(routes.router)
    app.include_router(routes.admin_router)
    app.include_router(routes.invoice_router)
    app.include_router(web.router)

    logger.info("Storefront application created")
    return app
