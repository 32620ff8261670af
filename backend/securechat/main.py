import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from securechat.api.routes.admin import router as admin_router
from securechat.api.routes.auth import router as auth_router
from securechat.core.config import Settings, settings as default_settings
from securechat.core.exceptions import ChatError, ConnectivityError, UnsupportedOperation
from securechat.services.container import ChatCore

logger = logging.getLogger("securechat")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
    )


def create_app(settings: Settings | None = None, core: ChatCore | None = None) -> FastAPI:
    """
    Admin console API. Pass `core` to reuse an already opened ChatCore;
    otherwise one is built from settings and opened on startup.
    """
    settings = settings or (core.settings if core else default_settings)
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.core is None
        if owned:
            app.state.core = await ChatCore.build(settings).open()
        logger.info("%s started (%s)", settings.app_name, settings.app_env)
        try:
            yield
        finally:
            if owned:
                await app.state.core.close()
                app.state.core = None

    app = FastAPI(title="Secure Chat", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.core = core

    app.include_router(auth_router)
    app.include_router(admin_router)

    @app.exception_handler(UnsupportedOperation)
    async def unsupported_handler(request: Request, exc: UnsupportedOperation):
        return JSONResponse(status_code=501, content={"code": exc.code, "detail": exc.message})

    @app.exception_handler(ConnectivityError)
    async def connectivity_handler(request: Request, exc: ConnectivityError):
        logger.error("Store unreachable: %s", exc.message)
        return JSONResponse(status_code=503, content={"code": exc.code, "detail": exc.message})

    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError):
        return JSONResponse(status_code=400, content={"code": exc.code, "detail": exc.message})

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
