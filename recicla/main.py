import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api.routes import deliveries, points, redemptions, rewards, users
from .core.config import settings
from .core.errors import ErrorKind, ReciclaError
from .db.session import LedgerStore

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_STATE: 409,
    ErrorKind.INSUFFICIENT_BALANCE: 409,
    ErrorKind.EXHAUSTED: 409,
    ErrorKind.UNAUTHORIZED: 403,
    ErrorKind.UNAVAILABLE: 503,
    ErrorKind.INVALID_INPUT: 422,
}


def create_app(store: LedgerStore | None = None) -> FastAPI:
    app = FastAPI(title="Recicla API", version="0.3.0")
    # without an explicit store the default one is opened on startup
    app.state.store = store

    @app.on_event("startup")
    def on_startup():
        if app.state.store is None:
            app.state.store = LedgerStore()
        app.state.store.create_all()

    @app.on_event("shutdown")
    def on_shutdown():
        if app.state.store is not None:
            app.state.store.dispose()

    @app.exception_handler(ReciclaError)
    async def handle_recicla_error(request: Request, exc: ReciclaError):
        status_code = ERROR_STATUS.get(exc.kind, 500)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    app.include_router(users.router, prefix="/users", tags=["Users"])
    app.include_router(deliveries.router, prefix="/deliveries", tags=["Deliveries"])
    app.include_router(rewards.router, prefix="/rewards", tags=["Rewards"])
    app.include_router(redemptions.router, prefix="/redemptions", tags=["Redemptions"])
    app.include_router(points.router, prefix="/points", tags=["Points"])
    return app


# served by `uvicorn recicla.main:app`
app = create_app()
