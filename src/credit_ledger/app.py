"""
FastAPI application entrypoint for the credit-ledger service.

This module wires together:
- Logging configuration (file-based under LOG_DIR)
- The ledger backend (SQLAlchemy or in-memory) and the transfer engine
- Routers under credit_ledger.api (accounts, transfers)
"""

from typing import Optional

import uvicorn
from fastapi import FastAPI
from starlette.requests import Request

from . import config
from .api.accounts import router as accounts_router
from .api.transfers import router as transfers_router
from .db.session import create_engine, create_session_factory, init_db
from .db.unit_of_work import sql_unit_of_work_factory
from .ledger.engine import TransferEngine
from .ledger.memory import InMemoryLedger
from .ledger.ports import UnitOfWorkFactory
from .logging_config import get_logger, setup_logging

# Configure logging before creating the app
setup_logging()
logger = get_logger("credit_ledger")


def create_app(uow_factory: Optional[UnitOfWorkFactory] = None) -> FastAPI:
    """
    Build the application.

    Without an explicit factory the backend is chosen by LEDGER_BACKEND.
    """
    app = FastAPI(title="Credit Ledger API", version="1.0.0")
    db_engine = None

    if uow_factory is None:
        if config.LEDGER_BACKEND == "memory":
            uow_factory = InMemoryLedger().unit_of_work
            logger.info("Using in-memory ledger backend")
        elif config.LEDGER_BACKEND == "sql":
            db_engine = create_engine()
            uow_factory = sql_unit_of_work_factory(create_session_factory(db_engine))
            logger.info("Using SQL ledger backend url=%s", db_engine.url.render_as_string(hide_password=True))
        else:
            raise RuntimeError(f"Unknown LEDGER_BACKEND {config.LEDGER_BACKEND!r}")

    app.state.uow_factory = uow_factory
    app.state.transfer_engine = TransferEngine(
        uow_factory,
        max_retries=config.TRANSFER_MAX_RETRIES,
        persistence_timeout=config.PERSISTENCE_TIMEOUT,
        retry_backoff=config.TRANSFER_RETRY_BACKOFF,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """
        Lightweight request logger to help trace ledger traffic.
        """
        logger.info(
            "HTTP %s %s from %s",
            request.method,
            request.url.path,
            request.client.host if request.client else "?",
        )
        return await call_next(request)

    @app.get("/api/health")
    async def health():
        """
        Simple health check endpoint.
        """
        return {"status": "healthy"}

    app.include_router(accounts_router, prefix="/api")
    app.include_router(transfers_router, prefix="/api")

    @app.on_event("startup")
    async def on_startup():
        if db_engine is not None and config.AUTO_CREATE_TABLES:
            await init_db(db_engine)
        logger.info("Credit ledger starting up")

    @app.on_event("shutdown")
    async def on_shutdown():
        if db_engine is not None:
            try:
                await db_engine.dispose()
            except Exception:
                logger.exception("Error disposing engine on shutdown")
        logger.info("Credit ledger shutting down")

    return app


app = create_app()


def main() -> None:
    uvicorn.run("credit_ledger.app:app", host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    main()
