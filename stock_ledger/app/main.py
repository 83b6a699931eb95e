import os
import logging

import colorlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .db import create_db_and_tables
from .auth import router as auth_router
from .notifications import router as notifications_router
from .users import router as users_router
from .routers.lots import router as lots_router
from .routers.receive import router as receive_router
from .routers.issue import router as issue_router
from .routers.transfers import router as transfers_router
from .routers.reports import router as reports_router
from .routers.settings import router as settings_router
from .services.exceptions import InventoryError

logger = logging.getLogger(__name__)

PACKAGE_LOGGER = "stock_ledger"


def configure_logging(level=None):
    """Attach a coloured stream handler to the package logger (once)"""
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(level)

    if not any(getattr(h, "_stock_ledger", False) for h in package_logger.handlers):
        handler = colorlog.StreamHandler()
        handler._stock_ledger = True
        formatter = colorlog.ColoredFormatter(
            "%(log_color)s[%(asctime)s] %(levelname)-8s%(reset)s %(blue)s%(name)s%(reset)s %(message)s",
            datefmt="%H:%M:%S",
            reset=True,
            log_colors={
                'DEBUG':    'cyan',
                'INFO':     'green',
                'WARNING':  'yellow',
                'ERROR':    'red',
                'CRITICAL': 'red,bg_white',
            },
            style='%'
        )
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)
    return package_logger


def get_cors_origins():
    """Get CORS origins from environment or use defaults for development"""
    origins_env = os.getenv("CORS_ORIGINS", "")
    if origins_env:
        return [o.strip() for o in origins_env.split(",") if o.strip()]
    # Default development origins
    return [
        "http://127.0.0.1:3000",
        "http://localhost:3000",
        "http://127.0.0.1:8080",
        "http://localhost:8080",
    ]


async def inventory_error_handler(request: Request, exc: InventoryError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(create_tables: bool = True) -> FastAPI:
    configure_logging()

    app = FastAPI(
        title="Stock Ledger",
        description="Lot-based multi-warehouse inventory with FEFO picking and two-phase transfers",
        version="1.0.0"
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(InventoryError, inventory_error_handler)

    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(notifications_router)
    app.include_router(lots_router)
    app.include_router(receive_router)
    app.include_router(issue_router)
    app.include_router(transfers_router)
    app.include_router(reports_router)
    app.include_router(settings_router)

    if create_tables:
        @app.on_event("startup")
        def on_startup():
            logger.info("Creating database tables at startup...")
            create_db_and_tables()
            logger.info("Database ready.")

    return app


app = create_app()


def run():
    """Serve the API with uvicorn; HOST and PORT come from the environment"""
    import uvicorn

    uvicorn.run(
        "stock_ledger.app.main:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
    )


if __name__ == "__main__":
    run()
