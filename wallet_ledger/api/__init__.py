"""
Wallet API Application Factory
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
import uvicorn

from .. import __version__
from ..config import get_config
from ..errors import WalletError
from ..logging_config import setup_logging
from .auth import WalletSystem
from .errors import wallet_error_handler, validation_error_handler
from .users import router as users_router
from .wallet import router as wallet_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the wallet system from configuration unless one was injected"""
    owned = None
    if app.state.system is None:
        owned = WalletSystem.from_config(get_config())
        app.state.system = owned
    yield
    if owned is not None:
        owned.close()
        app.state.system = None


def create_app(system: Optional[WalletSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    config = system.config if system is not None else get_config()
    setup_logging(config.log_level, "wallet", config.log_format)

    app = FastAPI(
        title="Wallet Ledger API",
        description="User wallets with deposit, withdraw and transfer over an atomic ledger",
        version=__version__,
        lifespan=lifespan
    )
    app.state.system = system

    app.add_exception_handler(WalletError, wallet_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    app.include_router(users_router, tags=["Users"])
    app.include_router(wallet_router, prefix="/wallet", tags=["Wallet"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "wallet_ledger",
            "version": __version__
        }

    return app


app = create_app()


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    uvicorn.run(
        "wallet_ledger.api:app",
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )
