from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, FastAPI

from .backend import WalletBackend
from .orchestrator import WalletOrchestrator
from .settings import WalletSettings
from .utils import configure_logging
from .views_api import cashuwallet_api_router

cashuwallet_ext: APIRouter = APIRouter(prefix="/cashuwallet", tags=["CashuWallet"])
cashuwallet_ext.include_router(cashuwallet_api_router)


def create_app(
    settings: Optional[WalletSettings] = None,
    backend: Optional[WalletBackend] = None,
) -> FastAPI:
    """Build the wallet service; the orchestrator lives for the app's lifespan."""
    settings = settings or WalletSettings()
    configure_logging(settings.log_level, settings.log_file)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        orchestrator = WalletOrchestrator(settings, backend=backend)
        await orchestrator.init()
        app.state.orchestrator = orchestrator
        try:
            yield
        finally:
            app.state.orchestrator = None
            await orchestrator.dispose()

    app = FastAPI(title="Cashu Wallet", lifespan=lifespan)
    app.include_router(cashuwallet_ext)
    return app


__all__ = [
    "WalletOrchestrator",
    "WalletSettings",
    "cashuwallet_ext",
    "create_app",
]
