import time
from typing import Callable, Optional

from fastapi import FastAPI

from .config import AuthConfig, configure_logging, get_auth_config
from .errors import install_error_handlers
from .routes import health, profile, session, wallet
from .services.signing import Signer
from .storage import ProfileStore, init_store


def create_app(
    config: Optional[AuthConfig] = None,
    store: Optional[ProfileStore] = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    app = FastAPI(title="Siggy Profile Backend", version="0.1.0")

    app.state.auth_config = config or get_auth_config()
    app.state.signer = Signer(app.state.auth_config.secret, clock=clock)
    app.state.store = store if store is not None else init_store()

    install_error_handlers(app)
    app.include_router(wallet.router, prefix="/api/auth/wallet", tags=["auth"])
    app.include_router(session.router, prefix="/api/auth", tags=["auth"])
    app.include_router(profile.router, prefix="/api/profile", tags=["profile"])
    app.include_router(health.router, prefix="/api", tags=["health"])
    return app


configure_logging()
app = create_app()
