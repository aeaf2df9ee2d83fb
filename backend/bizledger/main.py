# backend/bizledger/main.py
import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .apps.accounts.router_businesses import router as businesses_router
from .apps.accounts.router_public import router as auth_router
from .apps.billing.gateway import StripeGateway
from .apps.billing.router import router as billing_router
from .errors import register_exception_handlers
from .ratelimit import GENERAL, RateLimiter, rate_limit
from .security import IdentityVerifier, build_identity_verifier

logger = logging.getLogger(__name__)


def _allowed_origins() -> List[str]:
    """
    Parse CORS_ALLOWED_ORIGINS from env.

    Accepts comma-separated origins. If unset, defaults to local dev ports.
    """
    raw = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if raw:
        origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
        if origins:
            return origins
    return [
        "http://127.0.0.1:5173",
        "http://localhost:5173",
        "http://localhost:4173",
    ]


def create_app(
    *,
    rate_limiter: Optional[RateLimiter] = None,
    identity_verifier: Optional[IdentityVerifier] = None,
    stripe_gateway: Optional[StripeGateway] = None,
) -> FastAPI:
    """
    Build the API with its process-wide collaborators.

    The rate limiter, identity verifier and Stripe gateway are created once
    here and shared by every request through `app.state`.
    """
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        app.state.identity_verifier.close()
        logger.info("identity verifier closed")

    app = FastAPI(
        title="BizLedger API",
        version="1.0.0",
        dependencies=[Depends(rate_limit(GENERAL))],
        lifespan=lifespan,
    )
    app.state.rate_limiter = rate_limiter or RateLimiter()
    app.state.identity_verifier = identity_verifier or build_identity_verifier()
    app.state.stripe_gateway = stripe_gateway or StripeGateway()

    cors_origins = _allowed_origins()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials="*" not in cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    @app.get("/", tags=["health"])
    def read_root():
        return {"status": "ok", "message": "BizLedger backend is running"}

    @app.get("/health", tags=["health"])
    def health():
        return {"status": "ok"}

    app.include_router(auth_router)
    app.include_router(businesses_router)
    app.include_router(billing_router)

    logger.info("application configured", extra={"cors_origins": cors_origins})
    return app


app = create_app()
