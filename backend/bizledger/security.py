# backend/bizledger/security.py

"""
Request admission for BizLedger.

Responsibilities:
- Bearer token extraction and verification against the identity service
- FastAPI dependency that attaches the verified identity to the request
- Business-scoped role checks for router dependencies

Users are owned by the identity service; nothing here stores them. Roles
are looked up on every gated request and never cached, so a revoked role
takes effect on the next call.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Callable, Optional, Set, Union

import httpx
from fastapi import Depends, Request
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .database import get_db
from .errors import BadRequest, Forbidden, InvalidToken, ServiceError, Unauthenticated
from bizledger.apps.accounts import store
from bizledger.apps.accounts.models import BusinessRole
from bizledger.apps.accounts.store import Err

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# CONFIG
# ---------------------------------------------------------------------------

IDENTITY_BACKEND = os.getenv("IDENTITY_BACKEND", "supabase").strip().lower()
SUPABASE_URL = os.getenv("SUPABASE_URL", "").rstrip("/")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY", "")
SUPABASE_JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET", "")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE", "authenticated")

try:
    IDENTITY_TIMEOUT_SECONDS = float(os.getenv("IDENTITY_TIMEOUT_SECONDS", "10"))
except ValueError:
    IDENTITY_TIMEOUT_SECONDS = 10.0


@dataclass(frozen=True)
class Identity:
    id: str
    email: str


# ---------------------------------------------------------------------------
# VERIFIERS
# ---------------------------------------------------------------------------


class IdentityVerifier:
    """Turns a bearer token into an Identity or raises InvalidToken."""

    def verify(self, token: str) -> Identity:
        raise NotImplementedError

    def close(self) -> None:
        """Release network resources; called once at application shutdown."""


class SupabaseIdentityVerifier(IdentityVerifier):
    """
    Asks the identity service who owns the token
    (`GET {base_url}/auth/v1/user`).
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = IDENTITY_TIMEOUT_SECONDS,
        client: Optional[httpx.Client] = None,
    ) -> None:
        if not base_url:
            raise RuntimeError("SUPABASE_URL is not set; cannot verify access tokens.")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._client = client or httpx.Client(timeout=timeout)

    def verify(self, token: str) -> Identity:
        headers = {"Authorization": f"Bearer {token}"}
        if self.api_key:
            headers["apikey"] = self.api_key
        try:
            response = self._client.get(f"{self.base_url}/auth/v1/user", headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("identity service call failed", extra={"error": exc.__class__.__name__})
            raise InvalidToken() from exc

        if response.status_code != 200:
            raise InvalidToken()

        payload = response.json()
        user_id = payload.get("id") if isinstance(payload, dict) else None
        if not user_id:
            raise InvalidToken()
        return Identity(id=str(user_id), email=payload.get("email") or "")

    def close(self) -> None:
        self._client.close()


class JWTIdentityVerifier(IdentityVerifier):
    """Verifies identity-service JWTs locally with the shared signing secret."""

    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = JWT_ALGORITHM,
        audience: Optional[str] = JWT_AUDIENCE,
    ) -> None:
        if not secret:
            raise RuntimeError("SUPABASE_JWT_SECRET is not set; cannot verify access tokens.")
        self.secret = secret
        self.algorithm = algorithm
        self.audience = audience or None

    def verify(self, token: str) -> Identity:
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                options={"verify_aud": self.audience is not None},
            )
        except JWTError as exc:
            raise InvalidToken() from exc

        user_id = payload.get("sub")
        if not user_id:
            raise InvalidToken()
        return Identity(id=str(user_id), email=payload.get("email") or "")


def build_identity_verifier() -> IdentityVerifier:
    if IDENTITY_BACKEND == "jwt":
        return JWTIdentityVerifier(SUPABASE_JWT_SECRET)
    if IDENTITY_BACKEND == "supabase":
        return SupabaseIdentityVerifier(SUPABASE_URL, SUPABASE_ANON_KEY)
    raise RuntimeError(f"Unknown IDENTITY_BACKEND {IDENTITY_BACKEND!r}; use 'supabase' or 'jwt'.")


# ---------------------------------------------------------------------------
# FASTAPI DEPENDENCIES
# ---------------------------------------------------------------------------


def bearer_token(request: Request) -> str:
    header = request.headers.get("authorization")
    if not header:
        raise Unauthenticated("Access token required")
    scheme, _, token = header.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise Unauthenticated("Access token required")
    return token


def get_current_identity(request: Request) -> Identity:
    """
    Verify the caller's bearer token and attach the Identity to
    `request.state.identity`.

    Verifier failures surface as InvalidToken; any unexpected exception is
    logged and converted to InvalidToken as well.
    """
    token = bearer_token(request)
    verifier: IdentityVerifier = request.app.state.identity_verifier
    try:
        identity = verifier.verify(token)
    except InvalidToken:
        logger.warning("token verification failed", extra={"path": request.url.path})
        raise
    except ServiceError:
        raise
    except Exception:
        logger.exception("identity verification error")
        raise InvalidToken("Invalid token")

    request.state.identity = identity
    return identity


# ---------------------------------------------------------------------------
# BUSINESS ROLE ACCESS
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BusinessAccess:
    identity: Identity
    business_id: str
    role: str


async def business_id_from_request(request: Request) -> Optional[str]:
    """Path parameter `business_id` first, then a `business_id` body field."""
    business_id = request.path_params.get("business_id")
    if business_id:
        return str(business_id)

    if request.method in {"POST", "PUT", "PATCH", "DELETE"}:
        try:
            body = await request.json()
        except ValueError:
            return None
        if isinstance(body, dict) and body.get("business_id"):
            return str(body["business_id"])
    return None


def require_business_role(
    *allowed_roles: Union[BusinessRole, str],
) -> Callable[..., BusinessAccess]:
    """
    Dependency factory to enforce that the caller holds one of the given
    roles on the business addressed by the request.

    Usage:
        @router.get("/businesses/{business_id}")
        def endpoint(
            access: BusinessAccess = Depends(
                require_business_role(BusinessRole.OWNER, BusinessRole.ADMIN)
            )
        ):
            ...

    Behaviour:
    - no identity: 401 (raised by get_current_identity)
    - no business id in path or body: 400
    - no role row, or the lookup failed: 403
    - role outside the allowed set: 403, same message as above
    """
    normalised_roles: Set[str] = set()
    for r in allowed_roles:
        if isinstance(r, BusinessRole):
            normalised_roles.add(r.value)
        else:
            try:
                normalised_roles.add(BusinessRole(r).value)
            except ValueError:
                raise ValueError(f"Unknown role {r!r} passed to require_business_role()")

    def dependency(
        request: Request,
        identity: Identity = Depends(get_current_identity),
        business_id: Optional[str] = Depends(business_id_from_request),
        db: Session = Depends(get_db),
    ) -> BusinessAccess:
        if not business_id:
            raise BadRequest("Business ID required")

        result = store.find_business_role(db, user_id=identity.id, business_id=business_id)
        if isinstance(result, Err):
            logger.warning(
                "role lookup failed",
                extra={"user_id": identity.id, "business_id": business_id},
            )
            raise Forbidden("Access denied")

        row = result.value
        if row is None or row.role not in normalised_roles:
            raise Forbidden("Access denied")

        request.state.business_role = row.role
        return BusinessAccess(identity=identity, business_id=business_id, role=row.role)

    return dependency
