# backend/bizledger/apps/accounts/router_public.py

from __future__ import annotations

from fastapi import APIRouter, Depends

from bizledger.ratelimit import AUTH, rate_limit
from bizledger.security import Identity, get_current_identity
from . import schemas

router = APIRouter(prefix="/auth", tags=["auth"])


# The auth policy is listed before token verification so brute-force
# attempts are throttled before any identity-service call is made.
@router.get(
    "/session",
    response_model=schemas.IdentityRead,
    dependencies=[Depends(rate_limit(AUTH))],
)
def read_session(identity: Identity = Depends(get_current_identity)):
    return {"id": identity.id, "email": identity.email}
