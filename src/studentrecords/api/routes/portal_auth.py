"""Portal login / status / logout routes for the sync page."""
import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from studentrecords.api.deps import get_session_provider
from studentrecords.portal.auth import PortalCredentials, SessionProvider
from studentrecords.portal.errors import NotAuthenticated

logger = logging.getLogger(__name__)

router = APIRouter()


class PortalLoginRequest(BaseModel):
    username: str = ""
    password: str = ""


@router.post("")
async def portal_login(
    request: PortalLoginRequest,
    provider: SessionProvider = Depends(get_session_provider),
):
    """Log in to the Portal with a staff account and keep the token."""
    if not request.username.strip() or not request.password:
        raise HTTPException(status_code=400, detail="Username and password are required")

    try:
        session = await provider.authenticate(
            PortalCredentials(request.username.strip(), request.password)
        )
    except NotAuthenticated as exc:
        logger.warning("Portal login failed for %s: %s", request.username, exc)
        raise HTTPException(status_code=401, detail=f"Portal login failed: {exc}")

    logger.info("Portal login succeeded for %s", request.username)
    return {"success": True, "expiresAt": session.expires_at.isoformat()}


@router.get("")
def portal_status(provider: SessionProvider = Depends(get_session_provider)):
    """Report whether a usable Portal session exists."""
    authenticated = provider.has_session()
    session = provider.session
    if session is None:
        return {"authenticated": False}
    return {
        "authenticated": authenticated,
        "expired": not authenticated,
        "expiresAt": session.expires_at.isoformat(),
    }


@router.delete("")
def portal_logout(provider: SessionProvider = Depends(get_session_provider)):
    """Forget the Portal session."""
    provider.invalidate()
    return {"success": True}
