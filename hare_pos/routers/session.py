"""
Session Router: sign-in opens a POS session, sign-out tears it down.
"""
from fastapi import APIRouter, Depends, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from hare_pos.models.api_models import SessionResponse
from hare_pos.routers.deps import get_access_token
from hare_pos.services.session_service import session_service
from hare_pos.utils.config import settings
import logging

router = APIRouter()
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)


@router.post("/session", response_model=SessionResponse)
@limiter.limit(f"{settings.RATE_LIMIT_REQUESTS}/{settings.RATE_LIMIT_PERIOD}")
async def open_session(request: Request, token: str = Depends(get_access_token)):
    """Resolve the caller's organization, load its state and subscribe to changes."""
    session = await session_service.open(token)
    return SessionResponse(session_id=session.session_id, org_id=session.ctx.org_id, user_id=session.ctx.user_id)


@router.delete("/session")
async def close_session(token: str = Depends(get_access_token)):
    closed = await session_service.close(token)
    return {"status": "closed" if closed else "not_open"}
