"""
Health Router: readiness plus backend and Redis reachability.
"""
from fastapi import APIRouter, Request, Response, status
from hare_pos.services.cache_service import cache_service
from hare_pos.services.session_service import session_service
from hare_pos.services.supabase_client import SupabaseClient

router = APIRouter()


@router.get("/health")
async def health_check(request: Request, response: Response):
    """
    Check core services: backend REST API and Redis.
    Returns 503 if app is still initializing (Readiness Probe).
    """
    if not getattr(request.app.state, "is_ready", False):
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "initializing", "message": "Application is starting up"}

    health_status = {
        "status": "healthy",
        "services": {"backend": "unknown", "redis": "unknown"},
        "sessions": len(session_service),
    }

    try:
        await SupabaseClient().ping()
        health_status["services"]["backend"] = "up"
    except Exception as e:
        health_status["services"]["backend"] = f"down: {str(e)}"
        health_status["status"] = "degraded"

    try:
        await cache_service.ping()
        health_status["services"]["redis"] = "up"
    except Exception as e:
        health_status["services"]["redis"] = f"down: {str(e)}"
        health_status["status"] = "degraded"

    return health_status
