"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running and the
Redis fan-out is reachable. Without Redis the socket still accepts
connections but no event is ever delivered, so that is reported as
"degraded" rather than an error.
"""

from fastapi import APIRouter

from alpinecrm import __version__

router = APIRouter()


@router.get("/health")
async def health_check():
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    try:
        from alpinecrm.realtime.pubsub import get_redis

        await get_redis().ping()
        checks["redis"] = "ok"
    except Exception as e:
        checks["redis"] = f"error: {e}"

    status = "healthy" if all(
        v == "ok" for k, v in checks.items() if k != "version"
    ) else "degraded"

    return {"status": status, **checks}
