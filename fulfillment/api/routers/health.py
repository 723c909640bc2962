# fulfillment/api/routers/health.py
from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
def health(request: Request):
    detector = getattr(request.app.state, "detector", None)
    return {
        "status": "ok",
        "change_detector": {
            "running": detector is not None and detector.is_running,
            "enabled": detector is not None and detector.enabled,
            "last_count": detector.last_count if detector is not None else None,
        },
    }
