from datetime import datetime, timezone
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from custody.core.deps import get_engine
from custody.engine import Engine

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(engine: Engine = Depends(get_engine)):
    """Engine liveness with cursor and queue depth snapshot."""
    body = await engine.health()
    body["timestamp"] = datetime.now(timezone.utc).isoformat()
    if body["database"] != "connected":
        return JSONResponse(body, status_code=503)
    return body
