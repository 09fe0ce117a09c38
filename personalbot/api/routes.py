import json
import logging
import uuid

from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

logger = logging.getLogger(__name__)

router = APIRouter()


# ===========================================================================
# PROFILE ROUTES
# ===========================================================================

@router.get("/api/profile")
async def get_profile(request: Request):
    return request.app.state.profiles.get().to_wire()


@router.put("/api/profile")
async def replace_profile(request: Request):
    """Swap the whole profile; agents pick it up on their next call."""
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=422, detail="Profile body must be JSON")
    try:
        profile = request.app.state.profiles.replace(body)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False))
    return {"success": True, "profile": profile.to_wire()}


@router.post("/api/reload-profile")
async def reload_profile(request: Request):
    profile = request.app.state.profiles.reload()
    return {"success": True, "profile": profile.to_wire()}


# ---------------------------------------------------------------------------
# WS /ws
# ---------------------------------------------------------------------------

@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    state = websocket.app.state
    session_id = str(uuid.uuid4())
    await state.ws_manager.connect(session_id, websocket)
    state.registry.create_session(session_id)
    logger.info("Session %s connected", session_id)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except ValueError:
                await state.ws_manager.send(session_id, "error", {"message": "Malformed message."})
                continue
            if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
                await state.ws_manager.send(session_id, "error", {"message": "Malformed message."})
                continue
            await state.orchestrator.dispatch(session_id, frame["event"], frame.get("data"))
    except WebSocketDisconnect:
        logger.info("Session %s disconnected", session_id)
    finally:
        state.ws_manager.disconnect(session_id)
        state.registry.destroy_session(session_id)
