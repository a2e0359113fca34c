"""
Live activity REST API and WebSocket feed.

Exposes the activity log, swarm lanes, plan trace, flow state and
diagnostics, and accepts raw backend telemetry for ingestion.
"""

import asyncio
import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from config import live_config
from flow.events import TodoWritePayload
from live.activity_log import LiveSnapshot
import web.state as _state

logger = logging.getLogger(__name__)

router = APIRouter()


def _todo_to_dict(todo: TodoWritePayload) -> Dict[str, Any]:
    return {
        "id": todo.id,
        "title": todo.title,
        "status": todo.status.value if todo.status else None,
        "priority": todo.priority.value if todo.priority else None,
        "notes": todo.notes,
        "files": list(todo.files),
    }


def _snapshot_payload(snapshot: LiveSnapshot) -> Dict[str, Any]:
    data = snapshot.to_dict(activity_limit=live_config.lane_display_limit)
    data["type"] = "live_snapshot"
    data["lanes"] = [lane.to_dict(include_events=False) for lane in _state._pipeline.log.lane_states()]
    data["flow_state"] = _state._coordinator.current_state.value
    return data


# ------------------------------------------------------------------
# Activity log
# ------------------------------------------------------------------

@router.get("/api/live/activities")
async def list_activities(limit: int = Query(50, ge=0, le=1000)):
    log = _state._pipeline.log
    return {
        "activities": [a.to_dict() for a in log.recent(limit)],
        "instant_greps": [g.to_dict() for g in log.instant_greps],
        "active_operations_count": log.active_operations_count,
        "unseen_live_events_count": log.unseen_live_events_count,
    }


@router.get("/api/live/plan")
async def plan_trace():
    """Plan-relevant activities plus agent todos and plan step statuses."""
    pipeline = _state._pipeline
    return {
        "activities": [a.to_dict() for a in pipeline.log.plan_relevant()],
        "todos": [_todo_to_dict(t) for t in pipeline.todos],
        "plan_steps": {step_id: status.value for step_id, status in pipeline.plan_steps.items()},
    }


# ------------------------------------------------------------------
# Swarm lanes
# ------------------------------------------------------------------

@router.get("/api/live/lanes")
async def list_lanes():
    return {"lanes": [lane.to_dict(include_events=False) for lane in _state._pipeline.log.lane_states()]}


@router.get("/api/live/lanes/{swarm_id}")
async def lane_detail(swarm_id: str, limit: int = Query(0, ge=0)):
    log = _state._pipeline.log
    lane = log.lane_map().get(swarm_id)
    if lane is None:
        return JSONResponse({"error": f"Unknown swarm lane: {swarm_id}"}, status_code=404)
    activities = log.activities_for_swarm_lane(swarm_id, limit or None)
    data = lane.to_dict()
    data["activities"] = [a.to_dict() for a in activities]
    return data


# ------------------------------------------------------------------
# Flow state / diagnostics
# ------------------------------------------------------------------

@router.get("/api/live/flow")
async def flow_state():
    return {
        "state": _state._coordinator.current_state.value,
        "first_event_timeout": _state._coordinator.first_event_timeout,
        "inactivity_timeout": _state._coordinator.inactivity_timeout,
    }


@router.get("/api/live/diagnostics")
async def diagnostics():
    return _state._pipeline.diagnostics.to_dict()


@router.get("/api/accounts/usage")
async def account_usage():
    await _state._dashboard.refresh()
    return _state._dashboard.to_dict()


# ------------------------------------------------------------------
# Ingestion
# ------------------------------------------------------------------

@router.post("/api/live/events")
async def ingest_event(request: Request):
    """Feed one raw backend event ``{provider_id, type, payload}`` through the pipeline."""
    try:
        body = await request.json()
    except json.JSONDecodeError:
        return JSONResponse({"ok": False, "error": "Invalid JSON"}, status_code=400)
    if not isinstance(body, dict):
        return JSONResponse({"ok": False, "error": "Expected a JSON object"}, status_code=400)

    event_type = str(body.get("type") or "").strip()
    if not event_type:
        return JSONResponse({"ok": False, "error": "Missing event type"}, status_code=400)
    payload = body.get("payload") or {}
    if not isinstance(payload, dict):
        return JSONResponse({"ok": False, "error": "payload must be an object"}, status_code=400)

    provider_id = str(body.get("provider_id") or "external")
    # The wire format is string -> string
    payload = {str(k): "" if v is None else str(v) for k, v in payload.items()}
    envelope = _state._pipeline.record_raw_event(provider_id, event_type, payload)
    logger.debug(f"Ingested {event_type} from {provider_id} ({len(envelope.events)} events)")
    return {"ok": True, "envelope": envelope.to_dict()}


@router.post("/api/live/seen")
async def mark_seen():
    _state._pipeline.log.mark_live_events_seen()
    return {"ok": True}


@router.post("/api/live/clear")
async def clear_live():
    _state._pipeline.clear()
    return {"ok": True}


# ------------------------------------------------------------------
# WebSocket feed
# ------------------------------------------------------------------

@router.websocket("/ws/live")
async def websocket_live(ws: WebSocket):
    """Push a snapshot on connect and after every activity log or diagnostics change."""
    await ws.accept()
    wsr = _state._WSRef(ws)
    pipeline = _state._pipeline
    queue: asyncio.Queue = asyncio.Queue()

    def _on_change(_value):
        queue.put_nowait(True)

    unsubscribers = [
        pipeline.log.snapshot.subscribe(_on_change),
        pipeline.diagnostics.changes.subscribe(_on_change),
    ]

    async def send_updates():
        while True:
            await queue.get()
            # Coalesce bursts into one snapshot
            while not queue.empty():
                queue.get_nowait()
            await wsr.send_json(_snapshot_payload(pipeline.log.snapshot.value))
            if wsr.ws is None:
                return

    await wsr.send_json(_snapshot_payload(pipeline.log.snapshot.value))
    send_task = asyncio.create_task(send_updates())
    try:
        logger.info("live ws: connected")
        while True:
            msg = await ws.receive_json()
            if isinstance(msg, dict) and msg.get("type") == "seen":
                pipeline.log.mark_live_events_seen()
    except WebSocketDisconnect:
        logger.debug("live ws: client disconnected")
    finally:
        logger.info("live ws: closing")
        send_task.cancel()
        for unsubscribe in unsubscribers:
            unsubscribe()
        wsr.ws = None
