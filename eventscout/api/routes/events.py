from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException

from eventscout.agents.orchestrator import EventPipeline
from eventscout.errors import ValidationError
from eventscout.models.schemas import PipelineOutput

router = APIRouter(prefix="/api/events", tags=["events"])

_pipeline: EventPipeline | None = None


def get_pipeline() -> EventPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = EventPipeline()
    return _pipeline


@router.post("/run", response_model=PipelineOutput, response_model_by_alias=True)
async def run_events(payload: dict[str, Any]):
    """Run one event search and return the ranked events with run metadata."""
    try:
        return await get_pipeline().run(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors or str(exc)) from exc
