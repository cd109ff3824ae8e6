from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel

from venuedesk.services.telemetry import counters_snapshot, p95_latency

router = APIRouter(tags=["health"])

# Rolling window for the latency summary.
_LATENCY_WINDOW_S = 300


class HealthResponse(BaseModel):
    status: str
    db_pool: dict[str, int | None]
    admin_p95_ms: float | None
    counters: dict[str, int]


@router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    # Liveness plus the counters that record swallowed audit/email failures.
    return HealthResponse(
        status="ok",
        db_pool=request.app.state.db.pool_stats(),
        admin_p95_ms=p95_latency(_LATENCY_WINDOW_S, path_prefix="/api/admin"),
        counters=counters_snapshot(),
    )
