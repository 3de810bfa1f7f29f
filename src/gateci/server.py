from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from .dag import graph_levels
from .trigger import TriggerService

# -------------------- Schemas --------------------

class ChangeRequest(BaseModel):
    change_ref: str = Field(min_length=1)


class ChangeResponse(BaseModel):
    run_id: str
    cached: bool


class StepOut(BaseModel):
    name: str
    status: str
    exit_code: Optional[int] = None
    duration: float


class JobOut(BaseModel):
    name: str
    state: str
    environment: str
    error_kind: Optional[str] = None
    failed_step: Optional[str] = None
    diagnostic: Optional[str] = None
    duration: Optional[float] = None
    steps: list[StepOut] = Field(default_factory=list)


class RunResponse(BaseModel):
    run_id: str
    change_ref: Optional[str]
    status: str  # running|finished
    verdict: Optional[str]
    failing: bool
    jobs: list[JobOut]


class VerdictResponse(BaseModel):
    run_id: str
    verdict: str


class GraphResponse(BaseModel):
    fingerprint: str
    stages: list[list[str]]
    jobs: list[dict[str, Any]]


# -------------------- App --------------------

def create_app(service: TriggerService) -> FastAPI:
    app = FastAPI(title="gateci trigger")

    def _run_or_404(run_id: str):
        try:
            return service.get_run(run_id)
        except KeyError:
            raise HTTPException(status_code=404, detail="Run not found") from None

    @app.on_event("shutdown")
    def shutdown() -> None:
        service.shutdown(wait=False)

    @app.post("/changes", response_model=ChangeResponse)
    def propose_change(req: ChangeRequest):
        triggered = service.trigger(req.change_ref)
        return ChangeResponse(run_id=triggered.run_id, cached=triggered.cached)

    @app.get("/runs/{run_id}", response_model=RunResponse)
    def get_run(run_id: str):
        run = _run_or_404(run_id)
        report = service.report(run_id)
        return RunResponse(
            run_id=report.run_id,
            change_ref=report.change_ref,
            status="finished" if run.finished else "running",
            verdict=report.verdict,
            failing=report.failing,
            jobs=[JobOut.model_validate(j, from_attributes=True) for j in report.jobs],
        )

    @app.get("/runs/{run_id}/verdict", response_model=VerdictResponse)
    def get_verdict(run_id: str):
        run = _run_or_404(run_id)
        if run.verdict is None:
            raise HTTPException(status_code=409, detail="Run still in progress")
        return VerdictResponse(run_id=run_id, verdict=run.verdict.value)

    @app.get("/graph", response_model=GraphResponse)
    def get_graph():
        graph = service.graph
        return GraphResponse(
            fingerprint=graph.fingerprint(),
            stages=graph_levels(graph),
            jobs=graph.to_dict()["jobs"],
        )

    return app
