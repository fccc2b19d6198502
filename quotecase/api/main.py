from __future__ import annotations

from typing import Any

from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse

from quotecase.config import configure_logging, settings
from quotecase.contracts.schemas import (
    BuildPuzzleRequest,
    BuildPuzzleResult,
    FactOut,
    GapOut,
    SetFactRequest,
    StatusTransitionRequest,
)
from quotecase.errors import CaseNotFound
from quotecase.infra.repositories import build_repository
from quotecase.services.case_service import CaseService


configure_logging()

app = FastAPI(title="Quote Case Analysis API", version="0.1.0")
repo, using_supabase, persistence_message = build_repository()
service = CaseService(repo)


def get_service() -> CaseService:
    return service


def _user(x_user_id: str = Header(..., alias="X-User-ID")) -> str:
    user_id = x_user_id.strip()
    if not user_id:
        raise PermissionError("Missing caller identity")
    return user_id


@app.exception_handler(CaseNotFound)
async def case_not_found_handler(_request: Request, exc: CaseNotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ValueError)
async def value_error_handler(_request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(PermissionError)
async def permission_error_handler(_request: Request, exc: PermissionError) -> JSONResponse:
    return JSONResponse(status_code=403, content={"detail": str(exc)})


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "env": settings.app_env,
        "persistence": "supabase" if using_supabase else "memory",
        "persistence_message": persistence_message,
        "oracle_configured": settings.oracle_configured(),
    }


@app.post("/cases/{case_id}/puzzle", response_model=BuildPuzzleResult)
def build_puzzle(
    case_id: str,
    payload: BuildPuzzleRequest | None = None,
    user_id: str = Depends(_user),
    svc: CaseService = Depends(get_service),
) -> Any:
    force_refresh = payload.force_refresh if payload else False
    result = svc.build_case_puzzle(case_id, user_id, force_refresh=force_refresh)
    if result.outcome == "partial":
        return JSONResponse(status_code=207, content=result.model_dump())
    return result


@app.post("/cases/{case_id}/facts")
def set_fact(
    case_id: str,
    payload: SetFactRequest,
    user_id: str = Depends(_user),
    svc: CaseService = Depends(get_service),
) -> dict[str, Any]:
    result = svc.set_case_fact(case_id, user_id, payload.key, payload.value, payload.value_type)
    return {
        "fact_id": result.fact_id,
        "outcome": result.outcome.value,
        "previous_fact_id": result.previous_fact_id,
        "previous_value": result.previous_value,
    }


@app.get("/cases/{case_id}/facts")
def get_facts(
    case_id: str,
    user_id: str = Depends(_user),
    svc: CaseService = Depends(get_service),
) -> dict[str, Any]:
    snapshot = svc.get_case_facts(case_id, user_id)
    return {"case_id": case_id, "count": len(snapshot), "facts": snapshot.as_dict()}


@app.get("/cases/{case_id}/facts/{key}/history", response_model=list[FactOut])
def fact_history(
    case_id: str,
    key: str,
    user_id: str = Depends(_user),
    svc: CaseService = Depends(get_service),
) -> list[FactOut]:
    return [FactOut.from_fact(f) for f in svc.list_fact_history(case_id, user_id, key)]


@app.get("/cases/{case_id}/gaps", response_model=list[GapOut])
def open_gaps(
    case_id: str,
    user_id: str = Depends(_user),
    svc: CaseService = Depends(get_service),
) -> list[GapOut]:
    return [GapOut.from_gap(g) for g in svc.list_open_gaps(case_id, user_id)]


@app.get("/cases/{case_id}/timeline")
def timeline(
    case_id: str,
    user_id: str = Depends(_user),
    svc: CaseService = Depends(get_service),
) -> list[dict[str, Any]]:
    return svc.list_timeline(case_id, user_id)


@app.post("/cases/{case_id}/status")
def transition_status(
    case_id: str,
    payload: StatusTransitionRequest,
    user_id: str = Depends(_user),
    svc: CaseService = Depends(get_service),
) -> dict[str, Any]:
    case = svc.transition_status(case_id, user_id, payload.target)
    return {"case_id": case_id, "status": case.get("status")}
