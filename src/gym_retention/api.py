"""
Retention API Router
Inbound HTTP boundary for risk assessments, retention actions, alerts and
model evaluation.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field

from . import config
from .engine import RetentionEngine
from .errors import (
    NotFoundError,
    RetentionEngineError,
    StoreError,
    UpstreamScoringError,
    ValidationError,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["retention"])


class CreateActionRequest(BaseModel):
    member_id: str = Field(validation_alias=AliasChoices("member_id", "userId"))
    assessment_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("assessment_id", "predictionId")
    )
    action_type: str = Field(validation_alias=AliasChoices("action_type", "actionType"))
    description: str = Field(validation_alias=AliasChoices("description", "actionDescription"))
    priority: int = 2


class ActionStatusRequest(BaseModel):
    status: str


class DismissAlertsRequest(BaseModel):
    alert_ids: List[str] = Field(validation_alias=AliasChoices("alert_ids", "alertIds"))


class CreateAlertRequest(BaseModel):
    member_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("member_id", "user_id"))
    severity: str
    message: str


class EvaluateRequest(BaseModel):
    days_ago: int = Field(
        default=config.DEFAULT_EVALUATION_DAYS,
        validation_alias=AliasChoices("days_ago", "daysAgo"),
    )


def get_engine(request: Request) -> RetentionEngine:
    return request.app.state.engine


# --- risk assessments -------------------------------------------------------


@router.get("/members/{member_id}/risk-assessment")
def get_risk_assessment(member_id: str, engine: RetentionEngine = Depends(get_engine)):
    """Latest assessment for a member."""
    return engine.latest_assessment(member_id)


@router.post("/members/{member_id}/risk-assessment", status_code=201)
def score_member(member_id: str, engine: RetentionEngine = Depends(get_engine)):
    """Delegate scoring of one member to the external scorer."""
    return engine.score_member(member_id)


@router.post("/risk-assessments/batch")
def rescore_population(engine: RetentionEngine = Depends(get_engine)) -> Dict[str, Any]:
    result = engine.rescore_population()
    return {
        "message": "Batch processing completed",
        "processed": result.processed,
        "total": result.total,
        "failed": list(result.failed),
    }


@router.get("/members/{member_id}/recommended-actions")
def get_recommended_actions(
    member_id: str,
    assessment_id: Optional[str] = Query(None, alias="assessmentId"),
    engine: RetentionEngine = Depends(get_engine),
):
    return engine.recommended_actions(member_id, assessment_id)


# --- retention actions ------------------------------------------------------


@router.post("/actions", status_code=201)
def create_action(payload: CreateActionRequest, engine: RetentionEngine = Depends(get_engine)):
    return engine.create_action(
        member_id=payload.member_id,
        assessment_id=payload.assessment_id,
        action_type=payload.action_type,
        description=payload.description,
        priority=payload.priority,
    )


@router.put("/actions/{action_id}/status")
def update_action_status(
    action_id: str, payload: ActionStatusRequest, engine: RetentionEngine = Depends(get_engine)
):
    return engine.update_action_status(action_id, payload.status)


@router.get("/actions")
def list_actions(
    member_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    engine: RetentionEngine = Depends(get_engine),
):
    return engine.list_actions(member_id=member_id, status=status)


# --- alerts -----------------------------------------------------------------


@router.post("/alerts/generate")
def generate_alerts(engine: RetentionEngine = Depends(get_engine)) -> Dict[str, Any]:
    run = engine.generate_alerts()
    return {
        "message": "Automatic alerts generated successfully",
        "count": run.count,
        "alerts": list(run.alerts),
        "transitioned_payments": list(run.transitioned_payments),
        "errors": run.errors,
    }


@router.post("/alerts/dismiss-bulk")
def dismiss_alerts(
    payload: DismissAlertsRequest, engine: RetentionEngine = Depends(get_engine)
) -> Dict[str, Any]:
    dismissed = engine.dismiss_alerts(payload.alert_ids)
    return {"message": "Alerts dismissed successfully", "count": len(dismissed), "alerts": dismissed}


@router.post("/alerts", status_code=201)
def create_alert(payload: CreateAlertRequest, engine: RetentionEngine = Depends(get_engine)):
    return engine.create_alert(payload.severity, payload.message, member_id=payload.member_id)


@router.put("/alerts/{alert_id}/resolve")
def resolve_alert(alert_id: str, engine: RetentionEngine = Depends(get_engine)):
    return engine.resolve_alert(alert_id)


@router.get("/alerts/stats")
def get_alert_stats(engine: RetentionEngine = Depends(get_engine)) -> Dict[str, Any]:
    return engine.alert_stats()


@router.get("/alerts")
def list_alerts(
    status: Optional[str] = Query(None),
    severity: Optional[str] = Query(None),
    member_id: Optional[str] = Query(None),
    engine: RetentionEngine = Depends(get_engine),
):
    return engine.list_alerts(status=status, severity=severity, member_id=member_id)


# --- model evaluation -------------------------------------------------------


@router.post("/model/evaluate")
def evaluate_model(
    payload: Optional[EvaluateRequest] = Body(None),
    engine: RetentionEngine = Depends(get_engine),
) -> Dict[str, Any]:
    days_ago = payload.days_ago if payload is not None else config.DEFAULT_EVALUATION_DAYS
    result = engine.evaluate_model(days_ago)
    return {
        "accuracy": result.accuracy,
        "precision": result.precision,
        "recall": result.recall,
        "f1": result.f1,
        "total": result.total,
        "confusion_matrix": {
            "true_positives": result.true_positives,
            "false_positives": result.false_positives,
            "true_negatives": result.true_negatives,
            "false_negatives": result.false_negatives,
        },
    }


@router.get("/model/metrics")
def get_model_metrics(engine: RetentionEngine = Depends(get_engine)):
    return engine.latest_metrics()


# --- error handling ---------------------------------------------------------

STATUS_BY_ERROR = {
    NotFoundError: 404,
    ValidationError: 400,
    UpstreamScoringError: 502,
    StoreError: 500,
}


def _error_response(status_code: int, kind: str, message: str, **details: Any) -> JSONResponse:
    body = {
        "message": message,
        "status": status_code,
        "kind": kind,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    body.update(details)
    return JSONResponse(status_code=status_code, content={"error": body})


async def handle_engine_error(request: Request, exc: RetentionEngineError) -> JSONResponse:
    status_code = next(
        (code for cls, code in STATUS_BY_ERROR.items() if isinstance(exc, cls)), 500
    )
    if status_code >= 500:
        logger.error("Error handling %s %s: %s", request.method, request.url.path, exc)
    details: Dict[str, Any] = {}
    if isinstance(exc, NotFoundError):
        details = {"entity": exc.entity, "id": str(exc.entity_id)}
    elif isinstance(exc, ValidationError):
        details = {"field": exc.field, "constraint": exc.constraint}
    elif isinstance(exc, UpstreamScoringError):
        details = {"member_id": exc.member_id, "state": "prediction unavailable"}
    return _error_response(status_code, exc.kind, str(exc), **details)


async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = [
        {"field": ".".join(str(p) for p in err.get("loc", ())), "constraint": err.get("msg", "")}
        for err in exc.errors()
    ]
    return _error_response(400, ValidationError.kind, "Invalid request", problems=problems)


def create_app(engine: RetentionEngine) -> FastAPI:
    """Build the FastAPI application around an engine instance."""

    app = FastAPI(
        title="Gym Retention Engine",
        description="Churn risk, retention actions, alerts and model evaluation",
        version="0.1.0",
    )
    app.state.engine = engine
    app.include_router(router)
    app.add_exception_handler(RetentionEngineError, handle_engine_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation)
    return app
