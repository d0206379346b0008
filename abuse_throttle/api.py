from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .audit import summarize_attempts
from .context import ThrottleContext, build_context
from .errors import InvalidAlertType, StoreUnavailable
from .models import AlertEvent, AlertRule, AttemptSummary, GateDecision, Severity


class AttemptCheckRequest(BaseModel):
    action: str
    ip: Optional[str] = None
    identity: Optional[str] = None
    user_agent: Optional[str] = None


class AttemptOutcomeRequest(AttemptCheckRequest):
    success: bool


class GateDecisionResponse(BaseModel):
    allowed: bool
    retry_after: Optional[int] = None
    reason: Optional[str] = None
    scope: Optional[str] = None
    captcha_required: bool = False


class AttemptSummaryResponse(BaseModel):
    ip_masked: str
    identity_masked: Optional[str] = None
    action: str
    success: bool
    created_at: datetime
    user_agent_short: Optional[str] = None


class AlertRuleResponse(BaseModel):
    type: str
    enabled: bool
    threshold: float
    cooldown_minutes: int
    last_triggered: Optional[datetime] = None


class AlertRuleUpdate(BaseModel):
    enabled: Optional[bool] = None
    threshold: Optional[float] = None
    cooldown_minutes: Optional[int] = Field(default=None, ge=0)


class MuteRequest(BaseModel):
    duration_minutes: int = Field(ge=0)


class TriggerRequest(BaseModel):
    type: str
    message: str
    severity: Severity = Severity.WARNING
    data: Optional[Dict[str, Any]] = None


class TriggerResponse(BaseModel):
    triggered: bool


class AlertEventResponse(BaseModel):
    id: str
    type: str
    timestamp: datetime
    message: str
    severity: str
    acknowledged: bool
    data: Optional[Dict[str, Any]] = None


class CountResponse(BaseModel):
    count: int


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.headers.get("x-real-ip") or "unknown"


def _serialize_decision(decision: GateDecision) -> GateDecisionResponse:
    return GateDecisionResponse(
        allowed=decision.allowed,
        retry_after=decision.retry_after_seconds,
        reason=decision.reason,
        scope=decision.scope.value if decision.scope else None,
        captcha_required=decision.captcha_required,
    )


def _serialize_summary(summary: AttemptSummary) -> AttemptSummaryResponse:
    return AttemptSummaryResponse(
        ip_masked=summary.ip_masked,
        identity_masked=summary.identity_masked,
        action=summary.action_type,
        success=summary.success,
        created_at=summary.timestamp,
        user_agent_short=summary.user_agent_short,
    )


def _serialize_rule(rule: AlertRule) -> AlertRuleResponse:
    return AlertRuleResponse(
        type=rule.type.value,
        enabled=rule.enabled,
        threshold=rule.threshold,
        cooldown_minutes=rule.cooldown_minutes,
        last_triggered=rule.last_triggered,
    )


def _serialize_event(event: AlertEvent) -> AlertEventResponse:
    return AlertEventResponse(
        id=event.id,
        type=event.type.value,
        timestamp=event.timestamp,
        message=event.message,
        severity=event.severity.value,
        acknowledged=event.acknowledged,
        data=event.data,
    )


def create_app(context: ThrottleContext | None = None) -> FastAPI:
    app = FastAPI(title="Abuse Throttle API", version="1.0.0")
    app.state.context = context or build_context()

    @app.exception_handler(InvalidAlertType)
    async def invalid_alert_type(request: Request, exc: InvalidAlertType) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(StoreUnavailable)
    async def store_unavailable(request: Request, exc: StoreUnavailable) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": "Attempt store unavailable"})

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/attempts/check", response_model=GateDecisionResponse)
    def check_attempt(payload: AttemptCheckRequest, request: Request, response: Response) -> GateDecisionResponse:
        decision = app.state.context.attempts.check(
            payload.action,
            payload.ip or _client_ip(request),
            payload.identity,
            payload.user_agent or request.headers.get("user-agent"),
        )
        if not decision.allowed:
            response.status_code = 429
            response.headers["Retry-After"] = str(decision.retry_after_seconds)
        return _serialize_decision(decision)

    @app.post("/attempts/outcome", status_code=204)
    def record_outcome(payload: AttemptOutcomeRequest, request: Request) -> Response:
        app.state.context.attempts.record_outcome(
            payload.action,
            payload.ip or _client_ip(request),
            payload.identity,
            payload.success,
            payload.user_agent or request.headers.get("user-agent"),
        )
        return Response(status_code=204)

    @app.get("/attempts/recent", response_model=List[AttemptSummaryResponse])
    def recent_attempts(limit: int = 100) -> List[AttemptSummaryResponse]:
        events = app.state.context.attempt_store.recent(limit=min(max(limit, 1), 100))
        return [_serialize_summary(summary) for summary in summarize_attempts(events)]

    @app.get("/alerts/rules", response_model=List[AlertRuleResponse])
    def list_rules() -> List[AlertRuleResponse]:
        return [_serialize_rule(rule) for rule in app.state.context.alerts.rules().values()]

    @app.patch("/alerts/rules/{alert_type}", response_model=AlertRuleResponse)
    def update_rule(alert_type: str, payload: AlertRuleUpdate) -> AlertRuleResponse:
        rule = app.state.context.alerts.update_rule(
            alert_type,
            enabled=payload.enabled,
            threshold=payload.threshold,
            cooldown_minutes=payload.cooldown_minutes,
        )
        return _serialize_rule(rule)

    @app.post("/alerts/rules/{alert_type}/mute", response_model=AlertRuleResponse)
    def mute_rule(alert_type: str, payload: MuteRequest) -> AlertRuleResponse:
        return _serialize_rule(app.state.context.alerts.mute_alert(alert_type, payload.duration_minutes))

    @app.post("/alerts/trigger", response_model=TriggerResponse)
    def trigger_alert(payload: TriggerRequest) -> TriggerResponse:
        triggered = app.state.context.alerts.try_trigger(payload.type, payload.message, payload.severity, payload.data)
        return TriggerResponse(triggered=triggered)

    @app.get("/alerts/history", response_model=List[AlertEventResponse])
    def alert_history() -> List[AlertEventResponse]:
        return [_serialize_event(event) for event in app.state.context.alerts.history()]

    @app.post("/alerts/history/{alert_id}/acknowledge", response_model=CountResponse)
    def acknowledge(alert_id: str) -> CountResponse:
        if not app.state.context.alerts.acknowledge_alert(alert_id):
            raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found")
        return CountResponse(count=app.state.context.alerts.unacknowledged_count())

    @app.delete("/alerts/history", status_code=204)
    def clear_history() -> Response:
        app.state.context.alerts.clear_history()
        return Response(status_code=204)

    @app.get("/alerts/unacknowledged", response_model=CountResponse)
    def unacknowledged() -> CountResponse:
        return CountResponse(count=app.state.context.alerts.unacknowledged_count())

    return app


app = create_app()
