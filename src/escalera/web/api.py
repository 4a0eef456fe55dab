"""
HTTP mapping of the ladder operations.

The app is built by create_app() around a LadderService; nothing here
touches the database directly. Authentication lives outside this app:
whatever logs the user in stores their identity in the signed session
cookie under "identity" ({"user_id", "player_id", "is_admin"}).

Errors raised by the ladder are rendered as {"error": <message>} with a
status code per kind; admins also get the error code and detail.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.middleware.sessions import SessionMiddleware

from escalera.config import Settings, get_settings
from escalera.errors import (
    AlreadyConfirmed,
    AlreadyReported,
    CannotConfirmOwn,
    ComodinNotAllowed,
    ConcurrentModification,
    ConfirmationSameTeam,
    InsufficientPlayers,
    InvalidScheduleAction,
    InvalidScore,
    InvalidTiebreak,
    LadderError,
    MatchesIncomplete,
    NoPermission,
    NoResultToConfirm,
    NotFound,
    PointsCalculationFailed,
    RoundAlreadyClosed,
    RoundClosed,
    ScheduleNotConfirmed,
)
from escalera.identity import Identity
from escalera.service import LadderService

logger = logging.getLogger(__name__)

IDENTITY_SESSION_KEY = "identity"

STATUS_BY_ERROR: dict[type, int] = {
    NotFound: 404,
    NoPermission: 403,
    InvalidScore: 422,
    InvalidTiebreak: 422,
    RoundClosed: 400,
    AlreadyReported: 409,
    NoResultToConfirm: 400,
    CannotConfirmOwn: 400,
    AlreadyConfirmed: 409,
    ConfirmationSameTeam: 400,
    ScheduleNotConfirmed: 400,
    InvalidScheduleAction: 409,
    ComodinNotAllowed: 409,
    ConcurrentModification: 409,
    RoundAlreadyClosed: 409,
    InsufficientPlayers: 400,
    MatchesIncomplete: 400,
    PointsCalculationFailed: 500,
}


def status_for(exc: LadderError) -> int:
    for cls in type(exc).__mro__:
        if cls in STATUS_BY_ERROR:
            return STATUS_BY_ERROR[cls]
    return 400


# =============================================================================
# Request bodies
# =============================================================================

class ScoreBody(BaseModel):
    team1_games: int = Field(..., ge=0, le=10)
    team2_games: int = Field(..., ge=0, le=10)
    tiebreak: Optional[str] = None
    expected_updated_at: Optional[datetime] = None


class ConfirmBody(BaseModel):
    expected_updated_at: Optional[datetime] = None


class DisputeBody(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class ProposeDateBody(BaseModel):
    proposed_date: datetime


class RespondDateBody(BaseModel):
    accept: bool


class ComodinBody(BaseModel):
    mode: str = Field(default="mean", pattern="^(mean|substitute)$")
    substitute_player_id: Optional[int] = None
    player_id: Optional[int] = None
    reason: Optional[str] = Field(default=None, max_length=200)


class RevokeComodinBody(BaseModel):
    player_id: Optional[int] = None


class SkipGroupBody(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=255)


# =============================================================================
# Dependencies
# =============================================================================

def get_service(request: Request) -> LadderService:
    return request.app.state.service


def get_current_identity(request: Request) -> Identity:
    """Identity of the logged-in user, from the signed session cookie."""
    data = request.session.get(IDENTITY_SESSION_KEY)
    if not data:
        raise HTTPException(status_code=401, detail="No autorizado")
    try:
        identity = Identity.from_dict(data)
    except (KeyError, TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Sesión no válida")
    request.state.identity = identity
    return identity


def _naive(value: Optional[datetime]) -> Optional[datetime]:
    """Timestamps are stored as naive UTC."""
    if value is not None and value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# =============================================================================
# App factory
# =============================================================================

def create_app(service: LadderService, settings: Optional[Settings] = None) -> FastAPI:
    """Build the web app around a ladder service."""
    settings = settings or service.settings or get_settings()

    app = FastAPI(title="Escalera")
    app.state.service = service
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.admin_session_secret,
        max_age=settings.admin_session_max_age_seconds,
    )

    @app.exception_handler(LadderError)
    async def ladder_error_handler(request: Request, exc: LadderError):
        identity = getattr(request.state, "identity", None)
        is_admin = bool(identity and identity.is_admin)
        status = status_for(exc)
        if status >= 500:
            logger.error("%s %s failed: %s %s", request.method, request.url.path, exc.code, exc.context)
        else:
            logger.info("%s %s rejected: %s", request.method, request.url.path, exc.code)
        return JSONResponse(exc.to_dict(include_code=is_admin), status_code=status)

    # -------------------------------------------------------------------------
    # Results
    # -------------------------------------------------------------------------

    @app.post("/api/matches/{match_id}/report")
    def report_result(
        match_id: int,
        body: ScoreBody,
        identity: Identity = Depends(get_current_identity),
        svc: LadderService = Depends(get_service),
    ):
        view = svc.report_result(
            match_id,
            body.team1_games,
            body.team2_games,
            body.tiebreak,
            identity,
            expected_updated_at=_naive(body.expected_updated_at),
        )
        return JSONResponse({"success": True, "match": view.to_dict()})

    @app.post("/api/matches/{match_id}/confirm")
    def confirm_result(
        match_id: int,
        body: Optional[ConfirmBody] = None,
        identity: Identity = Depends(get_current_identity),
        svc: LadderService = Depends(get_service),
    ):
        expected = _naive(body.expected_updated_at) if body else None
        view = svc.confirm_result(match_id, identity, expected_updated_at=expected)
        return JSONResponse({"success": True, "match": view.to_dict()})

    @app.post("/api/matches/{match_id}/dispute")
    def dispute_result(
        match_id: int,
        body: Optional[DisputeBody] = None,
        identity: Identity = Depends(get_current_identity),
        svc: LadderService = Depends(get_service),
    ):
        view = svc.dispute_result(match_id, identity, reason=body.reason if body else None)
        return JSONResponse({"success": True, "match": view.to_dict()})

    @app.put("/api/admin/matches/{match_id}/result")
    def admin_set_result(
        match_id: int,
        body: ScoreBody,
        identity: Identity = Depends(get_current_identity),
        svc: LadderService = Depends(get_service),
    ):
        view = svc.admin_set_result(
            match_id,
            body.team1_games,
            body.team2_games,
            body.tiebreak,
            identity,
            expected_updated_at=_naive(body.expected_updated_at),
        )
        return JSONResponse({"success": True, "match": view.to_dict()})

    @app.delete("/api/admin/matches/{match_id}/result")
    def clear_result(
        match_id: int,
        identity: Identity = Depends(get_current_identity),
        svc: LadderService = Depends(get_service),
    ):
        view = svc.clear_result(match_id, identity)
        return JSONResponse({"success": True, "match": view.to_dict()})

    # -------------------------------------------------------------------------
    # Rounds
    # -------------------------------------------------------------------------

    @app.post("/api/admin/rounds/{round_id}/close")
    def close_round(
        round_id: int,
        identity: Identity = Depends(get_current_identity),
        svc: LadderService = Depends(get_service),
    ):
        result = svc.close_round(round_id, identity)
        return JSONResponse({"success": True, "result": result.to_dict()})

    @app.post("/api/admin/rounds/{round_id}/reopen")
    def reopen_round(
        round_id: int,
        identity: Identity = Depends(get_current_identity),
        svc: LadderService = Depends(get_service),
    ):
        result = svc.reopen_round(round_id, identity)
        return JSONResponse({"success": True, "result": result.to_dict()})

    @app.post("/api/admin/groups/{group_id}/skip")
    def skip_group(
        group_id: int,
        body: Optional[SkipGroupBody] = None,
        identity: Identity = Depends(get_current_identity),
        svc: LadderService = Depends(get_service),
    ):
        group = svc.skip_group(group_id, identity, reason=body.reason if body else None)
        return JSONResponse({
            "success": True,
            "group_id": group.id,
            "status": group.status,
            "skipped_reason": group.skipped_reason,
        })

    # -------------------------------------------------------------------------
    # Groups: scheduling and standings
    # -------------------------------------------------------------------------

    @app.get("/api/groups/{group_id}/party")
    def get_party(
        group_id: int,
        identity: Identity = Depends(get_current_identity),
        svc: LadderService = Depends(get_service),
    ):
        return JSONResponse(svc.party(group_id).to_dict())

    @app.post("/api/groups/{group_id}/party/propose")
    def propose_party_date(
        group_id: int,
        body: ProposeDateBody,
        identity: Identity = Depends(get_current_identity),
        svc: LadderService = Depends(get_service),
    ):
        party = svc.propose_party_date(group_id, _naive(body.proposed_date), identity)
        return JSONResponse({"success": True, "party": party.to_dict()})

    @app.post("/api/groups/{group_id}/party/respond")
    def respond_party_date(
        group_id: int,
        body: RespondDateBody,
        identity: Identity = Depends(get_current_identity),
        svc: LadderService = Depends(get_service),
    ):
        party = svc.respond_party_date(group_id, identity, body.accept)
        return JSONResponse({"success": True, "party": party.to_dict()})

    @app.get("/api/groups/{group_id}/standings")
    def group_standings(
        group_id: int,
        identity: Identity = Depends(get_current_identity),
        svc: LadderService = Depends(get_service),
    ):
        rows = svc.group_standings(group_id)
        return JSONResponse({"group_id": group_id, "standings": [r.to_dict() for r in rows]})

    # -------------------------------------------------------------------------
    # Comodines
    # -------------------------------------------------------------------------

    @app.post("/api/rounds/{round_id}/comodin")
    def apply_comodin(
        round_id: int,
        body: ComodinBody,
        identity: Identity = Depends(get_current_identity),
        svc: LadderService = Depends(get_service),
    ):
        if body.mode == "substitute":
            if body.substitute_player_id is None:
                raise HTTPException(status_code=400, detail="Falta substitute_player_id")
            result = svc.apply_substitute_comodin(
                round_id,
                identity,
                body.substitute_player_id,
                player_id=body.player_id,
                reason=body.reason,
            )
        else:
            result = svc.apply_mean_comodin(round_id, identity, player_id=body.player_id, reason=body.reason)
        return JSONResponse({"success": True, "comodin": result.to_dict()})

    @app.post("/api/rounds/{round_id}/comodin/revoke")
    def revoke_comodin(
        round_id: int,
        body: Optional[RevokeComodinBody] = None,
        identity: Identity = Depends(get_current_identity),
        svc: LadderService = Depends(get_service),
    ):
        result = svc.revoke_comodin(round_id, identity, player_id=body.player_id if body else None)
        return JSONResponse({"success": True, "comodin": result.to_dict()})

    return app
