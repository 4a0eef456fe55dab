"""
Error kinds raised by the ladder core.

Every error carries:
- code: stable identifier of the kind (e.g. "InvalidScore"), shown to admins
- user_message: short human message, safe to show to any player
- context: optional diagnostic values for logs

Validation errors are raised before any write happens. Concurrency errors
abort the enclosing transaction; callers retry the whole operation.
"""

from __future__ import annotations

from typing import Any, Optional


class LadderError(Exception):
    """Base class for every error the ladder core raises on purpose."""

    code = "LadderError"
    default_message = "No se pudo completar la operación"

    def __init__(
        self,
        detail: Optional[str] = None,
        *,
        user_message: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        self.detail = detail or self.default_message
        self.user_message = user_message or self.default_message
        self.context = context or {}
        super().__init__(self.detail)

    def to_dict(self, include_code: bool = False) -> dict[str, Any]:
        """Render the error for an API response; admins also see the kind."""
        payload: dict[str, Any] = {"error": self.user_message}
        if include_code:
            payload["code"] = self.code
            payload["detail"] = self.detail
        return payload


# ---------------------------------------------------------------------------
# Score shape
# ---------------------------------------------------------------------------

class InvalidScore(LadderError):
    code = "InvalidScore"
    default_message = "El resultado del set no es válido"


class InvalidTiebreak(LadderError):
    code = "InvalidTiebreak"
    default_message = "El tie-break no es válido (formato 7-5, diferencia de 2, mínimo 7)"


# ---------------------------------------------------------------------------
# Permissions and state machine
# ---------------------------------------------------------------------------

class NotFound(LadderError):
    code = "NotFound"
    default_message = "El recurso solicitado no existe"


class NoPermission(LadderError):
    code = "NoPermission"
    default_message = "No tienes permisos para realizar esta acción"


class RoundClosed(LadderError):
    code = "RoundClosed"
    default_message = "No se pueden modificar partidos de rondas cerradas"


class AlreadyReported(LadderError):
    code = "AlreadyReported"
    default_message = "Ya hay un resultado reportado"


class NoResultToConfirm(LadderError):
    code = "NoResultToConfirm"
    default_message = "No hay resultado para confirmar"


class CannotConfirmOwn(LadderError):
    code = "CannotConfirmOwn"
    default_message = "No puedes confirmar tu propio resultado"


class AlreadyConfirmed(LadderError):
    code = "AlreadyConfirmed"
    default_message = "El resultado ya está confirmado"


class ConfirmationSameTeam(LadderError):
    code = "ConfirmationSameTeam"
    default_message = "El resultado debe confirmarlo un jugador de la pareja rival"


class ScheduleNotConfirmed(LadderError):
    code = "ScheduleNotConfirmed"
    default_message = "La fecha del partido aún no está confirmada"


class InvalidScheduleAction(LadderError):
    code = "InvalidScheduleAction"
    default_message = "No hay ninguna fecha propuesta a la que responder"


class ComodinNotAllowed(LadderError):
    code = "ComodinNotAllowed"
    default_message = "No se puede aplicar el comodín en esta ronda"


# ---------------------------------------------------------------------------
# Concurrency and integrity
# ---------------------------------------------------------------------------

class ConcurrentModification(LadderError):
    code = "ConcurrentModification"
    default_message = "Los datos han sido modificados por otro usuario. Inténtalo de nuevo"


class LockUnavailable(ConcurrentModification):
    """Another request holds the named resource; the loser gets a definitive answer."""

    default_message = "Esta operación ya está siendo procesada por otro usuario"


class PointsCalculationFailed(LadderError):
    code = "PointsCalculationFailed"
    default_message = "No se pudieron recalcular los puntos del grupo"


class RoundAlreadyClosed(LadderError):
    code = "RoundAlreadyClosed"
    default_message = "Esta ronda ya ha sido cerrada"


class InsufficientPlayers(LadderError):
    code = "InsufficientPlayers"
    default_message = "Los grupos deben tener exactamente 4 jugadores"


class MatchesIncomplete(LadderError):
    code = "MatchesIncomplete"
    default_message = "Hay partidos sin completar en la ronda"
