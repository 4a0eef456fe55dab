"""Acting identity handed to the core by the (external) auth layer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class Identity:
    """Who is performing an operation.

    ``player_id`` is set for users linked to a ladder player; admins may or
    may not have one.
    """

    user_id: int
    player_id: Optional[int] = None
    is_admin: bool = False

    @property
    def actor_id(self) -> int:
        """Id recorded on reporter/confirmer fields: the player when there is one."""
        return self.player_id if self.player_id is not None else self.user_id

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Identity":
        player_id = data.get("player_id")
        return cls(
            user_id=int(data["user_id"]),
            player_id=int(player_id) if player_id is not None else None,
            is_admin=bool(data.get("is_admin", False)),
        )
