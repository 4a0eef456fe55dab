"""Attribution of a substitute's sets to the absent player who owns the credit."""

from typing import Optional

from escalera.db.models import GroupPlayer, Match


def recipient_for(match: Match, owner: GroupPlayer) -> Optional[int]:
    """
    Physical player whose performance in ``match`` is credited to ``owner``.

    Returns the owner when they played the set, their registered substitute
    when the substitute played it instead, otherwise None (no credit).
    """
    participants = match.participant_ids
    if owner.player_id in participants:
        return owner.player_id
    if owner.substitute_player_id is not None and owner.substitute_player_id in participants:
        return owner.substitute_player_id
    return None


def physical_player_id(owner: GroupPlayer) -> int:
    """Who is on court for this group player: the substitute when one is set."""
    return owner.substitute_player_id or owner.player_id
