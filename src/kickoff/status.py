"""Tournament status transitions.

pending -> in_progress (fixtures generated) -> completed (final played).
No other transition is allowed.
"""

import logging

from kickoff.errors import StateConflictError
from kickoff.models import KnockoutRound, Match, TournamentStatus

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    TournamentStatus.PENDING: {TournamentStatus.IN_PROGRESS},
    TournamentStatus.IN_PROGRESS: {TournamentStatus.COMPLETED},
    TournamentStatus.COMPLETED: set(),
}


def advance_status(current: TournamentStatus, target: TournamentStatus) -> TournamentStatus:
    """Validate a status transition.

    Moving to the current status is a no-op.

    Returns:
        The target status

    Raises:
        StateConflictError: If the transition is not allowed
    """
    current = TournamentStatus(current)
    target = TournamentStatus(target)

    if current == target:
        return current
    if target not in ALLOWED_TRANSITIONS[current]:
        raise StateConflictError(
            f"Cannot change tournament status from {current.value} to {target.value}"
        )

    logger.info("Tournament status %s -> %s", current.value, target.value)
    return target


def status_after_generation(current: TournamentStatus) -> TournamentStatus:
    """Status after (re)generating fixtures.

    Raises:
        StateConflictError: If the tournament is already completed
    """
    if current == TournamentStatus.COMPLETED:
        raise StateConflictError("Cannot regenerate matches of a completed tournament")
    return advance_status(current, TournamentStatus.IN_PROGRESS)


def ensure_accepting_scores(current: TournamentStatus) -> None:
    """Scores can only be recorded while the tournament is in progress."""
    if current == TournamentStatus.PENDING:
        raise StateConflictError("Matches have not been generated yet")
    if current == TournamentStatus.COMPLETED:
        raise StateConflictError("Tournament is already completed")


def is_tournament_complete(knockout_matches: list[Match], third_place_playoff: bool) -> bool:
    """A tournament is complete once its final and every earlier knockout match are played.

    With a third-place playoff enabled, an existing third-place match must be
    played too.
    """
    finals = [m for m in knockout_matches if m.round == KnockoutRound.FINAL.value]
    if len(finals) != 1:
        return False

    for match in knockout_matches:
        if match.round == KnockoutRound.THIRD_PLACE.value and not third_place_playoff:
            continue
        if not match.is_completed:
            return False

    return True
