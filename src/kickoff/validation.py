"""Input validation for scores, names, ids and tournament settings.

All checks run before anything is written, so a rejected call never
leaves partial state behind.
"""

from typing import Any, Optional

from kickoff.errors import ValidationError
from kickoff.models import TournamentType

MAX_NAME_LENGTH = 100
MIN_TEAMS_PER_GROUP = 3
MAX_TEAMS_PER_GROUP = 8


def _is_int(value: Any) -> bool:
    # bool is an int subclass but never a valid score or id
    return isinstance(value, int) and not isinstance(value, bool)


def validate_score(score: Any, label: str = "score") -> int:
    """Validate a single score.

    Args:
        score: Goals scored by one side
        label: Field name used in the error message

    Returns:
        The score as int

    Raises:
        ValidationError: If the score is not a non-negative integer

    Examples:
        >>> validate_score(3)
        3
        >>> validate_score(-1)
        Traceback (most recent call last):
        ...
        kickoff.errors.ValidationError: score must be a non-negative integer, got -1
    """
    if not _is_int(score) or score < 0:
        raise ValidationError(f"{label} must be a non-negative integer, got {score!r}")
    return score


def validate_match_score(score1: Any, score2: Any, knockout: bool = False) -> tuple[int, int]:
    """Validate the two scores of a match.

    Knockout matches need a winner, so a draw is rejected for them.

    Returns:
        Tuple of (score1, score2)
    """
    score1 = validate_score(score1, "score1")
    score2 = validate_score(score2, "score2")

    if knockout and score1 == score2:
        raise ValidationError(f"Knockout matches cannot end in a draw ({score1}-{score2})")

    return score1, score2


def validate_id(value: Any, label: str = "id") -> int:
    """Validate a database id (positive integer)."""
    if not _is_int(value) or value <= 0:
        raise ValidationError(f"Invalid {label}: {value!r}")
    return value


def validate_name(name: Any, label: str = "Name") -> str:
    """Validate and normalize a player or tournament name.

    Returns:
        The trimmed name
    """
    if not isinstance(name, str) or not name.strip():
        raise ValidationError(f"{label} is required")

    name = name.strip()
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"{label} cannot exceed {MAX_NAME_LENGTH} characters")
    return name


def validate_tournament_config(
    type: Any = TournamentType.ROUND_ROBIN,
    teams_per_group: Any = 4,
    teams_advancing_per_group: Any = 2,
    allow_third_place_teams: Any = False,
    third_place_playoff: Optional[Any] = None,
) -> dict[str, Any]:
    """Validate tournament format settings.

    Group settings are only checked for group_and_knockout tournaments;
    legacy round robin tournaments choose their group count from a fixed table.

    Returns:
        Normalized settings dictionary

    Raises:
        ValidationError: If any setting is invalid
    """
    try:
        tournament_type = TournamentType(type)
    except ValueError:
        raise ValidationError(f"Invalid tournament type: {type!r}")

    for label, value in (
        ("teams_per_group", teams_per_group),
        ("teams_advancing_per_group", teams_advancing_per_group),
    ):
        if not _is_int(value):
            raise ValidationError(f"{label} must be an integer, got {value!r}")

    for label, value in (
        ("allow_third_place_teams", allow_third_place_teams),
        ("third_place_playoff", third_place_playoff),
    ):
        if value is not None and not isinstance(value, bool):
            raise ValidationError(f"{label} must be a boolean, got {value!r}")

    if tournament_type == TournamentType.GROUP_AND_KNOCKOUT:
        if not MIN_TEAMS_PER_GROUP <= teams_per_group <= MAX_TEAMS_PER_GROUP:
            raise ValidationError(
                f"Teams per group must be between {MIN_TEAMS_PER_GROUP} and {MAX_TEAMS_PER_GROUP}"
            )
        if teams_advancing_per_group < 1 or teams_advancing_per_group >= teams_per_group:
            raise ValidationError("Teams advancing per group must be less than teams per group")

    # Group and knockout tournaments play for third place unless told otherwise
    if third_place_playoff is None:
        third_place_playoff = tournament_type == TournamentType.GROUP_AND_KNOCKOUT

    return {
        "type": tournament_type,
        "teams_per_group": teams_per_group,
        "teams_advancing_per_group": teams_advancing_per_group,
        "allow_third_place_teams": bool(allow_third_place_teams),
        "third_place_playoff": third_place_playoff,
    }
