"""Knockout qualifier selection, including best third-placed teams across groups."""

import logging
from dataclasses import replace

from kickoff.errors import InsufficientQualifiers
from kickoff.models import GroupStanding, PlayerStats, Tournament
from kickoff.standings import sort_standings

logger = logging.getLogger(__name__)

MIN_BRACKET_SIZE = 4
MAX_BRACKET_SIZE = 32

POSITION_LABELS = {1: "1st", 2: "2nd", 3: "3rd"}


def next_power_of_2(n: int) -> int:
    """Return the next power of 2 >= n.

    Examples:
        >>> next_power_of_2(5)
        8
        >>> next_power_of_2(8)
        8
    """
    size = 1
    while size < n:
        size *= 2
    return size


def calculate_ideal_bracket_size(automatic_qualifiers: int, available_third_place: int) -> int:
    """Choose the knockout bracket size.

    Start at 4 and double while the doubled size still fits the teams
    available (capped at 32). If that cannot hold every automatic qualifier,
    use the next power of two instead. Never exceeds the teams available.

    Args:
        automatic_qualifiers: Group winners + runners-up
        available_third_place: Third-placed teams that could be admitted

    Returns:
        Target bracket size

    Examples:
        >>> calculate_ideal_bracket_size(6, 3)
        8
        >>> calculate_ideal_bracket_size(4, 0)
        4
        >>> calculate_ideal_bracket_size(2, 0)
        2
    """
    total_available = automatic_qualifiers + available_third_place

    size = MIN_BRACKET_SIZE
    while size * 2 <= total_available and size < MAX_BRACKET_SIZE:
        size *= 2

    if size < automatic_qualifiers:
        size = next_power_of_2(automatic_qualifiers)

    return min(size, total_available)


def select_qualifiers(
    group_standings: list[GroupStanding], tournament: Tournament
) -> list[PlayerStats]:
    """Determine which players advance to the knockout stage.

    Group winners qualify when at least one team advances per group,
    runners-up when at least two do. Third-placed teams are ranked across
    groups and the best of them fill the bracket when the tournament allows it.

    Args:
        group_standings: Ranked tables, one per group
        tournament: Tournament settings

    Returns:
        Qualified players (winners, then runners-up, then admitted thirds),
        each a copy annotated with group_position, group letter and
        qualified_for_knockout

    Raises:
        InsufficientQualifiers: Fewer than 2 teams qualify
    """
    advancing = tournament.teams_advancing_per_group

    winners = []
    runners_up = []
    third_place = []

    for standing in group_standings:
        ranked = standing.players
        letter = standing.group_letter

        if len(ranked) >= 1 and advancing >= 1:
            winners.append(
                replace(ranked[0], group_position=1, group=letter, qualified_for_knockout=True)
            )
        if len(ranked) >= 2 and advancing >= 2:
            runners_up.append(
                replace(ranked[1], group_position=2, group=letter, qualified_for_knockout=True)
            )
        if len(ranked) >= 3:
            third_place.append(
                replace(ranked[2], group_position=3, group=letter, qualified_for_knockout=False)
            )

    automatic = len(winners) + len(runners_up)
    target = calculate_ideal_bracket_size(automatic, len(third_place))

    qualified = winners + runners_up

    if tournament.allow_third_place_teams and automatic < target:
        needed = target - automatic
        best_thirds = sort_standings(third_place)[:needed]
        for team in best_thirds:
            team.qualified_for_knockout = True
        qualified.extend(best_thirds)

    if len(qualified) < 2:
        raise InsufficientQualifiers(
            f"Not enough qualified teams for knockout stage ({len(qualified)})"
        )

    logger.info("Qualified teams (%d), bracket target %d", len(qualified), target)
    for team in qualified:
        logger.info(
            "  %s - Group %s %s (%dpts, GD:%d)",
            team.name,
            team.group,
            POSITION_LABELS.get(team.group_position, ""),
            team.points,
            team.goal_diff,
        )

    return qualified
