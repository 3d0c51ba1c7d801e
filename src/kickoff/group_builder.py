"""Group builder with shuffled round-robin distribution and fixtures."""

import logging
import math
import random
from typing import Optional, Protocol

from kickoff.errors import InsufficientPlayers, InsufficientQualifiers
from kickoff.models import Group, Match, MatchStatus, Stage, Tournament

logger = logging.getLogger(__name__)

MIN_PLAYERS = 2


class RandomSource(Protocol):
    """Source of randomness for the draw. ``random.Random`` satisfies it."""

    def randrange(self, stop: int) -> int:
        ...


def calculate_group_count(num_players: int, teams_per_group: int) -> int:
    """Calculate how many groups to create.

    Uses ceil(num_players / teams_per_group), except when that would leave a
    single straggler: then the players are spread over groups one smaller.

    Examples:
        >>> calculate_group_count(12, 4)
        3
        >>> calculate_group_count(9, 4)
        3
        >>> calculate_group_count(13, 4)
        4
        >>> calculate_group_count(5, 4)
        2
    """
    if teams_per_group < 2:
        raise ValueError(f"teams_per_group must be at least 2, got {teams_per_group}")

    num_groups = math.ceil(num_players / teams_per_group)

    if num_players % teams_per_group == 1 and num_groups > 1:
        num_groups = max(2, num_players // (teams_per_group - 1))

    return num_groups


def calculate_legacy_group_count(num_players: int) -> int:
    """Group count for legacy round robin tournaments.

    Examples:
        >>> calculate_legacy_group_count(10)
        1
        >>> calculate_legacy_group_count(11)
        2
        >>> calculate_legacy_group_count(17)
        4
    """
    if num_players <= 10:
        return 1
    if num_players <= 16:
        return 2
    return 4


def shuffle_players(player_ids: list[int], rng: RandomSource) -> list[int]:
    """Return a Fisher-Yates shuffled copy of the player ids."""
    shuffled = list(player_ids)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randrange(i + 1)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def distribute_round_robin(player_ids: list[int], num_groups: int) -> list[list[int]]:
    """Deal players into groups like cards: player i goes to group i mod num_groups.

    Group sizes differ by at most one.
    """
    if num_groups < 1:
        raise ValueError(f"Number of groups must be at least 1, got {num_groups}")

    groups = [[] for _ in range(num_groups)]
    for idx, player_id in enumerate(player_ids):
        groups[idx % num_groups].append(player_id)
    return groups


def group_label(index: int, legacy: bool = False) -> str:
    """Label of the group at 0-based index: A, B, C... (legacy: 1, 2, 3...)."""
    if legacy:
        return str(index + 1)
    return chr(ord("A") + index)


def generate_round_robin_fixtures(player_ids: list[int]) -> list[tuple[int, int]]:
    """Generate one fixture per unordered pair of players (n*(n-1)/2 fixtures)."""
    fixtures = []
    for i in range(len(player_ids)):
        for j in range(i + 1, len(player_ids)):
            fixtures.append((player_ids[i], player_ids[j]))
    return fixtures


def create_groups(
    player_ids: list[int],
    tournament: Tournament,
    rng: Optional[RandomSource] = None,
    num_groups: Optional[int] = None,
) -> tuple[list[Group], list[Match]]:
    """Shuffle players into balanced groups and generate their fixtures.

    Args:
        player_ids: Registered player ids
        tournament: Tournament whose format decides the group count
        rng: Random source for the draw (unseeded random.Random if omitted)
        num_groups: Explicit group count (legacy round robin tournaments only)

    Returns:
        Tuple of (groups, matches); matches are unsaved (id=None) and scheduled

    Raises:
        InsufficientPlayers: Fewer than 2 players registered
        InsufficientQualifiers: The format could never produce 2 knockout qualifiers
    """
    if len(player_ids) < MIN_PLAYERS:
        raise InsufficientPlayers(
            f"Need at least {MIN_PLAYERS} players to generate matches, got {len(player_ids)}"
        )

    legacy = tournament.is_legacy
    if legacy:
        count = num_groups or calculate_legacy_group_count(len(player_ids))
    else:
        count = calculate_group_count(len(player_ids), tournament.teams_per_group)
        if count * tournament.teams_advancing_per_group < 2:
            raise InsufficientQualifiers(
                "Not enough teams for knockout stage. Need at least 2 qualifying teams."
            )

    shuffled = shuffle_players(player_ids, rng or random.Random())
    player_groups = distribute_round_robin(shuffled, count)

    groups = [
        Group(label=group_label(idx, legacy), player_ids=members, legacy=legacy)
        for idx, members in enumerate(player_groups)
    ]

    matches = []
    for group in groups:
        if group.size < 2:
            continue
        for p1, p2 in generate_round_robin_fixtures(group.player_ids):
            matches.append(
                Match(
                    id=None,
                    tournament_id=tournament.id,
                    player1_id=p1,
                    player2_id=p2,
                    round=str(group.round),
                    stage=Stage.GROUP,
                    status=MatchStatus.SCHEDULED,
                    group_letter=group.letter,
                )
            )

    logger.info(
        "Created %d groups (%s) with %d matches for tournament %s",
        len(groups),
        ", ".join(f"{g.label}:{g.size}" for g in groups),
        len(matches),
        tournament.id,
    )
    return groups, matches
