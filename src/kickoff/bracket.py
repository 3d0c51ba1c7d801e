"""Knockout bracket seeding and first round pairing.

Seeds are ordered by tier: group winners, then runners-up, then third-placed
qualifiers, each tier ranked by performance. Two pairing algorithms exist:

- templated_eight_team_pairing: fixed cross-group quarterfinals for an
  8-team bracket built from 3 groups (3 winners, 2+ runners-up, 2 thirds)
- generic_seeded_pairing: best seed against worst seed (1v8, 2v7, ...)

generate_pairings picks between them with fits_eight_team_template and
falls back to adjacent pairing for irregular bracket sizes.
"""

import logging
from typing import Optional

from kickoff.models import KnockoutRound, Match, MatchStatus, PlayerStats, Round, Stage
from kickoff.standings import sort_standings

logger = logging.getLogger(__name__)

Pairing = tuple[PlayerStats, PlayerStats]

# Bracket sizes paired best-vs-worst by the generic algorithm
SEEDED_SIZES = (2, 4, 8, 16)
TEMPLATE_SIZE = 8


def split_by_position(
    qualified: list[PlayerStats],
) -> tuple[list[PlayerStats], list[PlayerStats], list[PlayerStats]]:
    """Split qualifiers into (winners, runners-up, thirds) keeping input order."""
    winners = [t for t in qualified if t.group_position == 1]
    runners_up = [t for t in qualified if t.group_position == 2]
    thirds = [t for t in qualified if t.group_position == 3]
    return winners, runners_up, thirds


def seed_qualifiers(qualified: list[PlayerStats]) -> list[PlayerStats]:
    """Order qualifiers into seeds: winners, runners-up, thirds (each by performance)."""
    winners, runners_up, thirds = split_by_position(qualified)
    seeded = sort_standings(winners) + sort_standings(runners_up) + sort_standings(thirds)

    logger.info(
        "Seeding complete: %d winners, %d runners-up, %d third-place",
        len(winners),
        len(runners_up),
        len(thirds),
    )
    return seeded


def _pick(teams: list[PlayerStats], letter: str, index: int) -> Optional[PlayerStats]:
    """Team from the given group letter, else the one at index (if any)."""
    for team in teams:
        if team.group == letter:
            return team
    if index < len(teams):
        return teams[index]
    return None


def _resolve_template(
    winners: list[PlayerStats], runners_up: list[PlayerStats], thirds: list[PlayerStats]
) -> Optional[list[Pairing]]:
    if len(winners) < 3 or len(runners_up) < 2 or len(thirds) < 2:
        return None

    winners = sorted(winners, key=lambda t: t.group)
    runners_up = sorted(runners_up, key=lambda t: t.group)
    thirds = sort_standings(thirds)

    winner_a = _pick(winners, "A", 0)
    winner_b = _pick(winners, "B", 1)
    winner_c = _pick(winners, "C", 2)
    runner_a = _pick(runners_up, "A", 0)
    runner_b = _pick(runners_up, "B", 1)
    runner_c = _pick(runners_up, "C", 2)
    best_third, second_third = thirds[0], thirds[1]

    pairings = [
        (winner_a, second_third),  # QF1
        (winner_b, runner_c),  # QF2
        (winner_c, best_third),  # QF3
        (runner_a, runner_b),  # QF4
    ]
    if any(team is None for pair in pairings for team in pair):
        return None
    return pairings


def fits_eight_team_template(qualified: list[PlayerStats]) -> bool:
    """Check whether the fixed 8-team cross-group template applies.

    Needs exactly 8 qualifiers with at least 3 winners, 2 runners-up and
    2 thirds, and the template must resolve to 8 distinct players covering
    every qualifier.
    """
    if len(qualified) != TEMPLATE_SIZE:
        return False

    pairings = _resolve_template(*split_by_position(qualified))
    if pairings is None:
        return False

    placed = [team.player_id for pair in pairings for team in pair]
    return len(set(placed)) == TEMPLATE_SIZE and set(placed) == {t.player_id for t in qualified}


def templated_eight_team_pairing(
    winners: list[PlayerStats], runners_up: list[PlayerStats], thirds: list[PlayerStats]
) -> list[Pairing]:
    """Fixed quarterfinal template for 3 groups.

    QF1: winner A vs 2nd best third
    QF2: winner B vs runner-up C
    QF3: winner C vs best third
    QF4: runner-up A vs runner-up B

    Groups are found by letter, falling back to position in letter order.

    Raises:
        ValueError: If the teams cannot fill the template
    """
    pairings = _resolve_template(winners, runners_up, thirds)
    if pairings is None:
        raise ValueError(
            f"Template needs 3 winners, 2 runners-up and 2 thirds, got "
            f"{len(winners)}/{len(runners_up)}/{len(thirds)}"
        )
    return pairings


def generic_seeded_pairing(seeded: list[PlayerStats]) -> list[Pairing]:
    """Pair seed i with seed n-1-i (1v8, 2v7, 3v6, 4v5 for 8 teams)."""
    n = len(seeded)
    return [(seeded[i], seeded[n - 1 - i]) for i in range(n // 2)]


def sequential_pairing(seeded: list[PlayerStats]) -> list[Pairing]:
    """Pair adjacent seeds (1v2, 3v4, ...); an unpaired last seed is dropped."""
    return [(seeded[i], seeded[i + 1]) for i in range(0, len(seeded) - 1, 2)]


def generate_pairings(seeded: list[PlayerStats]) -> list[Pairing]:
    """Produce first round pairings for the seeded qualifiers."""
    n = len(seeded)

    if n == TEMPLATE_SIZE and fits_eight_team_template(seeded):
        pairings = templated_eight_team_pairing(*split_by_position(seeded))
        algorithm = "template"
    elif n in SEEDED_SIZES:
        pairings = generic_seeded_pairing(seeded)
        algorithm = "seeded"
    else:
        pairings = sequential_pairing(seeded)
        algorithm = "sequential"
        if n % 2:
            logger.warning("Odd number of qualifiers (%d): %s left out", n, seeded[-1].name)

    for team1, team2 in pairings:
        logger.info("Pairing (%s): %s vs %s", algorithm, team1.name, team2.name)
    return pairings


def determine_starting_round(team_count: int) -> KnockoutRound:
    """First knockout round for a bracket of team_count teams.

    Examples:
        >>> determine_starting_round(8).value
        'quarter'
        >>> determine_starting_round(6).value
        'quarter'
    """
    if team_count <= 2:
        return KnockoutRound.FINAL
    if team_count <= 4:
        return KnockoutRound.SEMI
    if team_count <= 8:
        return KnockoutRound.QUARTER
    if team_count <= 16:
        return KnockoutRound.ROUND_OF_16
    return KnockoutRound.ROUND_OF_32


def build_knockout_matches(tournament_id: int, qualified: list[PlayerStats]) -> list[Match]:
    """Seed the qualifiers and create the scheduled first round matches.

    Returns:
        Unsaved knockout matches (id=None), one per pairing
    """
    seeded = seed_qualifiers(qualified)
    pairings = generate_pairings(seeded)
    first_round = Round.knockout(determine_starting_round(len(qualified)))

    logger.info("Creating %d %s matches for %d teams", len(pairings), first_round, len(qualified))

    return [
        Match(
            id=None,
            tournament_id=tournament_id,
            player1_id=team1.player_id,
            player2_id=team2.player_id,
            round=str(first_round),
            stage=Stage.KNOCKOUT,
            status=MatchStatus.SCHEDULED,
        )
        for team1, team2 in pairings
    ]
