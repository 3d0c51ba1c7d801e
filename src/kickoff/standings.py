"""Standings calculator with tie-breaking rules.

Scoring:
- Win: 3 points
- Draw: 1 point each
- Loss: 0 points

Ranking: points DESC, goal difference DESC, goals for DESC. Players still
level after those three keys keep their input order (the sort is stable);
no further tie-break is applied.
"""

from collections import OrderedDict
from typing import Iterable, Optional

from kickoff.models import GroupStanding, Match, Player, PlayerStats, Stage

WIN_POINTS = 3
DRAW_POINTS = 1

OVERALL_GROUP = "Overall"


def performance_key(stats: PlayerStats) -> tuple[int, int, int]:
    """Sort key for ranking: points, goal difference, goals for (all descending)."""
    return (-stats.points, -stats.goal_diff, -stats.goals_for)


def sort_standings(stats: Iterable[PlayerStats]) -> list[PlayerStats]:
    """Rank players by performance.

    Python's sort is stable, so exact ties keep their relative input order.
    """
    return sorted(stats, key=performance_key)


def group_name(label: str) -> str:
    """Display name of a group ("A" -> "Group A")."""
    return f"Group {label}"


def _credit(stats: Optional[PlayerStats], scored: int, conceded: int):
    if stats is None:
        return

    stats.played += 1
    stats.goals_for += scored
    stats.goals_against += conceded

    if scored > conceded:
        stats.wins += 1
        stats.points += WIN_POINTS
    elif scored < conceded:
        stats.losses += 1
    else:
        stats.draws += 1
        stats.points += DRAW_POINTS


def compute_player_stats(
    matches: Iterable[Match],
    players: Iterable[Player],
    group_of: Optional[dict[int, str]] = None,
) -> list[PlayerStats]:
    """Aggregate completed match results into per-player statistics.

    Args:
        matches: Matches to aggregate (scheduled matches are ignored)
        players: Players to report on, in the order they should appear
        group_of: Optional mapping player_id -> group name

    Returns:
        Unsorted list of PlayerStats, one per player
    """
    group_of = group_of or {}
    stats: dict[int, PlayerStats] = OrderedDict(
        (p.id, PlayerStats(player_id=p.id, name=p.name, group=group_of.get(p.id, "")))
        for p in players
    )

    for match in matches:
        if not match.is_completed:
            continue

        # Players no longer registered are not reported, their opponents still are
        _credit(stats.get(match.player1_id), match.score1, match.score2)
        _credit(stats.get(match.player2_id), match.score2, match.score1)

    for s in stats.values():
        s.goal_diff = s.goals_for - s.goals_against

    return list(stats.values())


def _group_assignments(matches: Iterable[Match]) -> "OrderedDict[str, list[int]]":
    """Map each group label to its players, in order of first appearance."""
    groups: "OrderedDict[str, list[int]]" = OrderedDict()
    for match in matches:
        if match.stage != Stage.GROUP:
            continue
        label = match.group_letter or match.round_tag.group_label
        members = groups.setdefault(label, [])
        for player_id in match.participants:
            if player_id not in members:
                members.append(player_id)
    return groups


def calculate_standings(matches: list[Match], players: list[Player]) -> list[PlayerStats]:
    """Calculate the overall table across all groups.

    Only group stage matches count. Each player is labelled with the group
    they played in, or "Overall" if they have no group match.

    Args:
        matches: All matches of the tournament
        players: Registered players

    Returns:
        List of PlayerStats sorted by ranking (best first)
    """
    group_matches = [m for m in matches if m.stage == Stage.GROUP]

    group_of = {}
    for label, player_ids in _group_assignments(group_matches).items():
        for player_id in player_ids:
            group_of.setdefault(player_id, group_name(label))
    for player in players:
        group_of.setdefault(player.id, OVERALL_GROUP)

    return sort_standings(compute_player_stats(group_matches, players, group_of))


def calculate_group_standings(matches: list[Match], players: list[Player]) -> list[GroupStanding]:
    """Calculate one ranked table per group.

    Players are taken from the group's own fixtures (and must still be
    registered). Positions 1..n are assigned after ranking.

    Args:
        matches: All matches of the tournament
        players: Registered players

    Returns:
        List of GroupStanding ordered by group label
    """
    group_matches = [m for m in matches if m.stage == Stage.GROUP]
    players_by_id = {p.id: p for p in players}

    standings = []
    assignments = _group_assignments(group_matches)
    for label in sorted(assignments):
        members = [players_by_id[pid] for pid in assignments[label] if pid in players_by_id]
        fixtures = [
            m for m in group_matches if (m.group_letter or m.round_tag.group_label) == label
        ]
        name = group_name(label)
        ranked = sort_standings(
            compute_player_stats(fixtures, members, {p.id: name for p in members})
        )

        # Assign positions
        for position, stats in enumerate(ranked, start=1):
            stats.group_position = position

        standings.append(GroupStanding(group_letter=label, group_name=name, players=ranked))

    return standings
