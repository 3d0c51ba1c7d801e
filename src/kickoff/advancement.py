"""Knockout round advancement.

Planning functions here are pure: they look at the matches of a finished
round and the matches already stored for the next one, and return a
RoundPlan describing what has to change. The service applies plans through
the match repository, one step at a time, so that each step sees the
result of the previous one.

Reconciliation rule for a target round:
- different number of pairings than stored matches: delete and recreate
- same number: update in place every match whose participants changed,
  clearing its score and setting it back to scheduled
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from kickoff.models import KNOCKOUT_PROGRESSION, GroupStanding, KnockoutRound, Match

logger = logging.getLogger(__name__)

PlayerPair = tuple[int, int]

# (from_round, to_round) steps of the main bracket
ADVANCE_STEPS = list(zip(KNOCKOUT_PROGRESSION[:-1], KNOCKOUT_PROGRESSION[1:]))


@dataclass
class RoundPlan:
    """Changes needed to bring one knockout round in line with its feeder round."""

    round: KnockoutRound
    recreate: Optional[list[PlayerPair]] = None  # Delete the round, insert these pairings
    updates: list[tuple[int, int, int]] = field(default_factory=list)  # (match_id, p1, p2)

    @property
    def is_noop(self) -> bool:
        return self.recreate is None and not self.updates


def feeder_round(knockout_round: KnockoutRound) -> Optional[KnockoutRound]:
    """Round whose results decide the players of knockout_round.

    The third-place playoff is fed by the semifinals. None for the first
    round of the bracket.

    Examples:
        >>> feeder_round(KnockoutRound.FINAL).value
        'semi'
        >>> feeder_round(KnockoutRound.THIRD_PLACE).value
        'semi'
    """
    knockout_round = KnockoutRound(knockout_round)
    if knockout_round == KnockoutRound.THIRD_PLACE:
        return KnockoutRound.SEMI

    index = KNOCKOUT_PROGRESSION.index(knockout_round)
    if index == 0:
        return None
    return KNOCKOUT_PROGRESSION[index - 1]


def match_winner(match: Match) -> Optional[int]:
    """Winner of a completed match (strictly higher scorer)."""
    return match.winner_id


def match_loser(match: Match) -> Optional[int]:
    """Loser of a completed match (strictly lower scorer)."""
    return match.loser_id


def round_completed(matches: list[Match]) -> bool:
    """True if the round has matches and every one of them is completed."""
    return bool(matches) and all(m.is_completed for m in matches)


def pair_sequentially(player_ids: list[int]) -> list[PlayerPair]:
    """Pair players [0]v[1], [2]v[3], ...; an odd one out is dropped."""
    return [(player_ids[i], player_ids[i + 1]) for i in range(0, len(player_ids) - 1, 2)]


def pair_winners(matches: list[Match]) -> list[PlayerPair]:
    """Winners of the given matches (in order), paired sequentially."""
    return pair_sequentially([match_winner(m) for m in matches])


def reconcile_round(
    round: KnockoutRound, existing: list[Match], desired: list[PlayerPair]
) -> RoundPlan:
    """Compare desired pairings against the stored matches of a round.

    Args:
        round: Round being reconciled
        existing: Stored matches of that round, ordered by id
        desired: Pairings the round should have, in slot order

    Returns:
        RoundPlan (no-op if nothing changed)
    """
    if len(existing) != len(desired):
        return RoundPlan(round=round, recreate=list(desired))

    plan = RoundPlan(round=round)
    for match, (p1, p2) in zip(existing, desired):
        if match.player1_id != p1 or match.player2_id != p2:
            plan.updates.append((match.id, p1, p2))
    return plan


def plan_round_advance(
    from_matches: list[Match], to_round: KnockoutRound, to_matches: list[Match]
) -> Optional[RoundPlan]:
    """Plan the next round once every match of the feeder round is completed.

    Args:
        from_matches: Matches of the feeder round, ordered by id
        to_round: Round to create or update
        to_matches: Stored matches of to_round, ordered by id

    Returns:
        RoundPlan, or None if the feeder round is not finished
    """
    if not round_completed(from_matches):
        return None

    if any(match_winner(m) is None for m in from_matches):
        logger.warning("Round feeding %s has a drawn match, not advancing", to_round.value)
        return None

    return reconcile_round(to_round, to_matches, pair_winners(from_matches))


def plan_third_place(semis: list[Match], existing: list[Match]) -> Optional[RoundPlan]:
    """Plan the third-place playoff between the two semifinal losers.

    Returns:
        RoundPlan, or None until exactly two semifinals are completed
    """
    if len(semis) != 2 or not round_completed(semis):
        return None

    losers = [match_loser(m) for m in semis]
    if None in losers:
        return None

    return reconcile_round(KnockoutRound.THIRD_PLACE, existing, [(losers[0], losers[1])])


# ============================================================================
# Legacy round robin topologies
# ============================================================================


def _top(standing: GroupStanding, count: int) -> list[int]:
    return [s.player_id for s in standing.players[:count]]


def plan_legacy_knockout_start(
    group_standings: list[GroupStanding],
) -> Optional[tuple[KnockoutRound, list[PlayerPair]]]:
    """First knockout round of a legacy round robin tournament.

    - 1 group: top 4 play semifinals 1v4, 2v3
    - 2 groups: cross semifinals, 1st of each group vs 2nd of the other
    - 4 groups: cross quarterfinals (1v2 and 3v4 groups paired the same way)

    Returns:
        (round, pairings), or None if the groups cannot fill the topology
    """
    if len(group_standings) == 1:
        top4 = _top(group_standings[0], 4)
        if len(top4) < 4:
            return None
        return KnockoutRound.SEMI, [(top4[0], top4[3]), (top4[1], top4[2])]

    if len(group_standings) in (2, 4):
        tops = [_top(standing, 2) for standing in group_standings]
        if any(len(top) < 2 for top in tops):
            return None

        pairings = []
        for first, second in zip(tops[0::2], tops[1::2]):
            pairings.append((first[0], second[1]))
            pairings.append((second[0], first[1]))

        if len(group_standings) == 2:
            return KnockoutRound.SEMI, pairings
        return KnockoutRound.QUARTER, pairings

    return None


def plan_legacy_semis(quarters: list[Match], existing: list[Match]) -> Optional[RoundPlan]:
    """Semifinals from exactly four completed quarterfinals: w1 v w4, w2 v w3."""
    if len(quarters) != 4 or not round_completed(quarters):
        return None

    winners = [match_winner(m) for m in quarters]
    if None in winners:
        return None

    desired = [(winners[0], winners[3]), (winners[1], winners[2])]
    return reconcile_round(KnockoutRound.SEMI, existing, desired)


def plan_legacy_final(semis: list[Match], existing: list[Match]) -> Optional[RoundPlan]:
    """Final from exactly two completed semifinals."""
    if len(semis) != 2 or not round_completed(semis):
        return None

    winners = [match_winner(m) for m in semis]
    if None in winners:
        return None

    return reconcile_round(KnockoutRound.FINAL, existing, [(winners[0], winners[1])])
