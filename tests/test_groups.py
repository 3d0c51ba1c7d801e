"""Tests for group partitioning and fixture generation."""

import random
from collections import Counter
from itertools import combinations

import pytest

from kickoff.errors import InsufficientPlayers, InsufficientQualifiers
from kickoff.group_builder import (
    calculate_group_count,
    calculate_legacy_group_count,
    create_groups,
    distribute_round_robin,
    generate_round_robin_fixtures,
    group_label,
    shuffle_players,
)
from kickoff.models import MatchStatus, Stage, Tournament, TournamentType


def knockout_tournament(**kwargs):
    return Tournament(id=1, name="Cup", type=TournamentType.GROUP_AND_KNOCKOUT, **kwargs)


def legacy_tournament():
    return Tournament(id=1, name="League", type=TournamentType.ROUND_ROBIN)


class FirstIndexRandom:
    """Always picks index 0: a fixed, known permutation."""

    def randrange(self, stop):
        return 0


@pytest.mark.parametrize(
    "players,per_group,expected",
    [
        (12, 4, 3),
        (8, 4, 2),
        (9, 4, 3),  # 9 % 4 == 1: 9 // 3 groups of three
        (13, 4, 4),
        (5, 4, 2),
        (4, 4, 1),
        (10, 3, 5),  # 10 % 3 == 1: five pairs
        (7, 3, 3),
    ],
)
def test_group_count(players, per_group, expected):
    assert calculate_group_count(players, per_group) == expected


@pytest.mark.parametrize("players,expected", [(2, 1), (10, 1), (11, 2), (16, 2), (17, 4), (30, 4)])
def test_legacy_group_count(players, expected):
    assert calculate_legacy_group_count(players) == expected


def test_shuffle_is_a_permutation():
    ids = list(range(1, 21))
    shuffled = shuffle_players(ids, random.Random(3))

    assert sorted(shuffled) == ids
    assert ids == list(range(1, 21))  # input untouched


def test_shuffle_uses_injected_source():
    # Fisher-Yates with j == 0 every step rotates the list left by one
    assert shuffle_players([1, 2, 3, 4], FirstIndexRandom()) == [2, 3, 4, 1]


def test_same_seed_same_draw():
    ids = list(range(1, 13))
    assert shuffle_players(ids, random.Random(11)) == shuffle_players(ids, random.Random(11))


def test_distribution_is_balanced():
    groups = distribute_round_robin(list(range(10)), 3)

    assert groups == [[0, 3, 6, 9], [1, 4, 7], [2, 5, 8]]
    sizes = [len(g) for g in groups]
    assert max(sizes) - min(sizes) <= 1


def test_group_labels():
    assert [group_label(i) for i in range(4)] == ["A", "B", "C", "D"]
    assert [group_label(i, legacy=True) for i in range(3)] == ["1", "2", "3"]


def test_fixtures_cover_every_pair_once():
    fixtures = generate_round_robin_fixtures([5, 6, 7, 8])

    assert len(fixtures) == 6
    assert {frozenset(f) for f in fixtures} == {frozenset(p) for p in combinations([5, 6, 7, 8], 2)}


@pytest.mark.parametrize("count", [2, 5, 9, 12, 13, 17])
def test_create_groups_invariants(count):
    ids = list(range(100, 100 + count))
    groups, matches = create_groups(ids, knockout_tournament(), random.Random(count))

    # Every player in exactly one group
    members = Counter(pid for g in groups for pid in g.player_ids)
    assert sorted(members) == ids
    assert set(members.values()) == {1}

    # C(n, 2) fixtures per group
    expected = sum(g.size * (g.size - 1) // 2 for g in groups)
    assert len(matches) == expected

    group_of = {pid: g.label for g in groups for pid in g.player_ids}
    for match in matches:
        assert match.player1_id != match.player2_id
        assert group_of[match.player1_id] == group_of[match.player2_id] == match.group_letter
        assert match.round == f"group-{match.group_letter}"
        assert match.stage == Stage.GROUP
        assert match.status == MatchStatus.SCHEDULED
        assert match.score1 is None and match.score2 is None


def test_create_groups_letters():
    groups, _ = create_groups(list(range(1, 13)), knockout_tournament(), random.Random(1))

    assert [g.label for g in groups] == ["A", "B", "C"]
    assert [g.size for g in groups] == [4, 4, 4]


def test_legacy_groups_are_numbered():
    groups, matches = create_groups(list(range(1, 13)), legacy_tournament(), random.Random(1))

    assert [g.label for g in groups] == ["1", "2"]
    assert {m.round for m in matches} == {"group-1", "group-2"}
    assert all(m.group_letter is None for m in matches)


def test_legacy_explicit_group_count():
    groups, _ = create_groups(list(range(1, 9)), legacy_tournament(), random.Random(1), num_groups=2)

    assert len(groups) == 2


def test_too_few_players():
    with pytest.raises(InsufficientPlayers):
        create_groups([1], knockout_tournament(), random.Random(1))


def test_too_few_qualifiers():
    # One group of three with a single team advancing
    tournament = knockout_tournament(teams_per_group=4, teams_advancing_per_group=1)

    with pytest.raises(InsufficientQualifiers):
        create_groups([1, 2, 3], tournament, random.Random(1))
