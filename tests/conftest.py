"""Shared fixtures: in-memory database and a seeded service."""

import random

import pytest

from kickoff.models import Match
from kickoff.service import TournamentService
from kickoff.storage import DatabaseManager


@pytest.fixture
def db_manager():
    db = DatabaseManager(":memory:")
    db.create_tables()
    yield db
    db.drop_tables()


@pytest.fixture
def service(db_manager):
    return TournamentService(db_manager, rng=random.Random(7))


def higher_id_wins(match: Match) -> tuple[int, int]:
    """Deterministic result: the player with the larger id wins 2-0."""
    if match.player1_id > match.player2_id:
        return 2, 0
    return 0, 2


def create_players(service, count, prefix="Player"):
    return [service.create_player(f"{prefix} {i:02d}") for i in range(1, count + 1)]


def setup_tournament(service, player_count, **config):
    """Create a tournament with player_count registered players."""
    players = create_players(service, player_count)
    tournament = service.create_tournament("Test Cup", **config)
    service.bulk_add_players(tournament.id, [p.id for p in players])
    return tournament, players


def play_scheduled(service, tournament_id, stage=None, result=higher_id_wins):
    """Record a result for every scheduled match (optionally of one stage)."""
    played = []
    for match in service.list_matches(tournament_id, stage=stage):
        if not match.is_completed:
            played.append(service.record_score(match.id, *result(match)))
    return played
