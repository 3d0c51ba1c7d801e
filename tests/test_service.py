"""Integration tests for the tournament service on an in-memory database."""

import random
import threading

import pytest

from kickoff.errors import (
    DuplicateMembership,
    InsufficientPlayers,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from kickoff.models import MatchStatus, Stage, TournamentStatus, TournamentType
from kickoff.service import TournamentService
from kickoff.storage import DatabaseManager

from conftest import create_players, higher_id_wins, play_scheduled, setup_tournament


def play_out(service, tournament_id):
    """Play every round until no scheduled match is left."""
    while play_scheduled(service, tournament_id):
        pass


def knockout_of(service, tournament_id, round):
    return [m for m in service.list_matches(tournament_id, stage=Stage.KNOCKOUT) if m.round == round]


@pytest.fixture
def six_player_cup(service):
    """2 groups of 3, top 2 advance: 4 team bracket with a third-place playoff."""
    tournament, players = setup_tournament(
        service, 6, type="group_and_knockout", teams_per_group=3, teams_advancing_per_group=2
    )
    service.generate_matches(tournament.id)
    return tournament, players


class TestPlayers:
    """Test cases for the player registry."""

    def test_create_and_list(self, service):
        """Names are trimmed and players are listed alphabetically."""
        service.create_player("  Bruno ")
        service.create_player("Ana")

        assert [p.name for p in service.list_players()] == ["Ana", "Bruno"]

    def test_duplicate_name(self, service):
        """Player names are unique."""
        service.create_player("Ana")

        with pytest.raises(StateConflictError):
            service.create_player("Ana")

    def test_unknown_player(self, service):
        """Looking up a missing player raises NotFoundError."""
        with pytest.raises(NotFoundError):
            service.get_player(42)

    def test_delete_player(self, service):
        """An unregistered player can be deleted."""
        player = service.create_player("Ana")
        service.delete_player(player.id)

        assert service.list_players() == []

    def test_registered_player_cannot_be_deleted(self, service):
        """A player registered in a tournament cannot be deleted."""
        _, players = setup_tournament(service, 2)

        with pytest.raises(StateConflictError):
            service.delete_player(players[0].id)


class TestTournaments:
    """Test cases for tournament creation and registration."""

    def test_create_defaults(self, service):
        """A bare tournament is a pending round robin without third-place playoff."""
        tournament = service.create_tournament("League")

        assert tournament.status == TournamentStatus.PENDING
        assert tournament.type == TournamentType.ROUND_ROBIN
        assert tournament.third_place_playoff is False

    def test_service_defaults_apply(self, db_manager):
        """Service defaults fill settings the caller leaves out."""
        service = TournamentService(
            db_manager, rng=random.Random(1), defaults={"type": "group_and_knockout", "teams_per_group": 5}
        )

        tournament = service.create_tournament("Cup", teams_advancing_per_group=3)

        assert tournament.type == TournamentType.GROUP_AND_KNOCKOUT
        assert tournament.teams_per_group == 5
        assert tournament.teams_advancing_per_group == 3
        assert tournament.third_place_playoff is True

    def test_invalid_settings(self, service):
        """Rejected settings create nothing."""
        with pytest.raises(ValidationError):
            service.create_tournament("Cup", type="group_and_knockout", teams_per_group=10)
        with pytest.raises(ValidationError):
            service.create_tournament("Cup", rounds=3)
        assert service.list_tournaments() == []

    def test_list_newest_first(self, service):
        """Tournaments are listed newest first."""
        first = service.create_tournament("First")
        second = service.create_tournament("Second")

        assert [t.id for t in service.list_tournaments()] == [second.id, first.id]

    def test_duplicate_membership(self, service):
        """Registering the same player twice fails."""
        tournament, players = setup_tournament(service, 2)

        with pytest.raises(DuplicateMembership):
            service.add_player(tournament.id, players[0].id)

    def test_add_unknown_player(self, service):
        """Registering a missing player raises NotFoundError."""
        tournament = service.create_tournament("Cup")

        with pytest.raises(NotFoundError):
            service.add_player(tournament.id, 999)

    def test_bulk_add(self, service):
        """Bulk registration reports added, skipped and failed players separately."""
        tournament, players = setup_tournament(service, 2)
        newcomer = service.create_player("Newcomer")

        result = service.bulk_add_players(tournament.id, [players[0].id, 999, newcomer.id])

        assert [p.id for p in result.successful] == [newcomer.id]
        assert result.skipped == [
            {"player_id": players[0].id, "player_name": players[0].name, "reason": "Player already in tournament"}
        ]
        assert result.failed[0]["player_id"] == 999
        assert result.summary == {"total": 3, "successful": 1, "failed": 1, "skipped": 1}

    def test_bulk_add_all(self, service):
        """add_all registers every known player."""
        create_players(service, 5)
        tournament = service.create_tournament("Cup")

        result = service.bulk_add_players(tournament.id, add_all=True)

        assert len(result.successful) == 5
        assert len(service.list_tournament_players(tournament.id)) == 5

    def test_bulk_add_needs_input(self, service):
        """Bulk registration needs valid player ids or add_all."""
        tournament = service.create_tournament("Cup")

        with pytest.raises(ValidationError):
            service.bulk_add_players(tournament.id)
        with pytest.raises(ValidationError):
            service.bulk_add_players(tournament.id, [1, -4])

    def test_remove_player_while_pending(self, service):
        """Players can be removed before the draw."""
        tournament, players = setup_tournament(service, 3)

        service.remove_player(tournament.id, players[1].id)

        assert [p.id for p in service.list_tournament_players(tournament.id)] == [players[0].id, players[2].id]
        with pytest.raises(NotFoundError):
            service.remove_player(tournament.id, players[1].id)

    def test_remove_player_after_start(self, service):
        """Players cannot be removed once matches exist."""
        tournament, players = setup_tournament(service, 4)
        service.generate_matches(tournament.id)

        with pytest.raises(StateConflictError):
            service.remove_player(tournament.id, players[0].id)

    def test_delete_cascades(self, service):
        """Deleting a tournament removes its matches and memberships."""
        tournament, players = setup_tournament(service, 4)
        matches = service.generate_matches(tournament.id)

        service.delete_tournament(tournament.id)

        assert service.list_tournaments() == []
        with pytest.raises(NotFoundError):
            service.get_tournament(tournament.id)
        with pytest.raises(NotFoundError):
            service.get_match(matches[0].id)
        assert service.list_matches(tournament.id) == []
        assert service.list_tournament_players(tournament.id) == []
        # Players are no longer registered anywhere
        service.delete_player(players[0].id)

    def test_details(self, service):
        """Details bundle the tournament, its players and its matches."""
        tournament, players = setup_tournament(service, 4)
        service.generate_matches(tournament.id)

        details = service.get_tournament_details(tournament.id)

        assert details.tournament.status == TournamentStatus.IN_PROGRESS
        assert [p.id for p in details.players] == [p.id for p in players]
        assert len(details.matches) == 6


class TestGenerateMatches:
    """Test cases for group draws."""

    def test_group_stage(self, service):
        """12 players in groups of 4 give 3 groups and 18 matches."""
        tournament, _ = setup_tournament(
            service, 12, type="group_and_knockout", teams_per_group=4, teams_advancing_per_group=2
        )

        matches = service.generate_matches(tournament.id)

        assert len(matches) == 18
        assert {m.group_letter for m in matches} == {"A", "B", "C"}
        assert all(m.status == MatchStatus.SCHEDULED for m in matches)
        assert service.tournament_status(tournament.id) == TournamentStatus.IN_PROGRESS

    def test_group_count_ignored_for_group_and_knockout(self, service):
        """An explicit group count does not override teams_per_group."""
        tournament, _ = setup_tournament(service, 12, type="group_and_knockout", teams_per_group=4)

        assert len(service.generate_matches(tournament.id, group_count=6)) == 18

    def test_legacy_explicit_group_count(self, service):
        """Round robin tournaments accept an explicit group count."""
        tournament, _ = setup_tournament(service, 8)

        matches = service.generate_matches(tournament.id, group_count=2)

        assert len(matches) == 12
        assert {m.round for m in matches} == {"group-1", "group-2"}

    def test_regenerate_replaces_matches(self, service):
        """Generating again discards the previous draw and its results."""
        tournament, _ = setup_tournament(service, 4)
        service.generate_matches(tournament.id)
        service.record_score(service.list_matches(tournament.id)[0].id, 1, 0)

        matches = service.generate_matches(tournament.id)

        assert len(service.list_matches(tournament.id)) == len(matches) == 6
        assert not any(m.is_completed for m in service.list_matches(tournament.id))

    def test_insufficient_players(self, service):
        """A single player cannot be drawn and the status stays pending."""
        tournament, _ = setup_tournament(service, 1)

        with pytest.raises(InsufficientPlayers):
            service.generate_matches(tournament.id)
        assert service.tournament_status(tournament.id) == TournamentStatus.PENDING

    def test_unknown_tournament(self, service):
        """Generating for a missing tournament raises NotFoundError."""
        with pytest.raises(NotFoundError):
            service.generate_matches(77)


class TestScoring:
    """Test cases for score submission and bracket progression."""

    def test_score_before_generation(self, service):
        """Scoring a missing match raises NotFoundError."""
        with pytest.raises(NotFoundError):
            service.record_score(1, 1, 0)

    def test_invalid_score(self, service, six_player_cup):
        """A negative score is rejected and nothing is written."""
        tournament, _ = six_player_cup
        match = service.list_matches(tournament.id)[0]

        with pytest.raises(ValidationError):
            service.record_score(match.id, -1, 2)
        assert not service.get_match(match.id).is_completed

    def test_group_stage_completion_builds_bracket(self, service, six_player_cup):
        """The last group result creates the semifinals with every group winner."""
        tournament, _ = six_player_cup

        play_scheduled(service, tournament.id, stage=Stage.GROUP)

        semis = knockout_of(service, tournament.id, "semi")
        assert len(semis) == 2
        assert all(m.status == MatchStatus.SCHEDULED for m in semis)
        qualified = {pid for m in semis for pid in m.participants}
        group_winners = {g.players[0].player_id for g in service.compute_group_standings(tournament.id)}
        assert group_winners <= qualified

    def test_knockout_draw_rejected(self, service, six_player_cup):
        """Knockout matches cannot end in a draw."""
        tournament, _ = six_player_cup
        play_scheduled(service, tournament.id, stage=Stage.GROUP)
        semi = knockout_of(service, tournament.id, "semi")[0]

        with pytest.raises(ValidationError):
            service.record_score(semi.id, 1, 1)
        assert not service.get_match(semi.id).is_completed

    def test_group_draw_allowed(self, service, six_player_cup):
        """Group matches can end in a draw."""
        tournament, _ = six_player_cup
        match = service.list_matches(tournament.id)[0]

        assert service.record_score(match.id, 2, 2).is_draw

    def test_semis_create_final_and_third_place(self, service, six_player_cup):
        """Semifinal winners meet in the final, losers play for third place."""
        tournament, _ = six_player_cup
        play_scheduled(service, tournament.id, stage=Stage.GROUP)
        play_scheduled(service, tournament.id, stage=Stage.KNOCKOUT)

        semis = knockout_of(service, tournament.id, "semi")
        final = knockout_of(service, tournament.id, "final")
        third = knockout_of(service, tournament.id, "third-place")

        assert final[0].participants == tuple(m.winner_id for m in semis)
        assert third[0].participants == tuple(m.loser_id for m in semis)
        assert service.get_winner(tournament.id) is None

    def test_changed_semi_result_repairs_final(self, service, six_player_cup):
        """A changed semifinal winner re-pairs the final in place and clears its score."""
        tournament, _ = six_player_cup
        play_scheduled(service, tournament.id, stage=Stage.GROUP)
        play_scheduled(service, tournament.id, stage=Stage.KNOCKOUT)
        final = knockout_of(service, tournament.id, "final")[0]
        service.record_score(final.id, *higher_id_wins(final))

        semi = knockout_of(service, tournament.id, "semi")[0]
        score1, score2 = higher_id_wins(semi)
        service.record_score(semi.id, score2, score1)  # other player wins now

        updated = knockout_of(service, tournament.id, "final")
        assert len(updated) == 1
        assert updated[0].id == final.id
        assert updated[0].player1_id == service.get_match(semi.id).winner_id
        assert updated[0].status == MatchStatus.SCHEDULED
        assert updated[0].score1 is None and updated[0].score2 is None

    def test_corrected_quarterfinal_reopens_semifinal(self, service):
        """Later rounds cannot be scored until the re-paired semifinal is replayed."""
        tournament, _ = setup_tournament(
            service,
            12,
            type="group_and_knockout",
            teams_per_group=4,
            teams_advancing_per_group=2,
            allow_third_place_teams=True,
            third_place_playoff=True,
        )
        service.generate_matches(tournament.id)
        play_scheduled(service, tournament.id, stage=Stage.GROUP)
        play_scheduled(service, tournament.id, stage=Stage.KNOCKOUT)  # quarterfinals
        play_scheduled(service, tournament.id, stage=Stage.KNOCKOUT)  # semifinals

        quarter = knockout_of(service, tournament.id, "quarter")[0]
        score1, score2 = higher_id_wins(quarter)
        service.record_score(quarter.id, score2, score1)

        assert [m.is_completed for m in knockout_of(service, tournament.id, "semi")] == [False, True]
        for round in ("final", "third-place"):
            match = knockout_of(service, tournament.id, round)[0]
            with pytest.raises(StateConflictError):
                service.record_score(match.id, *higher_id_wins(match))
            assert not service.get_match(match.id).is_completed
        assert service.tournament_status(tournament.id) == TournamentStatus.IN_PROGRESS

        play_out(service, tournament.id)

        semis = knockout_of(service, tournament.id, "semi")
        assert all(m.is_completed for m in semis)
        final = knockout_of(service, tournament.id, "final")[0]
        assert final.participants == tuple(m.winner_id for m in semis)
        assert service.tournament_status(tournament.id) == TournamentStatus.COMPLETED

    def test_concurrent_semifinal_scores(self, tmp_path):
        """Both semifinals scored at once create exactly one final and one third-place match."""
        db = DatabaseManager(str(tmp_path / "cup.sqlite"))
        db.create_tables()
        service = TournamentService(db, rng=random.Random(7))
        tournament, _ = setup_tournament(
            service, 6, type="group_and_knockout", teams_per_group=3, teams_advancing_per_group=2
        )
        service.generate_matches(tournament.id)
        play_scheduled(service, tournament.id, stage=Stage.GROUP)
        semis = knockout_of(service, tournament.id, "semi")

        barrier = threading.Barrier(len(semis))
        errors = []

        def score(match):
            barrier.wait()
            try:
                service.record_score(match.id, *higher_id_wins(match))
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=score, args=(m,)) for m in semis]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert all(m.is_completed for m in knockout_of(service, tournament.id, "semi"))
        assert len(knockout_of(service, tournament.id, "final")) == 1
        assert len(knockout_of(service, tournament.id, "third-place")) == 1

    def test_group_correction_resets_bracket(self, service, six_player_cup):
        """Re-scoring a group match rebuilds the knockout stage."""
        tournament, _ = six_player_cup
        play_scheduled(service, tournament.id, stage=Stage.GROUP)
        semi = knockout_of(service, tournament.id, "semi")[0]
        service.record_score(semi.id, *higher_id_wins(semi))

        group_match = service.list_matches(tournament.id, stage=Stage.GROUP)[0]
        service.record_score(group_match.id, *higher_id_wins(group_match))

        semis = knockout_of(service, tournament.id, "semi")
        assert len(semis) == 2
        assert not any(m.is_completed for m in semis)

    def test_generate_knockout_needs_finished_groups(self, service, six_player_cup):
        """The bracket can only be generated after the group stage."""
        tournament, _ = six_player_cup

        with pytest.raises(StateConflictError):
            service.generate_knockout(tournament.id)

        play_scheduled(service, tournament.id, stage=Stage.GROUP)
        assert len(service.generate_knockout(tournament.id)) == 2


class TestFullTournament:
    """End to end runs through every stage."""

    def test_twelve_player_cup(self, service):
        """Groups, quarterfinals, semifinals, final and third-place playoff."""
        tournament, players = setup_tournament(
            service,
            12,
            type="group_and_knockout",
            teams_per_group=4,
            teams_advancing_per_group=2,
            allow_third_place_teams=True,
            third_place_playoff=True,
        )
        service.generate_matches(tournament.id)

        play_out(service, tournament.id)

        bracket = service.get_bracket(tournament.id)
        assert list(bracket) == ["quarter", "semi", "final", "third-place"]
        assert [len(bracket[r]) for r in bracket] == [4, 2, 1, 1]
        assert len(service.list_matches(tournament.id)) == 26

        # Every quarterfinalist is distinct
        quarterfinalists = [pid for m in bracket["quarter"] for pid in m.participants]
        assert len(set(quarterfinalists)) == 8

        assert service.tournament_status(tournament.id) == TournamentStatus.COMPLETED
        winner = service.get_winner(tournament.id)
        runner_up = service.get_runner_up(tournament.id)
        third = service.get_third_place(tournament.id)
        assert winner.id == max(p.id for p in players)
        assert len({winner.id, runner_up.id, third.id}) == 3

    def test_completed_tournament_is_closed(self, service, six_player_cup):
        """A completed tournament accepts no scores and no new draw."""
        tournament, _ = six_player_cup
        play_out(service, tournament.id)
        match = service.list_matches(tournament.id)[0]

        assert service.tournament_status(tournament.id) == TournamentStatus.COMPLETED
        with pytest.raises(StateConflictError):
            service.record_score(match.id, 3, 0)
        with pytest.raises(StateConflictError):
            service.generate_matches(tournament.id)

    def test_legacy_single_group(self, service):
        """One group of 8 sends its top four to crossed semifinals."""
        tournament, players = setup_tournament(service, 8)
        matches = service.generate_matches(tournament.id)

        assert len(matches) == 28
        play_out(service, tournament.id)

        bracket = service.get_bracket(tournament.id)
        assert list(bracket) == ["semi", "final"]
        ranked = sorted((p.id for p in players), reverse=True)
        assert [m.participants for m in bracket["semi"]] == [(ranked[0], ranked[3]), (ranked[1], ranked[2])]
        assert service.get_winner(tournament.id).id == ranked[0]
        assert service.get_runner_up(tournament.id).id == ranked[1]
        assert service.get_third_place(tournament.id) is None
        assert service.tournament_status(tournament.id) == TournamentStatus.COMPLETED

    def test_legacy_two_groups(self, service):
        """Two round robin groups play crossed semifinals and a third-place match."""
        tournament, players = setup_tournament(service, 12, third_place_playoff=True)
        service.generate_matches(tournament.id)

        play_out(service, tournament.id)

        bracket = service.get_bracket(tournament.id)
        assert list(bracket) == ["semi", "final", "third-place"]
        assert service.get_winner(tournament.id).id == max(p.id for p in players)
        assert service.tournament_status(tournament.id) == TournamentStatus.COMPLETED

    def test_standings_after_group_stage(self, service, six_player_cup):
        """The overall table counts group matches only."""
        tournament, players = six_player_cup
        play_out(service, tournament.id)

        table = service.compute_standings(tournament.id)

        assert len(table) == 6
        assert sum(row.played for row in table) == 12
        assert table[0].points == 6
        assert {row.group for row in table} == {"Group A", "Group B"}
