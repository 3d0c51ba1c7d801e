"""Tournament service: the public operations of the engine.

Every mutating call runs inside one database transaction and, for a given
tournament, under that tournament's lock. A score submission therefore
runs its whole chain (persist score, build or advance the knockout stage,
update the status) atomically: on any error nothing is written.
"""

import logging
import random
import threading
from collections import OrderedDict
from typing import Any, Optional

from kickoff.advancement import (
    ADVANCE_STEPS,
    RoundPlan,
    feeder_round,
    plan_legacy_final,
    plan_legacy_knockout_start,
    plan_legacy_semis,
    plan_round_advance,
    plan_third_place,
    round_completed,
)
from kickoff.bracket import build_knockout_matches
from kickoff.cache import TournamentCache, cached
from kickoff.errors import (
    DuplicateMembership,
    InsufficientQualifiers,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from kickoff.group_builder import RandomSource, create_groups
from kickoff.models import (
    BRACKET_ORDER,
    BulkAddResult,
    GroupStanding,
    KnockoutRound,
    Match,
    MatchStatus,
    Player,
    PlayerStats,
    Stage,
    Tournament,
    TournamentDetails,
    TournamentStatus,
)
from kickoff.qualifiers import select_qualifiers
from kickoff.standings import calculate_group_standings, calculate_standings
from kickoff.status import (
    advance_status,
    ensure_accepting_scores,
    is_tournament_complete,
    status_after_generation,
)
from kickoff.storage import (
    DatabaseManager,
    MatchRepository,
    MembershipRepository,
    PlayerRepository,
    TournamentORM,
    TournamentRepository,
)
from kickoff.validation import (
    validate_id,
    validate_match_score,
    validate_name,
    validate_score,
    validate_tournament_config,
)

logger = logging.getLogger(__name__)

TOURNAMENT_SETTINGS = (
    "type",
    "teams_per_group",
    "teams_advancing_per_group",
    "allow_third_place_teams",
    "third_place_playoff",
)


class TournamentService:
    """Registration, fixture generation, scoring and results.

    Args:
        db_manager: Database to work on (tables must exist)
        rng: Random source for group draws; unseeded random.Random() if omitted
        cache: Optional read-through cache for standings, bracket and details
        defaults: Default tournament settings applied by create_tournament
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        rng: Optional[RandomSource] = None,
        cache: Optional[TournamentCache] = None,
        defaults: Optional[dict[str, Any]] = None,
    ):
        self.db = db_manager
        self.rng = rng or random.Random()
        self.cache = cache
        self.defaults = dict(defaults or {})
        self._locks: dict[int, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "TournamentService":
        """Build a service (and its database) from a validated configuration."""
        db_manager = DatabaseManager(config["database"])
        db_manager.create_tables()

        cache = None
        if config["cache"]["enabled"]:
            cache = TournamentCache(ttl_seconds=config["cache"]["ttl_seconds"])

        return cls(
            db_manager,
            rng=random.Random(config["random_seed"]),
            cache=cache,
            defaults=config["defaults"],
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _tournament_lock(self, tournament_id: int) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(tournament_id, threading.Lock())

    def _invalidate(self, tournament_id: int):
        if self.cache is not None:
            self.cache.invalidate(tournament_id)
            self.cache.invalidate_in_progress()

    @staticmethod
    def _require_tournament(session, tournament_id: int) -> TournamentORM:
        validate_id(tournament_id, "tournament id")
        tournament = TournamentRepository(session).get_by_id(tournament_id)
        if tournament is None:
            raise NotFoundError(f"Tournament {tournament_id} not found")
        return tournament

    @staticmethod
    def _require_player(session, player_id: int):
        validate_id(player_id, "player id")
        player = PlayerRepository(session).get_by_id(player_id)
        if player is None:
            raise NotFoundError(f"Player {player_id} not found")
        return player

    @staticmethod
    def _load_round(session, tournament_id: int, round: KnockoutRound) -> list[Match]:
        orms = MatchRepository(session).list_by_tournament(
            tournament_id, stage=Stage.KNOCKOUT, round=round
        )
        return [m.to_domain() for m in orms]

    @staticmethod
    def _members(session, tournament_id: int) -> list[Player]:
        return [p.to_domain() for p in MembershipRepository(session).list_players(tournament_id)]

    @staticmethod
    def _matches(session, tournament_id: int, stage: Optional[Stage] = None) -> list[Match]:
        orms = MatchRepository(session).list_by_tournament(tournament_id, stage=stage)
        return [m.to_domain() for m in orms]

    def _ensure_feeder_played(self, session, tournament_id: int, knockout_round: KnockoutRound):
        """Refuse a knockout score while the round feeding it has unplayed matches.

        A corrected result re-pairs later rounds and resets them to scheduled;
        until the feeder round is replayed their participants are not final.
        """
        feeder = feeder_round(knockout_round)
        if feeder is None:
            return

        pending = [m for m in self._load_round(session, tournament_id, feeder) if not m.is_completed]
        if pending:
            raise StateConflictError(
                f"Cannot score a {knockout_round.value} match: "
                f"{len(pending)} {feeder.value} match(es) still to be played"
            )

    @staticmethod
    def _insert_round(
        repo: MatchRepository, tournament_id: int, round: KnockoutRound, pairs: list[tuple[int, int]]
    ):
        for player1_id, player2_id in pairs:
            repo.create(
                Match(
                    id=None,
                    tournament_id=tournament_id,
                    player1_id=player1_id,
                    player2_id=player2_id,
                    round=round.value,
                    stage=Stage.KNOCKOUT,
                    status=MatchStatus.SCHEDULED,
                )
            )

    def _apply_plan(self, session, tournament_id: int, plan: Optional[RoundPlan]):
        if plan is None or plan.is_noop:
            return

        repo = MatchRepository(session)
        if plan.recreate is not None:
            deleted = repo.delete_by_tournament(tournament_id, stage=Stage.KNOCKOUT, round=plan.round)
            self._insert_round(repo, tournament_id, plan.round, plan.recreate)
            logger.info(
                "Tournament %s: %s recreated (%d removed, %d created)",
                tournament_id,
                plan.round.value,
                deleted,
                len(plan.recreate),
            )
        else:
            for match_id, player1_id, player2_id in plan.updates:
                repo.update_participants(match_id, player1_id, player2_id)
                logger.info(
                    "Tournament %s: %s match %s re-paired to %s vs %s",
                    tournament_id,
                    plan.round.value,
                    match_id,
                    player1_id,
                    player2_id,
                )

    def _create_knockout(self, session, tournament: Tournament) -> list[Match]:
        """Replace the knockout stage with a fresh bracket built from group standings."""
        repo = MatchRepository(session)
        group_standings = calculate_group_standings(
            self._matches(session, tournament.id), self._members(session, tournament.id)
        )

        if tournament.is_legacy:
            start = plan_legacy_knockout_start(group_standings)
            repo.delete_by_tournament(tournament.id, stage=Stage.KNOCKOUT)
            if start is None:
                logger.warning(
                    "Tournament %s: %d groups cannot fill a knockout bracket",
                    tournament.id,
                    len(group_standings),
                )
                return []
            first_round, pairs = start
            self._insert_round(repo, tournament.id, first_round, pairs)
        else:
            qualified = select_qualifiers(group_standings, tournament)
            repo.delete_by_tournament(tournament.id, stage=Stage.KNOCKOUT)
            repo.create_many(build_knockout_matches(tournament.id, qualified))

        return self._matches(session, tournament.id, stage=Stage.KNOCKOUT)

    def _advance_knockout(self, session, tournament: Tournament):
        """Advance every knockout round whose feeder round is finished, then check completion."""
        tid = tournament.id

        if tournament.is_legacy:
            self._apply_plan(
                session,
                tid,
                plan_legacy_semis(
                    self._load_round(session, tid, KnockoutRound.QUARTER),
                    self._load_round(session, tid, KnockoutRound.SEMI),
                ),
            )
            self._apply_plan(
                session,
                tid,
                plan_legacy_final(
                    self._load_round(session, tid, KnockoutRound.SEMI),
                    self._load_round(session, tid, KnockoutRound.FINAL),
                ),
            )
        else:
            for from_round, to_round in ADVANCE_STEPS:
                plan = plan_round_advance(
                    self._load_round(session, tid, from_round),
                    to_round,
                    self._load_round(session, tid, to_round),
                )
                self._apply_plan(session, tid, plan)

        if tournament.third_place_playoff:
            self._apply_plan(
                session,
                tid,
                plan_third_place(
                    self._load_round(session, tid, KnockoutRound.SEMI),
                    self._load_round(session, tid, KnockoutRound.THIRD_PLACE),
                ),
            )

        complete = is_tournament_complete(
            self._matches(session, tid, stage=Stage.KNOCKOUT), tournament.third_place_playoff
        )
        if complete:
            status = advance_status(tournament.status, TournamentStatus.COMPLETED)
            TournamentRepository(session).update_status(tid, status)
            logger.info("Tournament %s completed", tid)

    # ------------------------------------------------------------------
    # Players
    # ------------------------------------------------------------------

    def create_player(self, name: str) -> Player:
        """Create a player. Names are unique."""
        name = validate_name(name, "Player name")
        with self.db.session_scope() as session:
            repo = PlayerRepository(session)
            if repo.get_by_name(name) is not None:
                raise StateConflictError(f"Player '{name}' already exists")
            player = repo.create(name).to_domain()
        logger.info("Created player %s (%s)", player.id, player.name)
        return player

    def list_players(self) -> list[Player]:
        with self.db.session_scope() as session:
            return [p.to_domain() for p in PlayerRepository(session).get_all()]

    def get_player(self, player_id: int) -> Player:
        with self.db.session_scope() as session:
            return self._require_player(session, player_id).to_domain()

    def delete_player(self, player_id: int):
        """Delete a player who is not registered in any tournament."""
        with self.db.session_scope() as session:
            player = self._require_player(session, player_id)
            if MembershipRepository(session).count_for_player(player_id):
                raise StateConflictError(
                    f"Player {player_id} is registered in a tournament and cannot be deleted"
                )
            PlayerRepository(session).delete(player)
        logger.info("Deleted player %s", player_id)

    # ------------------------------------------------------------------
    # Tournaments
    # ------------------------------------------------------------------

    def create_tournament(self, name: str, **config) -> Tournament:
        """Create a pending tournament.

        Args:
            name: Tournament name
            **config: type, teams_per_group, teams_advancing_per_group,
                allow_third_place_teams, third_place_playoff. Missing (or
                None) settings fall back to the service defaults.

        Raises:
            ValidationError: If the name or any setting is invalid
        """
        name = validate_name(name, "Tournament name")

        unknown = set(config) - set(TOURNAMENT_SETTINGS)
        if unknown:
            raise ValidationError(f"Unknown tournament settings: {', '.join(sorted(unknown))}")

        settings = {k: v for k, v in self.defaults.items() if k in TOURNAMENT_SETTINGS}
        settings.update({k: v for k, v in config.items() if v is not None})
        settings = validate_tournament_config(**settings)

        with self.db.session_scope() as session:
            tournament = TournamentRepository(session).create(name, **settings).to_domain()
        logger.info("Created tournament %s: %s", tournament.id, tournament)
        return tournament

    def list_tournaments(self) -> list[Tournament]:
        """All tournaments, newest first."""
        with self.db.session_scope() as session:
            return [t.to_domain() for t in TournamentRepository(session).get_all()]

    def get_tournament(self, tournament_id: int) -> Tournament:
        with self.db.session_scope() as session:
            return self._require_tournament(session, tournament_id).to_domain()

    def tournament_status(self, tournament_id: int) -> TournamentStatus:
        return self.get_tournament(tournament_id).status

    @cached("details")
    def get_tournament_details(self, tournament_id: int) -> TournamentDetails:
        """Tournament with its registered players and all of its matches."""
        with self.db.session_scope() as session:
            tournament = self._require_tournament(session, tournament_id).to_domain()
            return TournamentDetails(
                tournament=tournament,
                players=self._members(session, tournament_id),
                matches=self._matches(session, tournament_id),
            )

    def delete_tournament(self, tournament_id: int):
        """Delete a tournament together with its matches and memberships."""
        with self._tournament_lock(tournament_id):
            with self.db.session_scope() as session:
                tournament = self._require_tournament(session, tournament_id)
                TournamentRepository(session).delete(tournament)
        self._invalidate(tournament_id)
        with self._locks_guard:
            self._locks.pop(tournament_id, None)
        logger.info("Deleted tournament %s", tournament_id)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def list_tournament_players(self, tournament_id: int) -> list[Player]:
        """Registered players; empty for an unknown or deleted tournament."""
        with self.db.session_scope() as session:
            return self._members(session, tournament_id)

    def add_player(self, tournament_id: int, player_id: int) -> Player:
        """Register a player in a tournament.

        Raises:
            NotFoundError: Unknown tournament or player
            DuplicateMembership: Player already registered
        """
        with self._tournament_lock(tournament_id):
            with self.db.session_scope() as session:
                self._require_tournament(session, tournament_id)
                player = self._require_player(session, player_id).to_domain()
                memberships = MembershipRepository(session)
                if memberships.exists(tournament_id, player_id):
                    raise DuplicateMembership(
                        f"Player {player_id} is already in tournament {tournament_id}"
                    )
                memberships.add(tournament_id, player_id)
        self._invalidate(tournament_id)
        logger.info("Registered player %s in tournament %s", player_id, tournament_id)
        return player

    def bulk_add_players(
        self,
        tournament_id: int,
        player_ids: Optional[list[int]] = None,
        add_all: bool = False,
    ) -> BulkAddResult:
        """Register several players at once.

        Unknown players are reported as failed and already registered ones as
        skipped; the rest are added.

        Args:
            tournament_id: Tournament ID
            player_ids: Players to register
            add_all: Register every existing player instead

        Raises:
            ValidationError: Neither player_ids nor add_all given, or bad ids
            NotFoundError: Unknown tournament
        """
        if not add_all:
            if player_ids is None:
                raise ValidationError("Either player_ids or add_all must be provided")
            if not isinstance(player_ids, list) or not player_ids:
                raise ValidationError("player_ids must be a non-empty list")
            invalid = [pid for pid in player_ids if isinstance(pid, bool) or not isinstance(pid, int) or pid <= 0]
            if invalid:
                raise ValidationError(f"Invalid player IDs: {', '.join(map(str, invalid))}")

        result = BulkAddResult(tournament_id=tournament_id)

        with self._tournament_lock(tournament_id):
            with self.db.session_scope() as session:
                self._require_tournament(session, tournament_id)
                players = PlayerRepository(session)
                memberships = MembershipRepository(session)

                if add_all:
                    player_ids = [p.id for p in players.get_all()]

                for player_id in player_ids:
                    player = players.get_by_id(player_id)
                    if player is None:
                        result.failed.append(
                            {
                                "player_id": player_id,
                                "player_name": f"Unknown (ID: {player_id})",
                                "error": "Player not found",
                            }
                        )
                    elif memberships.exists(tournament_id, player_id):
                        result.skipped.append(
                            {
                                "player_id": player_id,
                                "player_name": player.name,
                                "reason": "Player already in tournament",
                            }
                        )
                    else:
                        memberships.add(tournament_id, player_id)
                        result.successful.append(player.to_domain())

        self._invalidate(tournament_id)
        logger.info("Bulk registration for tournament %s: %s", tournament_id, result.summary)
        return result

    def remove_player(self, tournament_id: int, player_id: int):
        """Unregister a player. Only allowed while the tournament is pending.

        Raises:
            StateConflictError: Tournament already started
            NotFoundError: Unknown tournament, or player not registered
        """
        validate_id(player_id, "player id")
        with self._tournament_lock(tournament_id):
            with self.db.session_scope() as session:
                tournament = self._require_tournament(session, tournament_id)
                if tournament.status != TournamentStatus.PENDING.value:
                    raise StateConflictError(
                        "Players can only be removed while the tournament is pending"
                    )
                if not MembershipRepository(session).remove(tournament_id, player_id):
                    raise NotFoundError(
                        f"Player {player_id} is not registered in tournament {tournament_id}"
                    )
        self._invalidate(tournament_id)
        logger.info("Removed player %s from tournament %s", player_id, tournament_id)

    # ------------------------------------------------------------------
    # Engine
    # ------------------------------------------------------------------

    def generate_matches(self, tournament_id: int, group_count: Optional[int] = None) -> list[Match]:
        """Draw groups and generate group stage fixtures.

        Deletes every existing match of the tournament first and moves it to
        in_progress.

        Args:
            tournament_id: Tournament ID
            group_count: Explicit number of groups (legacy round robin only)

        Returns:
            The new group stage matches

        Raises:
            InsufficientPlayers: Fewer than 2 registered players
            InsufficientQualifiers: Format cannot produce 2 knockout qualifiers
            StateConflictError: Tournament already completed
        """
        if group_count is not None:
            validate_id(group_count, "group count")

        with self._tournament_lock(tournament_id):
            with self.db.session_scope() as session:
                tournament = self._require_tournament(session, tournament_id).to_domain()
                new_status = status_after_generation(tournament.status)

                if group_count is not None and not tournament.is_legacy:
                    logger.warning(
                        "Tournament %s: group count is derived from teams per group, ignoring %s",
                        tournament_id,
                        group_count,
                    )
                    group_count = None

                member_ids = MembershipRepository(session).list_member_ids(tournament_id)
                groups, matches = create_groups(member_ids, tournament, self.rng, group_count)

                repo = MatchRepository(session)
                repo.delete_by_tournament(tournament_id)
                created = [m.to_domain() for m in repo.create_many(matches)]
                TournamentRepository(session).update_status(tournament_id, new_status)

        self._invalidate(tournament_id)
        logger.info(
            "Generated %d matches in %d groups for tournament %s",
            len(created),
            len(groups),
            tournament_id,
        )
        return created

    def record_score(self, match_id: int, score1: int, score2: int) -> Match:
        """Record a match result and run the progression chain.

        A group stage result completing the group stage builds the knockout
        bracket; knockout results advance the bracket and may complete the
        tournament. Re-scoring a match is allowed and re-pairs later rounds
        when the winner changes.

        Raises:
            ValidationError: Bad scores, or a draw in a knockout match
            NotFoundError: Unknown match
            StateConflictError: Tournament not in progress, or a knockout match
                whose feeder round still has unplayed matches
        """
        validate_id(match_id, "match id")
        validate_score(score1, "score1")
        validate_score(score2, "score2")

        with self.db.session_scope() as session:
            match = MatchRepository(session).get_by_id(match_id)
            if match is None:
                raise NotFoundError(f"Match {match_id} not found")
            tournament_id = match.tournament_id

        with self._tournament_lock(tournament_id):
            with self.db.session_scope() as session:
                repo = MatchRepository(session)
                match = repo.get_by_id(match_id)
                if match is None:
                    raise NotFoundError(f"Match {match_id} not found")

                tournament = self._require_tournament(session, tournament_id).to_domain()
                ensure_accepting_scores(tournament.status)
                knockout = match.stage == Stage.KNOCKOUT.value
                score1, score2 = validate_match_score(score1, score2, knockout=knockout)

                if knockout:
                    self._ensure_feeder_played(session, tournament_id, KnockoutRound(match.round))

                repo.update_score(match, score1, score2)
                logger.info("Match %s scored %d-%d (%s)", match_id, score1, score2, match.round)

                if not knockout:
                    group_matches = self._matches(session, tournament_id, stage=Stage.GROUP)
                    if round_completed(group_matches):
                        try:
                            self._create_knockout(session, tournament)
                        except InsufficientQualifiers as exc:
                            logger.warning("Tournament %s: no knockout stage: %s", tournament_id, exc)

                self._advance_knockout(session, tournament)
                result = match.to_domain()

        self._invalidate(tournament_id)
        return result

    def generate_knockout(self, tournament_id: int) -> list[Match]:
        """Rebuild the knockout bracket from the finished group stage.

        Raises:
            StateConflictError: Tournament not in progress or group stage unfinished
            InsufficientQualifiers: Fewer than 2 qualifiers
        """
        with self._tournament_lock(tournament_id):
            with self.db.session_scope() as session:
                tournament = self._require_tournament(session, tournament_id).to_domain()
                ensure_accepting_scores(tournament.status)

                group_matches = self._matches(session, tournament_id, stage=Stage.GROUP)
                if not round_completed(group_matches):
                    raise StateConflictError("Group stage is not complete")

                created = self._create_knockout(session, tournament)

        self._invalidate(tournament_id)
        logger.info("Generated %d knockout matches for tournament %s", len(created), tournament_id)
        return created

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def get_match(self, match_id: int) -> Match:
        validate_id(match_id, "match id")
        with self.db.session_scope() as session:
            match = MatchRepository(session).get_by_id(match_id)
            if match is None:
                raise NotFoundError(f"Match {match_id} not found")
            return match.to_domain()

    def list_matches(self, tournament_id: int, stage: Optional[Stage] = None) -> list[Match]:
        """Matches ordered by id; empty for an unknown or deleted tournament."""
        with self.db.session_scope() as session:
            return self._matches(session, tournament_id, stage=stage)

    @cached("standings")
    def compute_standings(self, tournament_id: int) -> list[PlayerStats]:
        """Overall group stage table of the tournament."""
        with self.db.session_scope() as session:
            self._require_tournament(session, tournament_id)
            return calculate_standings(
                self._matches(session, tournament_id), self._members(session, tournament_id)
            )

    @cached("groups")
    def compute_group_standings(self, tournament_id: int) -> list[GroupStanding]:
        """One ranked table per group."""
        with self.db.session_scope() as session:
            self._require_tournament(session, tournament_id)
            return calculate_group_standings(
                self._matches(session, tournament_id), self._members(session, tournament_id)
            )

    @cached("bracket")
    def get_bracket(self, tournament_id: int) -> "OrderedDict[str, list[Match]]":
        """Knockout matches grouped by round, in playing order."""
        with self.db.session_scope() as session:
            self._require_tournament(session, tournament_id)
            matches = self._matches(session, tournament_id, stage=Stage.KNOCKOUT)

        bracket = OrderedDict()
        for knockout_round in BRACKET_ORDER:
            round_matches = [m for m in matches if m.round == knockout_round.value]
            if round_matches:
                bracket[knockout_round.value] = round_matches
        return bracket

    def _decided_player(self, tournament_id: int, round: KnockoutRound, winner: bool) -> Optional[Player]:
        with self.db.session_scope() as session:
            self._require_tournament(session, tournament_id)
            completed = MatchRepository(session).list_by_tournament(
                tournament_id, stage=Stage.KNOCKOUT, round=round, status=MatchStatus.COMPLETED
            )
            if not completed:
                return None
            match = completed[0].to_domain()
            player_id = match.winner_id if winner else match.loser_id
            if player_id is None:
                return None
            return PlayerRepository(session).get_by_id(player_id).to_domain()

    def get_winner(self, tournament_id: int) -> Optional[Player]:
        """Winner of the completed final, None if not decided yet."""
        return self._decided_player(tournament_id, KnockoutRound.FINAL, winner=True)

    def get_runner_up(self, tournament_id: int) -> Optional[Player]:
        """Loser of the completed final, None if not decided yet."""
        return self._decided_player(tournament_id, KnockoutRound.FINAL, winner=False)

    def get_third_place(self, tournament_id: int) -> Optional[Player]:
        """Winner of the completed third-place playoff, None if not decided yet."""
        return self._decided_player(tournament_id, KnockoutRound.THIRD_PLACE, winner=True)
