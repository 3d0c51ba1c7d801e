"""SQLite storage layer for kickoff.

Provides ORM models and repository pattern for data persistence.

Repositories only flush; the caller owns the transaction (see
DatabaseManager.session_scope) so that a chain of engine steps either
commits as a whole or leaves nothing behind.
"""

from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    create_engine,
)
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from kickoff.models import (
    Match,
    MatchStatus,
    Player,
    Stage,
    Tournament,
    TournamentStatus,
    TournamentType,
)

Base = declarative_base()

MEMORY_DB = ":memory:"


def _round_value(round) -> str:
    """Storage string of a round given as Round, KnockoutRound or plain string."""
    if isinstance(round, Enum):
        return round.value
    return str(round)


# ============================================================================
# ORM Models
# ============================================================================


class PlayerORM(Base):
    """Player table. Names are unique."""

    __tablename__ = "players"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    memberships = relationship("TournamentPlayerORM", back_populates="player")

    def to_domain(self) -> Player:
        return Player(id=self.id, name=self.name)


class TournamentORM(Base):
    """Tournament table.

    Deleting a tournament deletes its matches and memberships with it.
    """

    __tablename__ = "tournaments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    status = Column(String(20), nullable=False, default=TournamentStatus.PENDING.value)
    type = Column(String(30), nullable=False, default=TournamentType.ROUND_ROBIN.value)
    teams_per_group = Column(Integer, nullable=False, default=4)
    teams_advancing_per_group = Column(Integer, nullable=False, default=2)
    allow_third_place_teams = Column(Boolean, nullable=False, default=False)
    third_place_playoff = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    memberships = relationship(
        "TournamentPlayerORM", back_populates="tournament", cascade="all, delete-orphan"
    )
    matches = relationship(
        "MatchORM", back_populates="tournament", cascade="all, delete-orphan"
    )

    def to_domain(self) -> Tournament:
        return Tournament(
            id=self.id,
            name=self.name,
            status=TournamentStatus(self.status),
            type=TournamentType(self.type),
            teams_per_group=self.teams_per_group,
            teams_advancing_per_group=self.teams_advancing_per_group,
            allow_third_place_teams=self.allow_third_place_teams,
            third_place_playoff=self.third_place_playoff,
        )


class TournamentPlayerORM(Base):
    """Tournament membership (one row per registered player)."""

    __tablename__ = "tournament_players"

    tournament_id = Column(Integer, ForeignKey("tournaments.id"), primary_key=True)
    player_id = Column(Integer, ForeignKey("players.id"), primary_key=True)
    joined_at = Column(DateTime, default=datetime.utcnow)

    tournament = relationship("TournamentORM", back_populates="memberships")
    player = relationship("PlayerORM", back_populates="memberships")


class MatchORM(Base):
    """Match table.

    round holds the rendered round tag ("group-A", "semi", ...); stage is
    written from the same tag and kept for filtering.
    """

    __tablename__ = "matches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id"), nullable=False)
    player1_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    player2_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    score1 = Column(Integer, nullable=True)
    score2 = Column(Integer, nullable=True)
    round = Column(String(30), nullable=False)
    stage = Column(String(20), nullable=False, default=Stage.GROUP.value)
    status = Column(String(20), nullable=False, default=MatchStatus.SCHEDULED.value)
    group_letter = Column(String(5), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tournament = relationship("TournamentORM", back_populates="matches")

    def to_domain(self) -> Match:
        return Match(
            id=self.id,
            tournament_id=self.tournament_id,
            player1_id=self.player1_id,
            player2_id=self.player2_id,
            round=self.round,
            stage=Stage(self.stage),
            status=MatchStatus(self.status),
            score1=self.score1,
            score2=self.score2,
            group_letter=self.group_letter,
        )


# ============================================================================
# Database Manager
# ============================================================================


class DatabaseManager:
    """Manages SQLite database connection and session."""

    def __init__(self, db_path: str = ".kickoff/kickoff.sqlite"):
        """Initialize database manager.

        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        self.db_path = db_path

        if db_path == MEMORY_DB:
            # One shared connection, otherwise every session sees an empty database
            self.engine = create_engine(
                "sqlite://",
                echo=False,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            path = Path(db_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            # Use NullPool for SQLite to avoid connection pool issues
            self.engine = create_engine(
                f"sqlite:///{path}",
                echo=False,
                poolclass=NullPool,
                connect_args={"check_same_thread": False},
            )
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_tables(self):
        """Create all tables in the database."""
        Base.metadata.create_all(self.engine)

    def drop_tables(self):
        """Drop all tables (use with caution!)."""
        Base.metadata.drop_all(self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Transactional scope: commit on success, rollback on any error."""
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


# ============================================================================
# Repository Pattern
# ============================================================================


class PlayerRepository:
    """Repository for Player operations."""

    def __init__(self, session):
        self.session = session

    def create(self, name: str) -> PlayerORM:
        """Create a new player."""
        player = PlayerORM(name=name)
        self.session.add(player)
        self.session.flush()
        return player

    def get_by_id(self, player_id: int) -> Optional[PlayerORM]:
        """Get player by ID."""
        return self.session.query(PlayerORM).filter(PlayerORM.id == player_id).first()

    def get_by_name(self, name: str) -> Optional[PlayerORM]:
        """Get player by exact name."""
        return self.session.query(PlayerORM).filter(PlayerORM.name == name).first()

    def get_all(self) -> list[PlayerORM]:
        """Get all players ordered by name."""
        return self.session.query(PlayerORM).order_by(PlayerORM.name, PlayerORM.id).all()

    def delete(self, player: PlayerORM):
        """Delete a player."""
        self.session.delete(player)
        self.session.flush()


class TournamentRepository:
    """Repository for Tournament operations."""

    def __init__(self, session):
        self.session = session

    def create(self, name: str, **config) -> TournamentORM:
        """Create a new pending tournament.

        Args:
            name: Tournament name
            **config: Validated format settings (type, teams_per_group, ...)
        """
        if "type" in config:
            config["type"] = TournamentType(config["type"]).value
        tournament = TournamentORM(name=name, status=TournamentStatus.PENDING.value, **config)
        self.session.add(tournament)
        self.session.flush()
        return tournament

    def get_by_id(self, tournament_id: int) -> Optional[TournamentORM]:
        """Get tournament by ID."""
        return self.session.query(TournamentORM).filter(
            TournamentORM.id == tournament_id
        ).first()

    def get_all(self) -> list[TournamentORM]:
        """Get all tournaments (newest first)."""
        return self.session.query(TournamentORM).order_by(
            TournamentORM.created_at.desc(), TournamentORM.id.desc()
        ).all()

    def update_status(self, tournament_id: int, status: TournamentStatus) -> bool:
        """Update tournament status."""
        result = self.session.query(TournamentORM).filter(
            TournamentORM.id == tournament_id
        ).update({"status": TournamentStatus(status).value})
        self.session.flush()
        return result > 0

    def delete(self, tournament: TournamentORM):
        """Delete a tournament with its matches and memberships."""
        self.session.delete(tournament)
        self.session.flush()


class MembershipRepository:
    """Repository for tournament registrations."""

    def __init__(self, session):
        self.session = session

    def add(self, tournament_id: int, player_id: int) -> TournamentPlayerORM:
        """Register a player in a tournament."""
        membership = TournamentPlayerORM(tournament_id=tournament_id, player_id=player_id)
        self.session.add(membership)
        self.session.flush()
        return membership

    def get(self, tournament_id: int, player_id: int) -> Optional[TournamentPlayerORM]:
        """Get a membership row, if the player is registered."""
        return self.session.query(TournamentPlayerORM).filter(
            TournamentPlayerORM.tournament_id == tournament_id,
            TournamentPlayerORM.player_id == player_id,
        ).first()

    def exists(self, tournament_id: int, player_id: int) -> bool:
        return self.get(tournament_id, player_id) is not None

    def remove(self, tournament_id: int, player_id: int) -> bool:
        """Unregister a player. Returns False if they were not registered."""
        membership = self.get(tournament_id, player_id)
        if membership is None:
            return False
        self.session.delete(membership)
        self.session.flush()
        return True

    def list_players(self, tournament_id: int) -> list[PlayerORM]:
        """Registered players, in registration order."""
        return (
            self.session.query(PlayerORM)
            .join(TournamentPlayerORM, TournamentPlayerORM.player_id == PlayerORM.id)
            .filter(TournamentPlayerORM.tournament_id == tournament_id)
            .order_by(TournamentPlayerORM.joined_at, PlayerORM.id)
            .all()
        )

    def list_member_ids(self, tournament_id: int) -> list[int]:
        return [p.id for p in self.list_players(tournament_id)]

    def count_for_player(self, player_id: int) -> int:
        """Number of tournaments the player is registered in."""
        return self.session.query(TournamentPlayerORM).filter(
            TournamentPlayerORM.player_id == player_id
        ).count()


class MatchRepository:
    """Repository for Match operations."""

    def __init__(self, session):
        self.session = session

    def create(self, match: Match) -> MatchORM:
        """Insert a match.

        Args:
            match: Match domain model (id is ignored)

        Returns:
            Created MatchORM instance
        """
        match_orm = MatchORM(
            tournament_id=match.tournament_id,
            player1_id=match.player1_id,
            player2_id=match.player2_id,
            score1=match.score1,
            score2=match.score2,
            round=match.round,
            stage=match.round_tag.stage.value,
            status=MatchStatus(match.status).value,
            group_letter=match.group_letter,
        )
        self.session.add(match_orm)
        self.session.flush()
        return match_orm

    def create_many(self, matches: list[Match]) -> list[MatchORM]:
        return [self.create(match) for match in matches]

    def get_by_id(self, match_id: int) -> Optional[MatchORM]:
        """Get match by ID."""
        return self.session.query(MatchORM).filter(MatchORM.id == match_id).first()

    def list_by_tournament(
        self,
        tournament_id: int,
        stage: Optional[Stage] = None,
        round: Optional[str] = None,
        status: Optional[MatchStatus] = None,
    ) -> list[MatchORM]:
        """Matches of a tournament ordered by id, optionally filtered.

        Args:
            tournament_id: Tournament ID
            stage: Only matches of this stage
            round: Only matches with this round tag ("semi", "group-A", ...)
            status: Only matches with this status
        """
        query = self.session.query(MatchORM).filter(MatchORM.tournament_id == tournament_id)
        if stage is not None:
            query = query.filter(MatchORM.stage == Stage(stage).value)
        if round is not None:
            query = query.filter(MatchORM.round == _round_value(round))
        if status is not None:
            query = query.filter(MatchORM.status == MatchStatus(status).value)
        return query.order_by(MatchORM.id).all()

    def update_score(self, match: MatchORM, score1: int, score2: int) -> MatchORM:
        """Set both scores and mark the match completed."""
        match.score1 = score1
        match.score2 = score2
        match.status = MatchStatus.COMPLETED.value
        self.session.flush()
        return match

    def update_participants(self, match_id: int, player1_id: int, player2_id: int) -> bool:
        """Replace the players of a match, clearing its score."""
        result = self.session.query(MatchORM).filter(MatchORM.id == match_id).update(
            {
                "player1_id": player1_id,
                "player2_id": player2_id,
                "score1": None,
                "score2": None,
                "status": MatchStatus.SCHEDULED.value,
            }
        )
        self.session.flush()
        return result > 0

    def delete_by_tournament(
        self,
        tournament_id: int,
        stage: Optional[Stage] = None,
        round: Optional[str] = None,
    ) -> int:
        """Delete matches of a tournament, optionally only one stage or round.

        Returns:
            Number of matches deleted
        """
        query = self.session.query(MatchORM).filter(MatchORM.tournament_id == tournament_id)
        if stage is not None:
            query = query.filter(MatchORM.stage == Stage(stage).value)
        if round is not None:
            query = query.filter(MatchORM.round == _round_value(round))
        count = query.delete(synchronize_session="fetch")
        self.session.flush()
        return count
