"""Data models for kickoff.

Domain model hierarchy:
- Tournament has Players (through memberships) and Matches
- Group stage matches are tagged with a group label (A, B, C... or 1, 2... in legacy mode)
- Knockout matches are tagged with a knockout round (quarter, semi, final...)
- PlayerStats are derived from completed matches, never stored
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class TournamentStatus(str, Enum):
    """Tournament lifecycle status."""

    PENDING = "pending"  # Registration open, no fixtures yet
    IN_PROGRESS = "in_progress"  # Fixtures generated
    COMPLETED = "completed"  # Final (and third-place playoff, if any) played


class TournamentType(str, Enum):
    """Tournament format."""

    ROUND_ROBIN = "round_robin"  # Legacy format: numbered groups, fixed knockout topologies
    GROUP_AND_KNOCKOUT = "group_and_knockout"


class MatchStatus(str, Enum):
    """Match status."""

    SCHEDULED = "scheduled"
    COMPLETED = "completed"


class Stage(str, Enum):
    """Tournament stage a match belongs to."""

    GROUP = "group"
    KNOCKOUT = "knockout"


class KnockoutRound(str, Enum):
    """Knockout rounds, in playing order."""

    ROUND_OF_32 = "round-of-32"
    ROUND_OF_16 = "round-of-16"
    QUARTER = "quarter"
    SEMI = "semi"
    FINAL = "final"
    THIRD_PLACE = "third-place"


# Main bracket progression. The third-place playoff branches off the semifinal losers.
KNOCKOUT_PROGRESSION = [
    KnockoutRound.ROUND_OF_32,
    KnockoutRound.ROUND_OF_16,
    KnockoutRound.QUARTER,
    KnockoutRound.SEMI,
    KnockoutRound.FINAL,
]

# Display order used by the bracket view
BRACKET_ORDER = KNOCKOUT_PROGRESSION + [KnockoutRound.THIRD_PLACE]

GROUP_ROUND_PREFIX = "group-"


@dataclass(frozen=True)
class Round:
    """Round tag of a match.

    Either a group (``Round.group("A")``) or a knockout round
    (``Round.knockout(KnockoutRound.SEMI)``). Stored as a plain string
    ("group-A", "semi") and parsed back with ``Round.parse``.
    """

    stage: Stage
    group_label: Optional[str] = None
    knockout_round: Optional[KnockoutRound] = None

    @classmethod
    def group(cls, label: str) -> "Round":
        return cls(stage=Stage.GROUP, group_label=label)

    @classmethod
    def knockout(cls, knockout_round: KnockoutRound) -> "Round":
        return cls(stage=Stage.KNOCKOUT, knockout_round=KnockoutRound(knockout_round))

    @classmethod
    def parse(cls, value: str) -> "Round":
        """Parse a stored round string.

        Raises:
            ValueError: If the string is neither a group tag nor a knockout round
        """
        if value.startswith(GROUP_ROUND_PREFIX) and len(value) > len(GROUP_ROUND_PREFIX):
            return cls.group(value[len(GROUP_ROUND_PREFIX):])
        return cls.knockout(KnockoutRound(value))

    @property
    def is_group(self) -> bool:
        return self.stage == Stage.GROUP

    def __str__(self) -> str:
        if self.is_group:
            return f"{GROUP_ROUND_PREFIX}{self.group_label}"
        return self.knockout_round.value


# ============================================================================
# Core Domain Models
# ============================================================================


@dataclass
class Player:
    """Player (or team) taking part in tournaments."""

    id: int
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass
class Tournament:
    """Tournament and its format settings."""

    id: int
    name: str
    status: TournamentStatus = TournamentStatus.PENDING
    type: TournamentType = TournamentType.ROUND_ROBIN
    teams_per_group: int = 4
    teams_advancing_per_group: int = 2
    allow_third_place_teams: bool = False
    third_place_playoff: bool = False

    @property
    def is_legacy(self) -> bool:
        """Legacy round robin tournaments use numbered groups and fixed topologies."""
        return self.type == TournamentType.ROUND_ROBIN

    def __str__(self) -> str:
        return f"{self.name} ({self.type.value}, {self.status.value})"


@dataclass
class Match:
    """A match between two players.

    Scores are both None until the match is played; a match is
    completed iff both scores are set.
    """

    id: Optional[int]
    tournament_id: int
    player1_id: int
    player2_id: int
    round: str
    stage: Stage = Stage.GROUP
    status: MatchStatus = MatchStatus.SCHEDULED
    score1: Optional[int] = None
    score2: Optional[int] = None
    group_letter: Optional[str] = None

    @property
    def round_tag(self) -> Round:
        return Round.parse(self.round)

    @property
    def is_completed(self) -> bool:
        return self.status == MatchStatus.COMPLETED

    @property
    def is_draw(self) -> bool:
        return self.is_completed and self.score1 == self.score2

    @property
    def winner_id(self) -> Optional[int]:
        """Strictly higher scorer, None if not played or drawn."""
        if not self.is_completed or self.score1 == self.score2:
            return None
        return self.player1_id if self.score1 > self.score2 else self.player2_id

    @property
    def loser_id(self) -> Optional[int]:
        """Strictly lower scorer, None if not played or drawn."""
        if not self.is_completed or self.score1 == self.score2:
            return None
        return self.player2_id if self.score1 > self.score2 else self.player1_id

    @property
    def participants(self) -> tuple[int, int]:
        return (self.player1_id, self.player2_id)

    def __str__(self) -> str:
        score = f"{self.score1}-{self.score2}" if self.is_completed else "vs"
        return f"Match {self.id} [{self.round}]: P{self.player1_id} {score} P{self.player2_id}"


# ============================================================================
# Tournament Structure Models
# ============================================================================


@dataclass
class Group:
    """A round-robin group produced by the partitioner."""

    label: str  # "A", "B"... or "1", "2"... for legacy tournaments
    player_ids: list[int] = field(default_factory=list)
    legacy: bool = False

    @property
    def round(self) -> Round:
        return Round.group(self.label)

    @property
    def letter(self) -> Optional[str]:
        """Group letter stored on matches (legacy groups are numbered, not lettered)."""
        return None if self.legacy else self.label

    @property
    def size(self) -> int:
        return len(self.player_ids)

    def __str__(self) -> str:
        return f"Group {self.label} ({self.size} players)"


@dataclass
class PlayerStats:
    """Aggregated group stage statistics for one player.

    Tracks all metrics needed for ranking: points, goal difference, goals for.
    """

    player_id: int
    name: str
    played: int = 0
    wins: int = 0
    draws: int = 0
    losses: int = 0
    goals_for: int = 0
    goals_against: int = 0
    goal_diff: int = 0
    points: int = 0
    group: str = ""
    group_position: Optional[int] = None
    qualified_for_knockout: bool = False

    def __str__(self) -> str:
        pos = f"#{self.group_position} " if self.group_position else ""
        return f"{pos}{self.name}: {self.points}pts {self.wins}W-{self.draws}D-{self.losses}L GD:{self.goal_diff}"


@dataclass
class GroupStanding:
    """Ranked table of a single group."""

    group_letter: str
    group_name: str  # "Group A"
    players: list[PlayerStats] = field(default_factory=list)


# ============================================================================
# Result Models
# ============================================================================


@dataclass
class TournamentDetails:
    """Tournament with its registered players and all of its matches."""

    tournament: Tournament
    players: list[Player] = field(default_factory=list)
    matches: list[Match] = field(default_factory=list)


@dataclass
class BulkAddResult:
    """Outcome of registering several players at once."""

    tournament_id: int
    successful: list[Player] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)  # {"player_id", "player_name", "error"}
    skipped: list[dict] = field(default_factory=list)  # {"player_id", "player_name", "reason"}

    @property
    def summary(self) -> dict[str, int]:
        return {
            "total": len(self.successful) + len(self.failed) + len(self.skipped),
            "successful": len(self.successful),
            "failed": len(self.failed),
            "skipped": len(self.skipped),
        }
