"""Error taxonomy for kickoff.

Every error is terminal for the call that raised it: nothing is retried
and no partial mutation is left behind.
"""


class KickoffError(Exception):
    """Base class for all engine errors."""

    pass


class ValidationError(KickoffError):
    """Malformed input (bad score, missing name, bad id). Rejected before any mutation."""

    pass


class NotFoundError(KickoffError):
    """A tournament, player or match id could not be resolved."""

    pass


class StateConflictError(KickoffError):
    """The operation is not allowed in the current tournament state."""

    pass


class DuplicateMembership(StateConflictError):
    """Player is already registered in the tournament."""

    pass


class InsufficientPlayers(StateConflictError):
    """Not enough registered players to generate fixtures."""

    pass


class InsufficientQualifiers(StateConflictError):
    """Not enough qualified players to create a knockout bracket."""

    pass
