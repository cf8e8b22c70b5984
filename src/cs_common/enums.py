"""Global enums — values must match DB CHECK constraints exactly."""

from enum import Enum


class SessionStatus(str, Enum):
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not SessionStatus.IN_PROGRESS

    @classmethod
    def normalize_stop(cls, requested: "str | SessionStatus | None") -> "SessionStatus":
        """Stop requests end either cancelled or completed; anything else is completed."""
        if requested == cls.CANCELLED:
            return cls.CANCELLED
        return cls.COMPLETED


class SocketClass(str, Enum):
    """Kind of outlet the holder plugs into."""
    UNIVERSAL_CHARGER = "Universal Charger"
    OWN_CHARGER = "Own Charger"


class ErrorKind(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    INVALID_STATE = "INVALID_STATE"
    ACTUATION_FAILURE = "ACTUATION_FAILURE"
    INTERNAL = "INTERNAL"
