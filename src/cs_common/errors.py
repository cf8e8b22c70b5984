"""Unified error codes and custom exceptions.

Error code ranges:
  2xxx: Account / ledger
  3xxx: Charging session
  4xxx: Relay / actuation
  9xxx: System

Every error carries an ErrorKind so the calling layer can map it without
knowing individual codes. Business-rule kinds (NOT_FOUND, CONFLICT,
INSUFFICIENT_BALANCE, INVALID_STATE) are final: callers must not retry them.
"""

from src.cs_common.enums import ErrorKind


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
        kind: ErrorKind = ErrorKind.INTERNAL,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        self.kind = kind
        super().__init__(message)


# --- 2xxx: Account ---

class InsufficientBalanceError(AppError):
    def __init__(self, required: int, available: int) -> None:
        super().__init__(
            2001,
            f"Insufficient balance: required {required} points, available {available} points",
            422,
            ErrorKind.INSUFFICIENT_BALANCE,
        )
        self.required = required
        self.available = available


class AccountNotFoundError(AppError):
    def __init__(self, holder_id: str) -> None:
        super().__init__(
            2002, f"Account not found for holder {holder_id}", 404, ErrorKind.NOT_FOUND
        )


class AccountExistsError(AppError):
    def __init__(self, holder_id: str) -> None:
        super().__init__(
            2003, f"Account already exists for holder {holder_id}", 409, ErrorKind.CONFLICT
        )


# --- 3xxx: Charging session ---

class SessionNotFoundError(AppError):
    def __init__(self, session_id: str) -> None:
        super().__init__(
            3001, f"Charging session not found: {session_id}", 404, ErrorKind.NOT_FOUND
        )


class ActiveLeaseExistsError(AppError):
    def __init__(self, holder_id: str) -> None:
        super().__init__(
            3002,
            f"Holder {holder_id} already has an active charging session",
            409,
            ErrorKind.CONFLICT,
        )


class SessionAlreadyFinalizedError(AppError):
    def __init__(self, session_id: str, status: str) -> None:
        super().__init__(
            3003,
            f"Charging session {session_id} is already {status}",
            409,
            ErrorKind.INVALID_STATE,
        )


class InvalidLeaseRequestError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(3004, f"Invalid lease request: {detail}", 422, ErrorKind.INVALID_STATE)


class SocketInUseError(AppError):
    def __init__(self, socket_number: int) -> None:
        super().__init__(
            3005,
            f"Socket {socket_number} is already leased by an active charging session",
            409,
            ErrorKind.CONFLICT,
        )
        self.socket_number = socket_number


# --- 4xxx: Relay ---

class ActuationError(AppError):
    def __init__(self, socket_number: int | None, detail: str) -> None:
        target = "relay" if socket_number is None else f"socket {socket_number}"
        super().__init__(
            4001, f"Actuation failed on {target}: {detail}", 503, ErrorKind.ACTUATION_FAILURE
        )
        self.socket_number = socket_number


class UnknownSocketError(AppError):
    def __init__(self, socket_number: int) -> None:
        super().__init__(
            4002, f"Invalid socket number: {socket_number}", 422, ErrorKind.INVALID_STATE
        )
        self.socket_number = socket_number


# --- 9xxx: System ---

class InternalError(AppError):
    def __init__(self, detail: str = "Internal server error") -> None:
        super().__init__(9002, detail, 500)


class CompensationFailedError(AppError):
    """A rollback of an already-applied balance change failed; needs manual reconciliation."""

    def __init__(self, holder_id: str, delta: int, reason: str) -> None:
        super().__init__(
            9003,
            f"Compensation of {delta:+d} points for holder {holder_id} failed ({reason});"
            " manual reconciliation required",
            500,
        )
        self.holder_id = holder_id
        self.delta = delta
