"""
Error taxonomy shared by every service.

Callers branch on ``kind`` only; ``message`` is for humans.
"""
from enum import StrEnum


class ErrorKind(StrEnum):
    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    EXHAUSTED = "exhausted"
    UNAUTHORIZED = "unauthorized"
    UNAVAILABLE = "unavailable"
    INVALID_INPUT = "invalid_input"


class ReciclaError(Exception):
    kind: ErrorKind = ErrorKind.UNAVAILABLE

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message}


class NotFound(ReciclaError):
    kind = ErrorKind.NOT_FOUND


class InvalidState(ReciclaError):
    kind = ErrorKind.INVALID_STATE


class InsufficientBalance(ReciclaError):
    kind = ErrorKind.INSUFFICIENT_BALANCE


class Exhausted(ReciclaError):
    kind = ErrorKind.EXHAUSTED


class Unauthorized(ReciclaError):
    kind = ErrorKind.UNAUTHORIZED


class Unavailable(ReciclaError):
    kind = ErrorKind.UNAVAILABLE


class InvalidInput(ReciclaError):
    kind = ErrorKind.INVALID_INPUT
