# crash_round_backend/app/exceptions.py

"""
Errors raised by the round engine and its admin paths.

The HTTP layer maps every CrashGameException to {"ok": False, "error": ...}
with the exception's status_code.
"""


class CrashGameException(Exception):
    """Base class for all rejected operations."""
    status_code = 400


class InvalidInput(CrashGameException):
    """Malformed caller input: empty pool, non-numeric value, bad amount."""
    status_code = 400


class InvalidPhase(CrashGameException):
    """The operation is not allowed in the round's current phase."""
    status_code = 409

    def __init__(self, operation: str, phase: str):
        self.operation = operation
        self.phase = phase
        super().__init__(f"Cannot {operation} while round is {phase}")


class Unauthorized(CrashGameException):
    """Missing or wrong admin credential."""
    status_code = 403
