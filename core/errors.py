"""
Error taxonomy for shift operations.

Every failure is scoped to a single user action. Validation errors are raised
before anything is written, precondition errors describe the lifecycle state
the action ran into, and transient errors wrap storage failures.
"""


class ShiftError(Exception):
    """Base class for all shift-domain errors."""

    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


# --- Validation (never retried) ---


class ValidationError(ShiftError):
    status_code = 400


class InvalidDuration(ValidationError):
    pass


class InvalidIndex(ValidationError):
    pass


# --- Preconditions ---


class PreconditionError(ShiftError):
    status_code = 409


class AlreadyActive(PreconditionError):
    def __init__(self, user_id: str):
        super().__init__(f"User {user_id} already has an active shift.")


class ClockInInProgress(PreconditionError):
    def __init__(self):
        super().__init__("A clock-in is already in progress.")


class NoActiveShift(PreconditionError):
    def __init__(self, user_id: str):
        super().__init__(f"User {user_id} has no active shift.")


class NotesRequired(PreconditionError):
    def __init__(self):
        super().__init__("Please add notes before clocking out.")


class ShiftNotCompleted(PreconditionError):
    def __init__(self, shift_id: str):
        super().__init__(f"Shift {shift_id} is still active.")


class ShiftNotFound(ShiftError):
    status_code = 404

    def __init__(self, shift_id: str):
        super().__init__(f"Shift {shift_id} not found.")
        self.shift_id = shift_id


# --- Transient I/O ---


class TransientIOError(ShiftError):
    status_code = 503


class RepositoryError(TransientIOError):
    pass
