class EngineError(Exception):
    code = "engine_error"
    status_code = 400

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.code)
        self.detail = detail or self.code


# validation: rejected before any state is touched
class ValidationError(EngineError):
    code = "invalid"


class InvalidBetValue(ValidationError):
    code = "invalid_bet_value"


class InvalidAmount(ValidationError):
    code = "invalid_amount"


class InvalidOutcome(ValidationError):
    code = "invalid_outcome"


# state: the condition will not change by retrying
class RoundClosed(EngineError):
    code = "round_closed"
    status_code = 409


class AlreadyResolved(EngineError):
    code = "already_resolved"
    status_code = 409


class InsufficientBalance(EngineError):
    code = "insufficient_balance"
    status_code = 409


class RoundNotFound(EngineError):
    code = "round_not_found"
    status_code = 404


class UserNotFound(EngineError):
    code = "user_not_found"
    status_code = 404


class ResolutionError(EngineError):
    """No outcome can be determined; the round gets voided and refunded."""
    code = "resolution_failed"
    status_code = 500


class TransientError(EngineError):
    code = "transient"
    status_code = 503


class DuplicateReference(EngineError):
    code = "duplicate_reference"
    status_code = 409
