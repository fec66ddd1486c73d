"""
Typed failures returned to callers of the lifecycle and settlement core.
Each carries the HTTP status and machine code the API handlers respond with.
"""


class CoreError(Exception):
    """Base class for every expected failure of a core operation."""
    status_code = 400
    code = 'CORE_ERROR'

    def __init__(self, message: str = ''):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def to_dict(self) -> dict:
        return {'error': self.code, 'message': self.message}


class InvalidInput(CoreError):
    code = 'INVALID_INPUT'


class NotFound(CoreError):
    status_code = 404
    code = 'NOT_FOUND'


class Forbidden(CoreError):
    status_code = 403
    code = 'FORBIDDEN'


class InvalidTransition(CoreError):
    """The event is not valid for the project's current status."""
    status_code = 409
    code = 'INVALID_TRANSITION'

    def __init__(self, status, event, message: str = ''):
        self.status = getattr(status, 'value', status)
        self.event = getattr(event, 'value', event)
        super().__init__(message or f"Cannot apply '{self.event}' to a project in status '{self.status}'")

    def to_dict(self) -> dict:
        return {**super().to_dict(), 'status': self.status, 'event': self.event}


class NotClaimable(CoreError):
    """The project is no longer in the pool."""
    status_code = 409
    code = 'NOT_CLAIMABLE'


class AlreadyAssigned(NotClaimable):
    """Another Doer won the claim race."""
    code = 'ALREADY_ASSIGNED'

    def __init__(self, message: str = 'This task was just taken'):
        super().__init__(message)


class InsufficientBalance(CoreError):
    code = 'INSUFFICIENT_BALANCE'

    def __init__(self, balance: int, requested: int):
        self.balance = balance
        self.requested = requested
        self.shortfall = requested - balance
        super().__init__(f'Insufficient balance: short by {self.shortfall}')

    def to_dict(self) -> dict:
        return {**super().to_dict(), 'balance': self.balance, 'shortfall': self.shortfall}


class SettlementFailure(CoreError):
    """A paired wallet posting failed; nothing from the settlement was written."""
    status_code = 500
    code = 'SETTLEMENT_FAILURE'


class WriteConflict(CoreError):
    """Optimistic retries were exhausted under contention."""
    status_code = 409
    code = 'WRITE_CONFLICT'


class InvariantViolation(CoreError):
    status_code = 500
    code = 'INVARIANT_VIOLATION'
