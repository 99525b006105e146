"""
Error taxonomy for the scheduling engine.
The API layer maps these to HTTP status codes.
"""


class SchedulingError(Exception):
    """Base exception for engine errors"""
    pass


class ValidationError(SchedulingError):
    """Raised when input is malformed or duplicated; nothing is persisted"""
    pass


class NotFound(SchedulingError):
    """Raised when a team, venue, proposal or relationship id is unknown"""

    def __init__(self, kind: str, identifier):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class InvalidTransition(SchedulingError):
    """Raised when a proposal is not in a state that allows the requested change"""

    def __init__(self, proposal_id: str, current, requested, detail: str = ""):
        self.proposal_id = proposal_id
        self.current = current
        self.requested = requested
        message = (
            f"Proposal {proposal_id}: cannot move from "
            f"{getattr(current, 'value', current)} to {getattr(requested, 'value', requested)}"
        )
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class ConstraintViolation(SchedulingError):
    """Raised when a business constraint (weekly cap) is found broken late"""

    def __init__(self, message: str, proposal=None):
        self.proposal = proposal
        super().__init__(message)


class ConcurrentUpdate(SchedulingError):
    """Raised when a proposal kept changing underneath every compare-and-swap attempt"""
    pass
