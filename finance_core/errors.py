"""
Error taxonomy shared by every engine component.

All errors extend ValueError so callers that treat business-rule failures
as ValueError keep working.
"""


class FinanceCoreError(ValueError):
    """Base class for engine errors"""


class ValidationError(FinanceCoreError):
    """Invalid input: bad amounts, durations, months or frequencies"""


class NotFoundError(FinanceCoreError):
    """Entity is absent or not owned by the caller"""


class ConflictError(FinanceCoreError):
    """Operation would repeat something already done"""


class StateError(FinanceCoreError):
    """Operation is not allowed in the entity's current state"""
