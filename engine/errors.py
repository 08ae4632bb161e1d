"""
engine/errors.py

Exception hierarchy for the threat engine.
"""


class GuardianError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(GuardianError):
    """Threshold configuration cannot be evaluated as given."""


class EscalationInvariantError(GuardianError):
    """A state machine request would break an escalation invariant."""


class DispatchError(GuardianError):
    """A notification could not be delivered after all retries."""
