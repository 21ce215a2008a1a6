"""Error taxonomy of the sampler.

Configuration problems are detected before any sampling takes place, evaluation problems abort a
running sampler. Neither is ever recovered from internally. Non-fatal conditions are reported as
warnings and execution continues.

Classes:
    MCMCError: Base class for all sampler errors
    ConfigurationError: Invalid run configuration, raised before sampling
    EvaluationError: Invalid log-likelihood evaluation, raised during sampling
    BroadcastWarning: A single initial state is shared by multiple chains
    TrimmingWarning: Burn-in or thinning had to be reduced after an early stop
"""

from typing import Any


# ==================================================================================================
class MCMCError(Exception):
    """Base class for all errors raised by the sampler."""


# --------------------------------------------------------------------------------------------------
class ConfigurationError(MCMCError, ValueError):
    """Invalid run configuration, detected before any sampling iteration is executed."""


# --------------------------------------------------------------------------------------------------
class EvaluationError(MCMCError, RuntimeError):
    """The log-likelihood evaluator returned an undefined value or failed.

    The offending value is stored in the `value` attribute. The error is picklable with its
    value, so that it crosses process boundaries of a worker pool unchanged.
    """

    def __init__(self, message: str, value: Any = None) -> None:
        """Constructor.

        Args:
            message (str): Error description
            value (Any, optional): Offending value returned by the evaluator. Defaults to None.
        """
        super().__init__(message)
        self.value = value

    def __reduce__(self):
        return (type(self), (self.args[0], self.value))


# ==================================================================================================
class BroadcastWarning(UserWarning):
    """A single initial state has been recycled for several chains."""


# --------------------------------------------------------------------------------------------------
class TrimmingWarning(UserWarning):
    """Burn-in or thinning has been reduced to fit an early-stopped chain."""
