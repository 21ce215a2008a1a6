"""Log-likelihood evaluators with explicitly declared extra arguments.

A log-likelihood is a callable `loglik(state, **extra_args) -> float`. The names of the extra
arguments it needs are declared statically, either with the `requires` decorator, through a
`required_args` attribute on the callable, or by constructing a `LogLikelihood` directly. Before a
run, the extra arguments supplied by the user are compared against this declaration. During the
run, every returned value is checked, undefined values abort the run with an `EvaluationError`.

Functions:
    requires: Decorator declaring the extra arguments of a log-likelihood function
    check_log_likelihood_value: Convert an evaluator output to float or raise EvaluationError

Classes:
    LogLikelihood: Wrapper around a log-likelihood callable and its bound extra arguments
"""

import math
from collections.abc import Callable, Mapping
from numbers import Real
from typing import Any

import numpy as np

from . import utilities as utils
from .errors import ConfigurationError, EvaluationError


# ==================================================================================================
def requires(*arg_names: str) -> Callable:
    """Declare the names of the extra arguments a log-likelihood function expects.

    The function itself is returned unchanged, only the attribute `required_args` is set. It can
    therefore still be pickled and sent to worker processes.

    Example:
        >>> @requires("data")
        ... def loglik(x, data):
        ...     return -0.5 * np.sum((data - x[0]) ** 2)

    Args:
        arg_names (str): Names of the extra keyword arguments

    Returns:
        Callable: Decorator
    """
    for name in arg_names:
        if not isinstance(name, str):
            raise TypeError(f"Argument names must be strings, got {name!r}")

    def decorator(function: Callable) -> Callable:
        function.required_args = tuple(arg_names)
        return function

    return decorator


# --------------------------------------------------------------------------------------------------
def check_log_likelihood_value(value: Any) -> float:
    """Convert the output of a log-likelihood evaluation to float.

    Valid outputs are finite real numbers and negative infinity, the latter marking states with zero
    probability. Zero-dimensional or single-entry arrays are accepted.

    Args:
        value (Any): Evaluator output

    Raises:
        EvaluationError: If the value is None, non-numeric, NaN or positive infinity

    Returns:
        float: Log-likelihood value
    """
    if isinstance(value, np.ndarray) and value.size == 1:
        value = value.reshape(()).item()
    if value is None or isinstance(value, bool) or not isinstance(value, Real):
        raise EvaluationError(
            f"fun(par) is undefined ({value!r}). Check either the log-likelihood function or the "
            "lower and upper bounds of the kernel.",
            value,
        )
    value = float(value)
    if math.isnan(value) or value == math.inf:
        raise EvaluationError(
            f"fun(par) is undefined ({value}). Check either the log-likelihood function or the "
            "lower and upper bounds of the kernel.",
            value,
        )
    return value


# ==================================================================================================
class LogLikelihood:
    """Log-likelihood callable with a statically declared list of extra arguments.

    Objects of this class are what the chain runners evaluate. The extra arguments are bound once
    via `bind`, afterwards `evaluate` takes the state only. Instances are picklable as
    long as the wrapped function and the bound arguments are.

    Methods:
        from_callable: Create a LogLikelihood from a function or return an existing one
        validate_extra_args: Check supplied extra arguments against the declaration
        bind: Return a copy with extra arguments bound
        evaluate: Evaluate and check the log-likelihood of a state
    """

    def __init__(self, function: Callable, required_args: tuple[str, ...] = ()) -> None:
        """Constructor.

        Args:
            function (Callable): Log-likelihood function `function(state, **extra_args)`
            required_args (tuple[str, ...], optional): Names of the extra arguments the function
                needs. Defaults to ().

        Raises:
            ConfigurationError: If the function is not callable
        """
        if not callable(function):
            raise ConfigurationError(f"The log-likelihood must be callable, got {function!r}")
        self._function = function
        self._required_args = tuple(required_args)
        self._bound_args: dict[str, Any] = {}

    # ----------------------------------------------------------------------------------------------
    @classmethod
    def from_callable(cls, function: "Callable | LogLikelihood") -> "LogLikelihood":
        """Wrap a plain function, reading its declared `required_args` attribute if present."""
        if isinstance(function, cls):
            return function
        required_args = getattr(function, "required_args", ())
        return cls(function, tuple(required_args))

    # ----------------------------------------------------------------------------------------------
    @property
    def required_args(self) -> tuple[str, ...]:
        return self._required_args

    # ----------------------------------------------------------------------------------------------
    def validate_extra_args(self, extra_args: Mapping[str, Any]) -> None:
        """Compare the names of supplied extra arguments against the declared ones.

        Args:
            extra_args (Mapping[str, Any]): Extra arguments supplied for the run

        Raises:
            ConfigurationError: If arguments are passed that are not declared, or declared arguments
                are missing
        """
        passed = set(extra_args)
        declared = set(self._required_args)
        unexpected = sorted(passed - declared)
        missing = sorted(declared - passed)

        if unexpected:
            raise ConfigurationError(
                "The following extra arguments are not declared by the log-likelihood:"
                f"{utils.format_name_list(unexpected)}\nThe function was expecting:"
                f"{utils.format_name_list(self._required_args) if declared else ' nothing'}."
            )
        if missing:
            raise ConfigurationError(
                "The log-likelihood requires more extra arguments, missing:"
                f"{utils.format_name_list(missing)}."
            )

    # ----------------------------------------------------------------------------------------------
    def bind(self, extra_args: Mapping[str, Any]) -> "LogLikelihood":
        """Return a new evaluator with validated extra arguments bound to it."""
        self.validate_extra_args(extra_args)
        bound = LogLikelihood(self._function, self._required_args)
        bound._bound_args = dict(extra_args)
        return bound

    # ----------------------------------------------------------------------------------------------
    def evaluate(self, state: np.ndarray) -> float:
        """Evaluate the log-likelihood of a state.

        Exceptions raised by the wrapped function are converted into `EvaluationError`, as they
        indicate a malformed objective in the same way undefined return values do.

        Args:
            state (np.ndarray): Parameter vector

        Raises:
            EvaluationError: If the function fails or returns an undefined value

        Returns:
            float: Log-likelihood, finite or -inf
        """
        try:
            value = self._function(state, **self._bound_args)
        except EvaluationError:
            raise
        except Exception as exc:
            raise EvaluationError(
                f"Evaluation of the log-likelihood failed at state {state}: {exc!r}", None
            ) from exc
        return check_log_likelihood_value(value)
