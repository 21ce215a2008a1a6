"""Convergence checkers for automatic stopping of multi-chain runs.

A convergence checker inspects the histories of all chains collected so far and decides whether the
run can be stopped. Checkers are implemented in a class hierarchy, custom criteria can be
implemented by inheriting from `BaseConvergenceChecker`. The bundled checkers delegate the
numerics of the diagnostics to ArviZ.

Classes:
    ConvergenceVerdict: Decision of a checker, with diagnostic payload
    BaseConvergenceChecker: Base class for convergence checkers
    GelmanChecker: Potential scale reduction factor across chains
    GewekeChecker: Comparison of early and late segments of each chain
    AutoConvergenceChecker: Gelman for multiple chains, Geweke for a single chain
"""

import warnings
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from numbers import Real
from typing import Any

import arviz as az
import numpy as np
import scipy.stats as stats

from .errors import ConfigurationError


# ==================================================================================================
@dataclass(frozen=True)
class ConvergenceVerdict:
    """Decision of a convergence checker.

    Attributes:
        converged (bool): If the chains are considered converged
        diagnostic (Any): Diagnostic values the decision is based on, e.g. R-hat per parameter
        label (str): Short name of the diagnostic, used for logging
    """

    converged: bool
    diagnostic: Any = None
    label: str = ""


# ==================================================================================================
class BaseConvergenceChecker(ABC):
    """Base class for convergence checkers.

    Checkers are called with the raw histories of all chains, of equal length, in between epochs of
    an autostop run. They have to tolerate short histories, typically by returning a negative
    verdict.

    Methods:
        validate: Check that the checker can handle the requested number of chains
        evaluate: Compute the convergence verdict for a set of chain histories
    """

    def validate(self, num_chains: int) -> None:
        """Check compatibility with the run before any sampling, no-op by default.

        Args:
            num_chains (int): Number of chains of the run
        """

    @abstractmethod
    def evaluate(self, histories: Sequence[np.ndarray]) -> ConvergenceVerdict:
        """Abstract method for the convergence decision.

        Args:
            histories (Sequence[np.ndarray]): One `(num_iterations, num_parameters)` array per chain

        Returns:
            ConvergenceVerdict: Decision and diagnostic payload
        """
        raise NotImplementedError

    # ----------------------------------------------------------------------------------------------
    @staticmethod
    def _stack_histories(histories: Sequence[np.ndarray]) -> np.ndarray:
        """Stack histories into an array of shape `(num_chains, num_iterations, num_parameters)`."""
        assert len(histories) > 0, "At least one chain history is required"
        lengths = {history.shape[0] for history in histories}
        assert len(lengths) == 1, "Chain histories need to be of equal length"
        return np.stack([np.asarray(history, dtype=float) for history in histories], axis=0)


# ==================================================================================================
class GelmanChecker(BaseConvergenceChecker):
    """Potential scale reduction factor (Gelman-Rubin).

    The R-hat statistic is evaluated for every parameter with `arviz.rhat`, using the chains as
    independent samples of the same target. Chains are considered converged if all values are
    finite and below the threshold. Constant parameters, e.g. those fixed in the kernel, are
    ignored.
    """

    _min_num_draws = 4

    def __init__(self, threshold: float = 1.1) -> None:
        """Checker constructor.

        Args:
            threshold (float, optional): Upper bound for R-hat. Defaults to 1.1.

        Raises:
            ConfigurationError: Checks that the threshold is a number larger than one
        """
        if not isinstance(threshold, Real) or threshold <= 1:
            raise ConfigurationError(f"-threshold- must be a number > 1, got {threshold!r}")
        self._threshold = float(threshold)

    # ----------------------------------------------------------------------------------------------
    def validate(self, num_chains: int) -> None:
        """Reject single-chain runs.

        Raises:
            ConfigurationError: If fewer than two chains are requested
        """
        if num_chains < 2:
            raise ConfigurationError(
                f"The Gelman diagnostic requires at least two chains, got {num_chains}."
            )

    # ----------------------------------------------------------------------------------------------
    def evaluate(self, histories: Sequence[np.ndarray]) -> ConvergenceVerdict:
        """Evaluate R-hat for all parameters.

        Args:
            histories (Sequence[np.ndarray]): Histories of at least two chains

        Raises:
            ConfigurationError: If only a single chain is provided

        Returns:
            ConvergenceVerdict: Verdict with R-hat per parameter as diagnostic
        """
        samples = self._stack_histories(histories)
        num_chains, num_draws, num_parameters = samples.shape
        self.validate(num_chains)
        if num_draws < self._min_num_draws:
            return ConvergenceVerdict(False, None, "R-hat")

        rhat = np.full(num_parameters, np.nan)
        varying = np.ptp(samples, axis=(0, 1)) > 0
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", category=RuntimeWarning)
            for i in np.flatnonzero(varying):
                rhat[i] = az.rhat(samples[:, :, i])

        considered = rhat[varying]
        converged = bool(
            considered.size > 0
            and np.all(np.isfinite(considered))
            and np.all(considered < self._threshold)
        )
        return ConvergenceVerdict(converged, rhat, "R-hat")


# ==================================================================================================
class GewekeChecker(BaseConvergenceChecker):
    r"""Geweke diagnostic for each chain.

    The means of an early segment (first fraction `first`) and a late segment (last fraction
    `last`) of every chain are compared through the z-score

    .. math::
        z = \frac{\bar{x}_A - \bar{x}_B}{\sqrt{\hat{S}_A(0)/n_A + \hat{S}_B(0)/n_B}},

    where the spectral density estimates at frequency zero are expressed through the effective
    sample size of each segment, :math:`\hat{S}(0)/n = \mathrm{Var}(x)/\mathrm{ESS}`, computed with
    `arviz.ess`. The chains are considered converged if the two-sided p-values of all parameters and
    chains exceed the threshold.
    """

    _min_num_draws = 100
    _min_segment_size = 10

    def __init__(self, first: float = 0.1, last: float = 0.5, threshold: float = 0.025) -> None:
        """Checker constructor.

        Args:
            first (float, optional): Fraction of the chain forming the early segment.
                Defaults to 0.1.
            last (float, optional): Fraction of the chain forming the late segment. Defaults to 0.5.
            threshold (float, optional): Minimum p-value. Defaults to 0.025.

        Raises:
            ConfigurationError: Checks that the fractions are in (0,1) and do not overlap
            ConfigurationError: Checks that the threshold is in (0,1)
        """
        for name, value in (("first", first), ("last", last), ("threshold", threshold)):
            if not isinstance(value, Real) or not 0 < value < 1:
                raise ConfigurationError(f"-{name}- must be in (0,1), got {value!r}")
        if first + last > 1:
            raise ConfigurationError(
                f"Segments overlap, -first- + -last- ({first} + {last}) must not exceed 1."
            )
        self._first = float(first)
        self._last = float(last)
        self._threshold = float(threshold)
        self._critical_value = float(stats.norm.ppf(1 - self._threshold / 2))

    # ----------------------------------------------------------------------------------------------
    def evaluate(self, histories: Sequence[np.ndarray]) -> ConvergenceVerdict:
        """Evaluate Geweke z-scores for all chains and parameters.

        Args:
            histories (Sequence[np.ndarray]): Histories of one or more chains

        Returns:
            ConvergenceVerdict: Verdict with an array of z-scores `(num_chains, num_parameters)`
        """
        samples = self._stack_histories(histories)
        num_chains, num_draws, num_parameters = samples.shape
        if num_draws < self._min_num_draws:
            return ConvergenceVerdict(False, None, "Geweke z")

        num_first = max(int(np.floor(self._first * num_draws)), self._min_segment_size)
        num_last = max(int(np.floor(self._last * num_draws)), self._min_segment_size)
        z_scores = np.full((num_chains, num_parameters), np.nan)
        varying = np.ptp(samples, axis=1) > 0

        for chain in range(num_chains):
            for parameter in np.flatnonzero(varying[chain]):
                early = samples[chain, :num_first, parameter]
                late = samples[chain, num_draws - num_last :, parameter]
                z_scores[chain, parameter] = self._compute_z_score(early, late)

        considered = z_scores[varying]
        converged = bool(
            considered.size > 0
            and np.all(np.isfinite(considered))
            and np.all(np.abs(considered) < self._critical_value)
        )
        return ConvergenceVerdict(converged, z_scores, "Geweke z")

    # ----------------------------------------------------------------------------------------------
    @staticmethod
    def _compute_z_score(early: np.ndarray, late: np.ndarray) -> float:
        variance_of_mean = 0.0
        for segment in (early, late):
            variance = np.var(segment, ddof=1)
            if variance == 0:
                # A constant segment carries no information on its mean error
                return np.nan
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", category=RuntimeWarning)
                effective_sample_size = float(az.ess(segment[np.newaxis, :], method="mean"))
            if not np.isfinite(effective_sample_size) or effective_sample_size <= 0:
                return np.nan
            variance_of_mean += variance / effective_sample_size
        return float((np.mean(early) - np.mean(late)) / np.sqrt(variance_of_mean))


# ==================================================================================================
class AutoConvergenceChecker(BaseConvergenceChecker):
    """Default checker, picks the diagnostic based on the number of chains.

    Histories of several chains are checked with the `GelmanChecker`, a single chain with the
    `GewekeChecker`.
    """

    def __init__(
        self,
        gelman_checker: GelmanChecker | None = None,
        geweke_checker: GewekeChecker | None = None,
    ) -> None:
        self._gelman_checker = gelman_checker if gelman_checker is not None else GelmanChecker()
        self._geweke_checker = geweke_checker if geweke_checker is not None else GewekeChecker()

    def evaluate(self, histories: Sequence[np.ndarray]) -> ConvergenceVerdict:
        if len(histories) > 1:
            return self._gelman_checker.evaluate(histories)
        return self._geweke_checker.evaluate(histories)
