"""
Pytest configuration and shared fixtures for mhmcmc tests.
"""

import numpy as np
import pytest

from mhmcmc import BaseConvergenceChecker, ConvergenceVerdict, LoggerSettings
from mhmcmc.logging import SamplerLogger


class CountingLogLikelihood:
    """Standard normal log-likelihood that counts its evaluations."""

    def __init__(self):
        self.num_calls = 0

    def __call__(self, x):
        self.num_calls += 1
        return -0.5 * float(np.sum(x**2))


class FixedVerdictChecker(BaseConvergenceChecker):
    """Checker returning a fixed decision, recording the history lengths it has seen."""

    def __init__(self, converged):
        self.converged = converged
        self.history_lengths = []

    def evaluate(self, histories):
        self.history_lengths.append(histories[0].shape[0])
        return ConvergenceVerdict(self.converged, None, "fixed")


@pytest.fixture
def rng_seed():
    """Default RNG seed for reproducible tests."""
    return 42


@pytest.fixture
def rng(rng_seed):
    """Random number generator for test data."""
    return np.random.default_rng(rng_seed)


@pytest.fixture
def counting_loglik():
    """Fresh call-counting log-likelihood."""
    return CountingLogLikelihood()


@pytest.fixture
def always_converged():
    """Checker that reports convergence at every check."""
    return FixedVerdictChecker(True)


@pytest.fixture
def never_converged():
    """Checker that never reports convergence."""
    return FixedVerdictChecker(False)


@pytest.fixture
def silent_logger():
    """Logger without any output, closed after the test."""
    logger = SamplerLogger(LoggerSettings(do_printing=False))
    yield logger
    logger.close()
