"""Metropolis-Hastings MCMC Core Library.

Modules:
    convergence: Convergence diagnostics for automatic stopping of multi-chain runs
    errors: Exception and warning types of the package
    evaluator: Log-likelihood wrapper with declared extra arguments and value checks
    jobhandling: Sequential and pool-parallel execution of chain epochs
    logging: Customized logger for run and debug logs
    mcmc: Transition kernels, proposals and Hastings ratios
    sampler: Main interface `run_mcmc`, composition from other modules
    sampling: Metropolis-Hastings loop for single chains
    utilities: Utility functions for seeding and parallelism
"""

from .convergence import (
    AutoConvergenceChecker,
    BaseConvergenceChecker,
    ConvergenceVerdict,
    GelmanChecker,
    GewekeChecker,
)
from .errors import (
    BroadcastWarning,
    ConfigurationError,
    EvaluationError,
    MCMCError,
    TrimmingWarning,
)
from .evaluator import LogLikelihood, requires
from .logging import LoggerSettings
from .mcmc import AdaptiveKernel, BaseKernel, ChainContext, NormalKernel, ReflectiveKernel
from .run.postprocessor import SampleSet
from .sampler import run_mcmc

__all__ = [
    "AdaptiveKernel",
    "AutoConvergenceChecker",
    "BaseConvergenceChecker",
    "BaseKernel",
    "BroadcastWarning",
    "ChainContext",
    "ConfigurationError",
    "ConvergenceVerdict",
    "EvaluationError",
    "GelmanChecker",
    "GewekeChecker",
    "LogLikelihood",
    "LoggerSettings",
    "MCMCError",
    "NormalKernel",
    "ReflectiveKernel",
    "SampleSet",
    "TrimmingWarning",
    "requires",
    "run_mcmc",
]
