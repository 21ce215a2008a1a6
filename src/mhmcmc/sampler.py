"""Main interface for Metropolis-Hastings runs.

This module contains `run_mcmc`, the entry point of the package. It validates all inputs before any
sampling takes place, assembles the run from the other modules, and returns the trimmed and thinned
samples of every chain.

Functions:
    run_mcmc: Run one or more Metropolis-Hastings chains
    normalize_initial_states: Bring initial states of various formats into array form
"""

import warnings
from collections.abc import Callable, Mapping, Sequence
from numbers import Integral
from typing import Any

import numpy as np

from . import convergence, mcmc
from . import logging as mhlogging
from . import utilities as utils
from .errors import BroadcastWarning, ConfigurationError
from .evaluator import LogLikelihood
from .run.postprocessor import PostProcessor, SampleSet
from .run.runner import MultiChainOrchestrator, RunSettings
from .sampling import ChainRunner


# ==================================================================================================
def run_mcmc(
    loglik: Callable | LogLikelihood,
    initial: Any,
    nsteps: int,
    nchains: int = 1,
    thin: int = 1,
    kernel: mcmc.BaseKernel | None = None,
    burnin: int | None = None,
    multicore: bool = False,
    convergence_checker: convergence.BaseConvergenceChecker | None = None,
    autostop_interval: int = 500,
    worker_pool: Any = None,
    seed: int | None = None,
    param_names: Sequence[str] | None = None,
    logger_settings: mhlogging.LoggerSettings | None = None,
    **extra_args: Any,
) -> SampleSet | list[SampleSet]:
    """Run one or more Metropolis-Hastings chains.

    All chains are independent and start from their own initial state. With `autostop_interval > 0`,
    the chains are run in epochs of that length, and after every epoch the convergence checker
    decides whether the run stops early. The burn-in is discarded and the remaining states are
    thinned before they are returned.

    Example:
        >>> def loglik(x):
        ...     return -0.5 * float(x @ x)
        >>> samples = run_mcmc(loglik, initial=[1.0], nsteps=1000, seed=1, autostop_interval=0)

    Args:
        loglik (Callable | LogLikelihood): Log-likelihood `loglik(state, **extra_args)`. Extra
            arguments have to be declared, see `evaluator.requires`.
        initial (Any): Initial state(s), a vector, a mapping from names to values, an array with one
            row per chain, or a sequence of mappings
        nsteps (int): Length of each chain
        nchains (int, optional): Number of chains. Defaults to 1.
        thin (int, optional): Thinning factor. Defaults to 1.
        kernel (mcmc.BaseKernel | None, optional): Transition kernel. Defaults to a
            `NormalKernel` with unit scale.
        burnin (int | None, optional): Length of the burn-in. Defaults to `nsteps // 2`.
        multicore (bool, optional): Run chains in parallel. Defaults to False.
        convergence_checker (convergence.BaseConvergenceChecker | None, optional): Checker for
            automatic stopping. Defaults to an `AutoConvergenceChecker`.
        autostop_interval (int, optional): Steps between convergence checks, 0 disables automatic
            stopping. Defaults to 500.
        worker_pool (Any, optional): External worker pool, with `map` or `submit` method.
            Defaults to None.
        seed (int | None, optional): Master seed of the run. Defaults to None.
        param_names (Sequence[str] | None, optional): Parameter names, override names taken from
            `initial`. Defaults to None.
        logger_settings (mhlogging.LoggerSettings | None, optional): Logger settings. Defaults to
            no output.
        extra_args (Any): Further arguments passed to `loglik`

    Raises:
        ConfigurationError: If the configuration is invalid, before any sampling
        EvaluationError: If the log-likelihood is undefined during sampling

    Returns:
        SampleSet | list[SampleSet]: Samples of the single chain, or one SampleSet per chain if
            `nchains > 1`
    """
    if kernel is None:
        kernel = mcmc.NormalKernel()
    if convergence_checker is None:
        convergence_checker = convergence.AutoConvergenceChecker()
    if burnin is None:
        burnin = nsteps // 2 if isinstance(nsteps, Integral) else 0
    if logger_settings is None:
        logger_settings = mhlogging.LoggerSettings(do_printing=False)

    logger = mhlogging.SamplerLogger(logger_settings)
    try:
        # Validation, before any evaluation of the log-likelihood
        run_settings = RunSettings(
            nsteps=nsteps,
            nchains=nchains,
            thin=thin,
            burnin=burnin,
            autostop_interval=autostop_interval,
            multicore=multicore,
            seed=seed,
        )
        run_settings.validate()
        if not isinstance(kernel, mcmc.BaseKernel):
            raise ConfigurationError(
                f"-kernel- must be a BaseKernel, got {type(kernel).__name__}."
            )
        if not isinstance(convergence_checker, convergence.BaseConvergenceChecker):
            raise ConfigurationError(
                "-convergence_checker- must be a BaseConvergenceChecker, got "
                f"{type(convergence_checker).__name__}."
            )
        if run_settings.autostop_interval > 0:
            convergence_checker.validate(run_settings.nchains)
        initial_states, names = normalize_initial_states(initial, nchains, param_names, logger)
        kernel.validate(initial_states)
        bound_loglik = LogLikelihood.from_callable(loglik).bind(extra_args)

        # Sampling and postprocessing
        orchestrator = MultiChainOrchestrator(
            ChainRunner(bound_loglik), convergence_checker, run_settings, logger
        )
        chains = orchestrator.run(initial_states, kernel, worker_pool)
        postprocessor = PostProcessor(run_settings.burnin, run_settings.thin, logger)
        sample_sets = [
            postprocessor.process(chain, names, orchestrator.stopped_early) for chain in chains
        ]
    except Exception as exc:
        logger.exception(exc)
        raise
    finally:
        logger.close()

    if nchains == 1:
        return sample_sets[0]
    return sample_sets


# ==================================================================================================
def normalize_initial_states(
    initial: Any,
    num_chains: int,
    param_names: Sequence[str] | None = None,
    logger: mhlogging.SamplerLogger | None = None,
) -> tuple[np.ndarray, tuple[str, ...]]:
    """Bring initial states of various formats into array form.

    Accepted formats are a single vector, a mapping from names to values, a 2D array with one row
    per chain, and a sequence of mappings with identical keys. A single state is recycled for all
    chains, which triggers a `BroadcastWarning`, as chains with a common starting point make
    convergence diagnostics less reliable.

    Args:
        initial (Any): Initial state(s)
        num_chains (int): Number of chains
        param_names (Sequence[str] | None, optional): Explicit parameter names. Defaults to None.
        logger (mhlogging.SamplerLogger | None, optional): Logger to report broadcasting to.
            Defaults to None.

    Raises:
        ConfigurationError: If the states are malformed, non-finite, inconsistently named, or
            their number matches neither one nor the number of chains

    Returns:
        tuple[np.ndarray, tuple[str, ...]]: States of shape `(num_chains, num_parameters)` and the
            parameter names
    """
    names = None
    if isinstance(initial, Mapping):
        names = tuple(str(key) for key in initial)
        initial = [list(initial.values())]
    elif isinstance(initial, Sequence) and len(initial) > 0 and all(
        isinstance(entry, Mapping) for entry in initial
    ):
        names = tuple(str(key) for key in initial[0])
        for entry in initial[1:]:
            if tuple(str(key) for key in entry) != names:
                raise ConfigurationError(
                    f"All initial states need the same parameter names, got {names} and "
                    f"{tuple(entry)}."
                )
        initial = [list(entry.values()) for entry in initial]

    try:
        states = np.array(initial, dtype=float)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"-initial- is not a numeric array: {initial!r}") from exc

    if states.ndim == 0:
        states = states.reshape(1, 1)
    elif states.ndim == 1:
        states = states.reshape(1, -1)
    elif states.ndim > 2:
        raise ConfigurationError(
            f"-initial- must be a vector or a matrix, got shape {states.shape}"
        )

    if states.shape[1] == 0:
        raise ConfigurationError("-initial- has no parameters.")
    if not np.all(np.isfinite(states)):
        raise ConfigurationError(f"-initial- must be finite, got {states.tolist()}")

    if states.shape[0] == 1 and num_chains > 1:
        message = (
            "While using multiple chains, a single initial point has been passed via "
            f"`initial`: {states[0].tolist()}. The values will be recycled. Ideally you would want "
            "to start each chain from different locations."
        )
        warnings.warn(message, BroadcastWarning, stacklevel=3)
        if logger is not None:
            logger.warning(message)
        states = np.repeat(states, num_chains, axis=0)
    elif states.shape[0] != num_chains:
        raise ConfigurationError(
            f"-initial- has {states.shape[0]} rows, but {num_chains} chains have been requested."
        )

    if param_names is not None:
        names = tuple(str(name) for name in param_names)
    if names is None:
        names = utils.default_parameter_names(states.shape[1])
    if len(names) != states.shape[1]:
        raise ConfigurationError(
            f"Got {len(names)} parameter names for {states.shape[1]} parameters."
        )
    if len(set(names)) != len(names):
        raise ConfigurationError(f"Parameter names must be unique, got {names}.")

    return states, names
