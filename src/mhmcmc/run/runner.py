"""Orchestration of multi-chain runs with automatic stopping.

The orchestrator manages a set of independent chains and drives them in epochs. Every chain is
advanced by the same number of steps per epoch, either sequentially or on a worker pool. After an
epoch has been completed by all chains, the convergence checker inspects the histories collected so
far and decides whether the run can stop early. Without automatic stopping, the whole run is a
single epoch of full length.

Classes:
    RunSettings: Data class for the settings of a multi-chain run
    MultiChainOrchestrator: Epoch-wise execution of independent chains
"""

import time
from collections.abc import Sequence
from dataclasses import dataclass
from numbers import Integral

import numpy as np

from .. import convergence, jobhandling, logging, mcmc
from .. import utilities as utils
from ..errors import ConfigurationError
from ..sampling import Chain, ChainRunner
from .postprocessor import PostProcessor


# ==================================================================================================
@dataclass
class RunSettings:
    """Data class for the settings of a multi-chain run.

    Attributes:
        nsteps (int): Maximum number of steps per chain
        nchains (int): Number of independent chains, default is 1
        thin (int): Thinning factor, default is 1
        burnin (int): Number of initial states to discard, default is 0
        autostop_interval (int): Epoch length between convergence checks, 0 disables automatic
            stopping, default is 500
        multicore (bool): If chains are run in parallel on a worker pool, default is False
        num_workers (int): Size of the worker pool, default is None, meaning
            `min(nchains, available parallelism)`
        seed (int): Master seed for the random number generators of all chains, default is None
    """

    nsteps: int
    nchains: int = 1
    thin: int = 1
    burnin: int = 0
    autostop_interval: int = 500
    multicore: bool = False
    num_workers: int = None
    seed: int = None

    # ----------------------------------------------------------------------------------------------
    def validate(self) -> None:
        """Check the invariants of the run settings.

        Raises:
            ConfigurationError: If any of the settings is invalid, naming the offending value
        """
        for name in ("nsteps", "nchains", "thin", "burnin"):
            value = getattr(self, name)
            if not _is_integer(value):
                raise ConfigurationError(f"-{name}- must be an integer, got {value!r}")
        if self.nsteps < 1:
            raise ConfigurationError(f"-nsteps- ({self.nsteps}) must be a positive integer.")
        if self.nchains < 1:
            raise ConfigurationError(f"-nchains- ({self.nchains}) should be >= 1.")

        autostop = self.autostop_interval
        if isinstance(autostop, (Sequence, np.ndarray)) and not isinstance(autostop, str):
            raise ConfigurationError(
                f"The `autostop_interval` parameter must be of length 1. "
                f"autostop_interval={autostop!r}"
            )
        if not _is_integer(autostop):
            raise ConfigurationError(
                f"The `autostop_interval` parameter must be an integer. "
                f"autostop_interval={autostop!r}"
            )
        if autostop < 0:
            raise ConfigurationError(
                f"The `autostop_interval` parameter must be >= 0. autostop_interval={autostop}"
            )

        if self.num_workers is not None and (not _is_integer(self.num_workers)
                                             or self.num_workers < 1):
            raise ConfigurationError(f"-num_workers- ({self.num_workers}) should be >= 1.")
        if self.seed is not None and not _is_integer(self.seed):
            raise ConfigurationError(f"-seed- must be an integer or None, got {self.seed!r}")

        PostProcessor(self.burnin, self.thin).validate(self.nsteps)


# --------------------------------------------------------------------------------------------------
def _is_integer(value: object) -> bool:
    return isinstance(value, Integral) and not isinstance(value, bool)


# ==================================================================================================
class MultiChainOrchestrator:
    """Epoch-wise execution of independent chains.

    The orchestrator is a composite object, taking a chain runner, a convergence checker and run
    settings. Its `run` method produces one raw chain per initial state by repeating the following
    steps:
    1. Advance all chains by one epoch, on the worker pool or sequentially.
    2. Wait for all chains to complete the epoch (barrier).
    3. Check convergence on the histories collected so far.
    4. Stop on convergence or when the maximum number of steps is reached.

    Chains never interact, apart from sharing the convergence decision. Each chain owns a random
    number generator spawned from the master seed, so that results do not depend on whether chains
    are executed sequentially or in parallel.

    Methods:
        run: Run all chains until convergence or the maximum number of steps
        epoch_lengths: Lengths of the epochs of a run without early stopping
    """

    def __init__(
        self,
        chain_runner: ChainRunner,
        convergence_checker: convergence.BaseConvergenceChecker,
        run_settings: RunSettings,
        logger: logging.SamplerLogger,
    ) -> None:
        """Constructor of the orchestrator.

        Args:
            chain_runner (ChainRunner): Runner for single chains, holding the log-likelihood
            convergence_checker (convergence.BaseConvergenceChecker): Checker for automatic stopping
            run_settings (RunSettings): Settings of the run
            logger (logging.SamplerLogger): Logger for run and debug statistics
        """
        run_settings.validate()
        self._chain_runner = chain_runner
        self._convergence_checker = convergence_checker
        self._settings = run_settings
        self._logger = logger
        self._run_statistics, self._debug_statistics = self._init_statistics()

        self._start_time = None
        self._stopped_early = False
        self._last_verdict = None

    # ----------------------------------------------------------------------------------------------
    @property
    def stopped_early(self) -> bool:
        """If the last run has been stopped by a positive convergence verdict before `nsteps`."""
        return self._stopped_early

    # ----------------------------------------------------------------------------------------------
    @property
    def last_verdict(self) -> convergence.ConvergenceVerdict | None:
        return self._last_verdict

    # ----------------------------------------------------------------------------------------------
    def epoch_lengths(self) -> list[int]:
        """Lengths of the epochs of a run without early stopping.

        The last epoch is clamped to the remaining number of steps, if the autostop interval does
        not divide the total number of steps.

        Returns:
            list[int]: Epoch lengths, summing up to `nsteps`
        """
        nsteps = self._settings.nsteps
        interval = self._settings.autostop_interval
        if interval == 0:
            return [nsteps]
        num_full_epochs, remainder = divmod(nsteps, interval)
        lengths = [interval] * num_full_epochs
        if remainder > 0:
            lengths.append(remainder)
        return lengths

    # ----------------------------------------------------------------------------------------------
    def run(
        self,
        initial_states: np.ndarray,
        kernel: mcmc.BaseKernel,
        worker_pool: object = None,
    ) -> list[Chain]:
        """Run all chains until convergence or until the maximum number of steps is reached.

        Args:
            initial_states (np.ndarray): Initial states of shape `(nchains, num_parameters)`
            kernel (mcmc.BaseKernel): Kernel template, copied for every chain
            worker_pool (object, optional): External worker pool. Defaults to None.

        Raises:
            ConfigurationError: If the number of initial states does not match `nchains`
            EvaluationError: If the log-likelihood is undefined for any chain

        Returns:
            list[Chain]: Raw chains, ordered by chain index
        """
        initial_states = np.atleast_2d(initial_states)
        if initial_states.shape[0] != self._settings.nchains:
            raise ConfigurationError(
                f"Got {initial_states.shape[0]} initial states for {self._settings.nchains} chains."
            )
        self._start_time = time.time()
        self._stopped_early = False
        self._last_verdict = None

        rngs = utils.distribute_rng_seeds_to_chains(self._settings.seed, self._settings.nchains)
        chains = [
            Chain(self._chain_runner.initialize_chain(i, initial_state, kernel, rng))
            for i, (initial_state, rng) in enumerate(zip(initial_states, rngs))
        ]

        with jobhandling.acquire_worker_pool(
            self._settings.multicore,
            self._settings.nchains,
            worker_pool,
            self._settings.num_workers,
        ) as pool:
            dispatcher = jobhandling.EpochDispatcher(self._chain_runner.run_epoch_task, pool)
            self._logger.info(
                f"Running {self._settings.nchains} chain(s) "
                f"{'in parallel' if dispatcher.is_parallel else 'sequentially'}, "
                f"up to {self._settings.nsteps} steps each."
            )
            self._logger.log_header(self._run_statistics)

            for epoch, epoch_length in enumerate(self.epoch_lengths()):
                self._run_epoch(dispatcher, chains, epoch, epoch_length)
                if self._settings.autostop_interval > 0:
                    self._last_verdict = self._check_convergence(chains)
                self._log_run_statistics(epoch, chains)

                steps_done = chains[0].num_steps
                if self._last_verdict is not None and self._last_verdict.converged:
                    self._stopped_early = steps_done < self._settings.nsteps
                    self._logger.info(f"Convergence has been reached with {steps_done} steps.")
                    break

        if self._settings.autostop_interval > 0 and not self._last_verdict.converged:
            self._logger.info(f"No convergence reached within {self._settings.nsteps} steps.")
        return chains

    # ----------------------------------------------------------------------------------------------
    def _run_epoch(
        self,
        dispatcher: jobhandling.EpochDispatcher,
        chains: list[Chain],
        epoch: int,
        epoch_length: int,
    ) -> None:
        """Advance all chains by one epoch and store the returned segments.

        Args:
            dispatcher (jobhandling.EpochDispatcher): Sequential or parallel dispatcher
            chains (list[Chain]): Chains to advance, updated in place
            epoch (int): Number of the epoch
            epoch_length (int): Number of steps in the epoch
        """
        self._logger.log_debug_new_epoch(epoch)
        results = dispatcher.dispatch([chain.chain_state for chain in chains], epoch_length)
        for chain, (chain_state, segment) in zip(chains, results):
            chain.append_segment(chain_state, segment)
            self._log_debug_statistics("epoch done", chain)

    # ----------------------------------------------------------------------------------------------
    def _check_convergence(self, chains: list[Chain]) -> convergence.ConvergenceVerdict:
        histories = [chain.trace for chain in chains]
        verdict = self._convergence_checker.evaluate(histories)
        if not isinstance(verdict, convergence.ConvergenceVerdict):
            verdict = convergence.ConvergenceVerdict(bool(verdict))
        return verdict

    # ----------------------------------------------------------------------------------------------
    def _init_statistics(
        self,
    ) -> tuple[dict[str, logging.Statistic], dict[str, logging.Statistic]]:
        """Initialize statistics dictionaries.

        Run statistics are logged as one table row per epoch, debug statistics contain the state of
        every chain at the end of an epoch and are written to a separate file.

        Returns:
            tuple[dict[str, logging.Statistic], dict[str, logging.Statistic]]:
                Run and debug statistics
        """
        run_statistics = {}
        run_statistics["time"] = logging.Statistic(f"{'Time[s]':<12}", "<12.3e")
        run_statistics["epoch"] = logging.Statistic(f"{'Epoch':<8}", "<8d")
        run_statistics["num_steps"] = logging.Statistic(f"{'#Steps':<12}", "<12d")
        run_statistics["accept_rate"] = logging.Statistic(f"{'Mean AR':<12}", "<12.3e")
        run_statistics["diagnostic"] = logging.Statistic(f"{'Max |Diag|':<12}", "<12.3e")
        run_statistics["converged"] = logging.Statistic(f"{'Converged':<10}", "<10d")

        debug_statistics = {}
        debug_statistics["chain"] = logging.Statistic(f"{'chain':<6}", "<3d")
        debug_statistics["iteration"] = logging.Statistic(f"{'iteration':<10}", "<8d")
        debug_statistics["state"] = logging.Statistic(f"{'state':<6}", "<12.3e")
        debug_statistics["logp"] = logging.Statistic(f"{'logp':<5}", "<12.3e")
        debug_statistics["accept_rate"] = logging.Statistic(f"{'AR':<3}", "<5.3f")

        return run_statistics, debug_statistics

    # ----------------------------------------------------------------------------------------------
    def _log_run_statistics(self, epoch: int, chains: list[Chain]) -> None:
        """Update run statistics after an epoch and print them to the run log table.

        Args:
            epoch (int): Number of the completed epoch
            chains (list[Chain]): Chains after the epoch
        """
        verdict = self._last_verdict
        diagnostic = None
        if verdict is not None and verdict.diagnostic is not None:
            diagnostic_values = np.abs(np.asarray(verdict.diagnostic, dtype=float))
            if np.any(np.isfinite(diagnostic_values)):
                diagnostic = float(np.nanmax(diagnostic_values))

        self._run_statistics["time"].set_value(time.time() - self._start_time)
        self._run_statistics["epoch"].set_value(epoch)
        self._run_statistics["num_steps"].set_value(chains[0].num_steps)
        self._run_statistics["accept_rate"].set_value(
            float(np.mean([chain.chain_state.acceptance_rate for chain in chains]))
        )
        self._run_statistics["diagnostic"].set_value(diagnostic)
        self._run_statistics["converged"].set_value(
            int(verdict is not None and verdict.converged)
        )
        self._logger.log_run_statistics(self._run_statistics)

    # ----------------------------------------------------------------------------------------------
    def _log_debug_statistics(self, info: str, chain: Chain) -> None:
        """Print out debug statistics of a chain to separate file.

        Args:
            info (str): String name for event to be logged
            chain (Chain): Chain to log debug info for
        """
        chain_state = chain.chain_state
        self._debug_statistics["chain"].set_value(chain_state.index)
        self._debug_statistics["iteration"].set_value(chain_state.iteration)
        self._debug_statistics["state"].set_value(chain_state.state)
        self._debug_statistics["logp"].set_value(chain_state.loglik)
        self._debug_statistics["accept_rate"].set_value(chain_state.acceptance_rate)
        self._logger.log_debug_statistics(info, self._debug_statistics)
