"""Single-chain Metropolis-Hastings sampling.

This module implements the inner loop of the sampler. A `ChainRunner` advances one Markov chain by
a given number of Metropolis-Hastings steps. Everything a chain needs to be resumed, its current
state and log-likelihood, its iteration counter, its random number generator and its own copy of
the kernel, is bundled in a `ChainState`. That object is what is sent to a worker for an epoch and
what comes back, together with the segment of recorded states. The orchestrator keeps the full
history of every chain in a `Chain` object.

Classes:
    ChainState: Transferable state of a single Markov chain
    Chain: Chain state together with its recorded trace
    ChainRunner: Metropolis-Hastings loop for a single chain
"""

import copy
from dataclasses import dataclass, field

import numpy as np

from . import mcmc
from .evaluator import LogLikelihood


# ==================================================================================================
@dataclass
class ChainState:
    """Transferable state of a single Markov chain.

    Attributes:
        index (int): Index of the chain in the run
        state (np.ndarray): Current parameter vector
        loglik (float): Log-likelihood of the current state
        rng (np.random.Generator): Random number generator owned by the chain
        kernel (mcmc.BaseKernel): Kernel owned by the chain
        iteration (int): Number of completed iterations, default is 0
        num_accepted (int): Number of accepted proposals, default is 0
    """

    index: int
    state: np.ndarray
    loglik: float
    rng: np.random.Generator
    kernel: mcmc.BaseKernel
    iteration: int = 0
    num_accepted: int = 0

    @property
    def acceptance_rate(self) -> float:
        if self.iteration == 0:
            return 0.0
        return self.num_accepted / self.iteration


# ==================================================================================================
@dataclass
class Chain:
    """Chain state together with its recorded trace.

    The trace is stored as list of epoch segments and concatenated on demand.

    Attributes:
        chain_state (ChainState): Current transferable state
        segments (list[np.ndarray]): Recorded states, one `(num_steps, num_parameters)` array per
            epoch
    """

    chain_state: ChainState
    segments: list[np.ndarray] = field(default_factory=list)

    @property
    def num_steps(self) -> int:
        return self.chain_state.iteration

    @property
    def trace(self) -> np.ndarray:
        """Full recorded trace of shape `(num_steps, num_parameters)`."""
        if not self.segments:
            return np.empty((0, self.chain_state.state.size))
        return np.concatenate(self.segments, axis=0)

    def append_segment(self, chain_state: ChainState, segment: np.ndarray) -> None:
        """Take over the chain state returned from an epoch and store its segment."""
        assert chain_state.index == self.chain_state.index, "Chain index mismatch"
        self.chain_state = chain_state
        self.segments.append(segment)


# ==================================================================================================
class ChainRunner:
    """Metropolis-Hastings loop for a single chain.

    The runner holds the log-likelihood (with bound extra arguments) and nothing else. It therefore
    carries no chain-specific state and can be shared by all chains of a run, or pickled and sent
    to worker processes. Every iteration consists of the following steps:
    1. Draw a candidate state from the kernel.
    2. Evaluate the log-likelihood of the candidate, undefined values abort the run.
    3. Accept the candidate if the log of a uniform draw is below the log Hastings ratio.
    4. Record the current state, rejected proposals are recorded as repeats of the prior state.

    Methods:
        initialize_chain: Set up the state of a new chain
        run_epoch: Advance a chain by a number of steps
        run_epoch_task: Single-argument version of `run_epoch` for worker pools
    """

    def __init__(self, loglik: LogLikelihood) -> None:
        """Constructor.

        Args:
            loglik (LogLikelihood): Log-likelihood with bound extra arguments
        """
        self._loglik = loglik

    # ----------------------------------------------------------------------------------------------
    def initialize_chain(
        self,
        index: int,
        initial_state: np.ndarray,
        kernel: mcmc.BaseKernel,
        rng: np.random.Generator,
    ) -> ChainState:
        """Set up the state of a new chain.

        The kernel is deep-copied, so that every chain operates on its own instance. The
        log-likelihood of the initial state is evaluated with the same checks as for proposals.

        Args:
            index (int): Index of the chain in the run
            initial_state (np.ndarray): Starting point of the chain
            kernel (mcmc.BaseKernel): Kernel template
            rng (np.random.Generator): Random number generator for the chain

        Raises:
            EvaluationError: If the log-likelihood of the initial state is undefined

        Returns:
            ChainState: State of the new chain, at iteration 0
        """
        state = np.array(initial_state, dtype=float)
        loglik = self._loglik.evaluate(state.copy())
        return ChainState(
            index=index,
            state=state,
            loglik=loglik,
            rng=rng,
            kernel=copy.deepcopy(kernel),
        )

    # ----------------------------------------------------------------------------------------------
    def run_epoch(self, chain_state: ChainState, num_steps: int) -> tuple[ChainState, np.ndarray]:
        """Advance a chain by a number of Metropolis-Hastings steps.

        The chain state is modified in place and returned. When executed in a worker process, the
        returned object is a copy of the state, which is why it has to be taken over by the caller.

        Args:
            chain_state (ChainState): State to resume the chain from
            num_steps (int): Number of steps to perform

        Raises:
            EvaluationError: If the log-likelihood of any candidate is undefined

        Returns:
            tuple[ChainState, np.ndarray]: Updated chain state and recorded states of shape
                `(num_steps, num_parameters)`
        """
        assert num_steps >= 0, "Number of steps must be non-negative"
        kernel = chain_state.kernel
        rng = chain_state.rng
        current_state = chain_state.state
        current_loglik = chain_state.loglik
        segment = np.empty((num_steps, current_state.size))

        for i in range(num_steps):
            context = mcmc.ChainContext(chain_state.index, chain_state.iteration + i, rng)

            # Step 1. Propose
            candidate_state = np.asarray(kernel.propose(current_state, context), dtype=float)
            assert candidate_state.shape == current_state.shape, "Kernel changed state dimension"
            candidate_loglik = self._loglik.evaluate(candidate_state.copy())

            # Step 2. Hastings ratio
            log_ratio = kernel.log_acceptance_correction(
                current_state, candidate_state, current_loglik, candidate_loglik, context
            )
            if np.log(rng.uniform()) < log_ratio:
                current_state = candidate_state
                current_loglik = candidate_loglik
                chain_state.num_accepted += 1

            # Storing
            kernel.update(current_state, context)
            segment[i] = current_state

        chain_state.state = current_state
        chain_state.loglik = current_loglik
        chain_state.iteration += num_steps
        return chain_state, segment

    # ----------------------------------------------------------------------------------------------
    def run_epoch_task(self, task: tuple[ChainState, int]) -> tuple[ChainState, np.ndarray]:
        """Single-argument version of `run_epoch`, for mapping over a worker pool."""
        chain_state, num_steps = task
        return self.run_epoch(chain_state, num_steps)
