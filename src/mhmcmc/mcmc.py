"""Transition kernels for Metropolis-Hastings sampling.

This module contains the proposal side of the Metropolis-Hastings algorithm. A kernel generates
candidate states from the current state of a chain and computes the log Hastings ratio used in the
accept-reject step. Kernels are implemented in a class hierarchy, new options can be implemented by
inheriting from the `BaseKernel` interface. All randomness of a kernel is drawn from the generator
of the chain it serves, handed over in the `ChainContext`.

Classes:
    ChainContext: Information about the chain a kernel operates on
    BaseKernel: Base class for MCMC transition kernels
    NormalKernel: Gaussian random walk kernel
    ReflectiveKernel: Gaussian random walk kernel with reflecting boundaries
    AdaptiveKernel: Adaptive Metropolis kernel with reflecting boundaries

Functions:
    reflect_into_bounds: Fold states into a box by reflection at its faces
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from numbers import Real

import numpy as np

from .errors import ConfigurationError


# ==================================================================================================
@dataclass
class ChainContext:
    """Information about the chain a kernel is called for.

    Attributes:
        chain_index (int): Index of the chain in the run
        iteration (int): Number of completed iterations of the chain
        rng (np.random.Generator): Random number generator owned by the chain
    """

    chain_index: int
    iteration: int
    rng: np.random.Generator


# ==================================================================================================
def reflect_into_bounds(state: np.ndarray, lb: np.ndarray, ub: np.ndarray) -> np.ndarray:
    r"""Fold a state into the box :math:`[lb, ub]` by reflection at its faces.

    For components with two finite bounds, the reflection is repeated until the component lies
    inside the interval, which is done in closed form by folding modulo twice the interval width.
    Components with a single finite bound are reflected once at that bound.

    Args:
        state (np.ndarray): State to reflect
        lb (np.ndarray): Component-wise lower bounds, may be -inf
        ub (np.ndarray): Component-wise upper bounds, may be inf

    Returns:
        np.ndarray: Reflected state, component-wise within the bounds
    """
    reflected = np.array(state, dtype=float)
    lower_finite = np.isfinite(lb)
    upper_finite = np.isfinite(ub)

    both = lower_finite & upper_finite
    if np.any(both):
        width = ub[both] - lb[both]
        folded = np.mod(reflected[both] - lb[both], 2 * width)
        folded = np.where(folded > width, 2 * width - folded, folded)
        # Clipping only removes floating point round-off of lb + width
        reflected[both] = np.clip(lb[both] + folded, lb[both], ub[both])

    only_lower = lower_finite & ~upper_finite
    below = only_lower & (reflected < lb)
    reflected[below] = 2 * lb[below] - reflected[below]

    only_upper = upper_finite & ~lower_finite
    above = only_upper & (reflected > ub)
    reflected[above] = 2 * ub[above] - reflected[above]

    return reflected


# ==================================================================================================
class BaseKernel(ABC):
    """Base class for MCMC transition kernels.

    This class defines the interface every kernel has to follow. It is an abstract class and cannot
    be instantiated. Subclasses implement `propose`. The acceptance value is the full log Hastings
    ratio, composed of the log-likelihood difference and the log ratio of the proposal densities.
    For symmetric kernels the latter vanishes, which is the default of `log_proposal_ratio`.
    Asymmetric kernels override that method.

    Kernels are deep-copied once per chain before a run, so that stateful kernels never share state
    between chains. State updates may only depend on the history of the chain itself, fed through
    the `update` hook.

    Methods:
        propose: Propose a candidate state from the current state
        log_acceptance_correction: Log Hastings ratio for a candidate
        log_proposal_ratio: Log ratio of backward and forward proposal densities
        update: Hook for adaptive kernels, called once per iteration
        validate: Check kernel configuration against the initial states of a run
    """

    # ----------------------------------------------------------------------------------------------
    @abstractmethod
    def propose(self, current_state: np.ndarray, context: ChainContext) -> np.ndarray:
        """Abstract method for proposal generation.

        Args:
            current_state (np.ndarray): Current state of the Markov chain
            context (ChainContext): Chain information, including the random number generator

        Returns:
            np.ndarray: Candidate state
        """
        raise NotImplementedError

    # ----------------------------------------------------------------------------------------------
    def log_acceptance_correction(
        self,
        current_state: np.ndarray,
        candidate_state: np.ndarray,
        current_loglik: float,
        candidate_loglik: float,
        context: ChainContext,
    ) -> float:
        r"""Compute the log Hastings ratio of a candidate.

        .. math::
            \log\frac{\pi(x')}{\pi(x)} + \log\frac{q(x|x')}{q(x'|x)}

        A candidate with log-likelihood -inf always yields -inf and is therefore always rejected.

        Args:
            current_state (np.ndarray): Current state
            candidate_state (np.ndarray): Candidate state
            current_loglik (float): Log-likelihood of the current state
            candidate_loglik (float): Log-likelihood of the candidate
            context (ChainContext): Chain information

        Returns:
            float: Log acceptance value
        """
        if candidate_loglik == -np.inf:
            return -np.inf
        proposal_ratio = self.log_proposal_ratio(current_state, candidate_state, context)
        return candidate_loglik - current_loglik + proposal_ratio

    # ----------------------------------------------------------------------------------------------
    def log_proposal_ratio(
        self, current_state: np.ndarray, candidate_state: np.ndarray, context: ChainContext
    ) -> float:
        """Log ratio of backward and forward proposal densities, zero for symmetric kernels."""
        return 0.0

    # ----------------------------------------------------------------------------------------------
    def update(self, state: np.ndarray, context: ChainContext) -> None:
        """Update kernel state with the recorded state of an iteration, no-op by default."""

    # ----------------------------------------------------------------------------------------------
    def validate(self, initial_states: np.ndarray) -> None:
        """Check the kernel configuration against the initial states of a run.

        Args:
            initial_states (np.ndarray): Initial states, one row per chain

        Raises:
            ConfigurationError: If the configuration does not fit the initial states
        """


# ==================================================================================================
class NormalKernel(BaseKernel):
    r"""Gaussian random walk kernel.

    Given the current state :math:`x`, candidates are drawn from
    :math:`\mathcal{N}(x, \mathrm{diag}(s^2))`, with `scale` :math:`s` either a scalar or one value
    per parameter. Parameters marked in `fixed` are never changed. The proposal distribution is
    symmetric, so that it does not contribute to the Hastings ratio.
    """

    def __init__(
        self, scale: float | Sequence[float] = 1.0, fixed: Sequence[bool] | None = None
    ) -> None:
        """Kernel constructor.

        Args:
            scale (float | Sequence[float], optional): Standard deviation of the random walk
                increments, scalar or per parameter. Defaults to 1.0.
            fixed (Sequence[bool] | None, optional): Mask of parameters that are kept constant.
                Defaults to None.

        Raises:
            ConfigurationError: Checks that scales are positive real numbers
        """
        self._scale = self._check_positive_vector(scale, "scale")
        self._fixed = None if fixed is None else np.asarray(fixed, dtype=bool).ravel()

    # ----------------------------------------------------------------------------------------------
    def propose(self, current_state: np.ndarray, context: ChainContext) -> np.ndarray:
        """Propose a new state by adding a Gaussian increment to the current one.

        Args:
            current_state (np.ndarray): Current state of the Markov chain
            context (ChainContext): Chain information, including the random number generator

        Returns:
            np.ndarray: Candidate state
        """
        increment = self._scale * context.rng.normal(size=current_state.size)
        return self._apply_fixed(current_state, current_state + increment)

    # ----------------------------------------------------------------------------------------------
    def validate(self, initial_states: np.ndarray) -> None:
        num_parameters = initial_states.shape[1]
        self._check_length(self._scale, num_parameters, "scale")
        if self._fixed is not None:
            self._check_length(self._fixed, num_parameters, "fixed")
            if np.all(self._fixed):
                raise ConfigurationError("All parameters are fixed, the chain cannot move.")

    # ----------------------------------------------------------------------------------------------
    def _apply_fixed(self, current_state: np.ndarray, candidate: np.ndarray) -> np.ndarray:
        if self._fixed is not None:
            candidate = np.where(self._fixed, current_state, candidate)
        return candidate

    # ----------------------------------------------------------------------------------------------
    @staticmethod
    def _check_positive_vector(value: float | Sequence[float], name: str) -> np.ndarray:
        vector = np.atleast_1d(np.asarray(value, dtype=float))
        if vector.ndim != 1 or vector.size == 0:
            raise ConfigurationError(f"-{name}- must be a scalar or a vector, got {value!r}")
        if not np.all(np.isfinite(vector)) or np.any(vector <= 0):
            raise ConfigurationError(f"-{name}- must be positive and finite, got {value!r}")
        return vector

    # ----------------------------------------------------------------------------------------------
    @staticmethod
    def _check_length(vector: np.ndarray, num_parameters: int, name: str) -> None:
        if vector.size not in (1, num_parameters):
            raise ConfigurationError(
                f"-{name}- has length {vector.size}, but the parameter vector has length "
                f"{num_parameters}."
            )


# ==================================================================================================
class ReflectiveKernel(NormalKernel):
    """Gaussian random walk kernel with reflecting boundaries.

    Candidates are drawn like in the `NormalKernel` and subsequently folded into the box
    `[lb, ub]` via `reflect_into_bounds`. Reflection maps the Gaussian increment density onto a sum
    of mirrored Gaussians, which is still symmetric in its arguments. The Hastings ratio therefore
    has no proposal contribution, and every candidate is guaranteed to lie within the bounds.
    """

    def __init__(
        self,
        scale: float | Sequence[float] = 1.0,
        lb: float | Sequence[float] = -np.inf,
        ub: float | Sequence[float] = np.inf,
        fixed: Sequence[bool] | None = None,
    ) -> None:
        """Kernel constructor.

        Args:
            scale (float | Sequence[float], optional): Random walk standard deviation.
                Defaults to 1.0.
            lb (float | Sequence[float], optional): Lower bounds. Defaults to -inf.
            ub (float | Sequence[float], optional): Upper bounds. Defaults to inf.
            fixed (Sequence[bool] | None, optional): Mask of constant parameters. Defaults to None.

        Raises:
            ConfigurationError: Checks that lower bounds are strictly smaller than upper bounds
        """
        super().__init__(scale, fixed)
        self._lb = np.atleast_1d(np.asarray(lb, dtype=float))
        self._ub = np.atleast_1d(np.asarray(ub, dtype=float))
        if np.isnan(self._lb).any() or np.isnan(self._ub).any():
            raise ConfigurationError("Bounds must not be NaN.")
        if self._lb.size > 1 and self._ub.size > 1 and self._lb.size != self._ub.size:
            raise ConfigurationError(
                f"-lb- and -ub- have different lengths ({self._lb.size} and {self._ub.size})."
            )
        if np.any(self._lb >= self._ub):
            raise ConfigurationError(f"-lb- ({lb}) must be strictly smaller than -ub- ({ub}).")

    # ----------------------------------------------------------------------------------------------
    @property
    def bounds(self) -> tuple[np.ndarray, np.ndarray]:
        return self._lb, self._ub

    # ----------------------------------------------------------------------------------------------
    def propose(self, current_state: np.ndarray, context: ChainContext) -> np.ndarray:
        """Propose a Gaussian random walk step, reflected into the bounds."""
        candidate = super().propose(current_state, context)
        return self._reflect(candidate)

    # ----------------------------------------------------------------------------------------------
    def validate(self, initial_states: np.ndarray) -> None:
        """Check vector lengths and that all initial states lie within the bounds.

        Args:
            initial_states (np.ndarray): Initial states, one row per chain

        Raises:
            ConfigurationError: If vector lengths mismatch or an initial state is out of bounds
        """
        super().validate(initial_states)
        num_parameters = initial_states.shape[1]
        self._check_length(self._lb, num_parameters, "lb")
        self._check_length(self._ub, num_parameters, "ub")
        lb, ub = self._broadcast_bounds(num_parameters)
        outside = (initial_states < lb) | (initial_states > ub)
        if np.any(outside):
            chain, parameter = np.argwhere(outside)[0]
            raise ConfigurationError(
                f"Initial value {initial_states[chain, parameter]} of parameter {parameter} in "
                f"chain {chain} is outside of the kernel bounds "
                f"[{lb[parameter]}, {ub[parameter]}]."
            )

    # ----------------------------------------------------------------------------------------------
    def _broadcast_bounds(self, num_parameters: int) -> tuple[np.ndarray, np.ndarray]:
        lb = np.broadcast_to(self._lb, (num_parameters,))
        ub = np.broadcast_to(self._ub, (num_parameters,))
        return lb, ub

    # ----------------------------------------------------------------------------------------------
    def _reflect(self, candidate: np.ndarray) -> np.ndarray:
        lb, ub = self._broadcast_bounds(candidate.size)
        return reflect_into_bounds(candidate, lb, ub)


# ==================================================================================================
class AdaptiveKernel(ReflectiveKernel):
    r"""Adaptive Metropolis kernel (Haario et al., 2001).

    During the first `warmup` iterations, the kernel behaves like a `ReflectiveKernel` with the
    provided scale. Afterwards, candidates are drawn from :math:`\mathcal{N}(x, C)`, where

    .. math::
        C = \frac{2.38^2}{d} \left(\hat{\Sigma} + \epsilon I\right)

    and :math:`\hat{\Sigma}` is the empirical covariance of all recorded states of the chain. The
    empirical moments are updated with Welford's algorithm in `update`, the covariance factor is
    refreshed every `freq` iterations. The kernel state depends on the history of its own chain
    only, each chain operates on its own copy of the kernel.
    """

    def __init__(
        self,
        scale: float | Sequence[float] = 0.1,
        warmup: int = 500,
        freq: int = 1,
        eps: float = 1e-4,
        lb: float | Sequence[float] = -np.inf,
        ub: float | Sequence[float] = np.inf,
        fixed: Sequence[bool] | None = None,
    ) -> None:
        """Kernel constructor.

        Args:
            scale (float | Sequence[float], optional): Random walk standard deviation during
                warmup. Defaults to 0.1.
            warmup (int, optional): Number of iterations before adaptation starts. Defaults to 500.
            freq (int, optional): Interval of covariance updates after warmup. Defaults to 1.
            eps (float, optional): Regularization of the empirical covariance. Defaults to 1e-4.
            lb (float | Sequence[float], optional): Lower bounds. Defaults to -inf.
            ub (float | Sequence[float], optional): Upper bounds. Defaults to inf.
            fixed (Sequence[bool] | None, optional): Mask of constant parameters. Defaults to None.

        Raises:
            ConfigurationError: Checks that warmup and freq are positive integers, eps positive
        """
        super().__init__(scale, lb, ub, fixed)
        if not isinstance(warmup, int) or isinstance(warmup, bool) or warmup < 1:
            raise ConfigurationError(f"-warmup- must be a positive integer, got {warmup!r}")
        if not isinstance(freq, int) or isinstance(freq, bool) or freq < 1:
            raise ConfigurationError(f"-freq- must be a positive integer, got {freq!r}")
        if not isinstance(eps, Real) or eps <= 0:
            raise ConfigurationError(f"-eps- must be a positive number, got {eps!r}")
        self._warmup = warmup
        self._freq = freq
        self._eps = float(eps)

        self._num_observations = 0
        self._mean = None
        self._sum_squares = None
        self._cholesky = None

    # ----------------------------------------------------------------------------------------------
    def propose(self, current_state: np.ndarray, context: ChainContext) -> np.ndarray:
        """Propose from the adapted covariance after warmup, else like the reflective kernel.

        Args:
            current_state (np.ndarray): Current state of the Markov chain
            context (ChainContext): Chain information, including the random number generator

        Returns:
            np.ndarray: Candidate state, within the bounds
        """
        if self._cholesky is None:
            return super().propose(current_state, context)

        standard_normal_increment = context.rng.normal(size=current_state.size)
        candidate = current_state + self._cholesky @ standard_normal_increment
        candidate = self._apply_fixed(current_state, candidate)
        return self._reflect(candidate)

    # ----------------------------------------------------------------------------------------------
    def update(self, state: np.ndarray, context: ChainContext) -> None:
        """Add a recorded state to the empirical moments and refresh the covariance if due."""
        self._num_observations += 1
        if self._mean is None:
            self._mean = np.zeros(state.size)
            self._sum_squares = np.zeros((state.size, state.size))
        delta = state - self._mean
        self._mean = self._mean + delta / self._num_observations
        self._sum_squares = self._sum_squares + np.outer(delta, state - self._mean)

        past_warmup = self._num_observations >= self._warmup
        if past_warmup and (self._num_observations - self._warmup) % self._freq == 0:
            self._cholesky = self._compute_cholesky_factor()

    # ----------------------------------------------------------------------------------------------
    def _compute_cholesky_factor(self) -> np.ndarray:
        num_parameters = self._mean.size
        covariance = self._sum_squares / max(self._num_observations - 1, 1)
        if self._fixed is not None:
            # Constant components would only contribute the regularization
            covariance[self._fixed, :] = 0
            covariance[:, self._fixed] = 0
        covariance = covariance + self._eps * np.identity(num_parameters)
        covariance = (2.38**2 / num_parameters) * covariance
        return np.linalg.cholesky(covariance)
