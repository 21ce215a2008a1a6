"""Burn-in trimming and thinning of raw chain output.

The postprocessor turns the raw trace of a completed chain into a `SampleSet`. The first `burnin`
states are dropped, of the remaining states every `thin`-th one is kept. The retained states are
tagged with the iteration numbers of the first and last retained state, counted from one over the
raw trace, and the thinning factor.

Classes:
    SampleSet: Immutable per-chain samples after trimming and thinning
    PostProcessor: Burn-in trimming and thinning
"""

import warnings
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from ..errors import ConfigurationError, TrimmingWarning
from ..logging import SamplerLogger
from ..sampling import Chain


# ==================================================================================================
@dataclass(frozen=True)
class SampleSet:
    """Immutable samples of a single chain, after trimming and thinning.

    Attributes:
        samples (np.ndarray): Read-only array of shape `(num_samples, num_parameters)`
        names (tuple[str, ...]): Parameter names, in the order of the columns
        start (int): Iteration number of the first retained state, counted from one
        end (int): Iteration number of the last retained state
        thin (int): Thinning factor
        chain_index (int): Index of the chain in the run
        acceptance_rate (float): Fraction of accepted proposals over the raw chain
        num_steps (int): Length of the raw chain
    """

    samples: np.ndarray
    names: tuple[str, ...]
    start: int
    end: int
    thin: int
    chain_index: int = 0
    acceptance_rate: float = np.nan
    num_steps: int = 0

    def __post_init__(self) -> None:
        samples = np.array(self.samples, dtype=float)
        samples.setflags(write=False)
        object.__setattr__(self, "samples", samples)
        object.__setattr__(self, "names", tuple(self.names))
        assert samples.ndim == 2, "Samples need to be a 2D array"
        assert samples.shape[1] == len(self.names), "Number of names and parameters mismatch"

    def __len__(self) -> int:
        return self.samples.shape[0]

    def as_dict(self) -> dict[str, np.ndarray]:
        """Samples per parameter name."""
        return {name: self.samples[:, i] for i, name in enumerate(self.names)}

    def mean(self) -> np.ndarray:
        """Sample mean per parameter."""
        return np.mean(self.samples, axis=0)


# ==================================================================================================
class PostProcessor:
    """Burn-in trimming and thinning.

    Given a raw trace of length L, burn-in b and thinning t, the resulting sample set has
    `floor((L - b) / t)` entries. The configuration is validated against the intended chain length
    before sampling starts, so that invalid settings never waste a costly run.

    Methods:
        validate: Check burn-in and thinning against a chain length
        effective_settings: Burn-in and thinning adapted to an early-stopped chain
        process: Trim and thin a chain, producing a SampleSet
        trim: Trim and thin a raw trace array
    """

    def __init__(self, burnin: int, thin: int, logger: SamplerLogger | None = None) -> None:
        """Constructor.

        Args:
            burnin (int): Number of initial states to discard
            thin (int): Thinning factor
            logger (SamplerLogger | None, optional): Logger to report adjustments to.
                Defaults to None.
        """
        self._burnin = burnin
        self._thin = thin
        self._logger = logger

    # ----------------------------------------------------------------------------------------------
    def validate(self, num_steps: int) -> None:
        """Check burn-in and thinning against a chain length.

        Args:
            num_steps (int): Length of the raw chain

        Raises:
            ConfigurationError: If `burnin >= num_steps`, `thin < 1` or `thin >= num_steps`
        """
        if self._burnin < 0:
            raise ConfigurationError(f"-burnin- ({self._burnin}) cannot be negative.")
        if self._burnin >= num_steps:
            raise ConfigurationError(
                f"-burnin- ({self._burnin}) cannot be >= than -nsteps- ({num_steps})."
            )
        if self._thin < 1:
            raise ConfigurationError(f"-thin- ({self._thin}) should be >= 1.")
        if self._thin >= num_steps:
            raise ConfigurationError(
                f"-thin- ({self._thin}) cannot be >= than -nsteps- ({num_steps})."
            )

    # ----------------------------------------------------------------------------------------------
    def effective_settings(self, num_steps: int) -> tuple[int, int]:
        """Burn-in and thinning for a chain that has been stopped early.

        A run stopped by convergence may be shorter than the burn-in. In that case the burn-in is
        reduced to half of the chain. If the thinning then leaves no sample, it is reduced to one.
        Every adjustment is reported with a `TrimmingWarning`.

        Args:
            num_steps (int): Length of the raw chain

        Returns:
            tuple[int, int]: Burn-in and thinning to apply
        """
        burnin, thin = self._burnin, self._thin
        if burnin >= num_steps:
            burnin = num_steps // 2
            self._warn(
                f"The chain stopped after {num_steps} steps, before the end of the burn-in "
                f"({self._burnin}). Using a burn-in of {burnin} instead."
            )
        if thin > num_steps - burnin:
            self._warn(
                f"The thinning factor ({thin}) exceeds the {num_steps - burnin} states after "
                "burn-in. Using a thinning factor of 1 instead."
            )
            thin = 1
        return burnin, thin

    # ----------------------------------------------------------------------------------------------
    def _warn(self, message: str) -> None:
        warnings.warn(message, TrimmingWarning, stacklevel=4)
        if self._logger is not None:
            self._logger.warning(message)

    # ----------------------------------------------------------------------------------------------
    def trim(self, trace: np.ndarray, burnin: int | None = None, thin: int | None = None):
        """Trim and thin a raw trace array.

        Args:
            trace (np.ndarray): Raw trace of shape `(num_steps, num_parameters)`
            burnin (int | None, optional): Burn-in override. Defaults to None.
            thin (int | None, optional): Thinning override. Defaults to None.

        Returns:
            tuple[np.ndarray, np.ndarray]: Retained states and their iteration numbers
        """
        burnin = self._burnin if burnin is None else burnin
        thin = self._thin if thin is None else thin
        iterations = np.arange(1, trace.shape[0] + 1)
        # Positions are counted from one over the states after burn-in
        keep = np.flatnonzero((iterations[burnin:] - burnin) % thin == 0) + burnin
        return trace[keep], iterations[keep]

    # ----------------------------------------------------------------------------------------------
    def process(
        self, chain: Chain, names: Sequence[str], stopped_early: bool = False
    ) -> SampleSet:
        """Trim and thin a completed chain.

        Args:
            chain (Chain): Completed chain
            names (Sequence[str]): Parameter names
            stopped_early (bool, optional): If the chain has been stopped by a convergence check, in
                which case burn-in and thinning may be reduced. Defaults to False.

        Raises:
            ConfigurationError: If burn-in or thinning do not fit the chain length

        Returns:
            SampleSet: Retained samples
        """
        trace = chain.trace
        num_steps = trace.shape[0]
        if stopped_early:
            burnin, thin = self.effective_settings(num_steps)
        else:
            self.validate(num_steps)
            burnin, thin = self._burnin, self._thin

        samples, iterations = self.trim(trace, burnin, thin)
        start = int(iterations[0]) if iterations.size > 0 else burnin + thin
        end = int(iterations[-1]) if iterations.size > 0 else burnin
        return SampleSet(
            samples=samples,
            names=tuple(names),
            start=start,
            end=end,
            thin=thin,
            chain_index=chain.chain_state.index,
            acceptance_rate=chain.chain_state.acceptance_rate,
            num_steps=num_steps,
        )
