"""Collection of utility functions for sampler runs.

These functions are not part of the sampling algorithm itself. They are concerned with the
distribution of random number streams to independent chains, the naming of parameters, and the
detection of the available parallelism.

Functions:
    distribute_rng_seeds_to_chains: Spawn independent random generators from a master seed
    default_parameter_names: Generate parameter names for unnamed initial states
    available_parallelism: Number of workers a pool for a multi-chain run should have
    format_name_list: Format names as bullet list for error messages
"""

import os
from collections.abc import Sequence

import numpy as np


# ==================================================================================================
def distribute_rng_seeds_to_chains(seed: int | None, num_chains: int) -> list[np.random.Generator]:
    """Spawn one independent random number generator per chain from a single master seed.

    The generators are derived with numpy's `SeedSequence.spawn`, so that the streams are
    statistically independent and reproducible given the master seed. Chain `i` always receives the
    same stream, independent of how chains are later distributed to workers.

    Args:
        seed (int | None): Master seed, `None` draws fresh entropy from the OS
        num_chains (int): Number of chains to generate streams for

    Returns:
        list[np.random.Generator]: One generator per chain
    """
    assert num_chains >= 1, "Number of chains must be positive"
    seed_sequence = np.random.SeedSequence(seed)
    child_sequences = seed_sequence.spawn(int(num_chains))
    return [np.random.default_rng(child) for child in child_sequences]


# --------------------------------------------------------------------------------------------------
def default_parameter_names(num_parameters: int) -> tuple[str, ...]:
    """Names `par1, ..., parD` for initial states without explicit names."""
    return tuple(f"par{i + 1}" for i in range(num_parameters))


# --------------------------------------------------------------------------------------------------
def available_parallelism(num_chains: int) -> int:
    """Number of workers for a multi-chain run.

    More workers than chains are never useful, as every chain is a single task within an epoch.

    Args:
        num_chains (int): Number of chains in the run

    Returns:
        int: Pool size, `min(num_chains, number of usable CPUs)`
    """
    if hasattr(os, "sched_getaffinity"):
        num_cpus = len(os.sched_getaffinity(0))
    else:
        num_cpus = os.cpu_count() or 1
    return max(1, min(num_chains, num_cpus))


# --------------------------------------------------------------------------------------------------
def format_name_list(names: Sequence[str]) -> str:
    """Format names as bullet list for error messages."""
    return "\n - " + "\n - ".join(str(name) for name in names)
