"""Sequential and pool-parallel execution of chain epochs.

This module provides the interface for dispatching one epoch of every chain in a multi-chain run,
either in-process one chain after another, or on a worker pool with one task per chain. The
dispatch call returns only after all chains have finished the epoch, which forms the
synchronization barrier at which convergence is checked.

A pool is acquired once for the whole run through `acquire_worker_pool`. Pools created here are
multiprocessing pools and are terminated on every exit path, including errors. Pools provided by
the caller are used as they are and stay open.

Functions:
    acquire_worker_pool: Scoped acquisition of the worker pool for a run

Classes:
    EpochDispatcher: Run one epoch of all chains, sequentially or on a pool
"""

import concurrent.futures as concurrent
import contextlib
import multiprocessing
from collections.abc import Callable, Iterator, Sequence
from typing import Any

import numpy as np

from . import utilities as utils
from .errors import EvaluationError
from .sampling import ChainState


# ==================================================================================================
@contextlib.contextmanager
def acquire_worker_pool(
    multicore: bool, num_chains: int, worker_pool: Any = None, num_workers: int | None = None
) -> Iterator[Any]:
    """Acquire the worker pool for a multi-chain run.

    Resolution order:
    1. An external pool provided by the caller is yielded and left open afterwards.
    2. If parallel execution is requested for more than one chain, a multiprocessing pool of size
       `min(num_chains, available parallelism)` is created and terminated on exit.
    3. Otherwise, `None` is yielded, meaning sequential execution.

    Args:
        multicore (bool): If chains are to be run in parallel
        num_chains (int): Number of chains in the run
        worker_pool (Any, optional): External pool with a `map` or `submit` method.
            Defaults to None.
        num_workers (int | None, optional): Pool size, overrides the automatic choice.
            Defaults to None.

    Yields:
        Any: Pool object or None
    """
    if worker_pool is not None:
        yield worker_pool
    elif multicore and num_chains > 1:
        if num_workers is None:
            num_workers = utils.available_parallelism(num_chains)
        num_workers = min(num_workers, num_chains)
        with multiprocessing.Pool(processes=num_workers) as process_pool:
            yield process_pool
    else:
        yield None


# ==================================================================================================
class EpochDispatcher:
    """Run one epoch of all chains, sequentially or on a worker pool.

    The dispatcher wraps a task function `task((chain_state, num_steps))` and a pool object. If the
    pool has a `submit` method (`concurrent.futures` executors), every chain is submitted as a
    separate future, and on failure all pending futures are cancelled. Otherwise the pool's `map`
    method is used (`multiprocessing` pools). Without a pool, chains are executed in order in the
    calling process.

    Failures of worker tasks surface as `EvaluationError`, other exceptions are wrapped.

    Methods:
        dispatch: Run an epoch of a given length for all chain states
        is_parallel: Whether a worker pool is used
    """

    def __init__(
        self, task: Callable[[tuple[ChainState, int]], tuple[ChainState, np.ndarray]], pool: Any
    ) -> None:
        """Constructor of the dispatcher.

        Args:
            task (Callable): Single-argument epoch function, must be picklable for process pools
            pool (Any): Worker pool, or None for sequential execution
        """
        if pool is not None and not (hasattr(pool, "submit") or hasattr(pool, "map")):
            raise TypeError(f"Worker pool needs a `submit` or `map` method, got {type(pool)}")
        self._task = task
        self._pool = pool

    # ----------------------------------------------------------------------------------------------
    @property
    def is_parallel(self) -> bool:
        return self._pool is not None

    # ----------------------------------------------------------------------------------------------
    def dispatch(
        self, chain_states: Sequence[ChainState], num_steps: int
    ) -> list[tuple[ChainState, np.ndarray]]:
        """Run an epoch of `num_steps` steps for all chains and wait for all of them.

        Args:
            chain_states (Sequence[ChainState]): States to resume the chains from
            num_steps (int): Epoch length

        Raises:
            EvaluationError: If any chain fails

        Returns:
            list[tuple[ChainState, np.ndarray]]: Updated state and recorded segment per chain, in
                the order of the input
        """
        tasks = [(chain_state, num_steps) for chain_state in chain_states]

        if self._pool is None:
            return [self._task(task) for task in tasks]
        if hasattr(self._pool, "submit"):
            return self._dispatch_futures(tasks)
        return self._dispatch_map(tasks)

    # ----------------------------------------------------------------------------------------------
    def _dispatch_futures(
        self, tasks: list[tuple[ChainState, int]]
    ) -> list[tuple[ChainState, np.ndarray]]:
        """Submit every chain as future, cancel outstanding futures on the first failure."""
        futures = [self._pool.submit(self._task, task) for task in tasks]
        try:
            for future in concurrent.as_completed(futures):
                future.result()
        except EvaluationError:
            self._cancel(futures)
            raise
        except Exception as exc:
            self._cancel(futures)
            raise EvaluationError(f"Worker task failed: {exc!r}") from exc
        return [future.result() for future in futures]

    # ----------------------------------------------------------------------------------------------
    def _dispatch_map(
        self, tasks: list[tuple[ChainState, int]]
    ) -> list[tuple[ChainState, np.ndarray]]:
        try:
            return list(self._pool.map(self._task, tasks))
        except EvaluationError:
            raise
        except Exception as exc:
            raise EvaluationError(f"Worker task failed: {exc!r}") from exc

    # ----------------------------------------------------------------------------------------------
    @staticmethod
    def _cancel(futures: list[concurrent.Future]) -> None:
        for future in futures:
            future.cancel()
