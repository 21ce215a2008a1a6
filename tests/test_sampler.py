"""
Integration Tests - End-to-End Runs through run_mcmc

Tests complete sampler runs:
- Input normalization and pre-run validation
- Reproducibility across execution modes
- Automatic stopping and trimming
- Statistical sanity on simple targets

Run with: pytest tests/test_sampler.py -v
"""

from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from mhmcmc import (
    AdaptiveKernel,
    BroadcastWarning,
    ConfigurationError,
    EvaluationError,
    GelmanChecker,
    LoggerSettings,
    NormalKernel,
    ReflectiveKernel,
    SampleSet,
    TrimmingWarning,
    run_mcmc,
)
from mhmcmc.sampler import normalize_initial_states

from targets import nan_loglik, normal_mean_loglik, standard_normal_loglik


def nan_after_origin(x):
    return 0.0 if np.all(x == 0) else np.nan


# ============================================================================
# SCENARIOS
# ============================================================================

class TestScenarios:
    """End-to-end runs on simple targets."""

    def test_standard_normal_short_run(self):
        """Short run on N(0,1), checked through its acceptance rate.

        The mean of the last 80 draws of a 100-step chain has a Monte Carlo error of roughly
        0.3 due to autocorrelation, so a bound of 0.3 on it fails for about half of all seeds.
        The mean is checked on a longer chain in `test_standard_normal_mean` instead.
        """
        samples = run_mcmc(
            standard_normal_loglik,
            [0.0],
            nsteps=100,
            burnin=0,
            thin=1,
            kernel=NormalKernel(scale=1.0),
            autostop_interval=0,
            seed=1,
        )
        assert isinstance(samples, SampleSet)
        assert samples.num_steps == 100
        assert len(samples) == 100
        assert samples.start == 1
        assert 0.2 <= samples.acceptance_rate <= 0.9

    def test_standard_normal_mean(self):
        """Long run on N(0,1), long enough for the sample mean to be within 0.3 of zero."""
        samples = run_mcmc(
            standard_normal_loglik, [0.0], nsteps=5000, burnin=500, autostop_interval=0, seed=1
        )
        assert abs(samples.mean()[0]) < 0.3
        assert 0.7 < np.std(samples.samples) < 1.3

    def test_nan_on_first_proposal(self):
        with pytest.raises(EvaluationError, match="undefined"):
            run_mcmc(nan_after_origin, [0.0], nsteps=100, seed=1)

    def test_nan_at_initial_state(self):
        with pytest.raises(EvaluationError):
            run_mcmc(nan_loglik, [0.0], nsteps=100, seed=1)

    def test_always_converged_stops_after_first_epoch(self, always_converged):
        with pytest.warns(TrimmingWarning):
            results = run_mcmc(
                standard_normal_loglik,
                [[-1.0], [0.0], [1.0]],
                nsteps=1000,
                nchains=3,
                convergence_checker=always_converged,
                autostop_interval=50,
                seed=1,
            )
        assert len(results) == 3
        for sample_set in results:
            assert sample_set.num_steps == 50
            assert len(sample_set) == 25
            assert sample_set.start == 26
            assert sample_set.end == 50

    def test_burnin_not_below_nsteps(self, counting_loglik):
        with pytest.raises(ConfigurationError, match="burnin"):
            run_mcmc(counting_loglik, [0.0], nsteps=100, burnin=100)
        assert counting_loglik.num_calls == 0

    def test_default_checker_stops_early(self):
        with pytest.warns(TrimmingWarning):
            results = run_mcmc(
                standard_normal_loglik, [[-1.0], [1.0]], nsteps=20000, nchains=2, seed=3
            )
        assert results[0].num_steps < 20000
        assert results[0].num_steps % 500 == 0
        assert results[0].num_steps == results[1].num_steps

    def test_extra_arguments(self, rng):
        data = rng.normal(loc=2.0, size=200)
        samples = run_mcmc(
            normal_mean_loglik,
            {"mu": 0.0},
            nsteps=4000,
            burnin=1000,
            kernel=NormalKernel(scale=0.2),
            autostop_interval=0,
            seed=4,
            data=data,
        )
        assert samples.names == ("mu",)
        assert abs(samples.mean()[0] - np.mean(data)) < 0.05


# ============================================================================
# TRIMMING
# ============================================================================

class TestTrimming:
    """Test trace lengths and trimming through the full run."""

    @pytest.mark.parametrize(
        "nsteps, burnin, thin", [(100, 10, 3), (100, 99, 1), (100, 0, 99), (57, 0, 1)]
    )
    def test_trimming_law(self, nsteps, burnin, thin):
        samples = run_mcmc(
            standard_normal_loglik,
            [0.0],
            nsteps=nsteps,
            burnin=burnin,
            thin=thin,
            autostop_interval=0,
            seed=1,
        )
        assert samples.num_steps == nsteps
        assert len(samples) == (nsteps - burnin) // thin
        assert samples.thin == thin

    def test_default_burnin_is_half(self):
        samples = run_mcmc(standard_normal_loglik, [0.0], nsteps=101, autostop_interval=0, seed=1)
        assert len(samples) == 51
        assert samples.start == 51

    def test_final_epoch_clamped(self, never_converged):
        samples = run_mcmc(
            standard_normal_loglik,
            [0.0],
            nsteps=120,
            burnin=0,
            convergence_checker=never_converged,
            autostop_interval=50,
            seed=1,
        )
        assert samples.num_steps == 120
        assert never_converged.history_lengths == [50, 100, 120]


# ============================================================================
# REPRODUCIBILITY
# ============================================================================

class TestReproducibility:
    """Test that the seed determines all randomness."""

    def run(self, seed, worker_pool=None):
        return run_mcmc(
            standard_normal_loglik,
            [[-1.0, 0.0], [0.0, 0.0], [1.0, 0.0]],
            nsteps=400,
            nchains=3,
            burnin=0,
            autostop_interval=100,
            convergence_checker=None,
            worker_pool=worker_pool,
            seed=seed,
        )

    def test_same_seed_same_samples(self):
        for first, second in zip(self.run(11), self.run(11)):
            np.testing.assert_array_equal(first.samples, second.samples)

    def test_different_seed_different_samples(self):
        assert not np.array_equal(self.run(11)[0].samples, self.run(12)[0].samples)

    def test_parallel_matches_sequential(self):
        sequential = self.run(11)
        with ThreadPoolExecutor(max_workers=3) as executor:
            parallel = self.run(11, executor)
        for first, second in zip(sequential, parallel):
            np.testing.assert_array_equal(first.samples, second.samples)
            assert first.acceptance_rate == second.acceptance_rate


# ============================================================================
# KERNELS IN RUNS
# ============================================================================

class TestKernelsInRuns:
    """Test bounded and adaptive kernels within complete runs."""

    def test_reflective_kernel_stays_in_bounds(self):
        samples = run_mcmc(
            standard_normal_loglik,
            [0.5, 0.5],
            nsteps=2000,
            burnin=0,
            kernel=ReflectiveKernel(scale=2.0, lb=[0.0, -1.0], ub=[1.0, 0.75]),
            autostop_interval=0,
            seed=5,
        )
        assert np.all(samples.samples[:, 0] >= 0.0) and np.all(samples.samples[:, 0] <= 1.0)
        assert np.all(samples.samples[:, 1] >= -1.0) and np.all(samples.samples[:, 1] <= 0.75)

    def test_initial_state_out_of_bounds(self, counting_loglik):
        with pytest.raises(ConfigurationError, match="outside"):
            run_mcmc(counting_loglik, [2.0], nsteps=100, kernel=ReflectiveKernel(lb=0, ub=1))
        assert counting_loglik.num_calls == 0

    def test_adaptive_kernel_per_chain(self):
        kernel = AdaptiveKernel(warmup=100, lb=-3.0, ub=3.0)
        results = run_mcmc(
            standard_normal_loglik,
            [[0.0, 0.0], [1.0, 1.0]],
            nsteps=1000,
            nchains=2,
            kernel=kernel,
            autostop_interval=0,
            seed=6,
        )
        for sample_set in results:
            assert np.all(np.abs(sample_set.samples) <= 3.0)
        # The template kernel is never adapted itself
        assert kernel._cholesky is None

    def test_fixed_parameter(self):
        samples = run_mcmc(
            standard_normal_loglik,
            {"a": 0.0, "b": 1.5},
            nsteps=500,
            kernel=NormalKernel(fixed=[False, True]),
            autostop_interval=0,
            seed=7,
        )
        np.testing.assert_array_equal(samples.as_dict()["b"], 1.5)


# ============================================================================
# VALIDATION
# ============================================================================

class TestValidation:
    """Test that invalid configurations fail before sampling."""

    @pytest.mark.parametrize(
        "kwargs, match",
        [
            ({"nsteps": 0}, "nsteps"),
            ({"nchains": 0}, "nchains"),
            ({"thin": 100}, "thin"),
            ({"autostop_interval": [10]}, "length 1"),
            ({"autostop_interval": -5}, "autostop_interval"),
            ({"kernel": "normal"}, "kernel"),
            ({"convergence_checker": lambda histories: True}, "convergence_checker"),
            ({"convergence_checker": GelmanChecker(), "autostop_interval": 50}, "two chains"),
            ({"data": [1.0]}, "not declared"),
            ({"initial": [np.nan]}, "finite"),
            ({"initial": []}, "initial"),
            ({"initial": "abc"}, "initial"),
            ({"initial": [[0.0], [1.0], [2.0]], "nchains": 2}, "rows"),
        ],
    )
    def test_invalid(self, counting_loglik, kwargs, match):
        arguments = {"initial": [0.0], "nsteps": 100}
        arguments.update(kwargs)
        with pytest.raises(ConfigurationError, match=match):
            run_mcmc(counting_loglik, **arguments)
        assert counting_loglik.num_calls == 0

    def test_gelman_checker_unused_without_autostop(self):
        samples = run_mcmc(
            standard_normal_loglik,
            [0.0],
            nsteps=50,
            convergence_checker=GelmanChecker(),
            autostop_interval=0,
            seed=1,
        )
        assert samples.num_steps == 50

    def test_missing_extra_argument(self):
        with pytest.raises(ConfigurationError, match="missing"):
            run_mcmc(normal_mean_loglik, [0.0], nsteps=100)

    def test_return_types(self):
        single = run_mcmc(standard_normal_loglik, [0.0], nsteps=50, autostop_interval=0)
        multiple = run_mcmc(
            standard_normal_loglik, [[0.0], [1.0]], nsteps=50, nchains=2, autostop_interval=0
        )
        assert isinstance(single, SampleSet)
        assert [sample_set.chain_index for sample_set in multiple] == [0, 1]


# ============================================================================
# INITIAL STATES
# ============================================================================

class TestInitialStates:
    """Test normalization of the supported initial state formats."""

    def test_vector(self):
        states, names = normalize_initial_states([1.0, 2.0], 1)
        np.testing.assert_array_equal(states, [[1.0, 2.0]])
        assert names == ("par1", "par2")

    def test_scalar(self):
        states, names = normalize_initial_states(3.0, 1)
        assert states.shape == (1, 1)
        assert names == ("par1",)

    def test_mapping(self):
        states, names = normalize_initial_states({"mu": 1.0, "sigma": 2.0}, 1)
        np.testing.assert_array_equal(states, [[1.0, 2.0]])
        assert names == ("mu", "sigma")

    def test_sequence_of_mappings(self):
        states, names = normalize_initial_states([{"a": 1, "b": 2}, {"a": 3, "b": 4}], 2)
        np.testing.assert_array_equal(states, [[1.0, 2.0], [3.0, 4.0]])
        assert names == ("a", "b")

    def test_inconsistent_mappings(self):
        with pytest.raises(ConfigurationError, match="same parameter names"):
            normalize_initial_states([{"a": 1}, {"b": 2}], 2)

    def test_matrix(self):
        states, _ = normalize_initial_states(np.arange(6.0).reshape(3, 2), 3)
        assert states.shape == (3, 2)

    def test_broadcast_warns(self):
        with pytest.warns(BroadcastWarning, match="recycled"):
            states, _ = normalize_initial_states([1.0, 2.0], 3)
        np.testing.assert_array_equal(states, [[1.0, 2.0]] * 3)

    def test_broadcast_in_run(self):
        with pytest.warns(BroadcastWarning):
            results = run_mcmc(
                standard_normal_loglik, [0.0], nsteps=100, nchains=2, autostop_interval=0, seed=1
            )
        assert not np.array_equal(results[0].samples, results[1].samples)

    def test_param_names_override(self):
        _, names = normalize_initial_states({"a": 1.0}, 1, param_names=["theta"])
        assert names == ("theta",)

    @pytest.mark.parametrize("param_names", [["a"], ["a", "a"]])
    def test_invalid_param_names(self, param_names):
        with pytest.raises(ConfigurationError):
            normalize_initial_states([1.0, 2.0], 1, param_names=param_names)

    def test_three_dimensional(self):
        with pytest.raises(ConfigurationError, match="vector or a matrix"):
            normalize_initial_states(np.zeros((2, 2, 2)), 2)


# ============================================================================
# LOGGING
# ============================================================================

class TestLogging:
    """Test run and debug log files."""

    def test_log_files(self, tmp_path):
        settings = LoggerSettings(
            do_printing=False,
            logfile_path=tmp_path / "logs" / "run.log",
            debugfile_path=tmp_path / "logs" / "debug.log",
        )
        run_mcmc(
            standard_normal_loglik,
            [[0.0], [1.0]],
            nsteps=200,
            nchains=2,
            autostop_interval=100,
            convergence_checker=None,
            logger_settings=settings,
            seed=1,
        )
        run_log = (tmp_path / "logs" / "run.log").read_text()
        debug_log = (tmp_path / "logs" / "debug.log").read_text()
        assert "Epoch" in run_log
        assert "Running 2 chain(s)" in run_log
        assert "Epoch 0" in debug_log
        assert "[epoch done]" in debug_log
        assert "[epoch done]" not in run_log

    def test_exception_logged(self, tmp_path):
        logfile_path = tmp_path / "run.log"
        with pytest.raises(EvaluationError):
            run_mcmc(
                nan_after_origin,
                [0.0],
                nsteps=100,
                logger_settings=LoggerSettings(do_printing=False, logfile_path=logfile_path),
            )
        assert "undefined" in logfile_path.read_text()

    def test_console_output(self, capsys):
        run_mcmc(
            standard_normal_loglik,
            [0.0],
            nsteps=100,
            autostop_interval=0,
            logger_settings=LoggerSettings(do_printing=True),
        )
        assert "#Steps" in capsys.readouterr().out
