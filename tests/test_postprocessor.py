"""
Postprocessor Tests - Burn-in Trimming, Thinning and Sample Sets

Run with: pytest tests/test_postprocessor.py -v
"""

import numpy as np
import pytest

from mhmcmc import ConfigurationError, NormalKernel, SampleSet, TrimmingWarning
from mhmcmc.run.postprocessor import PostProcessor
from mhmcmc.sampling import Chain, ChainState


def make_chain(num_steps, num_parameters=1, index=0, num_accepted=0):
    trace = np.arange(1, num_steps + 1, dtype=float)[:, np.newaxis] * np.ones(num_parameters)
    chain_state = ChainState(
        index=index,
        state=trace[-1].copy(),
        loglik=0.0,
        rng=np.random.default_rng(0),
        kernel=NormalKernel(),
        iteration=num_steps,
        num_accepted=num_accepted,
    )
    return Chain(chain_state, [trace[: num_steps // 2], trace[num_steps // 2 :]])


# ============================================================================
# TRIMMING LAW
# ============================================================================

class TestTrim:
    """Test the number and positions of retained states."""

    @pytest.mark.parametrize(
        "num_steps, burnin, thin",
        [(100, 50, 1), (100, 0, 1), (100, 10, 3), (10, 9, 1), (10, 0, 9), (11, 1, 10),
         (1000, 500, 7), (7, 3, 2)],
    )
    def test_number_of_samples(self, num_steps, burnin, thin):
        trace = np.arange(num_steps, dtype=float)[:, np.newaxis]
        samples, iterations = PostProcessor(burnin, thin).trim(trace)
        assert samples.shape == ((num_steps - burnin) // thin, 1)
        assert iterations.size == samples.shape[0]

    def test_positions_counted_after_burnin(self):
        trace = np.arange(1, 11, dtype=float)[:, np.newaxis]
        samples, iterations = PostProcessor(2, 3).trim(trace)
        np.testing.assert_array_equal(iterations, [5, 8])
        np.testing.assert_array_equal(samples[:, 0], [5.0, 8.0])

    def test_burnin_one_below_length(self):
        trace = np.arange(1, 11, dtype=float)[:, np.newaxis]
        samples, iterations = PostProcessor(9, 1).trim(trace)
        np.testing.assert_array_equal(iterations, [10])

    def test_overrides(self):
        trace = np.arange(1, 11, dtype=float)[:, np.newaxis]
        _, iterations = PostProcessor(9, 1).trim(trace, burnin=0, thin=5)
        np.testing.assert_array_equal(iterations, [5, 10])


# ============================================================================
# VALIDATION
# ============================================================================

class TestValidate:
    """Test checks of burn-in and thinning against the chain length."""

    @pytest.mark.parametrize(
        "burnin, thin, match",
        [(100, 1, "burnin"), (150, 1, "burnin"), (-1, 1, "burnin"), (0, 0, "thin"),
         (0, 100, "thin"), (0, 200, "thin")],
    )
    def test_invalid(self, burnin, thin, match):
        with pytest.raises(ConfigurationError, match=match):
            PostProcessor(burnin, thin).validate(100)

    @pytest.mark.parametrize("burnin, thin", [(99, 1), (0, 99), (50, 10)])
    def test_valid(self, burnin, thin):
        PostProcessor(burnin, thin).validate(100)


# ============================================================================
# EARLY STOPPING
# ============================================================================

class TestEffectiveSettings:
    """Test adjustment of burn-in and thinning for early-stopped chains."""

    def test_unchanged_if_fitting(self):
        assert PostProcessor(10, 2).effective_settings(50) == (10, 2)

    def test_burnin_reduced(self):
        with pytest.warns(TrimmingWarning, match="burn-in"):
            assert PostProcessor(500, 1).effective_settings(50) == (25, 1)

    def test_thinning_reduced(self):
        with pytest.warns(TrimmingWarning, match="thinning"):
            assert PostProcessor(40, 20).effective_settings(50) == (40, 1)

    def test_warnings_are_logged(self, silent_logger, caplog):
        silent_logger._pylogger.propagate = True
        with pytest.warns(TrimmingWarning):
            PostProcessor(500, 1, silent_logger).effective_settings(50)
        assert "burn-in" in caplog.text


# ============================================================================
# SAMPLE SETS
# ============================================================================

class TestProcess:
    """Test conversion of chains into sample sets."""

    def test_tags(self):
        chain = make_chain(100, num_parameters=2, index=3, num_accepted=40)
        sample_set = PostProcessor(10, 3).process(chain, ["a", "b"])
        assert isinstance(sample_set, SampleSet)
        assert len(sample_set) == 30
        assert sample_set.start == 13
        assert sample_set.end == 100
        assert sample_set.thin == 3
        assert sample_set.names == ("a", "b")
        assert sample_set.chain_index == 3
        assert sample_set.num_steps == 100
        assert sample_set.acceptance_rate == pytest.approx(0.4)

    def test_invalid_settings_without_early_stop(self):
        with pytest.raises(ConfigurationError):
            PostProcessor(500, 1).process(make_chain(50), ["x"])

    def test_early_stop_adjusts(self):
        with pytest.warns(TrimmingWarning):
            sample_set = PostProcessor(500, 1).process(make_chain(50), ["x"], stopped_early=True)
        assert len(sample_set) == 25
        assert sample_set.start == 26
        assert sample_set.end == 50

    def test_samples_read_only(self):
        sample_set = PostProcessor(0, 1).process(make_chain(10), ["x"])
        with pytest.raises(ValueError):
            sample_set.samples[0, 0] = 5.0

    def test_frozen(self):
        sample_set = PostProcessor(0, 1).process(make_chain(10), ["x"])
        with pytest.raises(AttributeError):
            sample_set.thin = 2

    def test_as_dict_and_mean(self):
        sample_set = PostProcessor(0, 1).process(make_chain(4, num_parameters=2), ["a", "b"])
        samples = sample_set.as_dict()
        np.testing.assert_array_equal(samples["a"], [1.0, 2.0, 3.0, 4.0])
        np.testing.assert_allclose(sample_set.mean(), [2.5, 2.5])
