from math import exp, log

import numpy as np
import pytest

from adanuts.adapters import (
    init_step_size, DualAveragingStepSizeAdapter, VarianceEstimator,
    WindowedMetricAdapter)
from adanuts.errors import (
    AdaptationError, ImproperPosteriorError, StepsizeSearchError)
from adanuts.hamiltonian import Hamiltonian
from adanuts.integrators import LeapfrogIntegrator
from adanuts.metrics import Metric
from adanuts.models import DensityModel
from adanuts.stagers import WindowedWarmUpStager
from adanuts.states import PhasePoint, SamplerState

SEED = 3046987125
STATE_DIM = 4


@pytest.fixture
def rng():
    return np.random.default_rng(SEED)


@pytest.fixture
def integrator():
    model = DensityModel(
        log_dens=lambda q: -0.5 * np.sum(q**2),
        grad_log_dens=lambda q: -q,
        dimension=STATE_DIM)
    return LeapfrogIntegrator(Hamiltonian(model))


@pytest.fixture
def point(rng):
    return PhasePoint(pos=rng.standard_normal(STATE_DIM))


def _integrator_for(log_dens, grad_log_dens, dimension=1):
    return LeapfrogIntegrator(Hamiltonian(
        DensityModel(log_dens, dimension, grad_log_dens=grad_log_dens)))


class TestInitStepSize:

    @pytest.mark.parametrize('nominal', (1e-6, 1e-2, 1., 1e2, 1e6))
    @pytest.mark.parametrize('kind', ('unit', 'diag', 'dense'))
    def test_step_size_in_bounds(self, integrator, point, rng, nominal, kind):
        metric = Metric.identity_of_kind(kind, STATE_DIM)
        step_size = init_step_size(point, metric, nominal, integrator, rng)
        assert 0 < step_size <= 1e7
        # standard normal target so step size should be of order one
        assert 0.01 < step_size < 10

    def test_point_not_mutated(self, integrator, point, rng):
        init_pos = point.pos.copy()
        point = point.copy(read_only=True)
        init_step_size(point, Metric.unit(), 1., integrator, rng)
        assert np.all(point.pos == init_pos)

    @pytest.mark.parametrize('nominal', (0., 2e7, np.inf, np.nan))
    def test_early_exit(self, integrator, point, rng, nominal):
        step_size = init_step_size(
            point, Metric.unit(), nominal, integrator, rng)
        assert step_size == nominal or (np.isnan(step_size) and
                                        np.isnan(nominal))

    def test_improper_posterior(self, rng):
        integrator = _integrator_for(
            lambda q: 0., lambda q: np.zeros(1))
        point = PhasePoint(pos=np.zeros(1))
        with pytest.raises(ImproperPosteriorError):
            init_step_size(point, Metric.unit(), 1., integrator, rng)

    def test_search_decays_to_zero(self, rng):
        # log density only finite on first evaluation so every trial step
        # fails however small the step size
        n_calls = [0]

        def log_dens(q):
            n_calls[0] += 1
            return 0. if n_calls[0] == 1 else np.nan

        integrator = _integrator_for(log_dens, lambda q: np.zeros(1))
        point = PhasePoint(pos=np.zeros(1))
        with pytest.raises(StepsizeSearchError) as exc_info:
            init_step_size(point, Metric.unit(), 1., integrator, rng)
        assert not isinstance(exc_info.value, ImproperPosteriorError)


class TestDualAveragingStepSizeAdapter:

    @pytest.fixture
    def adapter(self):
        return DualAveragingStepSizeAdapter()

    @pytest.fixture
    def sampler_state(self, adapter):
        return SamplerState(
            point=None, step_size=1., metric=Metric.unit(),
            step_size_adapt_state=adapter.initialize(1.))

    def test_initial_mu(self, adapter):
        assert np.isclose(adapter.initialize(0.5).mu, log(5.))

    def test_first_update(self, adapter, sampler_state):
        accept_stat = 0.3
        step_size = adapter.learn_stepsize(sampler_state, accept_stat)
        eta = 1 / (1 + adapter.t0)
        s_bar = eta * (adapter.delta - accept_stat)
        x = log(10.) - s_bar / adapter.gamma
        assert np.isclose(step_size, exp(x))
        assert sampler_state.step_size == step_size
        da_state = sampler_state.step_size_adapt_state
        assert da_state.counter == 1
        assert np.isclose(da_state.s_bar, s_bar)
        assert np.isclose(da_state.x_bar, x)

    def test_increasing_with_full_acceptance(self, adapter, sampler_state):
        step_sizes = [
            adapter.learn_stepsize(sampler_state, 1.) for _ in range(50)]
        assert np.all(np.diff(step_sizes) > 0), (
            'step size should increase when accept_stat is always one')

    def test_decreasing_with_zero_acceptance(self, adapter, sampler_state):
        step_sizes = [
            adapter.learn_stepsize(sampler_state, 0.) for _ in range(50)]
        assert np.all(np.diff(step_sizes) < 0), (
            'step size should decrease when accept_stat is always zero')

    def test_accept_stat_clamped(self, adapter):
        state_1 = SamplerState(None, 1., Metric.unit(), adapter.initialize(1.))
        state_2 = SamplerState(None, 1., Metric.unit(), adapter.initialize(1.))
        assert adapter.learn_stepsize(state_1, 1.) == adapter.learn_stepsize(
            state_2, 5.)

    def test_restart_reproduces_outputs(self, adapter, sampler_state, rng):
        accept_stats = rng.uniform(size=20)
        da_state = sampler_state.step_size_adapt_state
        first = [adapter.learn_stepsize(sampler_state, a)
                 for a in accept_stats]
        adapter.restart(da_state)
        assert da_state.counter == 0
        assert da_state.s_bar == 0 and da_state.x_bar == 0
        second = [adapter.learn_stepsize(sampler_state, a)
                  for a in accept_stats]
        assert first == second, (
            'restart followed by same inputs should reproduce outputs')

    def test_set_mu(self, adapter, sampler_state):
        adapter.set_mu(sampler_state.step_size_adapt_state, log(10 * 0.01))
        step_size = adapter.learn_stepsize(sampler_state, adapter.delta)
        assert np.isclose(step_size, 0.1), (
            'on-target accept_stat should give step size exp(mu)')

    def test_converges_to_target(self, adapter, sampler_state):
        # toy acceptance model decreasing in step size, equal to delta at 1.5
        for _ in range(2000):
            accept_stat = exp(-(sampler_state.step_size / 1.5) ** 2 *
                              -log(adapter.delta))
            adapter.learn_stepsize(sampler_state, accept_stat)
        final_step_size = adapter.complete_adaptation(
            sampler_state.step_size_adapt_state)
        assert abs(final_step_size - 1.5) < 0.15

    @pytest.mark.parametrize('kwargs', (
        {'delta': 0.}, {'delta': 1.}, {'gamma': 0.}, {'kappa': -1.},
        {'t0': -1.}))
    def test_invalid_parameters(self, kwargs):
        with pytest.raises(ValueError):
            DualAveragingStepSizeAdapter(**kwargs)


class TestVarianceEstimator:

    @pytest.mark.parametrize('dense', (False, True))
    def test_matches_numpy(self, rng, dense):
        samples = rng.standard_normal((50, STATE_DIM)) * np.arange(
            1, STATE_DIM + 1)
        estimator = VarianceEstimator(STATE_DIM, dense=dense)
        for sample in samples:
            estimator.add_sample(sample)
        assert estimator.num_samples == 50
        assert np.allclose(estimator.mean, samples.mean(0))
        expected = (
            np.cov(samples.T) if dense else np.var(samples, 0, ddof=1))
        assert np.allclose(estimator.sample_variance(), expected)

    def test_restart(self, rng):
        estimator = VarianceEstimator(STATE_DIM)
        for sample in rng.standard_normal((5, STATE_DIM)):
            estimator.add_sample(sample)
        estimator.restart()
        assert estimator.num_samples == 0
        assert np.all(estimator.mean == 0)

    def test_too_few_samples(self):
        estimator = VarianceEstimator(STATE_DIM)
        estimator.add_sample(np.zeros(STATE_DIM))
        with pytest.raises(AdaptationError):
            estimator.sample_variance()


class TestWindowedMetricAdapter:

    num_warmup = 200

    @pytest.fixture
    def schedule(self):
        return WindowedWarmUpStager().schedule(self.num_warmup)

    @pytest.fixture(params=('diag', 'dense'))
    def kind(self, request):
        return request.param

    @pytest.fixture
    def adapter(self, schedule, kind):
        return WindowedMetricAdapter(schedule, kind)

    def _sampler_state(self, adapter, kind):
        return SamplerState(
            point=PhasePoint(pos=np.zeros(STATE_DIM)), step_size=1.,
            metric=Metric.identity_of_kind(kind, STATE_DIM),
            metric_adapt_state=adapter.initialize(STATE_DIM))

    def test_updates_exactly_at_window_ends(self, adapter, schedule, kind,
                                            rng):
        sampler_state = self._sampler_state(adapter, kind)
        for iteration in range(self.num_warmup):
            sampler_state.point = PhasePoint(
                pos=rng.standard_normal(STATE_DIM))
            updated = adapter.learn_variance(sampler_state)
            assert updated == schedule.is_window_end(iteration), (
                f'learn_variance returned {updated} at iteration {iteration}')
        assert sampler_state.metric_adapt_state.window_index == len(
            schedule.estimation_windows)

    def test_constant_input_gives_shrinkage_floor(self, adapter, schedule,
                                                  kind):
        sampler_state = self._sampler_state(adapter, kind)
        window = schedule.estimation_windows[0]
        n = window.end - window.start + 1
        for iteration in range(window.end + 1):
            sampler_state.point = PhasePoint(pos=np.full(STATE_DIM, 3.))
            adapter.learn_variance(sampler_state)
        floor = 1e-3 * 5 / (n + 5)
        metric = sampler_state.metric
        assert metric.kind == kind
        expected = (
            floor * np.identity(STATE_DIM) if kind == 'dense' else
            np.full(STATE_DIM, floor))
        assert np.allclose(metric.inv_metric, expected, rtol=1e-12, atol=0)

    def test_regularized_estimate(self, adapter, schedule, kind, rng):
        sampler_state = self._sampler_state(adapter, kind)
        window = schedule.estimation_windows[0]
        n = window.end - window.start + 1
        window_samples = []
        for iteration in range(window.end + 1):
            pos = 2. * rng.standard_normal(STATE_DIM)
            if iteration >= window.start:
                window_samples.append(pos)
            sampler_state.point = PhasePoint(pos=pos)
            adapter.learn_variance(sampler_state)
        window_samples = np.stack(window_samples)
        if kind == 'dense':
            expected = (n / (n + 5)) * np.cov(window_samples.T) + (
                1e-3 * 5 / (n + 5)) * np.identity(STATE_DIM)
        else:
            expected = (n / (n + 5)) * np.var(
                window_samples, 0, ddof=1) + 1e-3 * 5 / (n + 5)
        assert np.allclose(sampler_state.metric.inv_metric, expected)
        assert sampler_state.metric_adapt_state.estimator.num_samples == 0, (
            'estimator should be reset at end of window')

    def test_non_finite_estimate(self, adapter, schedule, kind):
        sampler_state = self._sampler_state(adapter, kind)
        window = schedule.estimation_windows[0]
        with pytest.raises(AdaptationError):
            for iteration in range(window.end + 1):
                sampler_state.point = PhasePoint(
                    pos=np.full(STATE_DIM, 1e300 * (-1) ** iteration))
                adapter.learn_variance(sampler_state)

    def test_unit_metric_never_updated(self, schedule, rng):
        adapter = WindowedMetricAdapter(schedule, 'unit')
        sampler_state = self._sampler_state(adapter, 'unit')
        for iteration in range(self.num_warmup):
            sampler_state.point = PhasePoint(
                pos=rng.standard_normal(STATE_DIM))
            assert not adapter.learn_variance(sampler_state)
        assert sampler_state.metric == Metric.unit()
