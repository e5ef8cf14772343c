import numpy as np
import pytest

from adanuts.errors import DomainError, ReadOnlyStateError
from adanuts.hamiltonian import Hamiltonian
from adanuts.integrators import LeapfrogIntegrator
from adanuts.metrics import Metric
from adanuts.models import DensityModel
from adanuts.states import PhasePoint, SamplerState
from adanuts.transitions import TrajectoryBuilder, no_u_turn_criterion

SEED = 3046987125
SIZE = 2
STAT_KEYS = {
    'accept_stat', 'n_leapfrog', 'tree_depth', 'divergent', 'energy',
    'step_size'}


@pytest.fixture
def rng():
    return np.random.default_rng(SEED)


@pytest.fixture
def hamiltonian():
    return Hamiltonian(DensityModel(
        log_dens=lambda q: -0.5 * np.sum(q**2),
        grad_log_dens=lambda q: -q,
        dimension=SIZE))


@pytest.fixture
def integrator(hamiltonian):
    return LeapfrogIntegrator(hamiltonian)


@pytest.fixture(params=('unit', 'diag', 'dense'))
def metric(request):
    return Metric.identity_of_kind(request.param, SIZE)


def _sampler_state(metric, step_size=0.5, pos=None):
    pos = np.full(SIZE, 0.5) if pos is None else pos
    return SamplerState(
        point=PhasePoint(pos=pos), step_size=step_size, metric=metric)


class TransitionTests:

    def test_stats(self, transition, metric, rng):
        sampler_state = _sampler_state(metric)
        point, stats = transition.sample(sampler_state, rng)
        assert set(stats.keys()) == STAT_KEYS
        assert 0 <= stats['accept_stat'] <= 1
        assert stats['n_leapfrog'] >= 1
        assert np.isfinite(stats['energy'])
        assert stats['step_size'] == sampler_state.step_size

    def test_updates_sampler_state_point_only(self, transition, metric, rng):
        sampler_state = _sampler_state(metric)
        init_point = sampler_state.point
        init_pos = init_point.pos.copy()
        point, stats = transition.sample(sampler_state, rng)
        assert sampler_state.point is point
        assert np.all(init_point.pos == init_pos), (
            'transition should not modify the previous point')
        assert sampler_state.step_size == 0.5
        assert sampler_state.metric is metric
        with pytest.raises(ReadOnlyStateError):
            point.pos = init_pos

    def test_reproducible(self, transition, metric):
        points = []
        for _ in range(2):
            rng = np.random.default_rng(SEED)
            sampler_state = _sampler_state(metric)
            for _ in range(10):
                point, _ = transition.sample(sampler_state, rng)
            points.append(point.pos)
        assert np.all(points[0] == points[1]), (
            'transitions with same random seed should give same output')

    def test_divergence_from_domain_error(self, integrator, metric, rng):

        def log_dens(q):
            if np.any(q != 0.5):
                raise DomainError('outside support')
            return -0.5 * np.sum(q**2)

        hamiltonian = Hamiltonian(
            DensityModel(log_dens, SIZE, grad_log_dens=lambda q: -q))
        transition = self.transition_type(
            hamiltonian, LeapfrogIntegrator(hamiltonian))
        sampler_state = _sampler_state(metric, step_size=5.)
        init_pos = sampler_state.point.pos.copy()
        point, stats = transition.sample(sampler_state, rng)
        assert stats['divergent']
        assert np.all(point.pos == init_pos)

    def test_energy_divergence(self, metric, rng):
        hamiltonian = Hamiltonian(DensityModel(
            log_dens=lambda q: -0.5 * 1e6 * np.sum(q**2),
            grad_log_dens=lambda q: -1e6 * q,
            dimension=SIZE))
        transition = self.transition_type(
            hamiltonian, LeapfrogIntegrator(hamiltonian))
        sampler_state = _sampler_state(metric, step_size=1.)
        point, stats = transition.sample(sampler_state, rng)
        assert stats['divergent']
        assert stats['accept_stat'] < 1e-3


class TestDynamicTrajectoryBuilder(TransitionTests):

    @staticmethod
    def transition_type(hamiltonian, integrator, **kwargs):
        return TrajectoryBuilder(hamiltonian, integrator, **kwargs)

    @pytest.fixture
    def transition(self, hamiltonian, integrator):
        return TrajectoryBuilder(hamiltonian, integrator)

    def test_zero_max_tree_depth(self, hamiltonian, integrator, metric, rng):
        transition = TrajectoryBuilder(
            hamiltonian, integrator, max_tree_depth=0)
        sampler_state = _sampler_state(metric)
        for _ in range(20):
            point, stats = transition.sample(sampler_state, rng)
            assert stats['n_leapfrog'] == 1
            assert stats['tree_depth'] == 0

    @pytest.mark.parametrize('max_tree_depth', (1, 2, 4))
    def test_max_tree_depth_bounds(self, integrator, metric, rng,
                                   max_tree_depth):
        transition = TrajectoryBuilder(
            integrator.hamiltonian, integrator, max_tree_depth=max_tree_depth)
        # very small step size so no U-turn is reached within depth limit
        sampler_state = _sampler_state(metric, step_size=1e-4)
        for _ in range(5):
            point, stats = transition.sample(sampler_state, rng)
            assert stats['tree_depth'] == max_tree_depth
            assert stats['n_leapfrog'] == 2**(max_tree_depth + 1) - 1

    def test_n_leapfrog_consistent_with_depth(self, transition, metric, rng):
        sampler_state = _sampler_state(metric)
        for _ in range(20):
            point, stats = transition.sample(sampler_state, rng)
            assert stats['n_leapfrog'] <= 2**(stats['tree_depth'] + 1) - 1
            assert stats['n_leapfrog'] >= 2**stats['tree_depth']

    def test_stationary_moments(self, transition, rng):
        sampler_state = _sampler_state(Metric.diagonal(np.ones(SIZE)), 0.8)
        positions = []
        for _ in range(3000):
            point, _ = transition.sample(sampler_state, rng)
            positions.append(point.pos)
        positions = np.stack(positions)
        assert np.allclose(positions.mean(0), 0., atol=0.1)
        assert np.allclose(positions.var(0), 1., atol=0.15)

    def test_stepsize_jitter(self, hamiltonian, integrator, metric, rng):
        transition = TrajectoryBuilder(
            hamiltonian, integrator, stepsize_jitter=0.5)
        sampler_state = _sampler_state(metric)
        step_sizes = [
            transition.sample(sampler_state, rng)[1]['step_size']
            for _ in range(20)]
        assert all(0.25 <= s <= 0.75 for s in step_sizes)
        assert len(set(step_sizes)) > 1
        assert sampler_state.step_size == 0.5

    @pytest.mark.parametrize('kwargs', (
        {'max_tree_depth': -1}, {'n_step': 0}, {'stepsize_jitter': 1.}))
    def test_invalid_arguments(self, hamiltonian, integrator, kwargs):
        with pytest.raises(ValueError):
            TrajectoryBuilder(hamiltonian, integrator, **kwargs)


class TestStaticTrajectoryBuilder(TransitionTests):

    n_step = 5

    def transition_type(self, hamiltonian, integrator, **kwargs):
        return TrajectoryBuilder(
            hamiltonian, integrator, n_step=self.n_step, **kwargs)

    @pytest.fixture
    def transition(self, hamiltonian, integrator):
        return self.transition_type(hamiltonian, integrator)

    def test_fixed_number_of_steps(self, transition, metric, rng):
        sampler_state = _sampler_state(metric)
        for _ in range(10):
            point, stats = transition.sample(sampler_state, rng)
            assert stats['n_leapfrog'] == self.n_step
            assert stats['tree_depth'] == 0


def test_no_u_turn_criterion(hamiltonian):
    metric = Metric.unit()
    point_1 = PhasePoint(pos=np.zeros(SIZE), mom=np.array([1., 0.]))
    point_2 = PhasePoint(pos=np.ones(SIZE), mom=np.array([1., 0.]))
    assert not no_u_turn_criterion(
        hamiltonian, metric, point_1, point_2, point_1.mom + point_2.mom)
    point_2.mom = np.array([-2., 0.])
    assert no_u_turn_criterion(
        hamiltonian, metric, point_1, point_2, point_1.mom + point_2.mom)
