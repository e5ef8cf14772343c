"""Hamiltonian trajectory transitions producing new chain states."""

from collections import namedtuple
import logging
from math import exp, inf, isnan
import numpy as np
from adanuts.utils import log_sum_exp, log_weight_ratio
from adanuts.errors import (
    IntegratorError, HamiltonianDivergenceError, NonFiniteDensityError)

logger = logging.getLogger(__name__)


def _process_integrator_error(exception, stats):
    logger.info(f'Terminating trajectory due to error:\n{exception!s}')
    if isinstance(exception, (HamiltonianDivergenceError,
                              NonFiniteDensityError)):
        stats['divergent'] = True


def _accept_prob(h_init, h):
    return 1. if h <= h_init else exp(h_init - h)


def no_u_turn_criterion(hamiltonian, metric, point_1, point_2, sum_mom):
    """Generalized no-U-turn termination criterion [1, 2].

    Terminates trajectories when the velocity at either terminal point of the
    trajectory has a non-positive dot product with the sum of the momentums
    across the trajectory, corresponding to further evolution of the
    trajectory no longer extending it.

    Args:
        hamiltonian (adanuts.hamiltonian.Hamiltonian): Hamiltonian being
            integrated.
        metric (adanuts.metrics.Metric): Metric defining kinetic energy.
        point_1 (adanuts.states.PhasePoint): First terminal point.
        point_2 (adanuts.states.PhasePoint): Second terminal point.
        sum_mom (array): Sum of momentums of trajectory points.

    Returns:
        terminate (bool): True if termination criterion is satisfied.

    References:

      1. Hoffman, M.D. and Gelman, A., 2014. The No-U-turn sampler:
         adaptively setting path lengths in Hamiltonian Monte Carlo.
         Journal of Machine Learning Research, 15(1), pp.1593-1623.
      2. Betancourt, M., 2013. Generalizing the no-U-turn sampler to Riemannian
         manifolds. arXiv preprint arXiv:1304.1920.
    """
    return (
        np.sum(hamiltonian.velocity(point_1, metric) * sum_mom) <= 0 or
        np.sum(hamiltonian.velocity(point_2, metric) * sum_mom) <= 0)


_SubTree = namedtuple('_SubTree', [
    'negative', 'positive', 'sum_mom', 'log_weight', 'depth'])


class TrajectoryBuilder(object):
    """Transition simulating Hamiltonian dynamics to propose a new point.

    By default (`n_step=None`) a dynamic no-U-turn transition is used [1, 2].
    In each transition a binary tree of points is recursively computed by
    integrating randomly forward and backward in time by a number of steps
    equal to the previous tree size until a termination criterion on the tree's
    subtrees is met, the maximum tree depth is reached or the simulated
    dynamics diverge. The next chain point is chosen from the candidate points
    using a progressive multinomial sampling scheme based on the relative
    probability densities of the different candidate points, with the sampling
    biased towards points further from the current point.

    If `n_step` is instead set to an integer a static transition is used in
    which the dynamics are simulated for a fixed number of steps with the final
    point being accepted or rejected in a Metropolis step.

    In both cases the momentum is independently resampled at the start of the
    transition and if `stepsize_jitter > 0` the integrator step size is drawn
    uniformly from `step_size * (1 +/- stepsize_jitter)`.

    References:

      1. Hoffman, M.D. and Gelman, A., 2014. The No-U-turn sampler:
         adaptively setting path lengths in Hamiltonian Monte Carlo.
         Journal of Machine Learning Research, 15(1), pp.1593-1623.
      2. Betancourt, M., 2017. A conceptual introduction to Hamiltonian Monte
         Carlo. arXiv preprint arXiv:1701.02434.
    """

    def __init__(self, hamiltonian, integrator, max_tree_depth=10,
                 max_delta_h=1000, n_step=None, do_extra_subtree_checks=True,
                 stepsize_jitter=0.):
        """
        Args:
            hamiltonian (adanuts.hamiltonian.Hamiltonian): Hamiltonian of
                system to be simulated.
            integrator (adanuts.integrators.Integrator): Symplectic integrator.
            max_tree_depth (int): Maximum depth to expand trajectory binary
                tree to. Trees are built by adding subtrees of depths
                `0, 1, ..., max_tree_depth` so that with `max_tree_depth=0`
                exactly one integrator step is taken.
            max_delta_h (float): Maximum increase to tolerate in the
                Hamiltonian over a trajectory before signalling a divergence.
            n_step (None or int): If not `None` the number of integrator steps
                in a static Metropolis transition.
            do_extra_subtree_checks (bool): Whether to perform additional
                termination criterion checks on overlapping subtrees of the
                current tree. This reduces a 'resonant' behaviour seen in
                target distributions close to independent Gaussians at certain
                step sizes, in which the termination criterion fails to detect
                the trajectory has U-turned.
            stepsize_jitter (float): Fraction in `[0, 1)` by which to randomly
                perturb the step size in each transition.
        """
        if max_tree_depth < 0:
            raise ValueError('max_tree_depth must be non-negative.')
        if n_step is not None and n_step < 1:
            raise ValueError('n_step must be a positive integer.')
        if not 0 <= stepsize_jitter < 1:
            raise ValueError('stepsize_jitter must be in [0, 1).')
        self.hamiltonian = hamiltonian
        self.integrator = integrator
        self.max_tree_depth = max_tree_depth
        self.max_delta_h = max_delta_h
        self.n_step = n_step
        self.do_extra_subtree_checks = do_extra_subtree_checks
        self.stepsize_jitter = stepsize_jitter

    def _termination_criterion(self, metric, tree, neg_subtree, pos_subtree):
        # Extra subtree checks evaluated lazily and only for trees of depth 2
        # and above as for smaller trees they are redundant
        if no_u_turn_criterion(
                self.hamiltonian, metric, tree.negative, tree.positive,
                tree.sum_mom):
            return True
        elif tree.depth > 1 and self.do_extra_subtree_checks:
            if no_u_turn_criterion(
                    self.hamiltonian, metric, neg_subtree.negative,
                    pos_subtree.negative,
                    neg_subtree.sum_mom + pos_subtree.negative.mom):
                return True
            elif no_u_turn_criterion(
                    self.hamiltonian, metric, neg_subtree.positive,
                    pos_subtree.positive,
                    pos_subtree.sum_mom + neg_subtree.positive.mom):
                return True
        return False

    @staticmethod
    def _new_leaf(point, h):
        return _SubTree(
            negative=point, positive=point, sum_mom=np.asarray(point.mom),
            log_weight=-h, depth=0)

    @staticmethod
    def _merge_subtrees(neg_subtree, pos_subtree):
        assert neg_subtree.depth == pos_subtree.depth, (
            'Cannot merge subtrees of different depths')
        return _SubTree(
            negative=neg_subtree.negative, positive=pos_subtree.positive,
            log_weight=log_sum_exp(
                neg_subtree.log_weight, pos_subtree.log_weight),
            sum_mom=neg_subtree.sum_mom + pos_subtree.sum_mom,
            depth=neg_subtree.depth + 1)

    def _build_tree(self, depth, point, metric, step_size, h_init, stats, rng):
        if depth == 0:
            try:
                stats['n_leapfrog'] += 1
                point = self.integrator.step(point, metric, step_size)
                h = self.hamiltonian.energy(point, metric)
                h = inf if isnan(h) else h
                stats['sum_accept_prob'] += _accept_prob(h_init, h)
                if h - h_init > self.max_delta_h:
                    raise HamiltonianDivergenceError(
                        f'delta_h = {h - h_init}')
            except IntegratorError as e:
                _process_integrator_error(e, stats)
                return True, None, None
            return False, self._new_leaf(point, h), point
        # build 'inner' subtree, i.e. starting from current point
        terminate, inner_tree, inner_proposal = self._build_tree(
            depth - 1, point, metric, step_size, h_init, stats, rng)
        if terminate:
            return terminate, None, None
        # build 'outer' subtree, i.e. starting from terminus of inner subtree
        point = inner_tree.positive if point.dir == 1 else inner_tree.negative
        terminate, outer_tree, outer_proposal = self._build_tree(
            depth - 1, point, metric, step_size, h_init, stats, rng)
        if terminate:
            return terminate, None, None
        neg_subtree = inner_tree if point.dir == 1 else outer_tree
        pos_subtree = outer_tree if point.dir == 1 else inner_tree
        tree = self._merge_subtrees(neg_subtree, pos_subtree)
        # uniform progressive sampling of proposal within subtree
        accept_outer_prob = log_weight_ratio(
            outer_tree.log_weight, tree.log_weight)
        proposal = (
            outer_proposal if rng.uniform() < accept_outer_prob else
            inner_proposal)
        terminate = self._termination_criterion(
            metric, tree, neg_subtree, pos_subtree)
        return terminate, tree, proposal

    def _sample_dynamic(self, point, metric, step_size, h_init, stats, rng):
        tree = self._new_leaf(point, h_init)
        next_point = point
        for depth in range(self.max_tree_depth + 1):
            # uniformly sample direction to expand tree in
            direction = 2 * (rng.uniform() < 0.5) - 1
            edge = tree.positive if direction == 1 else tree.negative
            edge.dir = direction
            terminate, new_tree, new_proposal = self._build_tree(
                depth, edge, metric, step_size, h_init, stats, rng)
            if terminate:
                break
            # biased progressive sampling favouring the new subtree
            accept_proposal_prob = log_weight_ratio(
                new_tree.log_weight, tree.log_weight)
            if rng.uniform() < accept_proposal_prob:
                next_point = new_proposal
            neg_subtree = tree if direction == 1 else new_tree
            pos_subtree = new_tree if direction == 1 else tree
            tree = self._merge_subtrees(neg_subtree, pos_subtree)
            if self._termination_criterion(
                    metric, tree, neg_subtree, pos_subtree):
                break
        stats['tree_depth'] = depth
        return next_point

    def _sample_static(self, point, metric, step_size, h_init, stats, rng):
        stats['tree_depth'] = 0
        proposal = point
        try:
            for s in range(self.n_step):
                stats['n_leapfrog'] += 1
                proposal = self.integrator.step(proposal, metric, step_size)
            h = self.hamiltonian.energy(proposal, metric)
            h = inf if isnan(h) else h
            if h - h_init > self.max_delta_h:
                raise HamiltonianDivergenceError(f'delta_h = {h - h_init}')
            accept_prob = _accept_prob(h_init, h)
        except IntegratorError as e:
            _process_integrator_error(e, stats)
            accept_prob = 0.
        stats['sum_accept_prob'] = accept_prob * stats['n_leapfrog']
        return proposal if rng.uniform() < accept_prob else point

    def sample(self, sampler_state, rng):
        """Sample a new chain point.

        The `point` attribute of `sampler_state` is updated to a read-only
        copy of the sampled point; the step size and metric are only read.

        Args:
            sampler_state (adanuts.states.SamplerState): Current chain state.
            rng (numpy.random.Generator): Numpy random number generator.

        Returns:
            point (adanuts.states.PhasePoint): New chain point.
            stats (Dict[str, Any]): Dictionary of transition statistics:
                `accept_stat` (average Metropolis acceptance probability over
                the integrator steps), `n_leapfrog`, `tree_depth`, `divergent`,
                `energy` (Hamiltonian at new point) and `step_size` (step size
                used in transition).
        """
        metric = sampler_state.metric
        step_size = sampler_state.step_size
        if self.stepsize_jitter > 0:
            step_size *= 1 + self.stepsize_jitter * (2 * rng.uniform() - 1)
        point = self.hamiltonian.initialize(
            sampler_state.point.copy(), metric, rng)
        h_init = self.hamiltonian.energy(point, metric)
        stats = {'n_leapfrog': 0, 'sum_accept_prob': 0., 'divergent': False}
        if self.n_step is None:
            next_point = self._sample_dynamic(
                point, metric, step_size, h_init, stats, rng)
        else:
            next_point = self._sample_static(
                point, metric, step_size, h_init, stats, rng)
        sum_accept_prob = stats.pop('sum_accept_prob')
        stats['accept_stat'] = (
            sum_accept_prob / stats['n_leapfrog'] if stats['n_leapfrog'] > 0
            else 0.)
        stats['energy'] = self.hamiltonian.energy(next_point, metric)
        stats['step_size'] = step_size
        next_point = next_point.copy(read_only=True)
        sampler_state.point = next_point
        return next_point, stats
