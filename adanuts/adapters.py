"""Methods for adaptively setting the step size and metric during warm up."""

import logging
from math import exp, log, isfinite, isnan, inf
import numpy as np
from adanuts.errors import (
    IntegratorError, AdaptationError, ImproperPosteriorError,
    StepsizeSearchError)
from adanuts.metrics import Metric

logger = logging.getLogger(__name__)


MAX_STEP_SIZE = 1e7


def init_step_size(point, metric, step_size, integrator, rng,
                   max_step_size=MAX_STEP_SIZE):
    """Find a reasonable initial step size by a coarse search.

    Adaptation of Algorithm 4 in Hoffman and Gelman (2014) [1]. A single
    integrator step is taken from the point with a freshly sampled momentum and
    the resulting change in the Hamiltonian compared to a threshold of
    `log(0.8)`. Depending on whether the first trial step indicates the step
    size is too small or too large, the step size is then repeatedly doubled or
    halved, with the momentum resampled on each trial, until the comparison
    with the threshold flips. Trial steps in which the Hamiltonian evaluates to
    a non-finite value or the integrator step fails are treated as having an
    infinite Hamiltonian, biasing the search towards smaller step sizes.

    If the initial step size is zero, larger than `max_step_size` or
    non-finite no search is performed and the value is returned unchanged.

    Args:
        point (adanuts.states.PhasePoint): Point to search from. Must have
            finite log density and gradient. Not modified by function.
        metric (adanuts.metrics.Metric): Metric defining kinetic energy.
        step_size (float): Nominal step size to start search from.
        integrator (adanuts.integrators.Integrator): Integrator to take trial
            steps with.
        rng (numpy.random.Generator): Numpy random number generator.
        max_step_size (float): Step size above which search is abandoned.

    Returns:
        float: Step size found by search.

    Raises:
        adanuts.errors.ImproperPosteriorError: If the step size grows larger
            than `max_step_size`, typically indicating an improper target
            distribution with a negative log density which is flat in one or
            more directions.
        adanuts.errors.StepsizeSearchError: If the step size decays to zero,
            typically indicating a target density which is not continuous.

    References:

      1. Hoffman, M.D. and Gelman, A., 2014. The No-U-turn sampler:
         adaptively setting path lengths in Hamiltonian Monte Carlo.
         Journal of Machine Learning Research, 15(1), pp.1593-1623.
    """
    if step_size == 0 or not isfinite(step_size) or step_size > max_step_size:
        return step_size
    hamiltonian = integrator.hamiltonian
    init_point = point.copy()
    init_point.dir = 1
    # populate cache shared by trial point copies
    hamiltonian.neg_log_dens(init_point)
    delta_h_threshold = log(0.8)

    def trial_delta_h(step_size):
        trial_point = hamiltonian.initialize(init_point.copy(), metric, rng)
        h_init = hamiltonian.energy(trial_point, metric)
        try:
            trial_point = integrator.step(trial_point, metric, step_size)
            h = hamiltonian.energy(trial_point, metric)
        except IntegratorError:
            h = inf
        if isnan(h):
            h = inf
        return h_init - h

    direction = 1 if trial_delta_h(step_size) > delta_h_threshold else -1
    while True:
        delta_h = trial_delta_h(step_size)
        if direction == 1 and not delta_h > delta_h_threshold:
            break
        elif direction == -1 and not delta_h < delta_h_threshold:
            break
        step_size = 2 * step_size if direction == 1 else 0.5 * step_size
        if step_size > max_step_size:
            logger.warning(
                f'Step size search exceeded upper bound {max_step_size}.')
            raise ImproperPosteriorError(
                'Posterior is improper. Step size search grew step size past '
                f'{max_step_size}, indicating the negative log density may be '
                'flat in one or more directions. Please check your model.')
        if step_size == 0:
            logger.warning('Step size search decayed step size to zero.')
            raise StepsizeSearchError(
                'No acceptably small step size could be found. Perhaps the '
                'posterior is not continuous?')
    return step_size


class DualAveragingState(object):
    """State of dual averaging step size adaptation.

    Attributes:
        counter (int): Number of updates since last restart.
        s_bar (float): Running weighted average of adaptation statistic error.
        x_bar (float): Running weighted average of log step size.
        mu (float): Value log step size is regularized towards.
    """

    def __init__(self, mu, counter=0, s_bar=0., x_bar=0.):
        self.mu = mu
        self.counter = counter
        self.s_bar = s_bar
        self.x_bar = x_bar

    def __repr__(self):
        return (
            f'{type(self).__name__}(mu={self.mu}, counter={self.counter}, '
            f's_bar={self.s_bar}, x_bar={self.x_bar})')


class DualAveragingStepSizeAdapter(object):
    """Dual averaging integrator step size adapter.

    Implementation of the dual algorithm step size adaptation algorithm
    described in [1], a modified version of the stochastic optimisation scheme
    of [2]. The adaptation is performed to control the `accept_stat` statistic
    of the transition to be close to a target value `delta`.

    References:

      1. Hoffman, M.D. and Gelman, A., 2014. The No-U-turn sampler:
         adaptively setting path lengths in Hamiltonian Monte Carlo.
         Journal of Machine Learning Research, 15(1), pp.1593-1623.
      2. Nesterov, Y., 2009. Primal-dual subgradient methods for convex
         problems. Mathematical programming 120(1), pp.221-259.
    """

    def __init__(self, delta=0.8, gamma=0.05, kappa=0.75, t0=10):
        """
        Args:
            delta (float): Target value for the average acceptance statistic.
            gamma (float): Coefficient controlling amount of regularisation of
                log step size towards `mu`.
            kappa (float): Coefficient controlling exponent of decay in
                schedule weighting updates to smoothed log step size estimate.
                Should be in the interval (0.5, 1].
            t0 (float): Non-negative iteration offset stabilising early
                iterations.
        """
        if not 0 < delta < 1:
            raise ValueError('delta must be in the interval (0, 1).')
        if gamma <= 0 or kappa <= 0 or t0 < 0:
            raise ValueError(
                'gamma and kappa must be positive and t0 non-negative.')
        self.delta = delta
        self.gamma = gamma
        self.kappa = kappa
        self.t0 = t0

    def initialize(self, step_size):
        """Create adaptation state anchored at ten times initial step size."""
        return DualAveragingState(mu=log(10 * step_size))

    def learn_stepsize(self, sampler_state, accept_stat):
        """Update step size from acceptance statistic of latest transition.

        Updates `sampler_state.step_size_adapt_state` and
        `sampler_state.step_size` in place.

        Args:
            sampler_state (adanuts.states.SamplerState): Chain state.
            accept_stat (float): Acceptance statistic of latest transition.

        Returns:
            float: Updated step size.
        """
        da_state = sampler_state.step_size_adapt_state
        da_state.counter += 1
        accept_stat = min(accept_stat, 1.)
        eta = 1. / (da_state.counter + self.t0)
        da_state.s_bar = (
            (1. - eta) * da_state.s_bar + eta * (self.delta - accept_stat))
        x = da_state.mu - da_state.s_bar * da_state.counter**0.5 / self.gamma
        x_eta = da_state.counter**(-self.kappa)
        da_state.x_bar = (1. - x_eta) * da_state.x_bar + x_eta * x
        sampler_state.step_size = exp(x)
        return sampler_state.step_size

    def restart(self, da_state):
        """Reset dual averaging statistics, keeping `mu` fixed."""
        da_state.counter = 0
        da_state.s_bar = 0.
        da_state.x_bar = 0.

    def set_mu(self, da_state, mu):
        """Set value log step size is regularized towards."""
        da_state.mu = mu

    def complete_adaptation(self, da_state):
        """Final adapted step size corresponding to smoothed log step size."""
        return exp(da_state.x_bar)


class VarianceEstimator(object):
    """Online estimator of the (co)variance of a sequence of vectors.

    Uses Welford's algorithm [1] to stably compute an online estimate of the
    sample variances, or the full sample covariance matrix if `dense=True`.

    References:

      1. Welford, B. P., 1962. Note on a method for calculating corrected sums
         of squares and products. Technometrics, 4(3), pp. 419–420.
    """

    def __init__(self, size, dense=False):
        self.size = size
        self.dense = dense
        self.restart()

    def restart(self):
        """Discard all samples added so far."""
        self.num_samples = 0
        self.mean = np.zeros(self.size)
        self.sum_diff_sq = np.zeros(
            (self.size, self.size) if self.dense else self.size)

    def add_sample(self, value):
        self.num_samples += 1
        value_minus_mean = value - self.mean
        self.mean += value_minus_mean / self.num_samples
        if self.dense:
            self.sum_diff_sq += np.outer(
                value - self.mean, value_minus_mean)
        else:
            self.sum_diff_sq += value_minus_mean * (value - self.mean)

    def sample_variance(self):
        """Unbiased sample (co)variance estimate of samples added so far."""
        if self.num_samples < 2:
            raise AdaptationError(
                'At least two samples required to compute a variance '
                'estimate.')
        var_est = self.sum_diff_sq / (self.num_samples - 1)
        if self.dense:
            var_est = 0.5 * (var_est + var_est.T)
        return var_est


class WindowedMetricAdapterState(object):
    """State of windowed metric adaptation.

    Attributes:
        estimator (VarianceEstimator): Estimator for current window.
        iteration (int): Number of warm up iterations seen.
        window_index (int): Number of estimation windows closed.
    """

    def __init__(self, estimator):
        self.estimator = estimator
        self.iteration = 0
        self.window_index = 0


class WindowedMetricAdapter(object):
    """Metric adapter using windowed online (co)variance estimates.

    Within each estimation window of an adaptation window schedule the sample
    variances (`kind='diag'`) or covariance matrix (`kind='dense'`) of the
    chain positions are estimated online. At the end of each window the
    estimate is regularized towards a small multiple of the identity, with
    weight decreasing with the number of samples, following the approach in
    Stan [1], and the metric set to the one with the regularized estimate as
    its inverse. The estimator is reset at the start of each window so that
    each estimate only uses the samples from the latest (largest) window.

    References:

      1. Carpenter, B., Gelman, A., Hoffman, M.D., Lee, D., Goodrich, B.,
         Betancourt, M., Brubaker, M., Guo, J., Li, P. and Riddell, A., 2017.
         Stan: A probabilistic programming language. Journal of Statistical
         Software, 76(1).
    """

    def __init__(self, schedule, kind='diag', reg_iter_offset=5,
                 reg_scale=1e-3):
        """
        Args:
            schedule (adanuts.stagers.AdaptationWindowSchedule): Schedule
                defining estimation windows.
            kind (str): Kind of metric to adapt, `'diag'` or `'dense'`. If
                `'unit'` no adaptation is performed.
            reg_iter_offset (int): Iteration offset used for calculating
                sample count dependent weighting between regularisation target
                and current estimate.
            reg_scale (float): Positive scalar defining value variance
                estimates are regularized towards.
        """
        if kind not in ('unit', 'diag', 'dense'):
            raise ValueError(f'Unknown metric kind {kind!r}.')
        self.schedule = schedule
        self.kind = kind
        self.reg_iter_offset = reg_iter_offset
        self.reg_scale = reg_scale

    def initialize(self, size):
        """Create adaptation state for position space of given dimension."""
        return WindowedMetricAdapterState(
            VarianceEstimator(size, dense=self.kind == 'dense'))

    def _regularize(self, var_est, n_sample):
        weight = n_sample / (n_sample + self.reg_iter_offset)
        shrink = self.reg_scale * (
            self.reg_iter_offset / (n_sample + self.reg_iter_offset))
        if self.kind == 'dense':
            return weight * var_est + shrink * np.identity(var_est.shape[0])
        else:
            return weight * var_est + shrink

    def learn_variance(self, sampler_state):
        """Add current position to estimate, updating metric at window ends.

        Updates `sampler_state.metric_adapt_state` and, at the end of an
        estimation window, `sampler_state.metric` in place.

        Args:
            sampler_state (adanuts.states.SamplerState): Chain state.

        Returns:
            bool: Whether the metric was updated.

        Raises:
            adanuts.errors.AdaptationError: If the regularized estimate has
                non-finite entries.
        """
        adapt_state = sampler_state.metric_adapt_state
        iteration = adapt_state.iteration
        adapt_state.iteration += 1
        if self.kind == 'unit':
            return False
        if self.schedule.in_estimation_window(iteration):
            adapt_state.estimator.add_sample(sampler_state.point.pos)
        if not self.schedule.is_window_end(iteration):
            return False
        n_sample = adapt_state.estimator.num_samples
        var_est = self._regularize(
            adapt_state.estimator.sample_variance(), n_sample)
        if not np.all(np.isfinite(var_est)):
            raise AdaptationError(
                f'Non-finite {self.kind} metric estimate at end of window '
                f'{adapt_state.window_index + 1} (iteration {iteration}).')
        try:
            sampler_state.metric = Metric(self.kind, var_est)
        except ValueError as e:
            raise AdaptationError(
                f'Invalid {self.kind} metric estimate: {e}') from e
        adapt_state.estimator.restart()
        adapt_state.window_index += 1
        return True
