r"""Hamiltonian function of Euclidean-metric system and its derivatives.

The Hamiltonian function \(h\) is assumed to take the separable form

\[ h(q, p) = h_1(q) + h_2(p) \]

where \(q\) and \(p\) are the position and momentum variables respectively.
The potential energy component \(h_1\) is the negative logarithm of the
unnormalized target density on the position space

\[ h_1(q) = -\log \pi(q) \]

and the kinetic energy component \(h_2\) is the negative logarithm of a zero
mean Gaussian density on the momentum with covariance equal to the metric
matrix \(M\)

\[ h_2(p) = \frac{1}{2} p^T M^{-1} p. \]
"""

import numpy as np
import scipy.linalg as sla
from adanuts.errors import DomainError, NonFiniteDensityError
from adanuts.states import cache_in_state


class Hamiltonian(object):
    """Hamiltonian for a target model and a Euclidean metric.

    Owns all calls to the model log density and gradient function, with the
    values computed at a point being cached in the point object. The metric is
    not stored on the object but passed explicitly to the methods depending on
    it, with computations branching on the metric kind.
    """

    def __init__(self, model):
        """
        Args:
            model (adanuts.models.Model): Target distribution model.
        """
        self.model = model

    @cache_in_state('pos')
    def _neg_log_dens_and_grad(self, point):
        try:
            log_dens, grad = self.model.log_density_and_gradient(point.pos)
        except (DomainError, ArithmeticError) as e:
            raise NonFiniteDensityError(
                f'Model evaluation failed at position {point.pos}: {e}') from e
        if not np.isfinite(log_dens):
            raise NonFiniteDensityError(f'Log density value {log_dens}.')
        if not np.all(np.isfinite(grad)):
            raise NonFiniteDensityError(
                'Gradient of log density has non-finite components.')
        return -log_dens, -grad

    def neg_log_dens(self, point):
        """Negative log of unnormalized target density (potential energy).

        Args:
            point (adanuts.states.PhasePoint): Point to compute value at.

        Returns:
            float: Value of negative log density.

        Raises:
            adanuts.errors.NonFiniteDensityError: If the model returns a
                non-finite value or raises a domain error.
        """
        return self._neg_log_dens_and_grad(point)[0]

    def grad_neg_log_dens(self, point):
        """Derivative of negative log density with respect to position.

        Args:
            point (adanuts.states.PhasePoint): Point to compute value at.

        Returns:
            array: Value of `neg_log_dens(point)` derivative with respect to
                `point.pos`.
        """
        return self._neg_log_dens_and_grad(point)[1]

    def log_density(self, point):
        """Logarithm of unnormalized target density at point position."""
        return -self.neg_log_dens(point)

    def gradient(self, point):
        """Gradient of Hamiltonian with respect to the position."""
        return self.grad_neg_log_dens(point)

    def velocity(self, point, metric):
        """Derivative of Hamiltonian with respect to momentum, `M^{-1} p`.

        Args:
            point (adanuts.states.PhasePoint): Point to compute value at.
            metric (adanuts.metrics.Metric): Metric defining kinetic energy.

        Returns:
            array: Value of `h(point)` derivative with respect to `point.mom`.
        """
        if metric.kind == 'unit':
            return point.mom
        elif metric.kind == 'diag':
            return metric.inv_metric * point.mom
        else:
            return metric.inv_metric @ point.mom

    def kinetic(self, point, metric):
        """Kinetic energy component of Hamiltonian.

        Args:
            point (adanuts.states.PhasePoint): Point to compute value at.
            metric (adanuts.metrics.Metric): Metric defining kinetic energy.

        Returns:
            float: Value of kinetic energy.
        """
        return 0.5 * float(point.mom @ self.velocity(point, metric))

    def energy(self, point, metric):
        """Hamiltonian function (total energy) at a point.

        Args:
            point (adanuts.states.PhasePoint): Point to compute value at.
            metric (adanuts.metrics.Metric): Metric defining kinetic energy.

        Returns:
            float: Value of Hamiltonian.
        """
        return self.neg_log_dens(point) + self.kinetic(point, metric)

    def sample_momentum(self, point, metric, rng):
        """Sample a momentum from the Gaussian distribution defined by metric.

        Args:
            point (adanuts.states.PhasePoint): Point defining position space
                dimension.
            metric (adanuts.metrics.Metric): Metric defining momentum
                covariance.
            rng (numpy.random.Generator): Numpy random number generator.

        Returns:
            mom (array): Sampled momentum.
        """
        std_normal = rng.standard_normal(np.shape(point.pos))
        if metric.kind == 'unit':
            return std_normal
        elif metric.kind == 'diag':
            return std_normal / metric.inv_metric**0.5
        else:
            # inv_metric = L @ L.T so metric = L^-T @ L^-1 has square root L^-T
            return sla.solve_triangular(
                metric.chol_inv_metric, std_normal, lower=True, trans='T')

    def initialize(self, point, metric, rng):
        """Resample momentum and evaluate potential terms at point position.

        `point` argument is modified in place.

        Args:
            point (adanuts.states.PhasePoint): Point to initialize.
            metric (adanuts.metrics.Metric): Metric defining momentum
                covariance.
            rng (numpy.random.Generator): Numpy random number generator.

        Returns:
            point (adanuts.states.PhasePoint): Initialized point.
        """
        point.mom = self.sample_momentum(point, metric, rng)
        self._neg_log_dens_and_grad(point)
        return point

    def pos_flow(self, point, metric, dt):
        """Apply exact flow map corresponding to kinetic energy component.

        `point` argument is modified in place.

        Args:
            point (adanuts.states.PhasePoint): Point to start flow at.
            metric (adanuts.metrics.Metric): Metric defining kinetic energy.
            dt (float): Time interval to simulate flow for.
        """
        point.pos = point.pos + dt * self.velocity(point, metric)

    def mom_flow(self, point, dt):
        """Apply exact flow map corresponding to potential energy component.

        `point` argument is modified in place.

        Args:
            point (adanuts.states.PhasePoint): Point to start flow at.
            dt (float): Time interval to simulate flow for.
        """
        point.mom = point.mom - dt * self.gradient(point)
