"""Symplectic integrators for simulation of Hamiltonian dynamics."""

from abc import ABC, abstractmethod


class Integrator(ABC):
    """Base class for integrators."""

    def __init__(self, hamiltonian):
        """
        Args:
            hamiltonian (adanuts.hamiltonian.Hamiltonian): Hamiltonian of
                system to integrate the dynamics of.
        """
        self.hamiltonian = hamiltonian

    def step(self, point, metric, step_size):
        """Perform a single integrator step from a supplied point.

        The step is taken forward or backward in time depending on the value
        of the `dir` attribute of the point.

        Args:
            point (adanuts.states.PhasePoint): Point to perform integrator step
                from. Not modified by method.
            metric (adanuts.metrics.Metric): Metric defining kinetic energy.
            step_size (float): Positive integrator time step.

        Returns:
            new_point (adanuts.states.PhasePoint): New object corresponding to
                stepped point.

        Raises:
            adanuts.errors.NonFiniteDensityError: If the log density or its
                gradient evaluates to a non-finite value during the step.
        """
        point = point.copy()
        self._step(point, metric, point.dir * step_size)
        return point

    @abstractmethod
    def _step(self, point, metric, dt):
        """Implementation of single integrator step.

        Args:
            point (adanuts.states.PhasePoint): Point to perform integrator step
                from. Updated in place.
            metric (adanuts.metrics.Metric): Metric defining kinetic energy.
            dt (float): Integrator time step. May be positive or negative.
        """


class LeapfrogIntegrator(Integrator):
    r"""
    Leapfrog integrator for separable Euclidean-metric Hamiltonians.

    Each step consists of a half-step momentum update using the gradient of the
    potential energy, a full-step position update using the momentum and a
    further half-step momentum update (the 'kick-drift-kick' form of the
    Störmer-Verlet method). The resulting map is symplectic and, on negating
    the momentum (here the integration direction), exactly reversible.
    """

    def _step(self, point, metric, dt):
        self.hamiltonian.mom_flow(point, 0.5 * dt)
        self.hamiltonian.pos_flow(point, metric, dt)
        self.hamiltonian.mom_flow(point, 0.5 * dt)
