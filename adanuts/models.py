"""Interface for target distribution models evaluated by the sampler."""

from abc import ABC, abstractmethod
import numpy as np
AUTOGRAD_AVAILABLE = True
try:
    from autograd import value_and_grad
except ImportError:
    AUTOGRAD_AVAILABLE = False


class Model(ABC):
    """Abstract target distribution model.

    A model defines an unnormalized probability density on an unconstrained
    real-valued position space of fixed dimension, which the sampler produces
    approximate samples from.
    """

    @abstractmethod
    def dimension(self):
        """Dimension of the position space.

        Returns:
            int: Number of position components.
        """

    @abstractmethod
    def log_density_and_gradient(self, pos):
        """Logarithm of unnormalized target density and its gradient.

        Implementations should raise `adanuts.errors.DomainError` when
        evaluated at a position outside the support of the target
        distribution. This is treated by the sampler as a divergence of the
        simulated dynamics rather than as a fatal error.

        Args:
            pos (array): Position to evaluate at.

        Returns:
            log_dens (float): Logarithm of unnormalized density at `pos`.
            grad_log_dens (array): Gradient of `log_dens` with respect to
                `pos`.
        """


class DensityModel(Model):
    """Model defined by Python functions of the position.

    The gradient function may be omitted in which case, if Autograd is
    installed, it will be constructed by automatic differentiation of the
    log density function (which then needs to be written using
    `autograd.numpy`).
    """

    def __init__(self, log_dens, dimension, grad_log_dens=None):
        """
        Args:
            log_dens (Callable[[array], float]): Function which given a
                position array returns the logarithm of an unnormalized
                probability density on the position space.
            dimension (int): Dimension of the position space.
            grad_log_dens (None or Callable[[array], array]): Function which
                given a position array returns the gradient of `log_dens`. If
                `None` (the default) Autograd will be used to construct the
                gradient if available.
        """
        if dimension < 1:
            raise ValueError('Model dimension must be positive.')
        self._log_dens = log_dens
        self._dimension = dimension
        if grad_log_dens is None:
            if not AUTOGRAD_AVAILABLE:
                raise ValueError(
                    'Autograd not available therefore grad_log_dens must be '
                    'provided.')
            self._value_and_grad = value_and_grad(log_dens)
        else:
            self._value_and_grad = None
        self._grad_log_dens = grad_log_dens

    def dimension(self):
        return self._dimension

    def log_density_and_gradient(self, pos):
        if self._value_and_grad is not None:
            log_dens, grad = self._value_and_grad(pos)
        else:
            log_dens = self._log_dens(pos)
            grad = self._grad_log_dens(pos)
        return float(log_dens), np.asarray(grad, dtype=np.float64)
