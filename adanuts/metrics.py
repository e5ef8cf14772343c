"""Metric (mass matrix) representations for Euclidean Hamiltonian systems.

The metric matrix \\(M\\) defines the covariance of the Gaussian distribution
on the momentum variables. As adaptation estimates the covariance of the target
distribution, which is used as \\(M^{-1}\\), a metric here is stored in terms
of its *inverse* `inv_metric`. Three kinds are supported

  * `'unit'`: \\(M = I\\), no stored parameters,
  * `'diag'`: \\(M^{-1} = \\mathrm{diag}(v)\\) for a positive vector \\(v\\),
  * `'dense'`: \\(M^{-1} = C\\) for a positive definite matrix \\(C\\).

Metric objects are immutable values; computations depending on the kind are
performed by `adanuts.hamiltonian.Hamiltonian`.
"""

import numpy as np
import scipy.linalg as sla


METRIC_KINDS = ('unit', 'diag', 'dense')


class Metric(object):
    """Tagged metric value of kind `'unit'`, `'diag'` or `'dense'`."""

    def __init__(self, kind, inv_metric=None):
        """
        Args:
            kind (str): One of `'unit'`, `'diag'` or `'dense'`.
            inv_metric (None or array): Inverse of metric matrix
                representation. Must be `None` for a `'unit'` metric, a 1D
                array of positive values (diagonal of inverse metric) for a
                `'diag'` metric and a 2D symmetric positive definite array for
                a `'dense'` metric.
        """
        if kind not in METRIC_KINDS:
            raise ValueError(
                f'Metric kind must be one of {METRIC_KINDS}, got {kind!r}.')
        if kind == 'unit':
            if inv_metric is not None:
                raise ValueError('Unit metric does not take an inv_metric.')
        else:
            inv_metric = np.array(inv_metric, dtype=np.float64)
            if not np.all(np.isfinite(inv_metric)):
                raise ValueError('Inverse metric entries must all be finite.')
            if kind == 'diag':
                if inv_metric.ndim != 1:
                    raise ValueError('Diagonal inverse metric must be 1D.')
                if not np.all(inv_metric > 0):
                    raise ValueError(
                        'Diagonal inverse metric values must all be positive.')
            else:
                if inv_metric.ndim != 2 or (
                        inv_metric.shape[0] != inv_metric.shape[1]):
                    raise ValueError('Dense inverse metric must be square 2D.')
                if not np.allclose(inv_metric, inv_metric.T):
                    raise ValueError('Dense inverse metric must be symmetric.')
            inv_metric.flags.writeable = False
        self._kind = kind
        self._inv_metric = inv_metric
        self._chol_inv_metric = None
        if kind == 'dense':
            # Factorize eagerly so non positive definite matrices are rejected
            # at construction
            try:
                chol = sla.cholesky(inv_metric, lower=True)
            except sla.LinAlgError as e:
                raise ValueError(
                    'Dense inverse metric must be positive definite.') from e
            chol.flags.writeable = False
            self._chol_inv_metric = chol

    @classmethod
    def unit(cls):
        """Construct identity metric."""
        return cls('unit')

    @classmethod
    def diagonal(cls, inv_metric):
        """Construct diagonal metric from vector of inverse metric diagonal."""
        return cls('diag', inv_metric)

    @classmethod
    def dense(cls, inv_metric):
        """Construct dense metric from inverse metric matrix."""
        return cls('dense', inv_metric)

    @classmethod
    def identity_of_kind(cls, kind, size):
        """Construct a metric of given kind equal to the identity matrix.

        Args:
            kind (str): One of `'unit'`, `'diag'` or `'dense'`.
            size (int): Dimension of position space.

        Returns:
            Metric: Identity metric with `kind` representation.
        """
        if kind == 'unit':
            return cls.unit()
        elif kind == 'diag':
            return cls.diagonal(np.ones(size))
        else:
            return cls.dense(np.identity(size))

    @property
    def kind(self):
        return self._kind

    @property
    def inv_metric(self):
        """Inverse metric representation (`None` for unit metric)."""
        return self._inv_metric

    @property
    def chol_inv_metric(self):
        """Lower-triangular Cholesky factor of a dense inverse metric."""
        return self._chol_inv_metric

    @property
    def size(self):
        """Dimension of metric or `None` if unspecified (unit metric)."""
        return None if self._inv_metric is None else self._inv_metric.shape[0]

    def __eq__(self, other):
        if not isinstance(other, Metric) or other.kind != self.kind:
            return False
        return self.kind == 'unit' or (
            self.inv_metric.shape == other.inv_metric.shape and
            np.array_equal(self.inv_metric, other.inv_metric))

    def __hash__(self):
        if self.kind == 'unit':
            return hash(self.kind)
        return hash((self.kind, self.inv_metric.tobytes()))

    def __str__(self):
        if self.kind == 'unit':
            return 'Metric(kind=unit)'
        return f'Metric(kind={self.kind}, inv_metric={self.inv_metric})'

    def __repr__(self):
        return str(self)
