"""Configuration options for adaptive Hamiltonian Monte Carlo samplers."""

from dataclasses import dataclass, fields, asdict
from math import isfinite
from typing import Optional
from adanuts.metrics import METRIC_KINDS


_METRIC_KIND_ALIASES = {'diagonal': 'diag', 'diag_e': 'diag',
                        'dense_e': 'dense', 'unit_e': 'unit'}


@dataclass(frozen=True)
class SamplerConfig:
    """Options controlling an adaptive sampler chain.

    Attributes:
        num_warmup: Number of adaptive warm up iterations.
        num_samples: Number of non-adaptive sampling iterations.
        thinning: Period of iterations passed to the sample writer.
        target_accept_delta: Target average acceptance statistic for step
            size adaptation.
        max_tree_depth: Maximum depth of trajectory trees.
        metric_kind: One of `'unit'`, `'diag'` or `'dense'` (`'diagonal'` is
            accepted as an alias of `'diag'`).
        init_buffer: Iterations at start of warm up adapting only step size.
        term_buffer: Iterations at end of warm up adapting only step size.
        base_window_size: Iterations in first metric estimation window.
        stepsize_jitter: Fraction in `[0, 1)` to randomly perturb step size by.
        initial_stepsize: Nominal step size to start step size search from,
            with zero corresponding to starting the search from one.
        adapt_engaged: Whether to adapt step size and metric in warm up.
        save_warmup: Whether warm up iterations are passed to the writer.
        max_delta_h: Increase in Hamiltonian signalling a divergence.
        n_step: If not `None` use static trajectories with this many steps.
        init_radius: Half-width of interval to draw initial positions from.
        max_init_tries: Number of attempts to find a valid initial position.
        gamma: Dual averaging regularisation scale.
        kappa: Dual averaging relaxation exponent.
        t0: Dual averaging iteration offset.
    """

    num_warmup: int = 1000
    num_samples: int = 1000
    thinning: int = 1
    target_accept_delta: float = 0.8
    max_tree_depth: int = 10
    metric_kind: str = 'diag'
    init_buffer: int = 75
    term_buffer: int = 50
    base_window_size: int = 25
    stepsize_jitter: float = 0.
    initial_stepsize: float = 0.
    adapt_engaged: bool = True
    save_warmup: bool = False
    max_delta_h: float = 1000.
    n_step: Optional[int] = None
    init_radius: float = 2.
    max_init_tries: int = 100
    gamma: float = 0.05
    kappa: float = 0.75
    t0: float = 10.

    def __post_init__(self):
        kind = _METRIC_KIND_ALIASES.get(self.metric_kind, self.metric_kind)
        if kind not in METRIC_KINDS:
            raise ValueError(
                f'metric_kind must be one of {METRIC_KINDS}, got '
                f'{self.metric_kind!r}.')
        object.__setattr__(self, 'metric_kind', kind)
        for name in ('num_warmup', 'num_samples', 'init_buffer', 'term_buffer',
                     'max_tree_depth'):
            if getattr(self, name) < 0:
                raise ValueError(f'{name} must be non-negative.')
        if self.base_window_size < 2:
            raise ValueError('base_window_size must be at least 2.')
        for name in ('thinning', 'max_init_tries'):
            if getattr(self, name) < 1:
                raise ValueError(f'{name} must be positive.')
        if not 0 < self.target_accept_delta < 1:
            raise ValueError('target_accept_delta must be in (0, 1).')
        if not 0 <= self.stepsize_jitter < 1:
            raise ValueError('stepsize_jitter must be in [0, 1).')
        if not isfinite(self.initial_stepsize) or self.initial_stepsize < 0:
            raise ValueError('initial_stepsize must be non-negative.')
        if self.n_step is not None and self.n_step < 1:
            raise ValueError('n_step must be None or a positive integer.')
        if not self.max_delta_h > 0 or not self.init_radius > 0:
            raise ValueError('max_delta_h and init_radius must be positive.')
        if not self.gamma > 0 or not self.kappa > 0 or self.t0 < 0:
            raise ValueError(
                'gamma and kappa must be positive and t0 non-negative.')

    @classmethod
    def from_dict(cls, options):
        """Create configuration from a mapping of option names to values.

        Raises:
            ValueError: If any keys are not recognized option names or any
                values are invalid.
        """
        known = {f.name for f in fields(cls)}
        unknown = set(options) - known
        if unknown:
            raise ValueError(
                f'Unrecognized sampler options: {sorted(unknown)}.')
        return cls(**options)

    def to_dict(self):
        return asdict(self)
