"""Adaptive Hamiltonian Monte Carlo samplers for performing inference."""

from collections import namedtuple, Counter
from contextlib import contextmanager
import enum
import logging
from math import log
import numpy as np
from numpy.random import default_rng
from adanuts.adapters import (
    init_step_size, DualAveragingStepSizeAdapter, WindowedMetricAdapter)
from adanuts.config import SamplerConfig
from adanuts.errors import (
    AdaptationError, InitializationError, NonFiniteDensityError)
from adanuts.hamiltonian import Hamiltonian
from adanuts.integrators import LeapfrogIntegrator
from adanuts.metrics import Metric
from adanuts.progressbars import SequenceProgressBar, DummyProgressBar
from adanuts.stagers import WarmUpStager, WindowedWarmUpStager
from adanuts.states import PhasePoint, SamplerState
from adanuts.transitions import TrajectoryBuilder
from adanuts.writers import MemorySampleWriter

# Preferentially import from multiprocess library if available as able to
# serialize much wider range of types including autograd functions
try:
    from multiprocess import Pool
    MULTIPROCESS_AVAILABLE = True
except ImportError:
    from multiprocessing import Pool
    MULTIPROCESS_AVAILABLE = False

logger = logging.getLogger(__name__)


Sample = namedtuple('Sample', [
    'pos', 'log_density', 'accept_stat', 'tree_depth', 'divergent',
    'n_leapfrog', 'energy', 'step_size', 'iteration', 'warmup'])
Sample.__doc__ = 'Position and transition diagnostics of one chain iteration.'


ChainOutput = namedtuple('ChainOutput', [
    'chain_index', 'traces', 'step_size', 'metric', 'adaptations',
    'interrupted', 'n_model_eval'])
ChainOutput.__doc__ = 'Recorded output of a chain sampled by `sample_chains`.'


class ChainStatus(enum.Enum):
    """Stages of an adaptive sampler chain."""
    INITIALIZING = 'initializing'
    WARMUP = 'warmup'
    SAMPLING = 'sampling'
    DONE = 'done'


def initialize_point(hamiltonian, dimension, rng, init_pos=None,
                     init_radius=2., max_init_tries=100):
    """Find a position at which the log density and its gradient are finite.

    The returned point records the number of model evaluations made from it
    and all of its copies in its `call_counts` attribute, including the
    evaluations at any rejected initial positions.

    Args:
        hamiltonian (adanuts.hamiltonian.Hamiltonian): Hamiltonian owning
            model evaluations.
        dimension (int): Dimension of position space.
        rng (numpy.random.Generator): Numpy random number generator.
        init_pos (None or array): User specified initial position. If not
            `None` this is the only position tried.
        init_radius (float): Random initial positions are drawn uniformly from
            `[-init_radius, init_radius]` in each component.
        max_init_tries (int): Number of random positions to try.

    Returns:
        PhasePoint: Point at valid initial position, with momentum unset.

    Raises:
        adanuts.errors.InitializationError: If no valid position is found.
    """
    if init_pos is not None:
        init_pos = np.array(init_pos, dtype=np.float64)
        if init_pos.shape != (dimension,):
            raise ValueError(
                f'init_pos shape {init_pos.shape} does not match model '
                f'dimension {dimension}.')
        candidates = [init_pos]
    else:
        candidates = (
            rng.uniform(-init_radius, init_radius, size=dimension)
            for _ in range(max_init_tries))
    call_counts = Counter()
    n_tries = 0
    for pos in candidates:
        n_tries += 1
        point = PhasePoint(pos=pos, _call_counts=call_counts)
        try:
            hamiltonian.neg_log_dens(point)
        except NonFiniteDensityError as e:
            logger.info(f'Rejecting initial position (try {n_tries}): {e}')
            continue
        return point
    raise InitializationError(
        f'No position with finite log density and gradient found after '
        f'{n_tries} attempt(s).')


class AdaptiveSampler(object):
    """Adaptive Hamiltonian Monte Carlo sampler for a single chain.

    The chain moves through the stages `INITIALIZING`, `WARMUP`, `SAMPLING`
    and `DONE`. On initialization a valid initial position is found and a
    coarse search used to set the initial step size. In each of the
    `num_warmup` warm up iterations a trajectory transition is followed by an
    update of the step size by dual averaging and of the metric adaptation
    state; each time the metric is updated at the end of an estimation window
    the step size search is repeated with the new metric and the dual averaging
    state restarted with `mu = log(10 * step_size)`. At the end of warm up the
    step size is set to the dual averaging smoothed estimate and the step size
    and metric are then fixed for the `num_samples` sampling iterations.

    Iterating over the sampler runs the chain, yielding one `Sample` per
    iteration. Samples are also passed to the writer, subject to the `thinning`
    and `save_warmup` options. The writer is closed when iteration ends,
    whether the chain completed, was interrupted, raised an error or the
    iterator was closed early.
    """

    def __init__(self, model, config=None, rng=None, writer=None,
                 interrupt=None, init_pos=None, chain_index=0):
        """
        Args:
            model (adanuts.models.Model): Target distribution model.
            config (None or SamplerConfig): Sampler options. Defaults used if
                `None`.
            rng (None or numpy.random.Generator): Numpy random number
                generator. A generator seeded from fresh entropy is created if
                `None`.
            writer (None or adanuts.writers.SampleWriter): Receiver of samples.
                Defaults to a `MemorySampleWriter`.
            interrupt (None or Callable[[], bool]): Polled before each
                iteration; sampling stops cleanly when it returns `True`.
            init_pos (None or array): Optional initial position.
            chain_index (int): Identifier for chain used in log messages.
        """
        self.model = model
        self.config = SamplerConfig() if config is None else config
        self.rng = default_rng() if rng is None else rng
        self.writer = MemorySampleWriter() if writer is None else writer
        self.interrupt = interrupt
        self.init_pos = init_pos
        self.chain_index = chain_index
        self.dimension = model.dimension()
        config = self.config
        self.hamiltonian = Hamiltonian(model)
        self.integrator = LeapfrogIntegrator(self.hamiltonian)
        self.transition = TrajectoryBuilder(
            self.hamiltonian, self.integrator,
            max_tree_depth=config.max_tree_depth,
            max_delta_h=config.max_delta_h, n_step=config.n_step,
            stepsize_jitter=config.stepsize_jitter)
        self.adapt = config.adapt_engaged and config.num_warmup > 0
        self.step_size_adapter = DualAveragingStepSizeAdapter(
            delta=config.target_accept_delta, gamma=config.gamma,
            kappa=config.kappa, t0=config.t0)
        if config.metric_kind == 'unit' or not self.adapt:
            stager = WarmUpStager()
        else:
            stager = WindowedWarmUpStager(
                init_buffer=config.init_buffer, term_buffer=config.term_buffer,
                base_window=config.base_window_size)
        self.schedule = stager.schedule(config.num_warmup)
        self.metric_adapter = WindowedMetricAdapter(
            self.schedule, kind=config.metric_kind)
        self.status = ChainStatus.INITIALIZING
        self.state = None
        self.interrupted = False

    @property
    def n_iter(self):
        """Total number of chain iterations."""
        return self.config.num_warmup + self.config.num_samples

    @property
    def n_model_eval(self):
        """Number of model log density and gradient evaluations so far."""
        if self.state is None:
            return 0
        return sum(self.state.point.call_counts.values())

    def _log_prefix(self):
        return f'Chain {self.chain_index + 1}'

    def initialize(self):
        """Find initial point and step size and move to first stage."""
        if self.status != ChainStatus.INITIALIZING:
            raise RuntimeError('Sampler has already been initialized.')
        config = self.config
        point = initialize_point(
            self.hamiltonian, self.dimension, self.rng, self.init_pos,
            config.init_radius, config.max_init_tries)
        metric = Metric.identity_of_kind(config.metric_kind, self.dimension)
        step_size = (
            config.initial_stepsize if config.initial_stepsize > 0 else 1.)
        if self.adapt:
            step_size = init_step_size(
                point, metric, step_size, self.integrator, self.rng)
        self.state = SamplerState(
            point=point, step_size=step_size, metric=metric,
            step_size_adapt_state=self.step_size_adapter.initialize(step_size),
            metric_adapt_state=self.metric_adapter.initialize(self.dimension))
        logger.info(
            f'{self._log_prefix()}: initialized with step size {step_size}.')
        self._set_status(ChainStatus.WARMUP if config.num_warmup > 0 else
                         ChainStatus.SAMPLING)

    def _set_status(self, status):
        if (status == ChainStatus.SAMPLING and
                self.state.iteration == self.n_iter):
            status = ChainStatus.DONE
        logger.info(f'{self._log_prefix()}: {self.status.value} -> '
                    f'{status.value}.')
        self.status = status

    def _adapt(self, accept_stat):
        state = self.state
        self.step_size_adapter.learn_stepsize(state, accept_stat)
        warmup_iter = state.iteration
        if self.metric_adapter.learn_variance(state):
            logger.info(
                f'{self._log_prefix()}: metric updated at warm up iteration '
                f'{warmup_iter}: {state.metric}')
            state.step_size = init_step_size(
                state.point, state.metric, state.step_size, self.integrator,
                self.rng)
            da_state = state.step_size_adapt_state
            self.step_size_adapter.set_mu(da_state, log(10 * state.step_size))
            self.step_size_adapter.restart(da_state)
            self.writer.write_adaptation(
                warmup_iter, state.step_size, state.metric)

    def _end_warmup(self):
        state = self.state
        if self.adapt:
            da_state = state.step_size_adapt_state
            # no dual averaging updates since last restart if metric was
            # updated on final warm up iteration so keep searched step size
            if da_state.counter > 0:
                state.step_size = self.step_size_adapter.complete_adaptation(
                    da_state)
            self.writer.write_adaptation(
                state.iteration - 1, state.step_size, state.metric)
            logger.info(
                f'{self._log_prefix()}: adaptation finished with step size '
                f'{state.step_size} and {state.metric}.')
        self._set_status(ChainStatus.SAMPLING)

    def step(self):
        """Perform one chain iteration.

        Returns:
            Sample: Output of iteration.
        """
        if self.status == ChainStatus.INITIALIZING:
            self.initialize()
        if self.status == ChainStatus.DONE:
            raise RuntimeError('Sampler has completed all iterations.')
        state = self.state
        warmup = self.status == ChainStatus.WARMUP
        point, stats = self.transition.sample(state, self.rng)
        if warmup and self.adapt:
            self._adapt(stats['accept_stat'])
        sample = Sample(
            pos=np.array(point.pos),
            log_density=self.hamiltonian.log_density(point),
            accept_stat=stats['accept_stat'], tree_depth=stats['tree_depth'],
            divergent=stats['divergent'], n_leapfrog=stats['n_leapfrog'],
            energy=stats['energy'], step_size=stats['step_size'],
            iteration=state.iteration, warmup=warmup)
        logger.debug(
            f'{self._log_prefix()}: iteration {state.iteration}, '
            f'step_size={stats["step_size"]:.4g}, '
            f'tree_depth={stats["tree_depth"]}, '
            f'divergent={stats["divergent"]}, energy={stats["energy"]:.4g}, '
            f'accept_stat={stats["accept_stat"]:.3f}')
        state.iteration += 1
        if warmup and state.iteration == self.config.num_warmup:
            self._end_warmup()
        elif state.iteration == self.n_iter:
            self._set_status(ChainStatus.DONE)
        return sample

    def _should_write(self, sample):
        if sample.warmup:
            return (self.config.save_warmup and
                    sample.iteration % self.config.thinning == 0)
        sampling_iter = sample.iteration - self.config.num_warmup
        return sampling_iter % self.config.thinning == 0

    def __iter__(self):
        try:
            if self.status == ChainStatus.INITIALIZING:
                self.initialize()
            while self.status != ChainStatus.DONE:
                if self.interrupt is not None and self.interrupt():
                    self._stop(f'at iteration {self.state.iteration}')
                    return
                try:
                    sample = self.step()
                except KeyboardInterrupt:
                    self._stop(
                        f'manually at iteration {self.state.iteration}')
                    return
                if self._should_write(sample):
                    self.writer.write(sample)
                yield sample
        finally:
            self.writer.close()

    def _stop(self, reason):
        self.interrupted = True
        logger.error(
            f'{self._log_prefix()}: sampling interrupted {reason}. Samples '
            f'produced before interruption have been kept.')

    def run(self):
        """Run chain to completion (or interruption).

        Returns:
            adanuts.writers.SampleWriter: Writer samples were passed to.
        """
        for _ in self:
            pass
        return self.writer


def _get_per_chain_rngs(base_rng, n_chain):
    """Construct independent random number generators for a set of chains.

    If the base generator's bit generator has a `jumped` method this is used
    to produce a sequence of independent random substreams. Otherwise if it
    has a `seed_seq` attribute this is used to spawn a sequence of generators.
    """
    bit_generator = getattr(base_rng, 'bit_generator', None)
    if bit_generator is not None and hasattr(bit_generator, 'jumped'):
        return [default_rng(bit_generator.jumped(i)) for i in range(n_chain)]
    elif bit_generator is not None and hasattr(bit_generator, 'seed_seq'):
        return [default_rng(seed) for seed in
                bit_generator.seed_seq.spawn(n_chain)]
    else:
        raise ValueError(
            f'Unsupported random number generator type {type(base_rng)}.')


@contextmanager
def _pool_context_manager(n_process):
    """Context-manager for process pool that ensures clean exiting.

    Calls `close` then `join` on exit to wait for worker processes to finish,
    rather than immediately stopping them with `terminate`.
    """
    pool = Pool(n_process)
    try:
        yield pool
    finally:
        pool.close()
        pool.join()


def _sample_chain(model, config, rng, init_pos, chain_index, n_chain,
                  display_progress, monitor_stats, interrupt):
    """Sample a single chain, handling fatal errors by discarding the chain."""
    sampler = AdaptiveSampler(
        model, config, rng, interrupt=interrupt, init_pos=init_pos,
        chain_index=chain_index)
    progress_bar_class = (
        SequenceProgressBar if display_progress else DummyProgressBar)
    try:
        with progress_bar_class(
                sampler.n_iter,
                f'Chain {chain_index + 1}/{n_chain}') as progress_bar:
            for i, sample in enumerate(sampler):
                progress_bar.update(i + 1, {
                    key: getattr(sample, key) for key in monitor_stats})
    except (InitializationError, AdaptationError) as e:
        logger.error(f'Chain {chain_index + 1} aborted: {e}')
        return None
    state = sampler.state
    logger.info(
        f'Chain {chain_index + 1}: {sampler.n_model_eval} model evaluations.')
    return ChainOutput(
        chain_index=chain_index, traces=sampler.writer.traces(),
        step_size=state.step_size, metric=state.metric,
        adaptations=sampler.writer.adaptations,
        interrupted=sampler.interrupted, n_model_eval=sampler.n_model_eval)


def sample_chains(model, n_chain, rng, config=None, init_positions=None,
                  n_process=1, display_progress=True,
                  monitor_stats=('accept_stat', 'n_leapfrog', 'divergent'),
                  interrupt=None):
    """Sample one or more independent chains.

    Args:
        model (adanuts.models.Model): Target distribution model.
        n_chain (int): Number of chains to sample.
        rng (numpy.random.Generator): Base random number generator from which
            independent per-chain generators are derived.
        config (None or SamplerConfig): Sampler options shared by all chains.
        init_positions (None or Sequence[array]): Optional per-chain initial
            positions.
        n_process (int): Number of parallel processes to sample chains in. If
            one chains are sampled sequentially in the current process.
        display_progress (bool): Whether to display per-chain progress bars
            (only shown when sampling sequentially).
        monitor_stats (Sequence[str]): Sample fields whose running means are
            shown in progress bars.
        interrupt (None or Callable[[], bool]): Polled before each iteration
            of each chain; a chain stops cleanly when it returns `True`. When
            sampling sequentially no further chains are started after an
            interrupted chain. When sampling in parallel the callable is
            copied to each worker process so must be picklable.

    Returns:
        List[ChainOutput]: Outputs of chains which were not aborted due to a
            fatal error, in chain order.
    """
    config = SamplerConfig() if config is None else config
    if init_positions is None:
        init_positions = [None] * n_chain
    elif len(init_positions) != n_chain:
        raise ValueError('Number of initial positions must equal n_chain.')
    rngs = _get_per_chain_rngs(rng, n_chain)
    chain_args = [
        (model, config, chain_rng, init_pos, chain_index, n_chain,
         display_progress and n_process == 1, monitor_stats, interrupt)
        for chain_index, (chain_rng, init_pos) in enumerate(
            zip(rngs, init_positions))]
    if n_process == 1:
        outputs = []
        for args in chain_args:
            output = _sample_chain(*args)
            outputs.append(output)
            if output is not None and output.interrupted:
                break
    else:
        if not MULTIPROCESS_AVAILABLE:
            logger.warning(
                'multiprocess not available, falling back to multiprocessing '
                'which cannot serialize closures or Autograd functions.')
        with _pool_context_manager(n_process) as pool:
            outputs = pool.starmap(_sample_chain, chain_args)
    outputs = [output for output in outputs if output is not None]
    if len(outputs) < n_chain:
        logger.warning(
            f'{n_chain - len(outputs)} of {n_chain} chains did not complete.')
    return outputs
