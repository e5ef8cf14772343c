"""Receivers for the samples and adaptation output of a chain."""

import abc
import logging
import numpy as np

logger = logging.getLogger(__name__)


class SampleWriter(abc.ABC):
    """Abstract receiver of chain samples.

    A writer is passed each sample produced by a chain in iteration order, and
    optionally a snapshot of the adapted metric and step size each time the
    metric is updated during warm up and once at the end of warm up.
    """

    @abc.abstractmethod
    def write(self, sample):
        """Record a sample.

        Args:
            sample (adanuts.samplers.Sample): Chain output for one iteration.
        """

    def write_adaptation(self, iteration, step_size, metric):
        """Record a snapshot of the adapted transition parameters.

        Args:
            iteration (int): Zero-indexed warm up iteration at which snapshot
                was taken.
            step_size (float): Step size after update.
            metric (adanuts.metrics.Metric): Metric after update.
        """

    def close(self):
        """Flush any buffered output and release resources."""


class MemorySampleWriter(SampleWriter):
    """Writer accumulating samples in memory.

    Samples are stored as they are written and can be retrieved either as the
    list of sample tuples or as a dictionary of arrays with leading dimension
    corresponding to the sample index.
    """

    def __init__(self):
        self.samples = []
        self.adaptations = []

    def write(self, sample):
        self.samples.append(sample)

    def write_adaptation(self, iteration, step_size, metric):
        logger.debug(
            f'Recording adapted step size {step_size} and metric {metric} at '
            f'iteration {iteration}.')
        self.adaptations.append(
            {'iteration': iteration, 'step_size': step_size, 'metric': metric})

    def __len__(self):
        return len(self.samples)

    def traces(self, include_warmup=True):
        """Stack recorded samples into arrays.

        Args:
            include_warmup (bool): Whether to include samples from warm up
                iterations (if any were written).

        Returns:
            Dict[str, array]: Dictionary with keys the fields of the sample
                type and values arrays with leading dimension the number of
                recorded samples.
        """
        samples = [s for s in self.samples if include_warmup or not s.warmup]
        if len(samples) == 0:
            return {}
        return {
            key: np.stack([getattr(s, key) for s in samples])
            for key in samples[0]._fields}
