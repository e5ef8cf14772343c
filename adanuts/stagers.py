"""Schedules splitting warm up iterations into adaptation windows."""

import abc
import logging
from collections import namedtuple

logger = logging.getLogger(__name__)


AdaptationWindow = namedtuple('AdaptationWindow', ['start', 'end', 'kind'])
AdaptationWindow.__doc__ = (
    'Range of warm up iterations `start` to `end` (both inclusive) of a given '
    '`kind`, one of `init_buffer`, `window` or `term_buffer`.')


class AdaptationWindowSchedule(object):
    """Ordered sequence of adaptation windows covering the warm up iterations.

    Iterations in windows of kind `'window'` are used to estimate the target
    distribution covariance, with the metric updated at the final iteration of
    each such window. In the initial and terminal buffers only the step size is
    adapted.
    """

    def __init__(self, num_warmup, windows):
        """
        Args:
            num_warmup (int): Total number of warm up iterations.
            windows (Sequence[AdaptationWindow]): Contiguous, ordered windows
                covering iterations `0` to `num_warmup - 1`. Windows of kind
                `'window'` must span at least two iterations.
        """
        windows = tuple(AdaptationWindow(*w) for w in windows)
        next_start = 0
        for window in windows:
            if window.start != next_start or window.end < window.start:
                raise ValueError(
                    f'Adaptation windows must be contiguous and non-empty, '
                    f'got {windows}.')
            if window.kind == 'window' and window.end == window.start:
                raise ValueError(
                    f'Estimation windows must span at least two iterations, '
                    f'got {window}.')
            next_start = window.end + 1
        if next_start != num_warmup:
            raise ValueError(
                f'Adaptation windows cover {next_start} iterations but '
                f'num_warmup={num_warmup}.')
        self.num_warmup = num_warmup
        self.windows = windows
        self._window_ends = frozenset(
            w.end for w in windows if w.kind == 'window')

    @property
    def estimation_windows(self):
        """Tuple of windows in which the covariance is estimated."""
        return tuple(w for w in self.windows if w.kind == 'window')

    def in_estimation_window(self, iteration):
        """Whether zero-indexed iteration is in an estimation window."""
        return any(
            w.start <= iteration <= w.end for w in self.estimation_windows)

    def is_window_end(self, iteration):
        """Whether zero-indexed iteration ends an estimation window."""
        return iteration in self._window_ends

    def __iter__(self):
        return iter(self.windows)

    def __len__(self):
        return len(self.windows)

    def __repr__(self):
        return (
            f'{type(self).__name__}(num_warmup={self.num_warmup}, '
            f'windows={list(self.windows)})')


class Stager(abc.ABC):
    """Abstract warm up iteration stager."""

    @abc.abstractmethod
    def schedule(self, num_warmup):
        """Construct adaptation window schedule for warm up iterations.

        Args:
            num_warmup (int): Number of adaptive warm up iterations.

        Returns:
            AdaptationWindowSchedule: Schedule of windows covering warm up.
        """


class WarmUpStager(Stager):
    """Stager with a single step size only adaptive warm up stage.

    All warm up iterations are put in a single buffer in which only the step
    size is adapted; used when the metric is not being adapted.
    """

    def schedule(self, num_warmup):
        windows = [] if num_warmup == 0 else [
            AdaptationWindow(0, num_warmup - 1, 'init_buffer')]
        return AdaptationWindowSchedule(num_warmup, windows)


class WindowedWarmUpStager(Stager):
    """Stager splitting warm up into buffers and growing estimation windows.

    Following the approach of [Stan](https://mc-stan.org) the warm up
    iterations are split into three stages:

      1. An initial buffer in which only the step size is adapted.
      2. A sequence of growing, memoryless estimation windows in which the
         covariance of the target distribution is estimated, with the metric
         updated to the estimate at the end of each window. Each window is
         double the length of the previous one; if the window after next would
         not fit before the terminal buffer the next window is instead extended
         to end at the terminal buffer.
      3. A terminal buffer in which only the step size is adapted.

    If fewer than 20 warm up iterations are requested no estimation windows are
    used, and if the configured buffer and initial window sizes do not fit in
    the warm up iterations they are rescaled to 15%, 75% and 10% of the warm up
    iterations.
    """

    def __init__(self, init_buffer=75, term_buffer=50, base_window=25):
        """
        Args:
            init_buffer (int): Number of iterations in initial buffer.
            term_buffer (int): Number of iterations in terminal buffer.
            base_window (int): Number of iterations in first estimation window.
                At least two iterations are needed to estimate a variance.
        """
        if init_buffer < 0 or term_buffer < 0:
            raise ValueError('Buffer sizes must be non-negative.')
        if base_window < 2:
            raise ValueError('Base window size must be at least 2.')
        self.init_buffer = init_buffer
        self.term_buffer = term_buffer
        self.base_window = base_window

    def schedule(self, num_warmup):
        if num_warmup < 20:
            logger.warning(
                f'No metric estimation is performed for num_warmup < 20 '
                f'(num_warmup={num_warmup}).')
            return WarmUpStager().schedule(num_warmup)
        init_buffer = self.init_buffer
        term_buffer = self.term_buffer
        base_window = self.base_window
        if init_buffer + base_window + term_buffer > num_warmup:
            init_buffer = int(0.15 * num_warmup)
            term_buffer = int(0.1 * num_warmup)
            base_window = num_warmup - (init_buffer + term_buffer)
            logger.warning(
                f'Not enough warm up iterations to fit the three stages of '
                f'adaptation as currently configured. Reducing each '
                f'adaptation stage to 15%/75%/10% of the given number of '
                f'warm up iterations: init_buffer={init_buffer}, '
                f'base_window={base_window}, term_buffer={term_buffer}.')
        windows = []
        if init_buffer > 0:
            windows.append(AdaptationWindow(0, init_buffer - 1, 'init_buffer'))
        last_window_end = num_warmup - term_buffer - 1
        window_size = base_window
        window_start = init_buffer
        window_end = init_buffer + window_size - 1
        while True:
            windows.append(
                AdaptationWindow(window_start, window_end, 'window'))
            if window_end >= last_window_end:
                break
            window_start = window_end + 1
            window_size *= 2
            window_end = window_end + window_size
            # extend next window to terminal buffer if the window following it
            # would not fit
            if window_end + 2 * window_size >= num_warmup - term_buffer:
                window_end = last_window_end
        if term_buffer > 0:
            windows.append(
                AdaptationWindow(last_window_end + 1, num_warmup - 1,
                                 'term_buffer'))
        return AdaptationWindowSchedule(num_warmup, windows)
