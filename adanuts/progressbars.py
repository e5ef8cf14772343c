"""Text progress bars for tracking progress of chains."""

import abc
import sys
from timeit import default_timer as timer


def _format_time(total_seconds):
    """Format a time interval in seconds as a colon-delimited string [h:]m:s"""
    total_mins, seconds = divmod(int(total_seconds), 60)
    hours, mins = divmod(total_mins, 60)
    if hours != 0:
        return f'{hours:d}:{mins:02d}:{seconds:02d}'
    else:
        return f'{mins:02d}:{seconds:02d}'


def _update_stats_running_means(iter_count, means, new_vals):
    """Update dictionary of running statistics means with latest values."""
    for key, val in new_vals.items():
        if iter_count == 1 or key not in means:
            means[key] = float(val)
        else:
            means[key] += (float(val) - means[key]) / iter_count


class BaseProgressBar(abc.ABC):
    """Base class defining expected interface for progress bars."""

    def __init__(self, n_iter, description=None):
        """
        Args:
            n_iter (int): Total number of iterations being tracked.
            description (None or str): Description of task to prefix progress
                bar with.
        """
        self.n_iter = n_iter
        self.description = description
        self._active = False

    @abc.abstractmethod
    def update(self, iter_count, iter_dict=None):
        """Update progress bar state.

        Args:
            iter_count (int): New value for iteration counter.
            iter_dict (None or Dict[str, float]): Dictionary of iteration
                statistics key-value pairs to use to update postfix stats.
        """

    def __enter__(self):
        self._active = True
        return self

    def __exit__(self, *args):
        self._active = False
        return False


class DummyProgressBar(BaseProgressBar):
    """Placeholder progress bar which does not display progress updates."""

    def update(self, iter_count, iter_dict=None):
        pass


class SequenceProgressBar(BaseProgressBar):
    """Single line text progress bar written to a terminal stream.

    The line shows the percentage and count of completed iterations, the
    elapsed and estimated remaining time and the running means of any
    statistics passed to `update`.
    """

    GLYPHS = ' ▏▎▍▌▋▊▉█'

    def __init__(self, n_iter, description=None, n_col=10, unit='it',
                 min_refresh_time=0.25, file=None):
        """
        Args:
            n_iter (int): Total number of iterations being tracked.
            description (None or str): Description of task to prefix progress
                bar with.
            n_col (int): Number of characters in bar.
            unit (str): String describing unit of per-iteration tasks.
            min_refresh_time (float): Minimum time in seconds between each
                refresh of the written line.
            file (None or File): Stream to write to. Defaults to `sys.stderr`.
        """
        super().__init__(n_iter, description)
        self._n_col = n_col
        self._unit = unit
        self._min_refresh_time = min_refresh_time
        self._file = file if file is not None else sys.stderr
        self._last_string_length = 0
        self.reset()

    @property
    def prop_complete(self):
        return self.counter / self.n_iter if self.n_iter > 0 else 1.

    @property
    def stats(self):
        return ', '.join(f'{k}={v:#.3g}' for k, v in self._stats_dict.items())

    def reset(self):
        """Reset progress bar state."""
        self.counter = 0
        self._start_time = timer()
        self._elapsed_time = 0.
        self._last_refresh_time = -float('inf')
        self._stats_dict = {}

    def _bar(self):
        n_filled = int(self._n_col * self.prop_complete)
        partial = self._n_col * self.prop_complete - n_filled
        bar = self.GLYPHS[-1] * n_filled
        if n_filled < self._n_col:
            bar += self.GLYPHS[int((len(self.GLYPHS) - 1) * partial)]
            bar += self.GLYPHS[0] * (self._n_col - n_filled - 1)
        return f'|{bar}|'

    def _timing(self):
        if self.counter == 0:
            return f'{_format_time(self._elapsed_time)}<?, ?'
        mean_time = self._elapsed_time / self.counter
        remaining = _format_time((self.n_iter - self.counter) * mean_time)
        rate = (
            f'{mean_time:.2f}s/{self._unit}' if mean_time > 1
            else f'{1 / mean_time:.2f}{self._unit}/s' if mean_time > 0
            else '?')
        return f'{_format_time(self._elapsed_time)}<{remaining}, {rate}'

    def __str__(self):
        prefix = f'{self.description}: ' if self.description else ''
        stats = f', {self.stats}' if self._stats_dict else ''
        return (
            f'{prefix}{int(self.prop_complete * 100):3d}%{self._bar()}'
            f'{self.counter}/{self.n_iter} [{self._timing()}{stats}]')

    def refresh(self):
        string = str(self)
        self._file.write(f'\r{string: <{self._last_string_length}}')
        self._file.flush()
        self._last_string_length = len(string)

    def update(self, iter_count, iter_dict=None):
        self.counter = max(0, min(iter_count, self.n_iter))
        if iter_dict is not None:
            _update_stats_running_means(
                iter_count, self._stats_dict, iter_dict)
        self._elapsed_time = timer() - self._start_time
        if iter_count == self.n_iter or (
                timer() - self._last_refresh_time > self._min_refresh_time):
            self.refresh()
            self._last_refresh_time = timer()

    def __enter__(self):
        super().__enter__()
        self.reset()
        return self

    def __exit__(self, *args):
        ret_val = super().__exit__()
        self.refresh()
        self._file.write('\n')
        self._file.flush()
        return ret_val
