"""Objects for recording sampler state and caching computations."""

import copy
from functools import wraps
from collections import Counter
from adanuts.errors import ReadOnlyStateError


def _cache_key_func(owner, method):
    """Construct cache key for a given owner object and method pair."""
    if not isinstance(method, str):
        method = method.__name__
    return (f'{type(owner).__name__}.{method}', id(owner))


def cache_in_state(*depends_on):
    """Memoizing decorator for methods computing functions of a phase point.

    Used to decorate `adanuts.hamiltonian.Hamiltonian` methods which compute a
    function of one or more phase point variable(s), with the decorated method
    caching the value returned by the method being wrapped in the `PhasePoint`
    object to prevent the need for recomputation on future calls if the
    variables the returned value depends on have not been changed in between
    the calls.

    Additionally for `PhasePoint` instances initialized with a `_call_counts`
    argument, the memoized method will update a counter for the method in the
    `_call_counts` attribute every time the method being decorated is called
    (i.e. when there isn't a valid cached value available), including calls
    which raise an exception.

    Args:
       *depends_on: One or more strings corresponding to the names of any point
           variables the value returned by the method depends on, e.g. 'pos' or
           'mom', such that the cache in the point object is correctly cleared
           when the value of any of these variables (attributes) changes.
    """
    def cache_in_state_decorator(method):
        @wraps(method)
        def wrapper(self, point):
            key = _cache_key_func(self, method)
            if key not in point._cache:
                for dep in depends_on:
                    point._dependencies[dep].add(key)
            if key not in point._cache or point._cache[key] is None:
                if point._call_counts is not None:
                    point._call_counts[key] += 1
                point._cache[key] = method(self, point)
            return point._cache[key]
        return wrapper
    return cache_in_state_decorator


class PhasePoint(object):
    """Point in the position-momentum phase space of a Hamiltonian system.

    As well as recording the position, momentum and integration direction, the
    point object is also used to cache derived quantities such as the log
    density and its gradient at the position, to avoid recalculation if these
    values are subsequently reused. Assigning a new value to a variable clears
    any cached values depending on it.
    """

    _variable_names = ('pos', 'mom', 'dir')

    def __init__(self, pos, mom=None, dir=1, *, _call_counts=None,
                 _read_only=False, _dependencies=None, _cache=None):
        """
        Args:
            pos (array): Position component of point.
            mom (None or array): Momentum component of point. May be `None` if
                not yet sampled.
            dir (int): Integration time direction, either 1 (forward) or -1
                (backward).

        Kwargs:
            _call_counts (None or Dict): If a dictionary is passed this will be
                used to store counts of the number of calls of methods
                decorated with `cache_in_state` when no cached value is
                available. The dictionary persists between all copies of a
                point so can be used to count the number of model evaluations
                across a chain.
            _read_only (bool): If `True` a `adanuts.errors.ReadOnlyStateError`
                exception will be raised when attempting to set any variables
                of the point after construction.
            _dependencies (None or Dict): Intended for internal use only.
                Mapping from variable names to sets of cache keys of values
                depending on the variable.
            _cache (None or Dict): Intended for internal use only. Mapping from
                cache keys to cached values (or `None` if invalidated).
        """
        # Set attributes by directly writing to __dict__ to ensure set before
        # any call to __setattr__
        self.__dict__['_variables'] = {'pos': pos, 'mom': mom, 'dir': dir}
        if _dependencies is None:
            _dependencies = {name: set() for name in self._variable_names}
        self.__dict__['_dependencies'] = _dependencies
        self.__dict__['_cache'] = {} if _cache is None else _cache
        self.__dict__['_call_counts'] = (
            Counter(_call_counts) if _call_counts is not None and
            not isinstance(_call_counts, Counter) else _call_counts)
        self.__dict__['_read_only'] = _read_only

    def __getattr__(self, name):
        if name in self._variables:
            return self._variables[name]
        else:
            raise AttributeError(
                f"'{type(self).__name__}' object has no attribute '{name}'")

    def __setattr__(self, name, value):
        if self._read_only:
            raise ReadOnlyStateError('PhasePoint instance is read-only.')
        if name in self._variables:
            self._variables[name] = value
            # clear any dependent cached values
            for dep in self._dependencies[name]:
                self._cache[dep] = None
        else:
            return super().__setattr__(name, value)

    @property
    def call_counts(self):
        """Counter of cached method evaluations or `None` if not tracked."""
        return self._call_counts

    def copy(self, read_only=False):
        """Create a deep copy of the point object.

        Args:
            read_only (bool): Whether the point copy should be read-only.

        Returns:
            point_copy (PhasePoint): A copy of the point object with variables
                that are independent copies of the original point's variables.
        """
        return type(self)(
            _dependencies=self._dependencies, _cache=self._cache.copy(),
            _call_counts=self._call_counts, _read_only=read_only,
            **{name: copy.copy(val) for name, val in self._variables.items()})

    def __str__(self):
        return (
            '(\n ' +
            ',\n '.join([f'{k}={v}' for k, v in self._variables.items()]) +
            ')'
        )

    def __repr__(self):
        return type(self).__name__ + str(self)

    def __getstate__(self):
        return {
            'variables': self._variables,
            'dependencies': self._dependencies,
            'cache': self._cache,
            'call_counts': self._call_counts,
            'read_only': self._read_only}

    def __setstate__(self, state):
        self.__dict__['_variables'] = state['variables']
        self.__dict__['_dependencies'] = state['dependencies']
        self.__dict__['_cache'] = state['cache']
        self.__dict__['_call_counts'] = state['call_counts']
        self.__dict__['_read_only'] = state['read_only']


class SamplerState(object):
    """Mutable state of a single adaptive Hamiltonian Monte Carlo chain.

    Groups all of the quantities which change over the course of sampling a
    chain, so that these are passed explicitly to the operations which read or
    update them rather than being held as attributes of the operation objects.

    Attributes:
        point (PhasePoint): Current phase point of chain.
        step_size (float): Current (nominal) integrator step size.
        metric (adanuts.metrics.Metric): Current metric.
        step_size_adapt_state (None or DualAveragingState): State of step size
            adaptation or `None` if not adapting.
        metric_adapt_state (None or WindowedMetricAdapterState): State of
            metric adaptation or `None` if not adapting.
        iteration (int): Number of completed chain iterations.
    """

    def __init__(self, point, step_size, metric, step_size_adapt_state=None,
                 metric_adapt_state=None, iteration=0):
        self.point = point
        self.step_size = step_size
        self.metric = metric
        self.step_size_adapt_state = step_size_adapt_state
        self.metric_adapt_state = metric_adapt_state
        self.iteration = iteration

    def __repr__(self):
        return (
            f'{type(self).__name__}(step_size={self.step_size}, '
            f'metric={self.metric}, iteration={self.iteration})')
