"""Utility functions."""

from math import log1p, exp, inf, isnan


def log1p_exp(val):
    """Numerically stable implementation of `log(1 + exp(val))`."""
    if val > 0.:
        return val + log1p(exp(-val))
    else:
        return log1p(exp(val))


def log_sum_exp(val1, val2):
    """Numerically stable implementation of `log(exp(val1) + exp(val2))`."""
    if val1 == -inf and val2 == -inf:
        return -inf
    elif val1 > val2:
        return val1 + log1p_exp(val2 - val1)
    else:
        return val2 + log1p_exp(val1 - val2)


def log_weight_ratio(log_numerator, log_denominator):
    """Ratio of two weights specified by their logarithms clipped to [0, 1].

    Used to compute the probability of moving to a proposal in progressive
    sampling schemes, with a zero-weight (`-inf` logarithm) denominator
    corresponding to a ratio of zero.
    """
    if log_denominator == -inf or isnan(log_numerator):
        return 0.
    diff = log_numerator - log_denominator
    return 1. if diff >= 0 else exp(diff)
