"""Exception types."""


class Error(RuntimeError):
    """Base class for errors."""


class DomainError(Error, ValueError):
    """Error raised by a model when evaluated at a position outside support."""


class IntegratorError(Error):
    """Error raised when integrator step fails."""


class NonFiniteDensityError(IntegratorError):
    """Error raised when log density or its gradient is non-finite."""


class HamiltonianDivergenceError(IntegratorError):
    """Error raised when integration of Hamiltonian dynamics diverges."""


class InitializationError(Error):
    """Error raised when no valid initial chain position can be found."""


class AdaptationError(Error):
    """Error raised when adaptation of transition parameters fails."""


class StepsizeSearchError(AdaptationError):
    """Error raised when search for a reasonable step size fails."""


class ImproperPosteriorError(StepsizeSearchError):
    """Error raised when step size search diverges to very large values."""


class ReadOnlyStateError(Error):
    """Error raised when writing to attributes of read-only chain state."""
