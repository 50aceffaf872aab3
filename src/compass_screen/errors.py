"""
Exception types raised by the COMPASS sampler.

Classes
-------
CompassError
    Base class for every error raised by this package.
InvalidInputError
    Count matrices, categories or preparation options that cannot be modelled.
NumericDegeneracyError
    A concentration parameter underflowed, overflowed or became non-finite.
"""


class CompassError(Exception):
    """Base class for errors raised by compass_screen."""
    pass


class InvalidInputError(CompassError, ValueError):
    """Raised when inputs are rejected before sampling starts."""
    pass


class NumericDegeneracyError(CompassError, FloatingPointError):
    """Raised when a Metropolis-Hastings proposal leaves the positive reals."""
    pass
