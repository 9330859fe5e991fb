# gmm_em/_exceptions.py
"""Error types raised by the fitting routines.

Invalid arguments are reported with the builtin ``ValueError``. Numerical
degeneracy discovered while fitting (for example a covariance that is not
positive-definite) is reported with ``FittingFailureError``, chained to
the underlying cause.
"""


class FittingFailureError(RuntimeError):
    """A statistical model could not be constructed from the given data."""
