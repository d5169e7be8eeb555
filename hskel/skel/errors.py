"""Exception and warning taxonomy for the skeletonization factorizations.

Usage-contract violations are hard failures raised to the caller:

InvalidConfigurationError
    Malformed options, rejected before any construction work starts.
DimensionMismatchError
    Right-hand side does not match the dimension of the factorization.
FactorModeError
    Operation is not defined for the symmetry mode of the factorization.
AccuracyNotMetError
    A real-valued result was requested that the factorization cannot deliver
    (e.g. a real log-determinant of a matrix with negative determinant).

Construction-time numerical trouble is absorbed locally and reported with
`NumericalDegeneracyWarning` through `warnings.warn`.
"""

from __future__ import annotations


class InvalidConfigurationError(ValueError):
    """Raised when factorization options are malformed."""


class DimensionMismatchError(ValueError):
    """Raised when an operand does not conform to the factorization."""


class FactorModeError(ValueError):
    """Raised when an operation is incompatible with the symmetry mode."""


class AccuracyNotMetError(ArithmeticError):
    """Raised when a requested real result is not available from the factor."""


class NumericalDegeneracyWarning(RuntimeWarning):
    """Warn that a local block was singular and was retained or regularized."""
