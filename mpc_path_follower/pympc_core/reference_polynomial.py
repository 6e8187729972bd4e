"""
Polynomial reference curve fitted to vehicle-frame waypoints.

The reference path is represented locally as y = f(x), a polynomial of
fixed degree (3 by default) fitted by least squares to the waypoints
after they have been moved into the vehicle frame. Because the vehicle
sits at the local origin heading along +x:

- cross-track error  = f(0) = coeffs[0]
- heading error      = -atan(f'(0)) = -atan(coeffs[1])

Fitting goes through a Householder QR of the Vandermonde matrix rather
than the normal equations, which square its condition number.

polyeval()/polyderiv() only use + and *, so they evaluate floats, numpy
arrays and CasADi symbols alike.
"""

import math
from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np

from .errors import InsufficientWaypoints, NumericDegeneracy

DEFAULT_ORDER = 3

# Relative size of the smallest |R_ii| below which the fit is rank deficient
_RANK_TOLERANCE = 1e-10


def polyfit(xs, ys, order: int = DEFAULT_ORDER) -> np.ndarray:
    """
    Least-squares polynomial fit, lowest-order coefficient first.

    Args:
        xs, ys: Sample points (equal length)
        order: Polynomial degree

    Returns:
        Coefficients [order + 1]
    """
    if order < 1:
        raise ValueError(f"Polynomial order must be >= 1, got {order}")
    xs = np.asarray(xs, dtype=np.float64).ravel()
    ys = np.asarray(ys, dtype=np.float64).ravel()
    if xs.shape != ys.shape:
        raise ValueError(f"x/y lengths differ: {xs.size} vs {ys.size}")
    if xs.size < order + 1:
        raise InsufficientWaypoints(xs.size, order + 1)
    if not (np.all(np.isfinite(xs)) and np.all(np.isfinite(ys))):
        raise NumericDegeneracy("Waypoints contain non-finite values")

    # Vandermonde matrix, columns 1, x, x^2, ...
    A = np.vander(xs, order + 1, increasing=True)
    Q, R = np.linalg.qr(A)

    diag = np.abs(np.diag(R))
    if diag.max() == 0.0 or diag.min() <= _RANK_TOLERANCE * diag.max():
        raise NumericDegeneracy(
            f"Waypoints do not determine a degree-{order} fit "
            f"(rank deficient design matrix)")

    try:
        coeffs = np.linalg.solve(R, Q.T @ ys)
    except np.linalg.LinAlgError as e:
        raise NumericDegeneracy(f"Polynomial fit failed: {e}") from e

    if not np.all(np.isfinite(coeffs)):
        raise NumericDegeneracy("Polynomial fit produced non-finite coefficients")
    return coeffs


def polyeval(coeffs: Sequence, x):
    """Horner evaluation of sum(coeffs[i] * x**i)."""
    result = coeffs[-1]
    for c in reversed(coeffs[:-1]):
        result = result * x + c
    return result


def polyderiv(coeffs: Sequence, x):
    """Horner evaluation of the first derivative."""
    n = len(coeffs) - 1
    if n == 0:
        return 0.0 * x
    result = n * coeffs[n]
    for k in range(n - 1, 0, -1):
        result = result * x + k * coeffs[k]
    return result


@dataclass(frozen=True)
class ReferencePolynomial:
    """Immutable local reference curve y = f(x) in the vehicle frame."""
    coeffs: Tuple[float, ...]

    @classmethod
    def fit(cls, xs, ys, order: int = DEFAULT_ORDER) -> 'ReferencePolynomial':
        return cls(tuple(float(c) for c in polyfit(xs, ys, order)))

    @property
    def order(self) -> int:
        return len(self.coeffs) - 1

    def evaluate(self, x):
        return polyeval(self.coeffs, x)

    def slope(self, x):
        return polyderiv(self.coeffs, x)

    def desired_heading(self, x) -> float:
        """Tangent angle of the curve at x."""
        return float(np.arctan(self.slope(x)))

    def cross_track_error(self) -> float:
        return float(self.evaluate(0.0))

    def heading_error(self) -> float:
        return -math.atan(self.coeffs[1])

    def sample(self, n_points: int = 25,
               spacing: float = 2.5) -> Tuple[np.ndarray, np.ndarray]:
        """Evenly spaced points along +x from the origin (reference line display)."""
        xs = np.arange(n_points) * spacing
        return xs, np.asarray(self.evaluate(xs), dtype=np.float64)

    def as_array(self) -> np.ndarray:
        return np.array(self.coeffs)
