# gmm_em/_gaussian.py
"""Multivariate normal distributions with full or diagonal covariance.

Both classes are immutable. Everything needed to evaluate the density is derived
once at construction:

- full:     cov = L L^T (L lower), log|cov| = 2 * sum(log(diag(L))).
            The quadratic form d^T cov^{-1} d is evaluated as |y|^2 with
            L y = d (triangular solve), never through an explicit inverse.
- diagonal: the reciprocal variance and sum(log(var)).

Construction fails with FittingFailureError when the covariance is not
positive-definite (Cholesky failure) or a variance is too small.
"""

from __future__ import annotations

import math
from typing import Optional

import torch

from gmm_em._exceptions import FittingFailureError
from gmm_em._utils import (
    DTYPE,
    add_reg_diag,
    as_dataset,
    as_vector,
    check_dimension,
    check_regularization,
    weighted_mean_and_covariance,
    weighted_mean_and_variance,
)

LOG_2PI = math.log(2.0 * math.pi)


def _as_parameter(value, name: str) -> torch.Tensor:
    if value is None:
        raise ValueError(f"{name} must not be None")
    return torch.as_tensor(value, dtype=DTYPE).clone()


def _variance_tolerance(variance: torch.Tensor) -> float:
    """10 * eps(dtype) relative to the largest variance."""
    return float(10.0 * torch.finfo(variance.dtype).eps * variance.max().clamp_min(0.0))


class _MultivariateNormal:
    """Density evaluation shared by Gaussian and DiagonalGaussian."""

    _mean: torch.Tensor
    _log_determinant: float
    _log_normalization: float

    def _mahalanobis_squared_rows(self, X: torch.Tensor) -> torch.Tensor:
        raise NotImplementedError

    @property
    def dimension(self) -> int:
        return self._mean.shape[0]

    @property
    def mean(self) -> torch.Tensor:
        return self._mean.clone()

    @property
    def log_determinant(self) -> float:
        """log of the covariance determinant."""
        return self._log_determinant

    @torch.no_grad()
    def _log_pdf_rows(self, X: torch.Tensor) -> torch.Tensor:
        return self._log_normalization - 0.5 * self._mahalanobis_squared_rows(X)

    @torch.no_grad()
    def score_samples(self, xs) -> torch.Tensor:
        """Per-sample log density (N,)."""
        X = as_dataset(xs)
        check_dimension(X, self.dimension)
        return self._log_pdf_rows(X)

    @torch.no_grad()
    def log_pdf(self, x) -> float:
        v = as_vector(x, self.dimension)
        return float(self._log_pdf_rows(v.unsqueeze(0))[0])

    def pdf(self, x) -> float:
        return math.exp(self.log_pdf(x))

    @torch.no_grad()
    def mahalanobis_squared(self, x) -> float:
        v = as_vector(x, self.dimension)
        return float(self._mahalanobis_squared_rows(v.unsqueeze(0))[0])

    def mahalanobis(self, x) -> float:
        return math.sqrt(self.mahalanobis_squared(x))

    def _check_other(self, other: "_MultivariateNormal") -> None:
        if not isinstance(other, type(self)):
            raise ValueError(f"other must be a {type(self).__name__}, got {type(other).__name__}")
        if other.dimension != self.dimension:
            raise ValueError("The distributions must have the same dimension.")

    @staticmethod
    def _check_n_samples(n_samples: int) -> None:
        if n_samples <= 0:
            raise ValueError("n_samples must be positive")


class Gaussian(_MultivariateNormal):
    """Multivariate normal distribution with a full covariance matrix.

    Args:
        mean: Mean vector, shape (D,).
        covariance: Symmetric positive-definite matrix, shape (D, D).

    Raises:
        ValueError: Empty inputs, non-square or asymmetric covariance, mismatched dimensions.
        FittingFailureError: The covariance is not positive-definite.
    """

    def __init__(self, mean, covariance) -> None:
        mean = _as_parameter(mean, "mean")
        cov = _as_parameter(covariance, "covariance")

        if mean.dim() != 1 or mean.shape[0] == 0:
            raise ValueError("mean must be a non-empty 1-D vector")
        if cov.dim() != 2 or cov.numel() == 0:
            raise ValueError("covariance must be a non-empty matrix")
        if cov.shape[0] != cov.shape[1]:
            raise ValueError(f"covariance must be square, got shape {tuple(cov.shape)}")
        if cov.shape[0] != mean.shape[0]:
            raise ValueError("The length of the mean vector must match the order of the covariance matrix.")
        if not (torch.isfinite(mean).all() and torch.isfinite(cov).all()):
            raise FittingFailureError("The mean vector or covariance matrix contains non-finite values.")
        if not torch.allclose(cov, cov.T):
            raise ValueError("covariance must be symmetric")

        try:
            L = torch.linalg.cholesky(cov)
        except torch.linalg.LinAlgError as e:
            raise FittingFailureError("Failed to compute the Cholesky decomposition of the covariance matrix.") from e

        D = mean.shape[0]
        self._mean = mean
        self._covariance = cov
        self._cholesky = L
        self._log_determinant = float(2.0 * torch.sum(torch.log(torch.diagonal(L))))
        self._log_normalization = -0.5 * (D * LOG_2PI + self._log_determinant)

    @classmethod
    @torch.no_grad()
    def fit(cls, xs, weights=None, regularization: float = 0.0) -> "Gaussian":
        """Maximum likelihood Gaussian of a (weighted) sample.

        ``regularization`` is added to the diagonal of the covariance.
        """
        check_regularization(regularization)
        X = as_dataset(xs)
        mean, cov = weighted_mean_and_covariance(X, weights)
        return cls(mean, add_reg_diag(cov, regularization))

    @property
    def covariance(self) -> torch.Tensor:
        return self._covariance.clone()

    @property
    def cholesky_factor(self) -> torch.Tensor:
        """Lower-triangular L with covariance = L L^T."""
        return self._cholesky.clone()

    def _mahalanobis_squared_rows(self, X: torch.Tensor) -> torch.Tensor:
        diff = X - self._mean.unsqueeze(0)                                      # (N,D)
        y = torch.linalg.solve_triangular(self._cholesky, diff.T, upper=False)  # (D,N)
        return torch.sum(y * y, dim=0)                                          # (N,)

    @torch.no_grad()
    def bhattacharyya(self, other: "Gaussian") -> float:
        """Bhattacharyya distance to another Gaussian of the same dimension."""
        self._check_other(other)

        sigma = 0.5 * (self._covariance + other._covariance)
        L = torch.linalg.cholesky(sigma)
        d = other._mean - self._mean
        y = torch.linalg.solve_triangular(L, d.unsqueeze(1), upper=False)

        left = float(torch.sum(y * y)) / 8.0
        log_det_sigma = float(2.0 * torch.sum(torch.log(torch.diagonal(L))))
        right = (log_det_sigma - 0.5 * (self._log_determinant + other._log_determinant)) / 2.0
        return left + right

    @torch.no_grad()
    def sample(self, n_samples: int, generator: Optional[torch.Generator] = None) -> torch.Tensor:
        """Draw samples, shape (n_samples, D)."""
        self._check_n_samples(n_samples)
        z = torch.randn((n_samples, self.dimension), generator=generator, dtype=DTYPE)
        return self._mean.unsqueeze(0) + z @ self._cholesky.T


class DiagonalGaussian(_MultivariateNormal):
    """Multivariate normal distribution with a diagonal covariance matrix.

    A variance at or below ``10 * eps`` relative to the largest variance is
    rejected, which catches zero-variance dimensions.

    Args:
        mean: Mean vector, shape (D,).
        variance: Diagonal of the covariance matrix, shape (D,).

    Raises:
        ValueError: Empty inputs or mismatched lengths.
        FittingFailureError: A variance is too small or not finite.
    """

    def __init__(self, mean, variance) -> None:
        mean = _as_parameter(mean, "mean")
        var = _as_parameter(variance, "variance")

        if mean.dim() != 1 or mean.shape[0] == 0:
            raise ValueError("mean must be a non-empty 1-D vector")
        if var.dim() != 1 or var.shape[0] == 0:
            raise ValueError("variance must be a non-empty 1-D vector")
        if var.shape[0] != mean.shape[0]:
            raise ValueError("The length of the mean vector must match the length of the variance vector.")
        if not (torch.isfinite(mean).all() and torch.isfinite(var).all()):
            raise FittingFailureError("The mean vector or variance vector contains non-finite values.")

        tol = _variance_tolerance(var)
        if (var <= tol).any():
            raise FittingFailureError("Variance is too small.")

        D = mean.shape[0]
        self._mean = mean
        self._variance = var
        self._inverse_variance = 1.0 / var
        self._standard_deviation = torch.sqrt(var)
        self._log_determinant = float(torch.sum(torch.log(var)))
        self._log_normalization = -0.5 * (D * LOG_2PI + self._log_determinant)

    @classmethod
    @torch.no_grad()
    def fit(cls, xs, weights=None, regularization: float = 0.0) -> "DiagonalGaussian":
        """Maximum likelihood diagonal Gaussian of a (weighted) sample."""
        check_regularization(regularization)
        X = as_dataset(xs)
        mean, var = weighted_mean_and_variance(X, weights)
        return cls(mean, var + regularization)

    @property
    def variance(self) -> torch.Tensor:
        return self._variance.clone()

    def _mahalanobis_squared_rows(self, X: torch.Tensor) -> torch.Tensor:
        diff = X - self._mean.unsqueeze(0)
        return torch.sum(diff * diff * self._inverse_variance.unsqueeze(0), dim=1)

    @torch.no_grad()
    def bhattacharyya(self, other: "DiagonalGaussian") -> float:
        """Bhattacharyya distance to another diagonal Gaussian of the same dimension."""
        self._check_other(other)

        sigma = 0.5 * (self._variance + other._variance)
        d = other._mean - self._mean

        left = float(torch.sum(d * d / sigma)) / 8.0
        log_det_sigma = float(torch.sum(torch.log(sigma)))
        right = (log_det_sigma - 0.5 * (self._log_determinant + other._log_determinant)) / 2.0
        return left + right

    @torch.no_grad()
    def sample(self, n_samples: int, generator: Optional[torch.Generator] = None) -> torch.Tensor:
        """Draw samples, shape (n_samples, D)."""
        self._check_n_samples(n_samples)
        z = torch.randn((n_samples, self.dimension), generator=generator, dtype=DTYPE)
        return self._mean.unsqueeze(0) + z * self._standard_deviation.unsqueeze(0)
