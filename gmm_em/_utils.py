# gmm_em/_utils.py
"""Shared tensor helpers: input conversion, validation and weighted moments."""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np
import torch

from gmm_em._exceptions import FittingFailureError

DTYPE = torch.float64


# ---------------------------
# Input conversion
# ---------------------------

def as_dataset(xs, name: str = "xs") -> torch.Tensor:
    """Convert a dataset to a contiguous (N, D) float64 tensor.

    Accepts a 2-D tensor / ndarray or a sequence of 1-D vectors. Rows of a
    sequence are checked one by one so the first inconsistent row is reported.
    """
    if xs is None:
        raise ValueError(f"{name} must not be None")

    if isinstance(xs, (torch.Tensor, np.ndarray)):
        X = torch.as_tensor(xs).to(DTYPE)
        if X.dim() != 2:
            raise ValueError(f"{name} must have shape (N, D), got {tuple(X.shape)}")
    else:
        rows = []
        dim: Optional[int] = None
        for i, x in enumerate(xs):
            row = torch.as_tensor(x, dtype=DTYPE)
            if row.dim() != 1:
                raise ValueError(f"{name}[{i}] must be a 1-D vector, got shape {tuple(row.shape)}")
            if dim is None:
                dim = row.shape[0]
            elif row.shape[0] != dim:
                raise ValueError(f"{name}[{i}] has length {row.shape[0]}, expected {dim}")
            rows.append(row)
        if not rows:
            raise ValueError(f"{name} must not be empty")
        X = torch.stack(rows, dim=0)

    N, D = X.shape
    if N == 0:
        raise ValueError(f"{name} must not be empty")
    if D == 0:
        raise ValueError(f"{name} must not contain zero-length vectors")
    return X.contiguous()


def as_vector(x, dimension: int, name: str = "x") -> torch.Tensor:
    """Convert a single feature vector and check its length."""
    if x is None:
        raise ValueError(f"{name} must not be None")
    v = torch.as_tensor(x, dtype=DTYPE)
    if v.dim() != 1 or v.shape[0] == 0:
        raise ValueError(f"{name} must be a non-empty 1-D vector, got shape {tuple(v.shape)}")
    if v.shape[0] != dimension:
        raise ValueError(f"{name} must have length {dimension}, but was {v.shape[0]}")
    return v


def check_dimension(X: torch.Tensor, dimension: int, name: str = "xs") -> None:
    if X.shape[1] != dimension:
        raise ValueError(f"{name} must have {dimension} features, but has {X.shape[1]}")


def check_regularization(regularization: float) -> None:
    if not regularization >= 0.0:
        raise ValueError("regularization must be non-negative")


# ---------------------------
# Weighted moments (maximum likelihood, ddof = 0)
# ---------------------------

def _as_weights(X: torch.Tensor, weights) -> torch.Tensor:
    N = X.shape[0]
    if weights is None:
        return torch.ones(N, dtype=X.dtype)

    w = torch.as_tensor(weights, dtype=X.dtype)
    if w.dim() != 1 or w.shape[0] != N:
        raise ValueError(f"weights must have shape ({N},), got {tuple(w.shape)}")
    if (w < 0).any():
        raise ValueError("Negative weight values are not allowed")
    return w


def _weight_sum(w: torch.Tensor) -> torch.Tensor:
    w_sum = w.sum()
    if not float(w_sum) > 0.0:
        raise FittingFailureError("The sum of the weights must be positive.")
    return w_sum


def weighted_mean_and_covariance(
    X: torch.Tensor,
    weights=None,
) -> Tuple[torch.Tensor, torch.Tensor]:
    """Mean (D,) and covariance (D, D) of X, optionally weighted per row."""
    w = _as_weights(X, weights)
    w_sum = _weight_sum(w)

    mean = (w @ X) / w_sum                         # (D,)
    diff = X - mean.unsqueeze(0)                   # (N,D)
    cov = (diff * w.unsqueeze(1)).T @ diff / w_sum  # (D,D)
    return mean, cov


def weighted_mean_and_variance(
    X: torch.Tensor,
    weights=None,
) -> Tuple[torch.Tensor, torch.Tensor]:
    """Mean (D,) and pointwise variance (D,) of X, optionally weighted per row."""
    w = _as_weights(X, weights)
    w_sum = _weight_sum(w)

    mean = (w @ X) / w_sum
    diff = X - mean.unsqueeze(0)
    var = torch.sum(w.unsqueeze(1) * diff * diff, dim=0) / w_sum
    return mean, var


def add_reg_diag(cov: torch.Tensor, reg: float) -> torch.Tensor:
    """Add reg to the diagonal of a (D, D) matrix."""
    if reg == 0.0:
        return cov
    D = cov.shape[0]
    return cov + reg * torch.eye(D, dtype=cov.dtype)
