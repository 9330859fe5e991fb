# gmm_em/_clustering.py
"""One-call entry points over KMeans / GaussianMixture / DiagonalGaussianMixture."""

from __future__ import annotations

from typing import Optional

import torch

from gmm_em._gmm import DiagonalGaussianMixture, GaussianMixture, GaussianMixtureOptions
from gmm_em._kmeans import KMeans, KMeansOptions


def to_kmeans(
    xs,
    cluster_count: int,
    try_count: int = 3,
    generator: Optional[torch.Generator] = None,
) -> KMeans:
    """Partition ``xs`` into ``cluster_count`` clusters (best of ``try_count`` seedings)."""
    return KMeans.fit(xs, cluster_count, KMeansOptions(try_count=try_count), generator)


def _mixture_options(regularization: float, kmeans_try_count: int) -> GaussianMixtureOptions:
    return GaussianMixtureOptions(
        regularization=regularization,
        kmeans_options=KMeansOptions(try_count=kmeans_try_count),
    )


def to_gmm(
    xs,
    component_count: int,
    regularization: float = 1e-6,
    kmeans_try_count: int = 3,
    generator: Optional[torch.Generator] = None,
) -> GaussianMixture:
    """Fit a full-covariance GMM with the default EM stopping rule."""
    options = _mixture_options(regularization, kmeans_try_count)
    return GaussianMixture.fit(xs, component_count, options, generator)


def to_diagonal_gmm(
    xs,
    component_count: int,
    regularization: float = 1e-6,
    kmeans_try_count: int = 3,
    generator: Optional[torch.Generator] = None,
) -> DiagonalGaussianMixture:
    """Fit a diagonal-covariance GMM with the default EM stopping rule."""
    options = _mixture_options(regularization, kmeans_try_count)
    return DiagonalGaussianMixture.fit(xs, component_count, options, generator)
