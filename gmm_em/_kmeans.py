# gmm_em/_kmeans.py
"""k-means partitioning with k-means++ seeding and best-of-N restarts.

A KMeans object only holds its centroids and is never modified: ``update``
runs one Lloyd iteration and returns a new model. ``KMeans.fit`` chains
seeding and updates for every restart and keeps the model with the lowest
sum of squared distances.

Empty clusters: when a cluster receives no sample during ``update`` its
centroid is re-seeded with the sample farthest from its assigned centroid, so
centroids never become NaN and the objective stays non-increasing.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Tuple

import torch

from gmm_em._exceptions import FittingFailureError
from gmm_em._utils import DTYPE, as_dataset, as_vector, check_dimension

logger = logging.getLogger(__name__)


# ---------------------------
# Options
# ---------------------------

@dataclass(frozen=True)
class KMeansOptions:
    """Options for ``KMeans.fit``.

    - try_count: number of independent seedings; the lowest objective wins.
    - max_iterations: hard stop on Lloyd iterations per restart.
    - tolerance: stop when |new - old| <= tolerance * old.
    """

    try_count: int = 3
    max_iterations: int = 300
    tolerance: float = 1e-4

    def __post_init__(self) -> None:
        if self.try_count <= 0:
            raise ValueError("try_count must be positive")
        if self.max_iterations <= 0:
            raise ValueError("max_iterations must be positive")
        if not self.tolerance > 0:
            raise ValueError("tolerance must be positive")


def _check_cluster_count(cluster_count: int) -> None:
    if cluster_count < 2:
        raise ValueError("The number of clusters must be greater than or equal to two.")


# ---------------------------
# Distance helpers
# ---------------------------

def _squared_distances(X: torch.Tensor, centroids: torch.Tensor) -> torch.Tensor:
    """Squared Euclidean distances (N,K)."""
    diff = X.unsqueeze(1) - centroids.unsqueeze(0)  # (N,K,D)
    return torch.sum(diff * diff, dim=2)


def _nearest(X: torch.Tensor, centroids: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
    """Nearest centroid index (N,) and its squared distance (N,). First index wins ties."""
    d2, labels = torch.min(_squared_distances(X, centroids), dim=1)
    return labels, d2


@torch.no_grad()
def _kmeans_plus_plus(X: torch.Tensor, K: int, generator: Optional[torch.Generator]) -> torch.Tensor:
    """k-means++ seeding. Returns centroids (K, D)."""
    N, _ = X.shape

    # First centroid uniformly
    indices = [int(torch.randint(0, N, (1,), generator=generator).item())]

    # Closest squared dist to any chosen centroid so far
    closest_d2 = torch.sum((X - X[indices[0]]) ** 2, dim=1)  # (N,)

    for _ in range(1, K):
        cumulative = torch.cumsum(closest_d2, dim=0)
        target = float(cumulative[-1]) * float(torch.rand((), generator=generator, dtype=DTYPE))

        # first sample whose cumulative weight exceeds the draw; last sample on rounding
        i = int(torch.searchsorted(cumulative, torch.tensor([target], dtype=DTYPE), right=True)[0])
        i = min(i, N - 1)
        indices.append(i)

        d2_new = torch.sum((X - X[i]) ** 2, dim=1)
        closest_d2 = torch.minimum(closest_d2, d2_new)

    return X[indices].clone()


# ---------------------------
# Model
# ---------------------------

class KMeans:
    """Immutable k-means model holding ``cluster_count`` centroids.

    Args:
        centroids: Cluster centers, shape (K, D) with K >= 2.

    Attributes set by ``KMeans.fit``:
        inertia_: Sum of squared distances of the fitting data.
        n_iter_: Lloyd iterations run by the winning restart.
        converged_: Whether the winning restart met the tolerance.
    """

    def __init__(self, centroids) -> None:
        if centroids is None:
            raise ValueError("centroids must not be None")
        C = torch.as_tensor(centroids, dtype=DTYPE).clone()
        if C.dim() != 2 or C.shape[1] == 0:
            raise ValueError(f"centroids must have shape (K, D), got {tuple(C.shape)}")
        _check_cluster_count(C.shape[0])

        self._centroids = C
        self.inertia_: Optional[float] = None
        self.n_iter_: int = 0
        self.converged_: bool = False

    @property
    def centroids(self) -> torch.Tensor:
        return self._centroids.clone()

    @property
    def cluster_count(self) -> int:
        return self._centroids.shape[0]

    @property
    def dimension(self) -> int:
        return self._centroids.shape[1]

    # -----------------------
    # Construction
    # -----------------------

    @classmethod
    @torch.no_grad()
    def initial_model(
        cls,
        xs,
        cluster_count: int,
        generator: Optional[torch.Generator] = None,
    ) -> "KMeans":
        """Seed a model with the k-means++ algorithm."""
        X = as_dataset(xs)
        _check_cluster_count(cluster_count)
        return cls(_kmeans_plus_plus(X, cluster_count, generator))

    @classmethod
    @torch.no_grad()
    def fit(
        cls,
        xs,
        cluster_count: int,
        options: Optional[KMeansOptions] = None,
        generator: Optional[torch.Generator] = None,
    ) -> "KMeans":
        """Cluster ``xs`` and return the best model over ``options.try_count`` restarts.

        A restart that fails with FittingFailureError is discarded. If every
        restart fails the last failure is raised.
        """
        X = as_dataset(xs)
        _check_cluster_count(cluster_count)
        if options is None:
            options = KMeansOptions()

        best: Optional[KMeans] = None
        best_error = math.inf
        last_failure: Optional[FittingFailureError] = None

        for attempt in range(options.try_count):
            try:
                model, error, n_iter, converged = _run_restart(X, cluster_count, options, generator)
            except FittingFailureError as e:
                logger.warning(f"k-means restart {attempt + 1}/{options.try_count} failed: {e}")
                last_failure = e
                continue

            logger.debug(f"k-means restart {attempt + 1}/{options.try_count}: objective={error:.6g}, n_iter={n_iter}")
            if best is None or error < best_error:
                best = model
                best_error = error
                best.n_iter_ = n_iter
                best.converged_ = converged

        if best is None:
            raise FittingFailureError("All k-means restarts failed.") from last_failure

        best.inertia_ = best_error
        return best

    # -----------------------
    # Public API
    # -----------------------

    @torch.no_grad()
    def predict(self, x) -> int:
        """Index of the nearest centroid."""
        v = as_vector(x, self.dimension)
        labels, _ = _nearest(v.unsqueeze(0), self._centroids)
        return int(labels[0])

    @torch.no_grad()
    def predict_samples(self, xs) -> torch.Tensor:
        """Nearest centroid index for every sample (N,)."""
        X = as_dataset(xs)
        check_dimension(X, self.dimension)
        labels, _ = _nearest(X, self._centroids)
        return labels

    @torch.no_grad()
    def update(self, xs) -> "KMeans":
        """Run one Lloyd iteration and return the updated model."""
        X = as_dataset(xs)
        check_dimension(X, self.dimension)
        K, D = self._centroids.shape

        labels, d2 = _nearest(X, self._centroids)

        counts = torch.bincount(labels, minlength=K).to(X.dtype)
        sums = torch.zeros((K, D), dtype=X.dtype).index_add_(0, labels, X)

        empty = torch.nonzero(counts == 0).flatten().tolist()
        if empty:
            candidates = d2.clone()
            for k in empty:
                i = int(torch.argmax(candidates))
                logger.debug(f"Re-seeding empty cluster {k} with sample {i}")
                sums[k] = X[i]
                counts[k] = 1.0
                candidates[i] = -math.inf

        return KMeans(sums / counts.unsqueeze(1))

    @torch.no_grad()
    def sum_of_squared_distances(self, xs) -> float:
        """Sum over samples of the squared distance to the nearest centroid."""
        X = as_dataset(xs)
        check_dimension(X, self.dimension)
        _, d2 = _nearest(X, self._centroids)
        return float(d2.sum())

    def to_gmm(self, xs, regularization: float = 1e-6):
        """Initial full-covariance GMM, one component per non-empty cluster."""
        from gmm_em._gmm import GaussianMixture

        return GaussianMixture.from_kmeans(self, xs, regularization)

    def to_diagonal_gmm(self, xs, regularization: float = 1e-6):
        """Initial diagonal-covariance GMM, one component per non-empty cluster."""
        from gmm_em._gmm import DiagonalGaussianMixture

        return DiagonalGaussianMixture.from_kmeans(self, xs, regularization)


def _check_objective(error: float) -> None:
    if not math.isfinite(error):
        raise FittingFailureError(f"The k-means objective is not finite ({error}).")


@torch.no_grad()
def _run_restart(
    X: torch.Tensor,
    cluster_count: int,
    options: KMeansOptions,
    generator: Optional[torch.Generator],
) -> Tuple[KMeans, float, int, bool]:
    """Seed once and iterate until convergence. Returns (model, objective, n_iter, converged)."""
    model = KMeans.initial_model(X, cluster_count, generator)
    error = model.sum_of_squared_distances(X)
    _check_objective(error)

    for it in range(1, options.max_iterations + 1):
        new_model = model.update(X)
        new_error = new_model.sum_of_squared_distances(X)
        _check_objective(new_error)
        logger.debug(f"k-means iteration {it}: objective={new_error:.6g}")

        if abs(new_error - error) <= options.tolerance * error:
            return new_model, new_error, it, True
        model, error = new_model, new_error

    logger.warning(f"k-means did not converge after {options.max_iterations} iterations.")
    return model, error, options.max_iterations, False
