# gmm_em/_gmm.py
"""Gaussian Mixture Model (GMM) fitted by Expectation-Maximization.

Two variants share the EM machinery:

- GaussianMixture:          components are full-covariance ``Gaussian``s.
- DiagonalGaussianMixture:  components are ``DiagonalGaussian``s.

Models are immutable. ``update`` performs one E-step + M-step and returns a new
model together with the total log-likelihood computed in its E-step, i.e. the
log-likelihood of the data under the model ``update`` was called on. For a
correct EM step that value never decreases from one call to the next.

E-step: log N(x | mu_k, Sigma_k) + log pi_k, normalized with logsumexp.
M-step: each component is refitted with ``<Distribution>.fit(X, weights=resp_k)``,
        which adds the regularization to the diagonal and re-validates
        positive-definiteness. A component that cannot be refitted raises
        FittingFailureError; nothing is silently patched.

Initialization: k-means (k-means++ seeding, best of ``try_count`` restarts),
then one component per non-empty cluster with weight = cluster population
fraction.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple, Union

import torch

from gmm_em._exceptions import FittingFailureError
from gmm_em._gaussian import DiagonalGaussian, Gaussian
from gmm_em._kmeans import KMeans, KMeansOptions
from gmm_em._utils import DTYPE, as_dataset, as_vector, check_dimension, check_regularization

logger = logging.getLogger(__name__)

_WEIGHT_SUM_TOLERANCE = 1e-9


# ---------------------------
# Options / components
# ---------------------------

@dataclass(frozen=True)
class GaussianMixtureOptions:
    """Options for ``GaussianMixture.fit`` / ``DiagonalGaussianMixture.fit``.

    - regularization: added to the covariance diagonal of every component.
    - max_iterations: hard stop on EM iterations.
    - tolerance: stop when the log-likelihood change is below tolerance,
      either absolutely or relative to the current log-likelihood.
    - kmeans_options: options of the initial k-means (defaults if None).
    """

    regularization: float = 1e-6
    max_iterations: int = 100
    tolerance: float = 1e-3
    kmeans_options: Optional[KMeansOptions] = None

    def __post_init__(self) -> None:
        check_regularization(self.regularization)
        if self.max_iterations <= 0:
            raise ValueError("max_iterations must be positive")
        if not self.tolerance > 0:
            raise ValueError("tolerance must be positive")


@dataclass(frozen=True)
class Component:
    """One weighted mixture component."""

    weight: float
    gaussian: Union[Gaussian, DiagonalGaussian]
    log_weight: float = field(init=False)

    def __post_init__(self) -> None:
        if self.gaussian is None:
            raise ValueError("gaussian must not be None")
        if not self.weight > 0:
            raise ValueError(f"Component weight must be positive, got {self.weight}")
        object.__setattr__(self, "weight", float(self.weight))
        object.__setattr__(self, "log_weight", math.log(self.weight))


# ---------------------------
# EM model
# ---------------------------

class _MixtureBase:
    """EM machinery shared by the full and diagonal mixtures."""

    _distribution: type = Gaussian

    def __init__(self, components: Iterable[Component]) -> None:
        if components is None:
            raise ValueError("components must not be None")
        components = tuple(components)
        if not components:
            raise ValueError("components must not be empty")

        dimension = None
        for i, c in enumerate(components):
            if not isinstance(c, Component):
                raise ValueError(f"components[{i}] must be a Component, got {type(c).__name__}")
            if not isinstance(c.gaussian, self._distribution):
                raise ValueError(
                    f"components[{i}] must hold a {self._distribution.__name__}, got {type(c.gaussian).__name__}"
                )
            if dimension is None:
                dimension = c.gaussian.dimension
            elif c.gaussian.dimension != dimension:
                raise ValueError("All the components must have the same dimension.")

        total = math.fsum(c.weight for c in components)
        if abs(total - 1.0) > _WEIGHT_SUM_TOLERANCE:
            raise ValueError(f"The component weights must sum to one, got {total}")

        self._components: Tuple[Component, ...] = components
        self._log_weights = torch.tensor([c.log_weight for c in components], dtype=DTYPE)

        # Set by fit()
        self.converged_: bool = False
        self.n_iter_: int = 0
        self.lower_bound_: float = float("-inf")
        self.lower_bounds_: List[float] = []

    @property
    def components(self) -> Tuple[Component, ...]:
        return self._components

    @property
    def weights(self) -> torch.Tensor:
        return torch.tensor([c.weight for c in self._components], dtype=DTYPE)

    @property
    def component_count(self) -> int:
        return len(self._components)

    @property
    def dimension(self) -> int:
        return self._components[0].gaussian.dimension

    @staticmethod
    def _covariance_parameter_count(D: int) -> int:
        raise NotImplementedError

    def _n_parameters(self, D: int) -> int:
        """Parameter count for AIC/BIC."""
        K = self.component_count
        # weights: K-1, means: K*D
        return int(K - 1 + K * D + K * self._covariance_parameter_count(D))

    # -----------------------
    # EM steps
    # -----------------------

    def _weighted_log_prob(self, X: torch.Tensor) -> torch.Tensor:
        """log N(x | mu_k, Sigma_k) + log pi_k, shape (N,K)."""
        log_prob = torch.stack([c.gaussian._log_pdf_rows(X) for c in self._components], dim=1)
        return log_prob + self._log_weights.unsqueeze(0)

    def _expectation_step(self, X: torch.Tensor) -> Tuple[float, torch.Tensor]:
        """Total log-likelihood and log responsibilities (N,K)."""
        weighted_log_prob = self._weighted_log_prob(X)                  # (N,K)
        log_prob_norm = torch.logsumexp(weighted_log_prob, dim=1)        # (N,)
        log_resp = weighted_log_prob - log_prob_norm.unsqueeze(1)        # (N,K)
        return float(log_prob_norm.sum()), log_resp

    @classmethod
    def _maximization_step(
        cls,
        X: torch.Tensor,
        log_resp: torch.Tensor,
        regularization: float,
    ) -> List[Component]:
        resp = log_resp.exp()        # (N,K)
        nk = resp.sum(dim=0)         # (K,)
        weights = nk / nk.sum()

        components = []
        for k in range(resp.shape[1]):
            try:
                gaussian = cls._distribution.fit(X, weights=resp[:, k], regularization=regularization)
            except FittingFailureError as e:
                raise FittingFailureError(f"Failed to update component {k} (effective population {float(nk[k]):.3g}).") from e
            components.append(Component(float(weights[k]), gaussian))
        return components

    # -----------------------
    # Construction
    # -----------------------

    @classmethod
    @torch.no_grad()
    def from_kmeans(cls, kmeans: KMeans, xs, regularization: float = 1e-6):
        """Initial model from a k-means partition of ``xs``.

        Each non-empty cluster becomes a component with its maximum likelihood
        mean/covariance (plus ``regularization`` on the diagonal) and a weight
        equal to its population fraction.
        """
        if not isinstance(kmeans, KMeans):
            raise ValueError(f"kmeans must be a KMeans, got {type(kmeans).__name__}")
        check_regularization(regularization)
        X = as_dataset(xs)
        check_dimension(X, kmeans.dimension)

        N = X.shape[0]
        labels = kmeans.predict_samples(X)

        components = []
        for k in range(kmeans.cluster_count):
            mask = labels == k
            count = int(mask.sum())
            if count == 0:
                logger.debug(f"Skipping empty cluster {k}")
                continue
            try:
                gaussian = cls._distribution.fit(X[mask], regularization=regularization)
            except FittingFailureError as e:
                raise FittingFailureError(f"Failed to initialize the component of cluster {k}.") from e
            components.append(Component(count / N, gaussian))

        return cls(components)

    @classmethod
    @torch.no_grad()
    def fit(
        cls,
        xs,
        component_count: int,
        options: Optional[GaussianMixtureOptions] = None,
        generator: Optional[torch.Generator] = None,
    ):
        """Fit a mixture of ``component_count`` components to ``xs`` with EM."""
        X = as_dataset(xs)
        if component_count < 1:
            raise ValueError("The number of components must be greater than or equal to one.")
        if options is None:
            options = GaussianMixtureOptions()
        reg = options.regularization

        if component_count == 1:
            model = cls([Component(1.0, cls._distribution.fit(X, regularization=reg))])
            lower, _ = model._expectation_step(X)
            model.converged_ = True
            model.lower_bound_ = lower
            model.lower_bounds_ = [lower]
            return model

        kmeans = KMeans.fit(X, component_count, options.kmeans_options, generator)
        model = cls.from_kmeans(kmeans, X, reg)

        prev_lower = float("-inf")
        converged = False
        history: List[float] = []

        for it in range(1, options.max_iterations + 1):
            new_model, lower = model.update(X, reg)
            if not math.isfinite(lower):
                raise FittingFailureError(f"The log-likelihood is not finite ({lower}) at iteration {it}.")
            history.append(lower)
            model = new_model

            change = lower - prev_lower
            logger.debug(f"EM iteration {it}: log-likelihood={lower:.6f}, change={change:.3g}")
            if abs(change) <= options.tolerance or abs(change) <= options.tolerance * abs(lower):
                converged = True
                break
            prev_lower = lower

        if not converged:
            logger.warning(
                f"GMM did not converge after {options.max_iterations} iterations. "
                "Consider increasing max_iterations.",
            )

        model.converged_ = converged
        model.n_iter_ = len(history)
        model.lower_bound_ = history[-1]
        model.lower_bounds_ = history
        return model

    # -----------------------
    # Public API
    # -----------------------

    @torch.no_grad()
    def update(self, xs, regularization: float = 1e-6):
        """One EM iteration. Returns (new_model, log_likelihood of xs under self)."""
        check_regularization(regularization)
        X = as_dataset(xs)
        check_dimension(X, self.dimension)

        log_likelihood, log_resp = self._expectation_step(X)
        components = self._maximization_step(X, log_resp, regularization)
        return type(self)(components), log_likelihood

    @torch.no_grad()
    def score_samples(self, xs) -> torch.Tensor:
        """Per-sample log density of the mixture (N,)."""
        X = as_dataset(xs)
        check_dimension(X, self.dimension)
        return torch.logsumexp(self._weighted_log_prob(X), dim=1)

    def score(self, xs) -> float:
        """Mean log density."""
        return float(self.score_samples(xs).mean())

    @torch.no_grad()
    def log_pdf(self, x) -> float:
        v = as_vector(x, self.dimension)
        return float(torch.logsumexp(self._weighted_log_prob(v.unsqueeze(0)), dim=1)[0])

    def pdf(self, x) -> float:
        return math.exp(self.log_pdf(x))

    @torch.no_grad()
    def predict_proba(self, xs) -> torch.Tensor:
        """Posterior responsibilities (N,K)."""
        X = as_dataset(xs)
        check_dimension(X, self.dimension)
        _, log_resp = self._expectation_step(X)
        return log_resp.exp()

    @torch.no_grad()
    def predict_probability(self, x) -> torch.Tensor:
        """Responsibilities of a single vector (K,)."""
        v = as_vector(x, self.dimension)
        _, log_resp = self._expectation_step(v.unsqueeze(0))
        return log_resp[0].exp()

    @torch.no_grad()
    def predict_samples(self, xs) -> torch.Tensor:
        """Component with the highest responsibility for every sample (N,)."""
        X = as_dataset(xs)
        check_dimension(X, self.dimension)
        return torch.argmax(self._weighted_log_prob(X), dim=1)

    @torch.no_grad()
    def predict(self, x) -> int:
        v = as_vector(x, self.dimension)
        return int(torch.argmax(self._weighted_log_prob(v.unsqueeze(0))[0]))

    def aic(self, xs) -> float:
        """Akaike information criterion."""
        ll = float(self.score_samples(xs).sum())
        return 2.0 * self._n_parameters(self.dimension) - 2.0 * ll

    def bic(self, xs) -> float:
        """Bayesian information criterion."""
        X = as_dataset(xs)
        ll = float(self.score_samples(X).sum())
        return math.log(X.shape[0]) * self._n_parameters(self.dimension) - 2.0 * ll

    @torch.no_grad()
    def sample(
        self,
        n_samples: int,
        generator: Optional[torch.Generator] = None,
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """Sample from the mixture.

        Returns:
          X: (n_samples, D)
          labels: (n_samples,)
        """
        if n_samples <= 0:
            raise ValueError("n_samples must be positive")

        labels = torch.multinomial(self.weights, n_samples, replacement=True, generator=generator)

        X_out = torch.empty((n_samples, self.dimension), dtype=DTYPE)
        for k, c in enumerate(self._components):
            mask = labels == k
            n_k = int(mask.sum())
            if n_k > 0:
                X_out[mask] = c.gaussian.sample(n_k, generator)
        return X_out, labels


class GaussianMixture(_MixtureBase):
    """Mixture of full-covariance Gaussians.

    Example:
        >>> gmm = GaussianMixture.fit(X, 3, generator=torch.Generator().manual_seed(42))
        >>> gmm.predict_samples(X)
    """

    _distribution = Gaussian

    @staticmethod
    def _covariance_parameter_count(D: int) -> int:
        return D * (D + 1) // 2


class DiagonalGaussianMixture(_MixtureBase):
    """Mixture of diagonal-covariance Gaussians."""

    _distribution = DiagonalGaussian

    @staticmethod
    def _covariance_parameter_count(D: int) -> int:
        return D
