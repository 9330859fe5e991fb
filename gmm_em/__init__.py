# gmm_em/__init__.py
"""Gaussians, k-means and EM-fitted Gaussian mixtures on PyTorch tensors."""

from gmm_em._clustering import to_diagonal_gmm, to_gmm, to_kmeans
from gmm_em._exceptions import FittingFailureError
from gmm_em._gaussian import DiagonalGaussian, Gaussian
from gmm_em._gmm import Component, DiagonalGaussianMixture, GaussianMixture, GaussianMixtureOptions
from gmm_em._kmeans import KMeans, KMeansOptions

__all__ = [
    "Component",
    "DiagonalGaussian",
    "DiagonalGaussianMixture",
    "FittingFailureError",
    "Gaussian",
    "GaussianMixture",
    "GaussianMixtureOptions",
    "KMeans",
    "KMeansOptions",
    "to_diagonal_gmm",
    "to_gmm",
    "to_kmeans",
]
