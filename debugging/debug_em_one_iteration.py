import sys
import os

import numpy as np
import torch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from gmm_em import Component, Gaussian, GaussianMixture


def pretty(name, arr):
    print(f"\n{name}:")
    print(arr)
    if isinstance(arr, torch.Tensor):
        print(f"shape={tuple(arr.shape)}, dtype={arr.dtype}")


def main():
    np.set_printoptions(precision=6, suppress=True)
    torch.set_printoptions(precision=6)

    # -----------------------------
    # 1) Hard-coded tiny dataset (2D)
    # -----------------------------
    X = torch.tensor([
        [-2.0, -1.0],
        [-1.0, -2.0],
        [-2.0, -2.0],
        [ 2.0,  1.0],
        [ 1.0,  2.0],
        [ 2.0,  2.0],
    ], dtype=torch.float64)
    reg = 1e-6

    # -----------------------------
    # 2) Hard-coded starting model
    # -----------------------------
    gmm = GaussianMixture([
        Component(0.5, Gaussian([-1.5, -1.5], [[0.5, 0.0], [0.0, 0.5]])),
        Component(0.5, Gaussian([ 1.5,  1.5], [[0.5, 0.0], [0.0, 0.5]])),
    ])

    pretty("X", X)
    pretty("weights (pi)", gmm.weights)
    for k, c in enumerate(gmm.components):
        pretty(f"component {k} mean", c.gaussian.mean)
        pretty(f"component {k} cholesky factor", c.gaussian.cholesky_factor)

    # -----------------------------
    # 3) E-step pieces
    # -----------------------------
    log_prob = torch.stack([c.gaussian.score_samples(X) for c in gmm.components], dim=1)
    pretty("log_prob = log N(x|mu_k,Sigma_k)", log_prob)

    log_resp_unnorm = log_prob + torch.log(gmm.weights).unsqueeze(0)
    pretty("log_resp_unnorm = log pi_k + log_prob", log_resp_unnorm)

    log_norm = torch.logsumexp(log_resp_unnorm, dim=1, keepdim=True)
    pretty("log_norm = logsumexp_k(...)", log_norm)

    resp = gmm.predict_proba(X)
    pretty("resp", resp)
    pretty("resp row sums", resp.sum(dim=1))

    # -----------------------------
    # 4) One full EM step
    # -----------------------------
    new_gmm, ll = gmm.update(X, regularization=reg)
    print(f"\nlog-likelihood under the starting model: {ll:.6f}")
    print(f"log-likelihood under the updated model:  {float(new_gmm.score_samples(X).sum()):.6f}")

    pretty("new weights", new_gmm.weights)
    for k, c in enumerate(new_gmm.components):
        pretty(f"new component {k} mean", c.gaussian.mean)
        pretty(f"new component {k} covariance", c.gaussian.covariance)


if __name__ == "__main__":
    main()
