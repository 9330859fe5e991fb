# tests/test_kmeans.py
import sys
import os
import logging

# Add parent directory to path so we can import gmm_em
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import numpy as np
import torch
import pytest

import gmm_em._kmeans as kmeans_module
from gmm_em import FittingFailureError, GaussianMixture, KMeans, KMeansOptions, to_kmeans


THREE_BLOBS = np.array(
    [
        [1, -3], [0, -2], [1, -2], [0, -1], [2, -1], [3, -2],
        [7, 8], [8, 7], [9, 8], [9, 7], [8, 8],
        [7, 1], [8, 1], [9, 1], [7, 2], [8, 2], [9, 2], [8, 3],
    ],
    dtype=np.float64,
)


def _sorted_rows(t):
    a = t.numpy() if isinstance(t, torch.Tensor) else np.asarray(t)
    return a[np.lexsort(a.T[::-1])]


# ---------------------------
# k-means++ seeding
# ---------------------------

@pytest.mark.parametrize("seed", [42, 57, 66, 77, 88])
def test_initial_centroids_pick_every_distinct_point(seed):
    X = np.array([[1, 0], [2, -3], [3, 5], [4, -1], [5, 0]], dtype=np.float64)

    model = KMeans.initial_model(X, 5, generator=torch.Generator().manual_seed(seed))

    np.testing.assert_array_equal(_sorted_rows(model.centroids), X)
    assert model.sum_of_squared_distances(X) == 0.0
    assert model.update(X).sum_of_squared_distances(X) == 0.0


@pytest.mark.parametrize("seed", [42, 57, 66, 77, 88])
def test_initial_centroids_skip_duplicates(seed):
    distinct = [(1, -3), (2, 4), (3, -5), (4, 2), (5, 1)]
    repeats = [5, 1, 4, 4, 3]
    X = np.array([p for p, r in zip(distinct, repeats) for _ in range(r)], dtype=np.float64)
    X = X[np.random.RandomState(seed).permutation(len(X))]

    model = KMeans.initial_model(X, 5, generator=torch.Generator().manual_seed(seed))

    np.testing.assert_array_equal(_sorted_rows(model.centroids), np.array(distinct, dtype=np.float64))
    assert model.sum_of_squared_distances(X) == 0.0


def test_initial_model_is_reproducible_with_generator():
    X = np.random.RandomState(0).randn(100, 3)
    a = KMeans.initial_model(X, 4, generator=torch.Generator().manual_seed(123))
    b = KMeans.initial_model(X, 4, generator=torch.Generator().manual_seed(123))
    assert torch.equal(a.centroids, b.centroids)


# ---------------------------
# Lloyd iterations
# ---------------------------

def test_update_never_increases_objective():
    rng = np.random.RandomState(1)
    X = np.concatenate([rng.randn(60, 2) + c for c in ([0, 0], [6, 0], [0, 6], [6, 6])])

    model = KMeans.initial_model(X, 4, generator=torch.Generator().manual_seed(1))
    errors = [model.sum_of_squared_distances(X)]
    for _ in range(10):
        model = model.update(X)
        errors.append(model.sum_of_squared_distances(X))

    print(f"\n[kmeans] objective history: {errors}")
    for i in range(1, len(errors)):
        assert errors[i] <= errors[i - 1] + 1e-9, f"objective increased at iter {i}: {errors[i - 1]} -> {errors[i]}"


def test_update_reseeds_empty_cluster_with_farthest_sample():
    X = np.array([[0.0, 0.0], [1.0, 0.0], [10.0, 0.0]])
    model = KMeans([[0.0, 0.0], [100.0, 0.0], [0.5, 0.0]])

    updated = model.update(X)
    centroids = updated.centroids

    assert torch.isfinite(centroids).all()
    np.testing.assert_allclose(centroids.numpy(), [[0.0, 0.0], [10.0, 0.0], [5.5, 0.0]])
    assert updated.sum_of_squared_distances(X) <= model.sum_of_squared_distances(X)


def test_predict_ties_go_to_first_centroid():
    model = KMeans([[0.0, 0.0], [2.0, 0.0]])
    assert model.predict([1.0, 0.0]) == 0
    assert model.predict([1.5, 0.0]) == 1


def test_predict_samples_matches_predict():
    model = KMeans([[0.0, 0.0], [5.0, 5.0], [-5.0, 5.0]])
    X = np.random.RandomState(2).randn(30, 2) * 4.0

    labels = model.predict_samples(X)
    assert labels.shape == (30,)
    assert labels.tolist() == [model.predict(x) for x in X]


# ---------------------------
# Restarts
# ---------------------------

def test_fit_three_blobs():
    model = KMeans.fit(THREE_BLOBS, 3, generator=torch.Generator().manual_seed(0))
    labels = model.predict_samples(THREE_BLOBS).tolist()

    groups = [labels[0:6], labels[6:11], labels[11:18]]
    assert all(len(set(g)) == 1 for g in groups)
    assert len({g[0] for g in groups}) == 3

    assert model.converged_
    assert model.n_iter_ >= 1
    assert model.inertia_ == pytest.approx(model.sum_of_squared_distances(THREE_BLOBS), abs=1e-12)


def test_fit_keeps_best_restart():
    X = np.random.RandomState(3).randn(200, 2)
    options = KMeansOptions(try_count=5)
    best = KMeans.fit(X, 6, options, generator=torch.Generator().manual_seed(3))

    generator = torch.Generator().manual_seed(3)
    single = [
        KMeans.fit(X, 6, KMeansOptions(try_count=1), generator=generator).inertia_
        for _ in range(5)
    ]
    assert best.inertia_ == pytest.approx(min(single), abs=1e-9)


def test_all_restarts_fail_raises_last_failure(caplog):
    X = np.array([[0.0, 0.0], [1.0, 1.0], [np.inf, 0.0], [2.0, 2.0]])

    with caplog.at_level(logging.WARNING, logger="gmm_em._kmeans"):
        with pytest.raises(FittingFailureError) as excinfo:
            KMeans.fit(X, 2, KMeansOptions(try_count=3), generator=torch.Generator().manual_seed(0))

    assert isinstance(excinfo.value.__cause__, FittingFailureError)
    assert caplog.text.count("failed") == 3


def test_failed_restart_is_discarded(monkeypatch):
    real_run_restart = kmeans_module._run_restart
    calls = []

    def flaky_run_restart(*args, **kwargs):
        calls.append(1)
        if len(calls) == 1:
            raise FittingFailureError("boom")
        return real_run_restart(*args, **kwargs)

    monkeypatch.setattr(kmeans_module, "_run_restart", flaky_run_restart)

    model = KMeans.fit(THREE_BLOBS, 3, KMeansOptions(try_count=3), generator=torch.Generator().manual_seed(0))
    assert len(calls) == 3
    assert np.isfinite(model.inertia_)


def test_non_convergence_is_logged(caplog):
    X = np.random.RandomState(4).randn(300, 2)
    options = KMeansOptions(try_count=1, max_iterations=1, tolerance=1e-15)

    with caplog.at_level(logging.WARNING, logger="gmm_em._kmeans"):
        model = KMeans.fit(X, 8, options, generator=torch.Generator().manual_seed(4))

    assert not model.converged_
    assert model.n_iter_ == 1
    assert "did not converge" in caplog.text


# ---------------------------
# Argument validation
# ---------------------------

def test_invalid_arguments():
    X = THREE_BLOBS
    with pytest.raises(ValueError):
        KMeans.fit(X, 1)
    with pytest.raises(ValueError):
        KMeans.fit(np.empty((0, 2)), 2)
    with pytest.raises(ValueError):
        KMeans.initial_model([[1.0, 2.0], [1.0]], 2)
    with pytest.raises(ValueError):
        KMeans([[0.0, 0.0]])
    with pytest.raises(ValueError):
        KMeans([[0.0, 0.0], [1.0, 1.0]]).predict([1.0, 2.0, 3.0])
    with pytest.raises(ValueError):
        KMeans([[0.0, 0.0], [1.0, 1.0]]).update(np.zeros((3, 3)))


@pytest.mark.parametrize(
    "kwargs",
    [{"try_count": 0}, {"max_iterations": 0}, {"tolerance": 0.0}, {"tolerance": -1.0}],
)
def test_invalid_options(kwargs):
    with pytest.raises(ValueError):
        KMeansOptions(**kwargs)


def test_to_kmeans_validates_try_count():
    with pytest.raises(ValueError):
        to_kmeans(THREE_BLOBS, 3, try_count=0)

    model = to_kmeans(THREE_BLOBS, 3, generator=torch.Generator().manual_seed(5))
    assert model.cluster_count == 3


def test_to_gmm_from_partition():
    model = KMeans.fit(THREE_BLOBS, 3, generator=torch.Generator().manual_seed(6))
    gmm = model.to_gmm(THREE_BLOBS)
    assert isinstance(gmm, GaussianMixture)
    assert gmm.component_count == 3
    assert sorted(round(w, 12) for w in gmm.weights.tolist()) == sorted(round(n / 18, 12) for n in (5, 6, 7))
