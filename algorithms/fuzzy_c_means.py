"""
Fuzzy K-Means (Fuzzy C-Means, FCM) Implementation.

This module provides Bezdek's Fuzzy C-Means algorithm for dense feature
vectors, such as fingerprints expanded to 0.0/1.0 floats. Each item gets a
membership coefficient for every cluster, the coefficients of an item
summing to 1. Items are then put into every cluster for which their
membership exceeds a threshold, so the clusters overlap.

The algorithm is restarted from several random membership matrices and the
solution with the lowest objective J is kept. The quality of the result is
reported as the fuzzy silhouette score.

References
----------
[1] Bezdek, J.C., Ehrlich, R., Full, W., "FCM: The fuzzy c-means clustering
    algorithm", 1984, Computers & Geosciences, 10(2-3), pp. 191-203.
[2] Campello, R.J.G.B., Hruschka, E.R., "A fuzzy extension of the silhouette
    width criterion for cluster analysis", 2006, Fuzzy Sets and Systems, 157,
    pp. 2858-2875.
"""

import numpy as np
import pandas as pd
from scipy.special import softmax
from typing import Any, List, Optional, Sequence, Tuple, Union

from algorithms.cluster_model import Cluster, InsufficientDataError, extract_clusters
from utils.clustering_metrics import (
    crisp_silhouette_score,
    euclidean_cluster_distances,
    extract_crisp_clusters,
    fuzzy_silhouette_score,
    get_top_pairs,
)
from utils.fingerprints import as_feature_matrix

# Restarts stop early once this many solutions land on the same objective
MAX_NEAR_TIES = 3


class FuzzyCMeans:
    """
    Fuzzy C-Means with random restarts.

    The algorithm iterates between calculating cluster centers and updating
    membership degrees until the membership matrix stops changing.

    Parameters
    ----------
    n_clusters : int
        The number of clusters to form.
    m : float, default=1.05
        The fuzziness exponent (weighting exponent). Must be > 1. Values
        close to 1 give nearly crisp memberships.
    n_restarts : int, default=2
        Maximum number of runs from different random membership matrices.
    cluster_threshold : float, default=1e-6
        An item is a member of every cluster for which its membership
        exceeds this value.
    max_iters : int, default=100000
        Maximum number of iterations of a single run.
    tol : float, default=1e-6
        Convergence tolerance on the sum of squared changes in the
        membership matrix U.
    objective_tol : float, default=1e-3
        Two runs whose objectives differ by less than this are taken to have
        found the same minimum.
    random_state : int or np.random.Generator, optional
        Seed for random initialization of the membership matrix.
    verbose : bool, default=False
        If True, prints the objective of every restart to console.
    """

    def __init__(
            self,
            n_clusters: int,
            m: float = 1.05,
            n_restarts: int = 2,
            cluster_threshold: float = 1e-6,
            max_iters: int = 100000,
            tol: float = 1e-6,
            objective_tol: float = 1e-3,
            random_state: Optional[Any] = None,
            verbose: bool = False
    ):
        if n_clusters < 1:
            raise ValueError(f"n_clusters must be >= 1, got {n_clusters}")
        if n_restarts < 1:
            raise ValueError(f"n_restarts must be >= 1, got {n_restarts}")
        if m <= 1.0:
            raise ValueError(f"The fuzziness exponent m must be > 1, got {m}")

        self.n_clusters = n_clusters
        self.m = m
        self.n_restarts = n_restarts
        self.cluster_threshold = cluster_threshold
        self.max_iters = max_iters
        self.tol = tol
        self.objective_tol = objective_tol
        self.random_state = random_state
        self.verbose = verbose

        self.centroids = None
        self.u = None  # Membership matrix (N x C), rows of the kept items
        self.kept_indices_ = None
        self.labels_ = None
        self.objective_ = None
        self.clusters_ = None
        self.silhouette_score_ = None
        self.n_iter_ = 0

    def _initialize_membership(self, n_samples: int, rng: np.random.Generator) -> np.ndarray:
        # Constraint: sum of memberships for each point must equal 1 (Eq 2b in [1])
        u = rng.uniform(0.0, 1.0, size=(n_samples, self.n_clusters))
        return u / u.sum(axis=1, keepdims=True)

    def _calculate_centroids(self, X: np.ndarray, u: np.ndarray) -> np.ndarray:
        """
        V_j = sum(u_ij^m * x_i) / sum(u_ij^m)

        Ref [1]: Equation 11a, p. 193
        """
        u_pow_m = u ** self.m
        denominator = u_pow_m.sum(axis=0).reshape(-1, 1)
        numerator = np.dot(u_pow_m.T, X)

        # Safe division (handle clusters whose memberships all underflowed)
        return np.divide(
            numerator,
            denominator,
            out=np.zeros_like(numerator),
            where=denominator != 0
        )

    @staticmethod
    def _squared_distances(X: np.ndarray, centroids: np.ndarray) -> np.ndarray:
        return np.sum((X[:, np.newaxis, :] - centroids[np.newaxis, :, :]) ** 2, axis=2)

    def _calculate_bezdek_membership(self, sq_dists: np.ndarray) -> np.ndarray:
        """
        Calculates the U matrix from squared Euclidean distances.

        Ref [1]: Eq 11b.
            u_ij = 1 / sum_k (d_ij / d_ik)^(2 / (m - 1))

        which is the softmax over clusters of -log(d_ij^2) / (m - 1). For m
        close to 1 the powers in Eq 11b overflow, the softmax doesn't. A
        point exactly at one or more centroids shares its membership
        equally between them.
        """
        zero = sq_dists == 0.0

        with np.errstate(divide="ignore"):
            logits = -np.log(sq_dists) / (self.m - 1.0)
        u_new = softmax(np.where(zero, 0.0, logits), axis=1)

        on_centroid = zero.any(axis=1)
        if on_centroid.any():
            hits = zero[on_centroid].astype(np.float64)
            u_new[on_centroid] = hits / hits.sum(axis=1, keepdims=True)

        return u_new

    def _objective(self, sq_dists: np.ndarray, u: np.ndarray) -> float:
        """J = sum_i sum_j u_ij^m * d_ij^2 (Eq 6 in [1])."""
        return float(np.sum((u ** self.m) * sq_dists))

    def _run_once(self, X: np.ndarray, rng: np.random.Generator):
        """
        One FCM run from a random membership matrix.

        Returns
        -------
        u, centroids, objective, n_iter
        """
        u = self._initialize_membership(X.shape[0], rng)
        centroids = self._calculate_centroids(X, u)
        n_iter = 0

        for iteration in range(self.max_iters):
            n_iter = iteration + 1
            centroids = self._calculate_centroids(X, u)
            u_new = self._calculate_bezdek_membership(self._squared_distances(X, centroids))

            # Check Convergence; the final centroids belong to the old u
            if np.sum((u_new - u) ** 2) < self.tol:
                break
            u = u_new

        objective = self._objective(self._squared_distances(X, centroids), u)
        return u, centroids, objective, n_iter

    def _silhouette(self, X: np.ndarray, u: np.ndarray) -> Tuple[float, np.ndarray]:
        """
        Fuzzy silhouette score of the membership matrix.

        The crisp silhouettes come from the crisp clusters (each item in
        the cluster of its largest membership) and the mean squared
        Euclidean distances between the feature vectors.
        """
        top_pairs = get_top_pairs(u)
        crisp_clus = extract_crisp_clusters(top_pairs, self.n_clusters, self.cluster_threshold)
        dists = euclidean_cluster_distances(crisp_clus, X)
        _, sil_scores = crisp_silhouette_score(crisp_clus, dists)
        return fuzzy_silhouette_score(sil_scores, top_pairs), sil_scores

    def fit(self, X: Union[np.ndarray, pd.DataFrame, Sequence[Any]], item_ids: Optional[Sequence[Any]] = None):
        """
        Execute the clustering algorithm.

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features)
            Input data. Rows that are None are items without a feature vector
            and are not clustered.
        item_ids : sequence, optional
            Identifier for each row of X, copied onto the cluster members.

        Returns
        -------
        self
        """
        if item_ids is not None and len(item_ids) != len(X):
            raise ValueError(f"Got {len(item_ids)} item_ids for {len(X)} rows.")

        data, kept = as_feature_matrix(X)
        n_samples = len(kept)

        if n_samples < self.n_clusters:
            raise InsufficientDataError(
                f"Can't make {self.n_clusters} clusters from {n_samples} items."
            )

        rng = np.random.default_rng(self.random_state)

        best_j = np.inf
        best = None
        num_bests = 0

        for restart in range(self.n_restarts):
            u, centroids, this_j, n_iter = self._run_once(data, rng)

            if self.verbose:
                print(f"[FuzzyCMeans] restart {restart}: J = {this_j:.6f}, "
                      f"best J = {best_j:.6f}, {n_iter} iterations")

            if abs(this_j - best_j) < self.objective_tol:
                # the same objective again, assume it's the minimum
                best = (u, centroids, n_iter)
                num_bests += 1
                if num_bests == MAX_NEAR_TIES:
                    if self.verbose:
                        print(f"[FuzzyCMeans] same objective {num_bests} times, "
                              f"stopping after restart {restart}")
                    break
            if this_j < best_j or best is None:
                best_j = this_j
                best = (u, centroids, n_iter)
                num_bests = 1

        u, centroids, n_iter = best

        self.u = u
        self.centroids = centroids
        self.n_iter_ = n_iter
        self.kept_indices_ = kept
        self.objective_ = self._objective(self._squared_distances(data, centroids), u)

        self.labels_ = np.full(len(X), -1, dtype=int)
        self.labels_[kept] = np.argmax(u, axis=1)

        score, sil_scores = self._silhouette(data, u)
        self.silhouette_score_ = float(score)

        item_sil = np.zeros(len(X))
        item_sil[kept] = sil_scores

        partition = [
            [(kept[i], u[i, k]) for i in np.flatnonzero(u[:, k] > self.cluster_threshold)]
            for k in range(self.n_clusters)
        ]
        self.clusters_ = extract_clusters(partition, item_ids=item_ids, silhouettes=item_sil)

        return self

    def fit_predict(self, X: Union[np.ndarray, pd.DataFrame, Sequence[Any]]) -> np.ndarray:
        """
        Fits the model and returns hard cluster labels.

        Items without a feature vector are labelled -1.
        """
        self.fit(X)
        return self.labels_


def fuzzy_k_means_cluster(
        vectors: Union[np.ndarray, pd.DataFrame, Sequence[Any]],
        k: int,
        restarts: int = 2,
        m: float = 1.05,
        membership_threshold: float = 1e-6,
        random_state: Optional[Any] = None,
        item_ids: Optional[Sequence[Any]] = None
) -> Tuple[List[Cluster], float]:
    """
    Runs Fuzzy K-Means clustering.

    Returns
    -------
    tuple
        (one cluster per centroid, fuzzy silhouette score).
    """
    model = FuzzyCMeans(
        n_clusters=k,
        m=m,
        n_restarts=restarts,
        cluster_threshold=membership_threshold,
        random_state=random_state
    )
    model.fit(vectors, item_ids=item_ids)
    return model.clusters_, model.silhouette_score_
