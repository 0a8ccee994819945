"""
Standard K-Means Algorithm Implementation.

This module provides K-Means clustering (Lloyd's algorithm) of dense feature
vectors, such as fingerprints expanded to 0.0/1.0 floats. The nature of the
algorithm requires Euclidean distances as the cluster centroid must be
computed, and that won't be a bitstring.

Each restart seeds the centroids with randomly chosen items and iterates to
a fixed point: the algorithm stops when an assignment pass produces exactly
the same partition as the previous one. The restart with the best crisp
silhouette score is kept.

References
----------
[1] MacQueen, J., "Some methods for classification and analysis of multivariate
    observations", 1967, Proc. 5th Berkeley Symp. Math. Stat. Prob., pp. 281-297.
[2] Rousseeuw, P.J., "Silhouettes: a graphical aid to the interpretation and
    validation of cluster analysis", 1987, Journal of Computational and
    Applied Mathematics, 20, pp. 53-65.
"""

import numpy as np
import pandas as pd
from typing import Any, List, Optional, Sequence, Tuple, Union

from algorithms.cluster_model import Cluster, InsufficientDataError, extract_clusters
from utils.clustering_metrics import crisp_silhouette_score
from utils.fingerprints import as_feature_matrix


class KMeans:
    """
    K-Means clustering with random restarts scored by silhouette.

    Parameters
    ----------
    n_clusters : int
        The number of clusters to form as well as the number of centroids to
        generate. Clusters that become empty during a run are dropped, so
        the result can have fewer.
    n_restarts : int, default=10
        Number of runs from different random seeds. The run with the best
        crisp silhouette score is kept.
    max_iters : int, default=1000
        Maximum number of iterations of a single run, in case the partition
        never reaches a fixed point.
    random_state : int or np.random.Generator, optional
        Determines random number generation for centroid initialization.
    verbose : bool, default=False
        If True, prints the score of every restart to console.
    """

    def __init__(
        self,
        n_clusters: int,
        n_restarts: int = 10,
        max_iters: int = 1000,
        random_state: Optional[Any] = None,
        verbose: bool = False
    ):
        if n_clusters < 1:
            raise ValueError(f"n_clusters must be >= 1, got {n_clusters}")
        if n_restarts < 1:
            raise ValueError(f"n_restarts must be >= 1, got {n_restarts}")

        self.n_clusters = n_clusters
        self.n_restarts = n_restarts
        self.max_iters = max_iters
        self.random_state = random_state
        self.verbose = verbose

        self.centroids_ = None
        self.labels_ = None
        self.inertia_ = None
        self.inertia_history_ = None
        self.n_iter_ = 0
        self.best_restart_ = None
        self.silhouette_score_ = None
        self.sil_scores_ = None
        self.clusters_ = None

    def _initialize_centroids(self, X: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        """
        Initialize centroids by choosing n_clusters distinct items at random.

        Parameters
        ----------
        X : np.ndarray
            Input data of shape (n_samples, n_features).
        rng : np.random.Generator
            Random stream shared by all restarts.

        Returns
        -------
        np.ndarray
            Initial centroids of shape (n_clusters, n_features).
        """
        n_samples, _ = X.shape
        indices = rng.choice(n_samples, size=self.n_clusters, replace=False)
        return X[indices].copy()

    def _compute_distances(self, X: np.ndarray, centroids: np.ndarray) -> np.ndarray:
        """
        Squared Euclidean distance from each point to each centroid.

        Returns
        -------
        np.ndarray
            Distance matrix of shape (n_samples, n_centroids).
        """
        return np.sum((X[:, np.newaxis, :] - centroids[np.newaxis, :, :]) ** 2, axis=2)

    def _assign_clusters(self, X: np.ndarray, centroids: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Assign each data point to the nearest centroid.

        Ties go to the first centroid found. Centroids that attract no points
        are removed, and the labels renumbered to match.

        Returns
        -------
        labels : np.ndarray
            Index of the nearest surviving centroid for each sample.
        centroids : np.ndarray
            The surviving centroids.
        """
        distances = self._compute_distances(X, centroids)
        labels = np.argmin(distances, axis=1)

        occupied = np.unique(labels)
        if len(occupied) < len(centroids):
            labels = np.searchsorted(occupied, labels)
            centroids = centroids[occupied]

        return labels, centroids

    def _update_centroids(self, X: np.ndarray, labels: np.ndarray, n_centroids: int) -> np.ndarray:
        """
        Recalculate centroids as the mean of points assigned to them.

        Every centroid has at least one point, `_assign_clusters` sees to that.
        """
        centroids = np.zeros((n_centroids, X.shape[1]))
        for k in range(n_centroids):
            centroids[k] = np.mean(X[labels == k], axis=0)
        return centroids

    def _compute_inertia(self, X: np.ndarray, labels: np.ndarray, centroids: np.ndarray) -> float:
        """
        Within-cluster sum of squared errors, SSE = sum ||x_j - c_i||^2.
        """
        return float(np.sum((X - centroids[labels]) ** 2))

    @staticmethod
    def _canonical_partition(labels: np.ndarray) -> Tuple[Tuple[int, ...], ...]:
        """
        The partition as a sorted tuple of sorted member tuples.

        Two assignments give the same result regardless of how the clusters
        are numbered.
        """
        groups = {}
        for i, label in enumerate(labels):
            groups.setdefault(int(label), []).append(i)
        return tuple(sorted(tuple(g) for g in groups.values()))

    def _run_once(self, X: np.ndarray, rng: np.random.Generator):
        """
        One K-Means run from a random start, iterated to a fixed point.

        Returns
        -------
        labels, centroids, n_iter, inertia_history
        """
        centroids = self._initialize_centroids(X, rng)
        previous = None
        inertia_history = []
        n_iter = 0

        for _ in range(self.max_iters):
            n_iter += 1
            labels, centroids = self._assign_clusters(X, centroids)
            inertia_history.append(self._compute_inertia(X, labels, centroids))

            partition = self._canonical_partition(labels)
            if partition == previous:
                break
            previous = partition

            centroids = self._update_centroids(X, labels, len(centroids))

        return labels, centroids, n_iter, inertia_history

    def fit(self, X: Union[np.ndarray, pd.DataFrame, Sequence[Any]], item_ids: Optional[Sequence[Any]] = None):
        """
        Fit the K-Means model to the data.

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features)
            Training data. Rows that are None are items without a feature
            vector and are not clustered.
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

        best_score = -np.inf
        best = None

        for restart in range(self.n_restarts):
            labels, centroids, n_iter, history = self._run_once(data, rng)

            # distances of each item to each cluster centroid, for the silhouette score
            sil_dists = self._compute_distances(data, centroids)
            sil_clus = [np.flatnonzero(labels == k).tolist() for k in range(len(centroids))]
            score, sil_scores = crisp_silhouette_score(sil_clus, sil_dists)

            if self.verbose:
                print(f"[KMeans] restart {restart}: {len(centroids)} clusters, "
                      f"{n_iter} iterations, silhouette = {score:.4f}")

            if score > best_score:
                best_score = score
                best = (restart, labels, centroids, n_iter, history, sil_scores, sil_dists)

        restart, labels, centroids, n_iter, history, sil_scores, sil_dists = best

        self.best_restart_ = restart
        self.centroids_ = centroids
        self.n_iter_ = n_iter
        self.inertia_history_ = history
        self.inertia_ = self._compute_inertia(data, labels, centroids)
        self.silhouette_score_ = float(best_score)

        # map back to the caller's positions
        self.labels_ = np.full(len(X), -1, dtype=int)
        self.labels_[kept] = labels
        self.sil_scores_ = np.zeros(len(X))
        self.sil_scores_[kept] = sil_scores

        partition = [
            [(kept[i], -sil_dists[i, k]) for i in np.flatnonzero(labels == k)]
            for k in range(len(centroids))
        ]
        clusters = extract_clusters(partition, item_ids=item_ids, silhouettes=self.sil_scores_)
        self.clusters_ = sorted(clusters, key=len, reverse=True)

        return self

    def predict(self, X: Union[np.ndarray, pd.DataFrame]) -> np.ndarray:
        """
        Predict the closest cluster for each sample in X.

        Parameters
        ----------
        X : array-like
            New data to predict.

        Returns
        -------
        np.ndarray
            Cluster assignments.
        """
        if self.centroids_ is None:
            raise ValueError("Model has not been fitted yet. Call fit() first.")

        data, _ = as_feature_matrix(X)
        return np.argmin(self._compute_distances(data, self.centroids_), axis=1)

    def fit_predict(self, X: Union[np.ndarray, pd.DataFrame, Sequence[Any]]) -> np.ndarray:
        """
        Fit the model and return cluster assignments.

        Items without a feature vector are labelled -1.
        """
        self.fit(X)
        return self.labels_


def k_means_cluster(
        vectors: Union[np.ndarray, pd.DataFrame, Sequence[Any]],
        k: int,
        restarts: int = 10,
        random_state: Optional[Any] = None,
        item_ids: Optional[Sequence[Any]] = None
) -> Tuple[List[Cluster], float]:
    """
    Runs K-Means clustering with `restarts` random starts.

    Returns
    -------
    tuple
        (clusters sorted by descending size, crisp silhouette score).
    """
    model = KMeans(n_clusters=k, n_restarts=restarts, random_state=random_state)
    model.fit(vectors, item_ids=item_ids)
    return model.clusters_, model.silhouette_score_
