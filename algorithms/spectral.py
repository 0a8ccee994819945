"""
Spectral (SVD) Clustering Implementation.

This module clusters fingerprinted items from the singular vectors of
their pairwise similarity matrix. The Gaussian-filtered Tversky similarity
matrix is built as a sparse matrix, a truncated SVD extracts the requested
number of singular triplets, and the clusters are read off the left (U)
and right (V) singular vectors.

Only coefficients above the cluster threshold are used to build the
clusters. If overlapping clusters are requested an item can be in any
cluster whose singular vector it contributes to; otherwise an item is only
put in the cluster where its contribution is highest.

When tversky_alpha == tversky_beta the similarity matrix is symmetric and
the U and V clusters are the same.

References
----------
[1] Campello, R.J.G.B., Hruschka, E.R., "A fuzzy extension of the silhouette
    width criterion for cluster analysis", 2006, Fuzzy Sets and Systems, 157,
    pp. 2858-2875.
"""

import numpy as np
from scipy import linalg, sparse
from scipy.sparse.linalg import ArpackNoConvergence, svds
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from algorithms.cluster_model import Cluster, ClusterMember
from algorithms.similarity import SimilarityMatrixBuilder, triples_to_sparse, tversky_similarity_matrix
from utils.clustering_metrics import (
    crisp_silhouette_score,
    extract_crisp_clusters,
    fuzzy_silhouette_score,
    get_top_pairs,
    mean_cluster_distances,
)
from utils.fingerprints import prepare_fingerprints


def tversky_cluster_distances(
        clusters: Sequence[Sequence[int]],
        fps: np.ndarray,
        tversky_alpha: float = 1.0,
        tversky_beta: float = 1.0
) -> np.ndarray:
    """
    Mean Tversky distance (1 - similarity) of each item to each cluster.

    Parameters
    ----------
    clusters : sequence of sequences of int
        Item indices in each cluster.
    fps : np.ndarray
        Bit fingerprints of shape (n_items, n_bits).
    """
    fps = np.asarray(fps)

    def pairwise(rows, cols):
        return 1.0 - tversky_similarity_matrix(fps[rows], fps[cols], tversky_alpha, tversky_beta)

    return mean_cluster_distances(clusters, fps.shape[0], pairwise)


class SpectralClustering:
    """
    Spectral clustering of fingerprints via a truncated SVD.

    Parameters
    ----------
    n_clusters : int
        Number of singular triplets requested, which is the maximum number
        of clusters.
    tversky_alpha : float, default=1.0
        Tversky alpha. With tversky_beta=1.0 this gives Tanimoto similarity.
    tversky_beta : float, default=1.0
        Tversky beta.
    gamma : float, default=10.0
        Gaussian transformation parameter for the similarities. Disabled if
        gamma <= -0.5.
    sim_threshold : float, default=0.01
        Threshold for filtering the (transformed) similarity matrix.
    cluster_threshold : float, default=0.01
        Threshold on the absolute singular vector coefficient for adding an
        item to a cluster.
    overlapping : bool, default=False
        If True, an item goes in every cluster it contributes to above the
        threshold, and the fuzzy silhouette score is reported. If False,
        only in the cluster of its largest contribution, with the crisp
        silhouette score.
    max_iters : int, optional
        Maximum number of Lanczos (ARPACK) iterations.
    tol : float, default=1e-6
        Convergence tolerance for the singular values. Singular values at or
        below tol * largest are treated as not found.
    random_state : int or np.random.Generator, optional
        Seed for the Lanczos starting vector.
    verbose : bool, default=False
        If True, prints progress to console.
    """

    def __init__(
            self,
            n_clusters: int,
            tversky_alpha: float = 1.0,
            tversky_beta: float = 1.0,
            gamma: float = 10.0,
            sim_threshold: float = 0.01,
            cluster_threshold: float = 0.01,
            overlapping: bool = False,
            max_iters: Optional[int] = None,
            tol: float = 1e-6,
            random_state: Optional[Any] = None,
            verbose: bool = False
    ):
        if n_clusters < 1:
            raise ValueError(f"n_clusters must be >= 1, got {n_clusters}")

        self.n_clusters = n_clusters
        self.tversky_alpha = tversky_alpha
        self.tversky_beta = tversky_beta
        self.gamma = gamma
        self.sim_threshold = sim_threshold
        self.cluster_threshold = cluster_threshold
        self.overlapping = overlapping
        self.max_iters = max_iters
        self.tol = tol
        self.random_state = random_state
        self.verbose = verbose

        self.n_triples_ = 0
        self.rank_ = 0
        self.singular_values_ = None
        self.u_clusters_ = None
        self.u_score_ = None
        self.v_clusters_ = None
        self.v_score_ = None

    def _truncated_svd(self, matrix: sparse.spmatrix) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Finds the largest singular triplets of the similarity matrix.

        Uses ARPACK's implicitly restarted Lanczos method. If the requested
        rank is as big as the matrix, or ARPACK doesn't converge, the dense
        decomposition is used instead. Singular values that are numerically
        zero are dropped, so the rank returned can be less than requested.

        Returns
        -------
        s : np.ndarray
            Singular values in descending order, shape (rank,).
        ut : np.ndarray
            Left singular vectors as rows, shape (rank, n_items).
        vt : np.ndarray
            Right singular vectors as rows, shape (rank, n_items).
        """
        n = matrix.shape[0]
        k = min(self.n_clusters, n)

        u = s = vt = None
        if k < n:
            rng = np.random.default_rng(self.random_state)
            try:
                u, s, vt = svds(matrix, k=k, tol=self.tol, maxiter=self.max_iters,
                                v0=rng.uniform(size=n), solver="arpack")
            except ArpackNoConvergence:
                if self.verbose:
                    print(f"[Spectral] Lanczos did not converge for rank {k}, using dense SVD.")

        if s is None:
            u, s, vt = linalg.svd(matrix.toarray())
            u, s, vt = u[:, :k], s[:k], vt[:k]

        order = np.argsort(s)[::-1]
        s, u, vt = s[order], u[:, order], vt[order]

        keep = s > self.tol * s[0] if s.size and s[0] > 0 else np.zeros(s.size, dtype=bool)
        if self.verbose and keep.sum() < self.n_clusters:
            print(f"[Spectral] Requested rank {self.n_clusters}, found {int(keep.sum())}.")

        return s[keep], u[:, keep].T, vt[keep]

    def _extract_clusters(
            self,
            coeffs: np.ndarray,
            singular_values: np.ndarray,
            fps: np.ndarray,
            has_fp: np.ndarray,
            item_ids: Optional[Sequence[Any]]
    ) -> Tuple[List[Cluster], float]:
        """
        Gets the clusters out of one set of singular vectors.

        Parameters
        ----------
        coeffs : np.ndarray
            Singular vectors as rows, shape (rank, n_items).

        Returns
        -------
        clusters : List[Cluster]
        score : float
            Fuzzy silhouette score for overlapping clusters, crisp otherwise.
        """
        rank, n_items = coeffs.shape
        contributions = np.abs(coeffs.T)

        # The silhouette scores, both crisp and fuzzy, and the non-overlapping
        # clusters all need each item's largest coefficient. The fuzzy score
        # needs the second largest as well.
        top_pairs = get_top_pairs(contributions)

        crisp_clus = extract_crisp_clusters(top_pairs, rank, self.cluster_threshold)
        crisp_clus = [[i for i in c if has_fp[i]] for c in crisp_clus]

        dists = tversky_cluster_distances(crisp_clus, fps, self.tversky_alpha, self.tversky_beta)
        crisp_score, sil_scores = crisp_silhouette_score(crisp_clus, dists)

        def make_member(i, contribution):
            return ClusterMember(
                index=int(i),
                contribution=float(contribution),
                silhouette=float(sil_scores[i]),
                item_id=None if item_ids is None else item_ids[i]
            )

        clusters = []
        if self.overlapping:
            for k in range(rank):
                cluster = Cluster(strength=float(singular_values[k]), threshold=self.cluster_threshold)
                for i in np.flatnonzero(has_fp):
                    cluster.add_member(make_member(i, contributions[i, k]), resort=False)
                cluster.sort_members()
                clusters.append(cluster)
            score = fuzzy_silhouette_score(sil_scores, top_pairs)
        else:
            # the crisp clusters are the non-overlapping clusters
            for k, members in enumerate(crisp_clus):
                cluster = Cluster(strength=float(singular_values[k]), threshold=self.cluster_threshold)
                for i in members:
                    cluster.add_member(make_member(i, top_pairs.first_values[i]), resort=False)
                cluster.sort_members()
                if len(cluster):
                    clusters.append(cluster)
            score = crisp_score

        return clusters, score

    def fit(self, fingerprints: Iterable[Any], item_ids: Optional[Sequence[Any]] = None):
        """
        Cluster the fingerprints.

        Parameters
        ----------
        fingerprints : iterable
            One fingerprint per item (see `utils.fingerprints`). Items
            without a fingerprint (None) are not clustered.
        item_ids : sequence, optional
            Identifier for each item, copied onto the cluster members.

        Returns
        -------
        self
        """
        fps = prepare_fingerprints(fingerprints)
        n_items = len(fps)
        if item_ids is not None and len(item_ids) != n_items:
            raise ValueError(f"Got {len(item_ids)} item_ids for {n_items} fingerprints.")

        builder = SimilarityMatrixBuilder(
            tversky_alpha=self.tversky_alpha,
            tversky_beta=self.tversky_beta,
            gamma=self.gamma,
            sim_threshold=self.sim_threshold
        )
        triples = builder.build(fps)
        self.n_triples_ = len(triples)

        if not triples:
            if self.verbose:
                print("[Spectral] No similarities above threshold, nothing to cluster.")
            self.rank_ = 0
            self.singular_values_ = np.zeros(0)
            self.u_clusters_, self.u_score_ = [], 0.0
            self.v_clusters_, self.v_score_ = [], 0.0
            return self

        has_fp = np.array([fp is not None for fp in fps])
        n_bits = len(next(fp for fp in fps if fp is not None))
        fp_matrix = np.zeros((n_items, n_bits), dtype=bool)
        for i in np.flatnonzero(has_fp):
            fp_matrix[i] = fps[i]

        matrix = triples_to_sparse(triples, n_items)
        s, ut, vt = self._truncated_svd(matrix)

        self.rank_ = len(s)
        self.singular_values_ = s

        if self.verbose:
            print(f"[Spectral] {n_items} items, {len(triples)} matrix elements, rank {self.rank_}")
            print("[Spectral] Singular values:", s)

        if self.rank_ == 0:
            self.u_clusters_, self.u_score_ = [], 0.0
            self.v_clusters_, self.v_score_ = [], 0.0
            return self

        self.u_clusters_, self.u_score_ = self._extract_clusters(ut, s, fp_matrix, has_fp, item_ids)
        self.v_clusters_, self.v_score_ = self._extract_clusters(vt, s, fp_matrix, has_fp, item_ids)

        if self.verbose:
            kind = "Fuzzy" if self.overlapping else "Crisp"
            print(f"[Spectral] U: {len(self.u_clusters_)} clusters, {kind} silhouette = {self.u_score_:.4f}")
            print(f"[Spectral] V: {len(self.v_clusters_)} clusters, {kind} silhouette = {self.v_score_:.4f}")

        return self


def spectral_cluster(
        fingerprints: Iterable[Any],
        tversky_alpha: float = 1.0,
        tversky_beta: float = 1.0,
        gamma: float = 10.0,
        rank: int = 10,
        sim_threshold: float = 0.01,
        membership_threshold: float = 0.01,
        overlapping: bool = False,
        item_ids: Optional[Sequence[Any]] = None,
        random_state: Optional[Any] = None
) -> Tuple[List[Cluster], float, List[Cluster], float]:
    """
    Runs Spectral clustering once.

    Returns
    -------
    tuple
        (U clusters, U silhouette score, V clusters, V silhouette score).
    """
    model = SpectralClustering(
        n_clusters=rank,
        tversky_alpha=tversky_alpha,
        tversky_beta=tversky_beta,
        gamma=gamma,
        sim_threshold=sim_threshold,
        cluster_threshold=membership_threshold,
        overlapping=overlapping,
        random_state=random_state
    )
    model.fit(fingerprints, item_ids=item_ids)
    return model.u_clusters_, model.u_score_, model.v_clusters_, model.v_score_
