"""
Gaussian-Filtered Tversky Similarity Matrix.

This module builds the sparse similarity matrix that drives the Spectral
(SVD) clustering. For every pair of fingerprinted items it computes the
Tversky similarity, optionally sharpens it with a Gaussian transformation,
filters the result by a threshold and emits the surviving values as
(row, col, value) triples sorted by row.

If tversky_alpha and tversky_beta are both 1.0 (the defaults) the
similarity is the Tanimoto coefficient.

References
----------
[1] Tversky, A., "Features of similarity", 1977, Psychological Review,
    84(4), pp. 327-352.
"""

import numpy as np
from scipy import sparse
from typing import Any, Iterable, List, NamedTuple, Optional

from utils.fingerprints import prepare_fingerprints


class SimilarityTriple(NamedTuple):
    """One element of the sparse similarity matrix."""
    row: int
    col: int
    value: float


def tversky_similarity(a: np.ndarray, b: np.ndarray, alpha: float = 1.0, beta: float = 1.0) -> float:
    """
    Tversky similarity between two bit vectors.

    sim(A, B) = |A & B| / (alpha * |A - B| + beta * |B - A| + |A & B|)

    Returns 0.0 when the denominator is zero (two empty fingerprints).
    """
    a = np.asarray(a, dtype=bool)
    b = np.asarray(b, dtype=bool)
    common = float(np.count_nonzero(a & b))
    denom = alpha * np.count_nonzero(a & ~b) + beta * np.count_nonzero(b & ~a) + common
    if denom == 0:
        return 0.0
    return common / denom


def tversky_similarity_matrix(
        fps_a: np.ndarray,
        fps_b: np.ndarray,
        alpha: float = 1.0,
        beta: float = 1.0
) -> np.ndarray:
    """
    Vectorised Tversky similarity between two sets of fingerprints.

    Parameters
    ----------
    fps_a : np.ndarray
        Fingerprints of shape (n_a, n_bits). Each row is the "A" side.
    fps_b : np.ndarray
        Fingerprints of shape (n_b, n_bits).

    Returns
    -------
    np.ndarray
        Similarity matrix of shape (n_a, n_b).
    """
    A = np.asarray(fps_a, dtype=np.float64)
    B = np.asarray(fps_b, dtype=np.float64)

    common = A @ B.T
    a_only = A.sum(axis=1)[:, np.newaxis] - common
    b_only = B.sum(axis=1)[np.newaxis, :] - common
    denom = alpha * a_only + beta * b_only + common

    return np.divide(common, denom, out=np.zeros_like(common), where=denom != 0)


def gaussian_transform(sim: Any, gamma: float) -> Any:
    """
    sim' = exp(-gamma * (sim - 1)^2).

    A similarity of 1 is unaffected, lower similarities are pushed towards
    0 as gamma grows. No transformation is done if gamma <= -0.5.
    """
    if gamma <= -0.5:
        return sim
    return np.exp(-1.0 * gamma * (np.asarray(sim) - 1.0) ** 2)


class SimilarityMatrixBuilder:
    """
    Builds the thresholded, Gaussian-filtered Tversky similarity triples.

    Parameters
    ----------
    tversky_alpha : float, default=1.0
        Weight on the features unique to the row item.
    tversky_beta : float, default=1.0
        Weight on the features unique to the column item.
    gamma : float, default=10.0
        Gaussian transformation parameter. Disabled if <= -0.5.
    sim_threshold : float, default=0.01
        Only (transformed) similarities above this are kept.
    """

    def __init__(
            self,
            tversky_alpha: float = 1.0,
            tversky_beta: float = 1.0,
            gamma: float = 10.0,
            sim_threshold: float = 0.01
    ):
        self.tversky_alpha = tversky_alpha
        self.tversky_beta = tversky_beta
        self.gamma = gamma
        self.sim_threshold = sim_threshold

    def build(self, fingerprints: Iterable[Any], n_bits: Optional[int] = None) -> List[SimilarityTriple]:
        """
        Computes the similarity triples for a collection of fingerprints.

        Each pair of items (i, j) that passes the threshold appears as
        (i, j, sim(i, j)) and (j, i, sim(j, i)). With asymmetric weights the
        pair passes if either ordering is above the threshold, so both
        orderings are always emitted together. Items whose fingerprint is
        None are skipped entirely.

        Returns
        -------
        List[SimilarityTriple]
            Sorted into ascending order of row.
        """
        fps = prepare_fingerprints(fingerprints, n_bits)
        kept = np.array([i for i, fp in enumerate(fps) if fp is not None], dtype=int)
        if len(kept) < 2:
            return []

        X = np.vstack([fps[i] for i in kept])
        sims = tversky_similarity_matrix(X, X, self.tversky_alpha, self.tversky_beta)

        i_idx, j_idx = np.triu_indices(len(kept), k=1)
        forward = sims[i_idx, j_idx]
        if self.tversky_alpha == self.tversky_beta:
            backward = forward
        else:
            backward = sims[j_idx, i_idx]

        forward = gaussian_transform(forward, self.gamma)
        backward = gaussian_transform(backward, self.gamma)

        passed = (forward > self.sim_threshold) | (backward > self.sim_threshold)
        i_idx, j_idx = i_idx[passed], j_idx[passed]
        forward, backward = forward[passed], backward[passed]

        # Interleave (i, j) and (j, i) so both orderings of a pair sit together
        rows = np.column_stack([kept[i_idx], kept[j_idx]]).ravel()
        cols = np.column_stack([kept[j_idx], kept[i_idx]]).ravel()
        values = np.column_stack([forward, backward]).ravel()

        order = np.argsort(rows, kind="stable")
        return [
            SimilarityTriple(int(r), int(c), float(v))
            for r, c, v in zip(rows[order], cols[order], values[order])
        ]


def triples_to_sparse(triples: List[SimilarityTriple], n_items: int) -> sparse.csc_matrix:
    """
    Packs row-sorted triples into a square compressed-sparse-column matrix.

    The triples are stored column by column: the run of triples with row r
    becomes column r, and each triple's col is its row index in the matrix.
    """
    if not triples:
        return sparse.csc_matrix((n_items, n_items), dtype=np.float64)

    rows = np.array([t.row for t in triples], dtype=int)
    cols = np.array([t.col for t in triples], dtype=int)
    values = np.array([t.value for t in triples], dtype=np.float64)

    return sparse.csc_matrix((values, (cols, rows)), shape=(n_items, n_items))
