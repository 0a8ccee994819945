"""
Fingerprint / feature vector preparation utilities.

The clustering algorithms consume two kinds of per-item input:

- Bit fingerprints, for the Tversky-based spectral clustering.
- Dense float feature vectors, for the Euclidean K-Means variants.

This module converts whatever the caller supplies into those two forms.
Items that have no fingerprint (None) are skipped, and the indices of the
items that were kept are returned alongside the data so that clusters can
always refer back to the caller's original positions.
"""

import numpy as np
import pandas as pd
from typing import Any, Iterable, List, Optional, Sequence, Tuple


# ---------------------------------------------------------------------
# Bit fingerprints
# ---------------------------------------------------------------------

def fingerprint_to_bits(fp: Any, n_bits: Optional[int] = None) -> Optional[np.ndarray]:
    """
    Converts a single fingerprint into a boolean numpy array.

    Parameters
    ----------
    fp : array-like, str, set or None
        - numpy array or list of 0/1 (or bool) values.
        - a bit string such as "010011".
        - a set/frozenset of on-bit positions (requires `n_bits`).
        - None, for an item without a fingerprint.
    n_bits : int, optional
        Fingerprint length, only needed for on-bit sets.

    Returns
    -------
    np.ndarray or None
        Boolean array, or None if the item has no fingerprint.
    """
    if fp is None:
        return None

    if isinstance(fp, str):
        if set(fp) - {"0", "1"}:
            raise ValueError(f"Bit string contains characters other than 0/1: '{fp}'")
        return np.array([c == "1" for c in fp], dtype=bool)

    if isinstance(fp, (set, frozenset)):
        if n_bits is None:
            raise ValueError("n_bits is required to expand a set of on-bits.")
        bits = np.zeros(n_bits, dtype=bool)
        if fp:
            bits[np.fromiter(fp, dtype=int)] = True
        return bits

    return np.asarray(fp).astype(bool).ravel()


def prepare_fingerprints(
        fingerprints: Iterable[Any],
        n_bits: Optional[int] = None
) -> List[Optional[np.ndarray]]:
    """
    Converts every fingerprint with `fingerprint_to_bits`, keeping None holes.

    All fingerprints present must have the same length.
    """
    fps = [fingerprint_to_bits(fp, n_bits) for fp in fingerprints]

    lengths = {len(fp) for fp in fps if fp is not None}
    if len(lengths) > 1:
        raise ValueError(f"Fingerprints have different lengths: {sorted(lengths)}")

    return fps


def fingerprints_as_floats(
        fingerprints: Iterable[Any],
        n_bits: Optional[int] = None
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Expands fingerprints into a dense 0.0/1.0 matrix.

    K-Means style algorithms need a centroid, which can't be a bit string,
    so each bit becomes a float.

    Returns
    -------
    matrix : np.ndarray
        Shape (n_kept, n_bits).
    kept_indices : np.ndarray
        Original positions of the rows of `matrix`.
    """
    fps = prepare_fingerprints(fingerprints, n_bits)
    kept_indices = np.array([i for i, fp in enumerate(fps) if fp is not None], dtype=int)

    if len(kept_indices) == 0:
        return np.zeros((0, 0)), kept_indices

    matrix = np.vstack([fps[i] for i in kept_indices]).astype(np.float64)
    return matrix, kept_indices


# ---------------------------------------------------------------------
# Dense feature vectors
# ---------------------------------------------------------------------

def as_feature_matrix(X: Any) -> Tuple[np.ndarray, np.ndarray]:
    """
    Converts dense feature vectors into a float matrix.

    Rows that are None, or that contain NaN values, are treated as items
    without a feature vector and dropped.

    Parameters
    ----------
    X : np.ndarray, pd.DataFrame or sequence of vectors
        One row per item.

    Returns
    -------
    matrix : np.ndarray
        Shape (n_kept, n_features).
    kept_indices : np.ndarray
        Original positions of the rows of `matrix`.
    """
    if isinstance(X, pd.DataFrame):
        X = X.values

    if isinstance(X, np.ndarray) and X.dtype != object:
        if X.size == 0:
            return np.zeros((0, 0)), np.array([], dtype=int)
        if X.ndim != 2:
            raise ValueError(f"Expected a 2D feature matrix, got shape {X.shape}.")
        rows: Sequence[Any] = list(X.astype(np.float64))
    else:
        rows = list(X)

    kept_rows = []
    kept_indices = []
    for i, row in enumerate(rows):
        if row is None:
            continue
        vec = np.asarray(row, dtype=np.float64).ravel()
        if np.isnan(vec).any():
            continue
        kept_rows.append(vec)
        kept_indices.append(i)

    if not kept_rows:
        return np.zeros((0, 0)), np.array([], dtype=int)

    lengths = {len(v) for v in kept_rows}
    if len(lengths) > 1:
        raise ValueError(f"Feature vectors have different lengths: {sorted(lengths)}")

    return np.vstack(kept_rows), np.array(kept_indices, dtype=int)
