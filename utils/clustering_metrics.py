"""
Silhouette scores for crisp and fuzzy (overlapping) clusterings.

This module implements the internal validation metrics used to pick the
best of several random restarts and to report the quality of a partition:

- The crisp silhouette score of Rousseeuw [1], computed from the mean
  distance of each item to each cluster. Hruschka et al. showed this can be
  done on item-to-prototype distances rather than the full square matrix of
  member distances, which is what `crisp_silhouette_score` assumes.
- The fuzzy silhouette score of Campello & Hruschka [2], which weights each
  item's crisp score by the gap between its two largest cluster
  memberships.

Strictly speaking, the silhouette is only valid for ratio distances such
as Euclidean distances, so it is not entirely valid for Tversky-type
distances. These functions assume the distances they're given work.

References
----------
[1] Rousseeuw, P.J., "Silhouettes: a graphical aid to the interpretation and
    validation of cluster analysis", 1987, Journal of Computational and
    Applied Mathematics, 20, pp. 53-65.
[2] Campello, R.J.G.B., Hruschka, E.R., "A fuzzy extension of the silhouette
    width criterion for cluster analysis", 2006, Fuzzy Sets and Systems, 157,
    pp. 2858-2875.
[3] Varin, T., Bureau, R., Mueller, C., Willett, P., "Clustering files of
    chemical structures using the Szekely-Rizzo generalization of Ward's
    method", 2009, Journal of Molecular Graphics and Modelling, 28(2),
    pp. 187-195.
"""

import numpy as np
from sklearn.metrics.pairwise import euclidean_distances
from collections.abc import Mapping
from typing import Any, Callable, Dict, List, NamedTuple, Sequence, Tuple

# Campello & Hruschka suggest 1.0 for the fuzzy silhouette weighting exponent
FUZZY_SILHOUETTE_ALPHA = 1.0


# ---------------------------------------------------------------------
# Top pairs
# ---------------------------------------------------------------------

class TopPair(NamedTuple):
    """The two largest cluster coefficients of one item."""
    first_value: float
    first_cluster: int
    second_value: float
    second_cluster: int


class TopPairs(NamedTuple):
    """Top pairs of every item, stored column-wise as numpy arrays."""
    first_values: np.ndarray
    first_clusters: np.ndarray
    second_values: np.ndarray
    second_clusters: np.ndarray

    def item(self, i: int) -> TopPair:
        return TopPair(
            float(self.first_values[i]), int(self.first_clusters[i]),
            float(self.second_values[i]), int(self.second_clusters[i])
        )

    def gaps(self) -> np.ndarray:
        return self.first_values - self.second_values


def get_top_pairs(coefficients: np.ndarray, use_abs: bool = False) -> TopPairs:
    """
    Finds, for each item, its two largest cluster coefficients.

    The clusters are scanned in order. A later cluster whose value is >= the
    current best takes over the top spot (and the old best becomes second);
    a later value only replaces the second if it is strictly greater. So on
    an exact tie the later cluster wins the top spot.

    Parameters
    ----------
    coefficients : np.ndarray
        Shape (n_items, n_clusters). Row i holds item i's coefficient for
        every cluster.
    use_abs : bool, default=False
        Rank on absolute values (needed for singular vectors, whose signs
        are arbitrary).

    Returns
    -------
    TopPairs
        With a single cluster, the second value is 0.0 and the second
        cluster is -1.
    """
    c = np.asarray(coefficients, dtype=np.float64)
    if c.ndim != 2 or c.shape[1] == 0:
        raise ValueError(f"Expected an (n_items, n_clusters) matrix, got shape {c.shape}.")
    if use_abs:
        c = np.abs(c)

    n_items, n_clusters = c.shape

    if n_clusters == 1:
        return TopPairs(
            c[:, 0].copy(),
            np.zeros(n_items, dtype=int),
            np.zeros(n_items),
            np.full(n_items, -1, dtype=int)
        )

    zero_first = c[:, 0] > c[:, 1]
    first_values = np.where(zero_first, c[:, 0], c[:, 1])
    first_clusters = np.where(zero_first, 0, 1)
    second_values = np.where(zero_first, c[:, 1], c[:, 0])
    second_clusters = np.where(zero_first, 1, 0)

    for j in range(2, n_clusters):
        col = c[:, j]
        promote = col >= first_values
        replace_second = ~promote & (col > second_values)

        second_values = np.where(promote, first_values, np.where(replace_second, col, second_values))
        second_clusters = np.where(promote, first_clusters, np.where(replace_second, j, second_clusters))
        first_values = np.where(promote, col, first_values)
        first_clusters = np.where(promote, j, first_clusters)

    return TopPairs(first_values, first_clusters, second_values, second_clusters)


def extract_crisp_clusters(top_pairs: TopPairs, n_clusters: int, threshold: float) -> List[List[int]]:
    """
    Puts each item into the cluster of its top coefficient.

    Items whose top coefficient does not exceed `threshold` are left out.
    Clusters can be empty.
    """
    passed = top_pairs.first_values > threshold
    return [
        np.flatnonzero(passed & (top_pairs.first_clusters == k)).tolist()
        for k in range(n_clusters)
    ]


# ---------------------------------------------------------------------
# Item to cluster distances
# ---------------------------------------------------------------------

def mean_cluster_distances(
        clusters: Sequence[Sequence[int]],
        n_items: int,
        pairwise: Callable[[np.ndarray, np.ndarray], np.ndarray]
) -> np.ndarray:
    """
    Mean distance from each item to the members of each cluster.

    The item's own distance to itself is part of the mean for its own
    cluster; it's 0.0 so it only dilutes the mean slightly. Only items
    that are in a cluster get their distances calculated, the other rows
    stay 0.0. Columns for empty clusters are NaN.

    Parameters
    ----------
    clusters : sequence of sequences of int
        Item indices in each cluster.
    n_items : int
        Total number of items.
    pairwise : callable
        pairwise(rows, cols) returns the distance matrix between the items
        indexed by `rows` and by `cols`.

    Returns
    -------
    np.ndarray
        Shape (n_items, n_clusters).
    """
    dists = np.zeros((n_items, len(clusters)))

    in_clus = np.array(sorted({m for c in clusters for m in c}), dtype=int)

    for k, members in enumerate(clusters):
        if len(members) == 0:
            dists[:, k] = np.nan
            continue
        if len(in_clus):
            d = pairwise(in_clus, np.asarray(members, dtype=int))
            dists[in_clus, k] = d.mean(axis=1)

    return dists


def euclidean_cluster_distances(clusters: Sequence[Sequence[int]], X: np.ndarray) -> np.ndarray:
    """
    Mean squared Euclidean distances of each item to each cluster.

    Parameters
    ----------
    X : np.ndarray
        Dense feature vectors of shape (n_items, n_features).
    """
    X = np.asarray(X, dtype=np.float64)

    def pairwise(rows, cols):
        return euclidean_distances(X[rows], X[cols], squared=True)

    return mean_cluster_distances(clusters, X.shape[0], pairwise)


# ---------------------------------------------------------------------
# Silhouette scores
# ---------------------------------------------------------------------

def crisp_silhouette_score(
        clusters: Sequence[Sequence[int]],
        dists: np.ndarray
) -> Tuple[float, np.ndarray]:
    """
    Crisp silhouette score of Rousseeuw.

    For each member of a cluster with more than one member:
        a = mean distance to its own cluster
        b = lowest mean distance to any other (non-empty) cluster
        s = (b - a) / max(a, b), or 0.0 if a == b

    Members of singleton clusters score 0.0 and are left out of the mean,
    as are items that are in no cluster. A member with no other cluster to
    compare against scores 0.0.

    Parameters
    ----------
    clusters : sequence of sequences of int
        Item indices in each cluster. Each row in `clusters` is a cluster.
    dists : np.ndarray
        Shape (n_items, n_clusters). dists[i, k] is the mean distance of
        item i to cluster k.

    Returns
    -------
    score : float
        Mean silhouette over all members of non-singleton clusters. 0.0 if
        there are none.
    sil_scores : np.ndarray
        Silhouette score of every item, shape (n_items,).
    """
    dists = np.asarray(dists, dtype=np.float64)
    sil_scores = np.zeros(dists.shape[0])

    non_empty = [k for k, c in enumerate(clusters) if len(c) > 0]
    total = 0.0
    count = 0

    for k, members in enumerate(clusters):
        if len(members) <= 1:
            continue

        members = np.asarray(members, dtype=int)
        others = [o for o in non_empty if o != k]
        if not others:
            count += len(members)
            continue

        a = dists[members, k]
        b = dists[np.ix_(members, others)].min(axis=1)
        denom = np.maximum(a, b)
        s = np.divide(b - a, denom, out=np.zeros_like(a), where=(a != b) & (denom != 0))

        sil_scores[members] = s
        total += float(s.sum())
        count += len(members)

    if count == 0:
        return 0.0, sil_scores

    return total / count, sil_scores


def fuzzy_silhouette_score(
        crisp_sil_scores: np.ndarray,
        top_pairs: TopPairs,
        alpha: float = FUZZY_SILHOUETTE_ALPHA
) -> float:
    """
    Fuzzy silhouette score of Campello & Hruschka.

    FS = sum((u1 - u2)^alpha * s) / sum((u1 - u2)^alpha)

    where u1 and u2 are each item's two largest cluster coefficients and s
    its crisp silhouette score. Returns 0.0 if every gap is zero.
    """
    weights = top_pairs.gaps() ** alpha
    normaliser = float(weights.sum())
    if normaliser == 0.0:
        return 0.0

    return float(np.dot(weights, np.asarray(crisp_sil_scores, dtype=np.float64)) / normaliser)


# ---------------------------------------------------------------------
# Run summary
# ---------------------------------------------------------------------

def summarize_clusters(
        clusters: Sequence[Any],
        n_items: int,
        score: float,
        overlapping: bool
) -> Dict[str, Any]:
    """
    Summary statistics of a clustering run.

    In overlapping clusters an item can be in more than one cluster, so the
    number of memberships can exceed the number of items. In non-overlapping
    spectral clusters some items may not be in any cluster at all.

    Parameters
    ----------
    clusters : sequence of Cluster
        The clusters produced by one run.
    n_items : int
        Number of items that were clustered.
    score : float
        The run's silhouette score.
    overlapping : bool
        Whether the score is the fuzzy (True) or crisp (False) silhouette.

    Returns
    -------
    Dict[str, Any]
        Keys 'n_items', 'n_clusters', 'n_clustered', 'n_unclustered',
        'mean_memberships', 'silhouette' and 'silhouette_type'.
    """
    memberships = [m.index for c in clusters for m in c]
    n_clustered = len(set(memberships))

    return {
        "n_items": n_items,
        "n_clusters": len(clusters),
        "n_clustered": n_clustered,
        "n_unclustered": n_items - n_clustered,
        "mean_memberships": len(memberships) / n_clustered if n_clustered else 0.0,
        "silhouette": float(score),
        "silhouette_type": "fuzzy" if overlapping else "crisp",
    }


def qci_score(
        clusters: Sequence[Any],
        activities: Any,
        cutoff: float,
        lower_better: bool = False,
        overlapping: bool = False
) -> float:
    """
    Quality Cluster Index (QCI) of Varin et al. [3].

    Measures how well a clustering separates active from inactive items.

    Formula
    -------
    QCI = p / (p + q + r + s)
    where
        p = actives in active clusters that aren't singletons
        q = inactives in active clusters
        r = actives in inactive clusters
        s = active singletons
    An active cluster is one whose proportion of actives is greater than the
    proportion of actives among all clustered items.

    Parameters
    ----------
    clusters : sequence of Cluster
        Non-overlapping clusters.
    activities : sequence or mapping
        Activity value of each item, looked up by member index. None or NaN
        means no data, and the item counts as inactive.
    cutoff : float
        Items with activity above (or below, if `lower_better`) this are
        active.
    lower_better : bool, default=False
        Whether lower activity values are better.
    overlapping : bool, default=False
        The score is not defined for overlapping clusters, -1.0 is returned.

    Returns
    -------
    float
        QCI in [0, 1], 0.0 if there is nothing to count, -1.0 for
        overlapping clusters.
    """
    if overlapping:
        return -1.0

    def is_active(index):
        val = activities.get(index) if isinstance(activities, Mapping) else activities[index]
        if val is None or np.isnan(val):
            return False
        return val < cutoff if lower_better else val > cutoff

    sizes = np.array([len(c) for c in clusters], dtype=int)
    actives = np.array([sum(is_active(m.index) for m in c) for c in clusters], dtype=int)

    num_tot = int(sizes.sum())
    if num_tot == 0:
        return 0.0

    gp_act = actives.sum() / num_tot
    s = int(np.sum((sizes == 1) & (actives > 0)))
    p = q = r = 0

    for size, n_act in zip(sizes, actives):
        if size == 0:
            continue
        if n_act / size > gp_act:
            # it's an active cluster
            if size > 1:
                p += n_act
            q += size - n_act
        else:
            r += n_act

    denom = p + q + r + s
    if denom == 0:
        return 0.0
    return float(p / denom)
