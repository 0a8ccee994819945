"""
Cluster and Cluster Member Model.

This module holds the shared output representation produced by every
clustering algorithm in the package (Spectral, K-Means and Fuzzy K-Means).
A cluster is just a strength value (the singular value for spectral
clusters) and an ordered list of members, each carrying its contribution
to the cluster and its silhouette score.

Members are kept sorted in descending order of contribution, so the most
representative member of a cluster is always first.
"""

from dataclasses import dataclass, field
from typing import Any, Iterator, List, Optional, Sequence, Tuple


class InsufficientDataError(ValueError):
    """Raised when there are fewer usable items than requested clusters."""


@dataclass(frozen=True)
class ClusterMember:
    """
    A single item in a cluster.

    Parameters
    ----------
    index : int
        Position of the item in the caller's collection.
    contribution : float
        Weight of the item in the cluster. Singular vector coefficient for
        spectral clusters, negative squared centroid distance for K-Means,
        membership coefficient for Fuzzy K-Means.
    silhouette : float, default=0.0
        Silhouette score of the item (crisp).
    item_id : Any, optional
        Opaque identifier supplied by the caller. Defaults to `index`.
    """

    index: int
    contribution: float
    silhouette: float = 0.0
    item_id: Any = None

    def __post_init__(self):
        if self.item_id is None:
            object.__setattr__(self, "item_id", self.index)


@dataclass
class Cluster:
    """
    An ordered group of cluster members.

    Parameters
    ----------
    strength : float, default=0.0
        Singular value of the vector that defines the cluster. Unused (0.0)
        for K-Means and Fuzzy K-Means.
    threshold : float, optional
        Members are only accepted if abs(contribution) exceeds this value.
        If None, every member is accepted.
    """

    strength: float = 0.0
    threshold: Optional[float] = None
    members: List[ClusterMember] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.members)

    def __iter__(self) -> Iterator[ClusterMember]:
        return iter(self.members)

    def member(self, i: int) -> ClusterMember:
        return self.members[i]

    def add_member(self, new_member: ClusterMember, resort: bool = True) -> bool:
        """
        Adds a member if its contribution passes the threshold.

        Parameters
        ----------
        new_member : ClusterMember
            The member to add.
        resort : bool, default=True
            Re-sort the members after adding. Pass False when adding many
            members, then call `sort_members` once.

        Returns
        -------
        bool
            True if the member was added.
        """
        if self.threshold is not None and abs(new_member.contribution) <= self.threshold:
            return False

        self.members.append(new_member)
        if resort:
            self.sort_members()
        return True

    def sort_members(self, descending: bool = True):
        # sorted() is stable, so equal contributions keep their relative order
        self.members = sorted(self.members, key=lambda m: m.contribution, reverse=descending)

    def indices(self) -> List[int]:
        return [m.index for m in self.members]

    def item_ids(self) -> List[Any]:
        return [m.item_id for m in self.members]


def extract_clusters(
        partition: Sequence[Sequence[Tuple[int, float]]],
        item_ids: Optional[Sequence[Any]] = None,
        silhouettes: Optional[Sequence[float]] = None,
        strengths: Optional[Sequence[float]] = None
) -> List[Cluster]:
    """
    Builds Cluster objects from raw (index, contribution) lists.

    Parameters
    ----------
    partition : sequence of sequences of (int, float)
        One list per cluster of (item index, contribution) pairs.
    item_ids : sequence, optional
        Identifier for every item, indexed by item index.
    silhouettes : sequence of float, optional
        Silhouette score for every item, indexed by item index.
    strengths : sequence of float, optional
        Strength of each cluster. Defaults to 0.0.

    Returns
    -------
    List[Cluster]
        Clusters with members sorted by descending contribution.
    """
    clusters = []
    for c, raw_cluster in enumerate(partition):
        strength = 0.0 if strengths is None else float(strengths[c])
        cluster = Cluster(strength=strength)
        for index, contribution in raw_cluster:
            cluster.add_member(
                ClusterMember(
                    index=int(index),
                    contribution=float(contribution),
                    silhouette=0.0 if silhouettes is None else float(silhouettes[index]),
                    item_id=None if item_ids is None else item_ids[index]
                ),
                resort=False
            )
        cluster.sort_members()
        clusters.append(cluster)

    return clusters
