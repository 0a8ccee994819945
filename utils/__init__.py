"""
Utilities package initialization.

Exposes the input preparation and validation functions to the top-level
utils package for cleaner imports throughout the project.
"""

from .fingerprints import (
    fingerprint_to_bits,
    prepare_fingerprints,
    fingerprints_as_floats,
    as_feature_matrix
)

from .clustering_metrics import (
    get_top_pairs,
    crisp_silhouette_score,
    fuzzy_silhouette_score,
    summarize_clusters,
    qci_score
)
