"""
Clustering Algorithms Package.

This package contains the clustering algorithms for fingerprinted items. The
Spectral clustering works on the Gaussian-filtered Tversky similarity matrix
of the bit fingerprints, the K-Means variants on the fingerprints expanded
into float vectors.

Modules
-------
- cluster_model: Cluster and ClusterMember, the output of every algorithm.
- similarity: Tversky similarity and the sparse similarity matrix.
- spectral: Spectral (SVD) clustering, crisp or overlapping.
- kmeans: Standard K-Means (Lloyd's Algorithm) with restarts.
- fuzzy_c_means: Fuzzy K-Means (Bezdek's Fuzzy C-Means) with restarts.
"""

from .cluster_model import Cluster, ClusterMember, InsufficientDataError, extract_clusters
from .similarity import SimilarityMatrixBuilder, SimilarityTriple, tversky_similarity
from .spectral import SpectralClustering, spectral_cluster
from .kmeans import KMeans, k_means_cluster
from .fuzzy_c_means import FuzzyCMeans, fuzzy_k_means_cluster
