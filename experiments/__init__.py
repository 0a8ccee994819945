"""
Experiments Package.

This package contains the runner scripts that sweep the clustering
algorithms over a range of cluster counts.

Runners
-------
- cluster_sweep: Spectral, K-Means and Fuzzy K-Means over a range of K.
"""
# Note: These are typically run as __main__ scripts, but exposing them
# allows other scripts to import and run them programmatically.
