"""
Unit tests for Spectral (SVD) clustering.

Run with: pytest tests/test_spectral.py -v
"""

import numpy as np
import pytest
from scipy.sparse.linalg import ArpackNoConvergence

from algorithms.spectral import SpectralClustering, spectral_cluster, tversky_cluster_distances


# =============================================================================
# Fixtures
# =============================================================================


def block_fingerprints(sizes=(5, 4), n_bits=40):
    """
    Groups of fingerprints sharing 10 core bits, plus one private bit each.

    Within a group the Tanimoto similarity is 10/12, between groups 0.
    """
    fps = []
    private = 20
    for g, size in enumerate(sizes):
        for _ in range(size):
            fp = np.zeros(n_bits, dtype=bool)
            fp[g * 10:(g + 1) * 10] = True
            fp[private] = True
            private += 1
            fps.append(fp)
    return fps


@pytest.fixture
def two_groups():
    return block_fingerprints()


# within group similarity after the Gaussian filter with gamma 10
WITHIN = np.exp(-10.0 * (10.0 / 12.0 - 1.0) ** 2)
# crisp silhouettes of the two groups, from the mean Tversky distances
SIL_A = 1.0 - (4.0 / 5.0) * (1.0 / 6.0)
SIL_B = 1.0 - (3.0 / 4.0) * (1.0 / 6.0)


def member_sets(clusters):
    return sorted(sorted(c.indices()) for c in clusters)


# =============================================================================
# Non-overlapping clusters
# =============================================================================


class TestCrispSpectral:

    def test_recovers_groups(self, two_groups):
        model = SpectralClustering(n_clusters=2, random_state=0).fit(two_groups)

        assert model.rank_ == 2
        assert member_sets(model.u_clusters_) == [[0, 1, 2, 3, 4], [5, 6, 7, 8]]

    def test_singular_values_are_strengths(self, two_groups):
        model = SpectralClustering(n_clusters=2, random_state=0).fit(two_groups)

        np.testing.assert_allclose(model.singular_values_, [4 * WITHIN, 3 * WITHIN], rtol=1e-5)
        assert model.u_clusters_[0].strength == pytest.approx(4 * WITHIN, rel=1e-5)
        assert sorted(model.u_clusters_[0].indices()) == [0, 1, 2, 3, 4]

    def test_crisp_silhouette(self, two_groups):
        model = SpectralClustering(n_clusters=2, random_state=0).fit(two_groups)

        expected = (5 * SIL_A + 4 * SIL_B) / 9
        assert model.u_score_ == pytest.approx(expected, rel=1e-5)
        for m in model.u_clusters_[1]:
            assert m.silhouette == pytest.approx(SIL_B, rel=1e-5)

    def test_members_sorted_by_contribution(self, two_groups):
        model = SpectralClustering(n_clusters=2, random_state=0).fit(two_groups)

        for cluster in model.u_clusters_:
            contributions = [m.contribution for m in cluster]
            assert contributions == sorted(contributions, reverse=True)
            assert all(c > 0.01 for c in contributions)

    def test_each_item_in_one_cluster(self, two_groups):
        model = SpectralClustering(n_clusters=2, random_state=0).fit(two_groups)

        indices = [i for c in model.u_clusters_ for i in c.indices()]
        assert len(indices) == len(set(indices))

    def test_symmetric_u_and_v_agree(self, two_groups):
        model = SpectralClustering(n_clusters=2, random_state=0).fit(two_groups)

        assert member_sets(model.v_clusters_) == member_sets(model.u_clusters_)
        assert model.v_score_ == pytest.approx(model.u_score_)

    def test_rank_one(self, two_groups):
        model = SpectralClustering(n_clusters=1, random_state=0).fit(two_groups)

        assert model.rank_ == 1
        assert member_sets(model.u_clusters_) == [[0, 1, 2, 3, 4]]
        assert model.u_score_ == 0.0

    def test_rank_as_big_as_matrix(self, two_groups):
        model = SpectralClustering(n_clusters=20, random_state=0).fit(two_groups)

        assert model.rank_ == 9
        assert np.all(np.diff(model.singular_values_) <= 1e-12)
        indices = [i for c in model.u_clusters_ for i in c.indices()]
        assert len(indices) == len(set(indices))


# =============================================================================
# Overlapping clusters
# =============================================================================


class TestOverlappingSpectral:

    def test_fuzzy_silhouette(self, two_groups):
        model = SpectralClustering(n_clusters=2, overlapping=True, random_state=0).fit(two_groups)

        assert member_sets(model.u_clusters_) == [[0, 1, 2, 3, 4], [5, 6, 7, 8]]
        assert SIL_A - 1e-6 <= model.u_score_ <= SIL_B + 1e-6

    def test_overlapping_members_pass_threshold(self):
        rng = np.random.default_rng(7)
        fps = rng.random((20, 64)) < 0.3
        model = SpectralClustering(n_clusters=4, overlapping=True, gamma=-1.0,
                                   random_state=0).fit(fps)

        assert len(model.u_clusters_) == model.rank_
        for cluster in model.u_clusters_:
            assert all(m.contribution > 0.01 for m in cluster)
        assert -1.0 <= model.u_score_ <= 1.0


# =============================================================================
# Edge cases
# =============================================================================


class TestSpectralEdgeCases:

    def test_missing_fingerprints(self, two_groups):
        fps = two_groups[:3] + [None] + two_groups[3:]
        ids = [f"mol_{i}" for i in range(len(fps))]
        model = SpectralClustering(n_clusters=2, random_state=0).fit(fps, item_ids=ids)

        assert member_sets(model.u_clusters_) == [[0, 1, 2, 4, 5], [6, 7, 8, 9]]
        all_ids = {m.item_id for c in model.u_clusters_ for m in c}
        assert "mol_3" not in all_ids
        assert "mol_9" in all_ids

    def test_no_similarities(self):
        fps = ["110000", "001100", "000011"]
        model = SpectralClustering(n_clusters=2, gamma=-1.0).fit(fps)

        assert model.n_triples_ == 0
        assert model.u_clusters_ == [] and model.v_clusters_ == []
        assert model.u_score_ == 0.0 and model.v_score_ == 0.0

    def test_empty_input(self):
        model = SpectralClustering(n_clusters=3).fit([])
        assert model.u_clusters_ == []
        assert model.u_score_ == 0.0

    def test_asymmetric_gives_v_clusters(self, two_groups):
        model = SpectralClustering(n_clusters=2, tversky_alpha=1.0, tversky_beta=0.5,
                                   random_state=0).fit(two_groups)

        assert member_sets(model.u_clusters_) == [[0, 1, 2, 3, 4], [5, 6, 7, 8]]
        assert member_sets(model.v_clusters_) == [[0, 1, 2, 3, 4], [5, 6, 7, 8]]

    def test_invalid_rank(self):
        with pytest.raises(ValueError):
            SpectralClustering(n_clusters=0)

    def test_item_ids_length_checked(self, two_groups):
        with pytest.raises(ValueError):
            SpectralClustering(n_clusters=2).fit(two_groups, item_ids=["a"])

    def test_reproducible(self):
        rng = np.random.default_rng(11)
        fps = rng.random((30, 48)) < 0.25
        first = SpectralClustering(n_clusters=3, random_state=5).fit(fps)
        second = SpectralClustering(n_clusters=3, random_state=5).fit(fps)

        assert member_sets(first.u_clusters_) == member_sets(second.u_clusters_)
        assert first.u_score_ == second.u_score_


def test_spectral_cluster_entry_point(two_groups):
    u_clus, u_score, v_clus, v_score = spectral_cluster(two_groups, rank=2, random_state=0)

    assert member_sets(u_clus) == [[0, 1, 2, 3, 4], [5, 6, 7, 8]]
    assert u_score == pytest.approx((5 * SIL_A + 4 * SIL_B) / 9, rel=1e-5)
    assert member_sets(v_clus) == member_sets(u_clus)


def test_tversky_cluster_distances(two_groups):
    fps = np.array(two_groups)
    dists = tversky_cluster_distances([[0, 1, 2, 3, 4], [5, 6, 7, 8]], fps)

    assert dists[0, 0] == pytest.approx((4.0 / 5.0) * (1.0 / 6.0))
    assert dists[0, 1] == pytest.approx(1.0)
    assert dists[5, 1] == pytest.approx((3.0 / 4.0) * (1.0 / 6.0))


# =============================================================================
# Dense fallback
# =============================================================================


class TestDenseFallback:

    @pytest.fixture
    def no_arpack(self, monkeypatch):
        calls = []

        def failing_svds(*args, **kwargs):
            calls.append(kwargs.get("k"))
            raise ArpackNoConvergence("ARPACK error -1: No convergence", np.zeros(0), np.zeros((0, 0)))

        monkeypatch.setattr("algorithms.spectral.svds", failing_svds)
        return calls

    def test_falls_back_to_dense_svd(self, two_groups, no_arpack):
        model = SpectralClustering(n_clusters=2, random_state=0).fit(two_groups)

        assert no_arpack == [2]
        assert model.rank_ == 2
        np.testing.assert_allclose(model.singular_values_, [4 * WITHIN, 3 * WITHIN], rtol=1e-5)
        assert member_sets(model.u_clusters_) == [[0, 1, 2, 3, 4], [5, 6, 7, 8]]

    def test_fallback_scores_match(self, two_groups, no_arpack):
        model = SpectralClustering(n_clusters=2, random_state=0).fit(two_groups)

        assert model.u_score_ == pytest.approx((5 * SIL_A + 4 * SIL_B) / 9, rel=1e-5)
