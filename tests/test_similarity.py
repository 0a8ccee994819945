"""
Unit tests for the Tversky similarity matrix.

Run with: pytest tests/test_similarity.py -v
"""

import numpy as np
import pytest

from algorithms.similarity import (
    SimilarityMatrixBuilder,
    gaussian_transform,
    triples_to_sparse,
    tversky_similarity,
    tversky_similarity_matrix,
)
from utils.fingerprints import prepare_fingerprints


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def random_fps():
    rng = np.random.default_rng(42)
    return rng.random((12, 32)) < 0.3


# =============================================================================
# Tversky similarity
# =============================================================================


class TestTverskySimilarity:

    def test_tanimoto(self):
        a = np.array([1, 1, 0, 0], dtype=bool)
        b = np.array([1, 0, 1, 0], dtype=bool)
        assert tversky_similarity(a, b) == pytest.approx(1.0 / 3.0)

    def test_asymmetric_weights(self):
        a = np.array([1, 1, 0, 0], dtype=bool)
        b = np.array([1, 0, 1, 0], dtype=bool)
        # only the bits unique to a are penalised
        assert tversky_similarity(a, b, alpha=1.0, beta=0.0) == pytest.approx(0.5)

    def test_identical(self):
        a = np.array([1, 0, 1], dtype=bool)
        assert tversky_similarity(a, a) == 1.0

    def test_empty_fingerprints(self):
        a = np.zeros(5, dtype=bool)
        assert tversky_similarity(a, a) == 0.0

    def test_matrix_matches_pairwise(self, random_fps):
        sims = tversky_similarity_matrix(random_fps, random_fps, alpha=0.9, beta=0.1)
        for i in range(len(random_fps)):
            for j in range(len(random_fps)):
                assert sims[i, j] == pytest.approx(
                    tversky_similarity(random_fps[i], random_fps[j], 0.9, 0.1)
                )


class TestGaussianTransform:

    def test_similarity_of_one_unchanged(self):
        assert gaussian_transform(1.0, 10.0) == pytest.approx(1.0)

    def test_value(self):
        assert gaussian_transform(0.5, 10.0) == pytest.approx(np.exp(-2.5))

    def test_disabled(self):
        assert gaussian_transform(0.3, -0.5) == 0.3
        assert gaussian_transform(0.3, -1.0) == 0.3

    def test_zero_gamma_gives_ones(self):
        np.testing.assert_allclose(gaussian_transform(np.array([0.1, 0.7]), 0.0), [1.0, 1.0])


# =============================================================================
# Builder
# =============================================================================


class TestSimilarityMatrixBuilder:

    def test_triples_sorted_by_row(self, random_fps):
        triples = SimilarityMatrixBuilder(gamma=-1.0, sim_threshold=0.0).build(random_fps)
        rows = [t.row for t in triples]
        assert rows == sorted(rows)

    def test_symmetric_pairs_and_threshold(self, random_fps):
        builder = SimilarityMatrixBuilder(gamma=10.0, sim_threshold=0.01)
        triples = builder.build(random_fps)
        values = {(t.row, t.col): t.value for t in triples}

        assert all(v > 0.01 for v in values.values())
        assert all(r != c for r, c in values)
        for (r, c), v in values.items():
            assert values[(c, r)] == pytest.approx(v)
            expected = gaussian_transform(tversky_similarity(random_fps[r], random_fps[c]), 10.0)
            assert v == pytest.approx(expected)

    def test_all_pairs_above_threshold_present(self, random_fps):
        builder = SimilarityMatrixBuilder(gamma=-1.0, sim_threshold=0.2)
        triples = builder.build(random_fps)
        sims = tversky_similarity_matrix(random_fps, random_fps)

        expected = {(i, j) for i in range(12) for j in range(12) if i != j and sims[i, j] > 0.2}
        assert {(t.row, t.col) for t in triples} == expected

    def test_asymmetric_values(self, random_fps):
        builder = SimilarityMatrixBuilder(tversky_alpha=0.8, tversky_beta=0.2, gamma=-1.0, sim_threshold=0.0)
        triples = builder.build(random_fps)

        for t in triples:
            assert t.value == pytest.approx(
                tversky_similarity(random_fps[t.row], random_fps[t.col], 0.8, 0.2)
            )

    def test_missing_fingerprints_skipped(self):
        fps = ["1100", None, "1110", "0111"]
        triples = SimilarityMatrixBuilder(gamma=-1.0, sim_threshold=0.0).build(fps)

        assert triples
        assert all(t.row != 1 and t.col != 1 for t in triples)

    def test_too_few_fingerprints(self):
        builder = SimilarityMatrixBuilder()
        assert builder.build([]) == []
        assert builder.build(["1010", None]) == []

    def test_nothing_similar(self):
        builder = SimilarityMatrixBuilder(gamma=-1.0, sim_threshold=0.01)
        assert builder.build(["1100", "0011"]) == []


class TestTriplesToSparse:

    def test_rows_become_columns(self):
        fps = prepare_fingerprints(["1100", "1110", "0111"])
        triples = SimilarityMatrixBuilder(gamma=-1.0, sim_threshold=0.0).build(fps)
        matrix = triples_to_sparse(triples, 3).toarray()

        for t in triples:
            assert matrix[t.col, t.row] == pytest.approx(t.value)
        assert np.all(np.diag(matrix) == 0.0)

    def test_empty(self):
        matrix = triples_to_sparse([], 4)
        assert matrix.shape == (4, 4)
        assert matrix.nnz == 0


class TestPairGating:

    def test_asymmetric_pairs_emitted_together(self):
        # sim(0, 1) = 2/7.4, sim(1, 0) = 2/2.6; only one ordering passes 0.5
        builder = SimilarityMatrixBuilder(tversky_alpha=0.1, tversky_beta=0.9, gamma=-1.0, sim_threshold=0.5)
        triples = builder.build(["11000000", "11111111"])
        values = {(t.row, t.col): t.value for t in triples}

        assert set(values) == {(0, 1), (1, 0)}
        assert values[(0, 1)] == pytest.approx(2.0 / 7.4)
        assert values[(1, 0)] == pytest.approx(2.0 / 2.6)

    def test_asymmetric_every_triple_has_partner(self, random_fps):
        builder = SimilarityMatrixBuilder(tversky_alpha=0.9, tversky_beta=0.1, gamma=-1.0, sim_threshold=0.25)
        keys = {(t.row, t.col) for t in builder.build(random_fps)}

        assert keys
        assert all((c, r) in keys for r, c in keys)

    @pytest.mark.parametrize("alpha, beta", [(1.0, 1.0), (0.9, 0.1), (0.2, 0.8)])
    @pytest.mark.parametrize("gamma", [-1.0, 10.0])
    def test_higher_threshold_gives_subset(self, random_fps, alpha, beta, gamma):
        def keys(threshold):
            builder = SimilarityMatrixBuilder(alpha, beta, gamma=gamma, sim_threshold=threshold)
            return {(t.row, t.col) for t in builder.build(random_fps)}

        low, mid, high = keys(0.05), keys(0.3), keys(0.6)
        assert high <= mid <= low
