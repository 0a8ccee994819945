"""
Tests for the cluster count sweep runner.

Run with: pytest tests/test_cluster_sweep.py -v
"""

import copy

import pandas as pd
import pytest

from experiments.cluster_sweep import (
    RESULT_COLUMNS,
    RUN_CONFIG,
    generate_task_list,
    random_fingerprints,
    run_sweep,
)


@pytest.fixture
def fps():
    return random_fingerprints(n_groups=3, per_group=8, n_bits=64, random_state=0)


def only(algo_name):
    config = copy.deepcopy(RUN_CONFIG)
    for name in config["algorithms"]:
        config["algorithms"][name] = name == algo_name
    return config


class TestTaskList:

    def test_all_algorithms(self):
        tasks = generate_task_list(2, 4)
        assert len(tasks) == 9
        assert {t["algo_name"] for t in tasks} == {"Spectral", "KMeans", "FuzzyKMeans"}

    def test_step_and_inclusive_stop(self):
        tasks = generate_task_list(2, 6, step=2, config=only("KMeans"))
        assert [t["n_clusters"] for t in tasks] == [2, 4, 6]

    @pytest.mark.parametrize("start, stop, step", [(0, 3, 1), (5, 3, 1), (2, 4, 0)])
    def test_bad_range(self, start, stop, step):
        with pytest.raises(ValueError):
            generate_task_list(start, stop, step)


class TestRunSweep:

    def test_one_row_per_run(self, fps):
        df = run_sweep(fps, start=2, stop=3, random_state=0, verbose=False)

        assert isinstance(df, pd.DataFrame)
        assert list(df.columns) == RESULT_COLUMNS
        assert len(df) == 6
        assert df["error"].isna().all()
        assert (df["n_items"] == 24).all()
        assert (df["runtime_sec"] >= 0.0).all()

    def test_score_types(self, fps):
        df = run_sweep(fps, start=3, stop=3, random_state=0, verbose=False)
        types = dict(zip(df["algorithm"], df["silhouette_type"]))

        assert types == {"Spectral": "crisp", "KMeans": "crisp", "FuzzyKMeans": "fuzzy"}

    def test_kmeans_clusters_everything(self, fps):
        df = run_sweep(fps, start=3, stop=3, config=only("KMeans"), random_state=0, verbose=False)

        assert df.loc[0, "n_clustered"] == 24
        assert df.loc[0, "mean_memberships"] == 1.0

    def test_asymmetric_spectral_reports_v(self, fps):
        config = only("Spectral")
        config["spectral"]["tversky_beta"] = 0.5
        df = run_sweep(fps, start=2, stop=3, config=config, random_state=0, verbose=False)

        assert list(df["side"]) == ["U", "V", "U", "V"]

    def test_symmetric_spectral_reports_u_only(self, fps):
        df = run_sweep(fps, start=2, stop=3, config=only("Spectral"), random_state=0, verbose=False)
        assert list(df["side"]) == ["U", "U"]

    def test_failed_task_recorded(self, fps):
        df = run_sweep(fps, start=30, stop=30, config=only("KMeans"), verbose=False)

        assert len(df) == 1
        assert "30 clusters" in df.loc[0, "error"]

    def test_missing_fingerprints_not_counted(self, fps):
        df = run_sweep([None] + list(fps), start=2, stop=2, random_state=0, verbose=False)
        assert (df["n_items"] == 24).all()
