"""
Cluster Count Sweep Runner.

This script runs the clustering algorithms over a range of cluster counts:
1. Spectral (SVD) clustering of the Tversky similarity matrix
2. K-Means (Lloyd's Algorithm) with random restarts
3. Fuzzy K-Means (Bezdek) with random restarts

For each run it records the number of clusters produced, how many items
were clustered, the mean number of memberships per clustered item, the
silhouette score and the runtime. The results are collected in a pandas
DataFrame, one row per run. For Spectral clustering the U and V clusters
get a row each, but the V clusters are only reported when tversky_alpha !=
tversky_beta, since otherwise they are the same as the U clusters.
"""

import os
import time
import datetime
import numpy as np
import pandas as pd
from tqdm import tqdm
from typing import List, Dict, Any, Iterable, Optional, Sequence

from algorithms.spectral import SpectralClustering
from algorithms.kmeans import KMeans
from algorithms.fuzzy_c_means import FuzzyCMeans
from utils.clustering_metrics import summarize_clusters
from utils.fingerprints import prepare_fingerprints

# ---------------------------------------------------------
# CONFIGURATION
# ---------------------------------------------------------
RUN_CONFIG = {
    "algorithms": {
        "Spectral": True,
        "KMeans": True,
        "FuzzyKMeans": True
    },
    "spectral": {
        "tversky_alpha": 1.0,
        "tversky_beta": 1.0,
        "gamma": 10.0,
        "sim_threshold": 0.01,
        "cluster_threshold": 0.01,
        "overlapping": False
    },
    "kmeans": {
        "n_restarts": 10
    },
    "fuzzy": {
        "n_restarts": 2,
        "m": 1.05,
        "cluster_threshold": 1e-6
    }
}

RESULT_COLUMNS = [
    "algorithm", "n_clusters", "side", "n_items", "n_clusters_found",
    "n_clustered", "n_unclustered", "mean_memberships", "silhouette",
    "silhouette_type", "runtime_sec", "error"
]


# ---------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------
def generate_task_list(start: int, stop: int, step: int = 1,
                       config: Dict[str, Any] = RUN_CONFIG) -> List[Dict[str, Any]]:
    """
    Generates the list of runs, one per algorithm and cluster count.

    The cluster counts run from `start` to `stop` inclusive.
    """
    if step < 1:
        raise ValueError(f"step must be >= 1, got {step}")
    if start < 1 or stop < start:
        raise ValueError(f"Bad cluster count range: {start} to {stop}")

    tasks = []
    for algo_name, enabled in config["algorithms"].items():
        if not enabled: continue
        for k in range(start, stop + 1, step):
            tasks.append({
                "algo_name": algo_name,
                "n_clusters": k
            })
    return tasks


def _result_row(algo_name: str, k: int, side: str, summary: Dict[str, Any],
                runtime: float) -> Dict[str, Any]:
    row = {
        "algorithm": algo_name,
        "n_clusters": k,
        "side": side,
        "runtime_sec": runtime,
        "error": None
    }
    summary = dict(summary)
    row["n_clusters_found"] = summary.pop("n_clusters")
    row.update(summary)
    return row


def run_task(task: Dict[str, Any], fps: List[Optional[np.ndarray]],
             config: Dict[str, Any], random_state: Optional[Any] = None,
             item_ids: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
    """
    Runs one clustering task and returns its result rows.
    """
    algo_name = task["algo_name"]
    k = task["n_clusters"]
    n_items = sum(fp is not None for fp in fps)

    start_time = time.perf_counter()

    if algo_name == "Spectral":
        params = config["spectral"]
        model = SpectralClustering(n_clusters=k, random_state=random_state, **params)
        model.fit(fps, item_ids=item_ids)
        runtime = time.perf_counter() - start_time

        overlapping = params.get("overlapping", False)
        rows = [_result_row(algo_name, k, "U",
                            summarize_clusters(model.u_clusters_, n_items, model.u_score_, overlapping),
                            runtime)]
        if params.get("tversky_alpha", 1.0) != params.get("tversky_beta", 1.0):
            rows.append(_result_row(algo_name, k, "V",
                                    summarize_clusters(model.v_clusters_, n_items, model.v_score_, overlapping),
                                    runtime))
        return rows

    # K-Means variants need centroids, so the bits become floats
    vectors = [None if fp is None else fp.astype(np.float64) for fp in fps]

    if algo_name == "KMeans":
        model = KMeans(n_clusters=k, random_state=random_state, **config["kmeans"])
        overlapping = False
    elif algo_name == "FuzzyKMeans":
        model = FuzzyCMeans(n_clusters=k, random_state=random_state, **config["fuzzy"])
        overlapping = True
    else:
        raise ValueError(f"Unknown algorithm: {algo_name}")

    model.fit(vectors, item_ids=item_ids)
    runtime = time.perf_counter() - start_time

    summary = summarize_clusters(model.clusters_, n_items, model.silhouette_score_, overlapping)
    return [_result_row(algo_name, k, "", summary, runtime)]


def run_sweep(fingerprints: Iterable[Any], start: int, stop: int, step: int = 1,
              config: Dict[str, Any] = RUN_CONFIG, random_state: Optional[Any] = None,
              item_ids: Optional[Sequence[Any]] = None, verbose: bool = True) -> pd.DataFrame:
    """
    Runs every enabled algorithm for every cluster count in the range.

    A task that fails is reported and recorded with its error message,
    the rest of the sweep carries on.

    Returns
    -------
    pd.DataFrame
        One row per run.
    """
    fps = prepare_fingerprints(fingerprints)
    all_tasks = generate_task_list(start, stop, step, config)

    results = []
    pbar = tqdm(all_tasks, unit="run", disable=not verbose)

    for task in pbar:
        desc = f"{task['algo_name']} | k={task['n_clusters']}"
        pbar.set_description(f"{desc:<25}")

        try:
            results.extend(run_task(task, fps, config, random_state, item_ids))
        except Exception as e:
            pbar.write(f"Task failed: {task} Error: {e}")
            results.append({
                "algorithm": task["algo_name"],
                "n_clusters": task["n_clusters"],
                "error": str(e)
            })

    return pd.DataFrame(results, columns=RESULT_COLUMNS)


def save_dataframe(data: pd.DataFrame, folder: str, filename: str):
    """
    Saves a DataFrame to CSV, skipping empty ones.
    """
    if data.empty: return
    os.makedirs(folder, exist_ok=True)
    data.to_csv(os.path.join(folder, filename), index=False)


def random_fingerprints(n_groups: int = 4, per_group: int = 25, n_bits: int = 256,
                        density: float = 0.1, noise: float = 0.02,
                        random_state: Optional[Any] = None) -> List[np.ndarray]:
    """
    Synthetic fingerprints: noisy copies of `n_groups` random prototypes.
    """
    rng = np.random.default_rng(random_state)
    prototypes = rng.random((n_groups, n_bits)) < density

    fps = []
    for proto in prototypes:
        for _ in range(per_group):
            flips = rng.random(n_bits) < noise
            fps.append(proto ^ flips)
    return fps


# ---------------------------------------------------------
# Main Execution Loop
# ---------------------------------------------------------
def main():
    session_id = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
    base_dir = f"results_sweep/run_{session_id}"

    print(f"Cluster Sweep Started: {session_id}")
    fps = random_fingerprints(random_state=0)
    print(f"Clustering {len(fps)} synthetic fingerprints")

    df = run_sweep(fps, start=2, stop=8, random_state=0)
    save_dataframe(df, base_dir, "sweep_results.csv")

    with pd.option_context("display.max_columns", None, "display.width", 200):
        print(df.drop(columns=["error"]))
    print(f"\nSweep Complete. Results in {base_dir}")


if __name__ == "__main__":
    main()
