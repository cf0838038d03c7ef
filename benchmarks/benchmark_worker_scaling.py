#!/usr/bin/env python3
"""
benchmark_worker_scaling.py

Measure how the coherency pipeline scales with the number of worker threads
for a few channel and trial counts.

Usage:
    python benchmarks/benchmark_worker_scaling.py
"""

import time

import numpy as np

from cohkit import ConnectivitySettings, compute_coherency


def benchmark_scaling(n_channels, n_trials, n_samples, num_workers, n_runs=3):
    """
    Time one full ``calculate_real`` run.

    Parameters
    ----------
    n_channels : int
        Number of channels per trial
    n_trials : int
        Number of trials
    n_samples : int
        Samples per trial
    num_workers : int
        Worker threads used for both phases
    n_runs : int
        Number of runs

    Returns
    -------
    float
        Mean computation time in seconds
    """
    rng = np.random.default_rng(42)
    trials = [rng.standard_normal((n_channels, n_samples)) for _ in range(n_trials)]

    times = []
    for _ in range(n_runs):
        # fresh settings so the per-trial cache starts cold
        settings = ConnectivitySettings(trials, nfft=n_samples, window="dpss")
        t0 = time.perf_counter()
        net = compute_coherency(settings, "real", num_workers=num_workers)
        times.append(time.perf_counter() - t0)
        del net

    return float(np.mean(times))


def main():
    n_samples = 1024
    configs = [(16, 50), (32, 50), (64, 20)]
    workers = [1, 2, 4, 8]

    print("=" * 72)
    print("Worker scaling benchmark")
    print("=" * 72)
    print(f"{'channels':>10} {'trials':>8} {'workers':>8} {'time (s)':>10} {'speedup':>10}")
    print("-" * 72)

    for n_channels, n_trials in configs:
        baseline = None
        for n in workers:
            t = benchmark_scaling(n_channels, n_trials, n_samples, n)
            baseline = baseline or t
            print(f"{n_channels:>10} {n_trials:>8} {n:>8} {t:>10.3f} {baseline / t:>9.2f}x")
        print()

    print("Done.")


if __name__ == "__main__":
    main()
