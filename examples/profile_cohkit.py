# profile_cohkit.py

import numpy as np
import cProfile
import pstats

from cohkit import ConnectivitySettings, compute_coherency


def main():
    """Sets up and runs the profiling task."""
    print("Setting up profiling workload...")

    # --- 1. Serial workload to get a baseline ---
    rng = np.random.default_rng(0)
    n_channels, n_samples, n_trials = 32, 2048, 40
    trials = [rng.standard_normal((n_channels, n_samples)) for _ in range(n_trials)]
    settings = ConnectivitySettings(trials, nfft=n_samples, window="dpss", sfreq=1000.0)

    print(f"Profiling compute_coherency on {n_trials} trials of {n_channels}x{n_samples}...")

    # --- 2. Run under cProfile ---
    command = "compute_coherency(settings, 'real', num_workers=1)"
    profiler_context = {"compute_coherency": compute_coherency, "settings": settings}
    cProfile.runctx(
        command, globals=profiler_context, locals={}, filename="cohkit_profile.prof"
    )
    print("Profiling complete. Stats saved to 'cohkit_profile.prof'")

    # --- 3. Print a short summary ---
    print("\n--- Top 10 Functions by Cumulative Time ---")
    stats = pstats.Stats("cohkit_profile.prof")
    stats.sort_stats("cumulative").print_stats(10)


if __name__ == "__main__":
    main()
