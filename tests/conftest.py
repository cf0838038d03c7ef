import matplotlib

matplotlib.use("Agg")

import pytest
import numpy as np
from concurrent.futures import ThreadPoolExecutor

from cohkit import ConnectivitySettings


def _trials(rng, n_trials, n_channels, n_samples):
    return [rng.standard_normal((n_channels, n_samples)) for _ in range(n_trials)]


@pytest.fixture
def rng():
    return np.random.default_rng(seed=7)


@pytest.fixture
def small_trials(rng):
    """2 channels, 4 trials of 8 samples."""
    return _trials(rng, 4, 2, 8)


@pytest.fixture
def coupled_trials(rng):
    """
    4 channels x 256 samples x 12 trials. Channel 1 is a noisy copy of
    channel 0, channel 3 a delayed noisy copy of channel 2.
    """
    trials = []
    for _ in range(12):
        x = rng.standard_normal((4, 256))
        x[1] = 0.8 * x[0] + 0.2 * x[1]
        x[3] = 0.7 * np.roll(x[2], 3) + 0.3 * x[3]
        trials.append(x)
    return trials


@pytest.fixture
def coupled_settings(coupled_trials):
    return ConnectivitySettings(coupled_trials, nfft=256, window="hanning", sfreq=128.0)


@pytest.fixture(scope="module")
def thread_pool():
    with ThreadPoolExecutor(max_workers=4) as pool:
        yield pool
