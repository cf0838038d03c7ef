# BSD 3-Clause License

# Copyright (c) 2025, Miguel Dovale

# Redistribution and use in source and binary forms, with or without
# modification, are permitted provided that the following conditions are met:

# 1. Redistributions of source code must retain the above copyright notice, this
#    list of conditions and the following disclaimer.

# 2. Redistributions in binary form must reproduce the above copyright notice,
#    this list of conditions and the following disclaimer in the documentation
#    and/or other materials provided with the distribution.

# 3. Neither the name of the copyright holder nor the names of its
#    contributors may be used to endorse or promote products derived from
#    this software without specific prior written permission.

# THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS"
# AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE
# IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE ARE
# DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE LIABLE
# FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL
# DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF SUBSTITUTE GOODS OR
# SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER
# CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN CONTRACT, STRICT LIABILITY,
# OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN ANY WAY OUT OF THE USE
# OF THIS SOFTWARE, EVEN IF ADVISED OF THE POSSIBILITY OF SUCH DAMAGE.

# This software may be subject to U.S. export control laws. By accepting this
# software, the user agrees to comply with all applicable U.S. export laws and
# regulations. User has the responsibility to obtain export licenses, or other
# export authority as may be required before exporting such information to
# foreign countries or providing access to foreign persons.
#
import threading
from concurrent.futures import ProcessPoolExecutor

import pytest
import numpy as np

from cohkit import ConnectivitySettings, ComputationError
from cohkit.reducer import (
    SpectralAccumulator,
    run_phase,
    map_trials,
    compute_spectral_sums,
)
from cohkit.tapers import generate_tapers


def _parts(rng, n, n_channels=3, n_freqs=5):
    parts = []
    for _ in range(n):
        psd = rng.random((n_channels, n_freqs))
        rows = [
            (i, rng.standard_normal((n_channels, n_freqs)) + 1j * rng.standard_normal((n_channels, n_freqs)))
            for i in range(n_channels)
        ]
        parts.append((psd, rows))
    return parts


def test_accumulator_first_merge_copies(rng):
    (psd, rows), = _parts(rng, 1)
    acc = SpectralAccumulator()
    acc.merge(psd, rows)
    acc.psd_sum += 1.0
    acc.pair_csd_sum[0][1][:] = 0.0
    # the contributor's arrays are untouched
    assert not np.allclose(psd, acc.psd_sum)
    assert np.any(rows[0][1] != 0.0)


def test_accumulator_merge_order_does_not_matter(rng):
    parts = _parts(rng, 5)
    fwd, rev = SpectralAccumulator(), SpectralAccumulator()
    for psd, rows in parts:
        fwd.merge(psd, rows)
    for psd, rows in reversed(parts):
        rev.merge(psd, rows)
    np.testing.assert_allclose(fwd.psd_sum, rev.psd_sum)
    for (i, a), (j, b) in zip(fwd.pair_csd_sum, rev.pair_csd_sum):
        assert i == j
        np.testing.assert_allclose(a, b)
    assert fwd.n_trials == rev.n_trials == 5


def test_accumulator_concurrent_merges():
    acc = SpectralAccumulator()
    psd = np.ones((2, 3))
    rows = [(0, np.ones((2, 3), dtype=complex)), (1, 1j * np.ones((2, 3)))]

    threads = [threading.Thread(target=acc.merge, args=(psd, rows)) for _ in range(64)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert acc.n_trials == 64
    np.testing.assert_array_equal(acc.psd_sum, 64.0)
    np.testing.assert_array_equal(acc.pair_csd_sum[1][1], 64j)


def test_accumulator_finalize(rng):
    acc = SpectralAccumulator()
    with pytest.raises(RuntimeError, match="Nothing"):
        acc.finalize()
    acc.merge(np.full((1, 2), 4.0), [(0, np.ones((1, 2), dtype=complex))])
    acc.merge(np.full((1, 2), 5.0), [(0, np.ones((1, 2), dtype=complex))])
    np.testing.assert_allclose(acc.finalize(), 3.0)
    assert acc.finalized
    with pytest.raises(RuntimeError):
        acc.finalize()
    with pytest.raises(RuntimeError, match="finalized"):
        acc.merge(np.ones((1, 2)), [(0, np.ones((1, 2), dtype=complex))])


def test_accumulator_rejects_shape_change():
    acc = SpectralAccumulator()
    acc.merge(np.ones((2, 3)), [(0, np.ones((2, 3))), (1, np.ones((2, 3)))])
    with pytest.raises(ValueError):
        acc.merge(np.ones((2, 4)), [(0, np.ones((2, 4))), (1, np.ones((2, 4)))])


@pytest.mark.parametrize("num_workers", [1, 4])
def test_run_phase_keeps_input_order(num_workers):
    out = run_phase(lambda x: x * x, range(20), num_workers=num_workers)
    assert out == [x * x for x in range(20)]


def test_run_phase_on_external_executor(thread_pool):
    assert run_phase(str, [1, 2, 3], executor=thread_pool) == ["1", "2", "3"]


def test_run_phase_empty():
    assert run_phase(lambda x: x, [], num_workers=2) == []


@pytest.mark.parametrize("num_workers", [1, 3])
def test_run_phase_failure_aborts(num_workers):
    def task(x):
        if x == 5:
            raise ZeroDivisionError("boom")
        return x

    with pytest.raises(ComputationError, match="boom") as excinfo:
        run_phase(task, range(10), num_workers=num_workers, desc="trials")
    assert isinstance(excinfo.value.__cause__, ZeroDivisionError)
    assert "trials 5" in str(excinfo.value)


def test_run_phase_rejects_process_pool():
    with ProcessPoolExecutor(max_workers=1) as pool:
        with pytest.raises(TypeError, match="thread-based"):
            run_phase(abs, [1], executor=pool)


def test_run_phase_invalid_worker_count():
    with pytest.raises(ValueError):
        run_phase(abs, [1], num_workers=0)


def test_map_trials_sums_every_trial(coupled_settings):
    coupled_settings.validate()
    tapers, eig = generate_tapers(coupled_settings.n_samples, "hanning")
    acc = map_trials(coupled_settings, SpectralAccumulator(), tapers, eig, num_workers=4)
    assert acc.n_trials == len(coupled_settings)

    expected = sum(trial.psd for trial in coupled_settings)
    np.testing.assert_allclose(acc.psd_sum, expected, rtol=1e-10)


def test_compute_spectral_sums_finalizes(coupled_settings):
    acc = compute_spectral_sums(coupled_settings, num_workers=2)
    assert acc.finalized
    assert acc.psd_sum.shape == (4, coupled_settings.n_freqs)
    assert np.all(acc.psd_sum >= 0)
    expected = np.sqrt(sum(trial.psd for trial in coupled_settings))
    np.testing.assert_allclose(acc.psd_sum, expected, rtol=1e-10)
    assert [i for i, _ in acc.pair_csd_sum] == [0, 1, 2, 3]


def test_compute_spectral_sums_empty_input(caplog):
    with caplog.at_level("WARNING", logger="cohkit"):
        assert compute_spectral_sums(ConnectivitySettings()) is None
    assert "empty" in caplog.text


def test_repeated_runs_reuse_trial_cache(coupled_settings):
    first = compute_spectral_sums(coupled_settings, num_workers=2)
    cached = [trial.psd for trial in coupled_settings]
    second = compute_spectral_sums(coupled_settings, num_workers=2)
    # the cache is served and still contributes to the sums
    assert all(trial.psd is p for trial, p in zip(coupled_settings, cached))
    assert second.n_trials == len(coupled_settings)
    np.testing.assert_allclose(first.psd_sum, second.psd_sum)
