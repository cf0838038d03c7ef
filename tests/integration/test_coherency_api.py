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
import logging

import pytest
import numpy as np

import cohkit
from cohkit import (
    ConnectivitySettings,
    CoherencyAnalyzer,
    Network,
    DimensionMismatchError,
    calculate,
    calculate_real,
    calculate_imag,
    compute_coherency,
    compute_connectivity,
)


def _rows(result):
    return {i: m for i, m in result}


def test_small_scenario(small_trials):
    """2 channels, 4 trials x 8 samples, single Hann taper, nfft=8."""
    settings = ConnectivitySettings(small_trials, nfft=8, window="hanning")
    rows = _rows(calculate(settings, num_workers=2))

    assert sorted(rows) == [0, 1]
    assert rows[0].shape == (2, 5)
    assert np.all(np.isfinite(rows[0][1]))
    np.testing.assert_allclose(np.abs(rows[0][0]), 1.0, rtol=1e-10)
    np.testing.assert_allclose(np.abs(rows[1][1]), 1.0, rtol=1e-10)


def test_matches_direct_single_taper_estimate(small_trials):
    settings = ConnectivitySettings(small_trials, nfft=8, window="hanning")
    rows = _rows(calculate(settings, num_workers=1))

    taper = np.hanning(8)
    sxy = np.zeros(5, dtype=complex)
    sxx = np.zeros(5)
    syy = np.zeros(5)
    for x in small_trials:
        X = np.fft.rfft((x[0] - x[0].mean()) * taper)
        Y = np.fft.rfft((x[1] - x[1].mean()) * taper)
        sxy += X * np.conj(Y)
        sxx += np.abs(X) ** 2
        syy += np.abs(Y) ** 2
    np.testing.assert_allclose(rows[0][1], sxy / np.sqrt(sxx * syy), rtol=1e-9)
    # Hermitian mirror in the other row
    np.testing.assert_allclose(rows[1][0], np.conj(rows[0][1]), rtol=1e-9)


@pytest.mark.parametrize("window", ["hanning", "ones", "dpss"])
def test_cauchy_schwarz_bound_and_self_coherency(coupled_trials, window):
    settings = ConnectivitySettings(coupled_trials, nfft=256, window=window)
    for i, row in calculate(settings, num_workers=4):
        mag = np.abs(row)
        assert np.all(mag <= 1.0 + 1e-10)
        np.testing.assert_allclose(mag[i], 1.0, rtol=1e-10)


def test_trial_count_invariance(coupled_trials):
    once = ConnectivitySettings(coupled_trials, nfft=256)
    twice = ConnectivitySettings(coupled_trials + coupled_trials, nfft=256)

    for (i, a), (j, b) in zip(calculate(once), calculate(twice)):
        assert i == j
        np.testing.assert_allclose(a, b, rtol=1e-9, atol=1e-10)

    real_once = calculate_real(ConnectivitySettings(coupled_trials, nfft=256))
    real_twice = calculate_real(ConnectivitySettings(coupled_trials * 2, nfft=256))
    np.testing.assert_allclose(
        real_once.connectivity_matrix(), real_twice.connectivity_matrix(), rtol=1e-9
    )


def test_network_completeness(coupled_settings):
    net = calculate_real(coupled_settings, num_workers=4)
    assert isinstance(net, Network)
    assert net.n_nodes == 4
    assert net.n_edges == 4 * 5 // 2
    assert len({e.pair for e in net.edges}) == net.n_edges
    assert all(e.source <= e.target for e in net.edges)
    assert all(e.n_freqs == coupled_settings.n_freqs for e in net.edges)
    assert net.method == "coh"


def test_real_and_imag_weights_follow_complex_coherency(coupled_settings, thread_pool):
    rows = _rows(calculate(coupled_settings, executor=thread_pool))
    real = calculate_real(coupled_settings, executor=thread_pool)
    imag = calculate_imag(coupled_settings, executor=thread_pool)

    for i in range(4):
        for j in range(i, 4):
            np.testing.assert_allclose(real.get_edge_between(i, j).weights, np.abs(rows[i][j]))
            np.testing.assert_allclose(imag.get_edge_between(i, j).weights, np.imag(rows[i][j]))
    # self coherency is real
    np.testing.assert_allclose(imag.get_edge_between(2, 2).weights, 0.0, atol=1e-12)
    assert imag.method == "imagcoh"


def test_coupled_channels_stand_out(coupled_settings):
    net = compute_connectivity(coupled_settings, "coh")
    mat = net.connectivity_matrix()
    assert mat[0, 1] > 0.8
    assert mat[2, 3] > 0.5
    assert mat[0, 2] < 0.5
    # a pure delay shows up in the imaginary part
    imag = compute_connectivity(coupled_settings, "IMAGCOH")
    assert abs(imag.get_edge_between(2, 3).weight) < mat[2, 3]
    assert np.max(np.abs(imag.get_edge_between(2, 3).weights)) > 0.3


def test_silent_channel_gives_non_finite_coherency(rng):
    trials = []
    for _ in range(3):
        x = rng.standard_normal((3, 32))
        x[2] = 0.0
        trials.append(x)
    settings = ConnectivitySettings(trials, nfft=32)

    rows = _rows(calculate(settings))
    assert np.all(np.isnan(rows[2]))
    assert np.all(np.isnan(rows[0][2]))
    assert np.all(np.isfinite(rows[0][:2]))

    net = calculate_real(settings)
    assert np.all(np.isnan(net.get_edge_between(0, 2).weights))
    assert np.all(np.isfinite(net.get_edge_between(0, 1).weights))


def test_empty_input_returns_none(caplog):
    with caplog.at_level("WARNING", logger="cohkit"):
        assert calculate_real(ConnectivitySettings()) is None
        assert calculate(ConnectivitySettings()) is None
    assert "empty" in caplog.text


def test_dimension_mismatch_detected_before_work(rng):
    trials = [rng.standard_normal((2, 16)) for _ in range(3)] + [rng.standard_normal((2, 15))]
    settings = ConnectivitySettings(trials, nfft=16)
    with pytest.raises(DimensionMismatchError):
        calculate_real(settings)
    # no trial was processed
    assert all(trial.psd is None for trial in settings)


def test_unknown_mode_and_method(coupled_settings):
    with pytest.raises(ValueError, match="Mode"):
        compute_coherency(coupled_settings, mode="phase")
    with pytest.raises(ValueError, match="method"):
        compute_connectivity(coupled_settings, "plv")
    with pytest.raises(TypeError):
        CoherencyAnalyzer([np.zeros((2, 8))])


def test_analyzer_reuse_and_frequency_range(coupled_settings):
    analyzer = CoherencyAnalyzer(coupled_settings, num_workers=2)
    first = analyzer.compute("real")
    second = analyzer.compute("real")
    np.testing.assert_allclose(first.connectivity_matrix(), second.connectivity_matrix())

    first.set_frequency_range(8.0, 12.0)
    lo, hi = first.get_edge(0).frequency_bins
    assert first.freqs[lo] >= 8.0 and first.freqs[hi - 1] <= 12.0


def test_progress_bar_and_node_positions(coupled_trials):
    pos = np.arange(12.0).reshape(4, 3)
    settings = ConnectivitySettings(coupled_trials, nfft=256, node_positions=pos)
    net = compute_coherency(settings, "real", progress=True, num_workers=2)
    np.testing.assert_array_equal(net.get_node_at(3).position, pos[3])


def test_set_log_level_adds_single_handler():
    cohkit.set_log_level("DEBUG")
    cohkit.set_log_level("INFO")
    logger = logging.getLogger("cohkit")
    assert logger.level == logging.INFO
    assert len(logger.handlers) == 1
    # restore defaults for other tests
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


def test_set_log_level_rejects_unknown_name():
    with pytest.raises(ValueError, match="not recognized"):
        cohkit.set_log_level("VERBOSE")
