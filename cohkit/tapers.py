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
"""
tapers.py — taper sets for multitaper spectral estimation
-----------------------------------------------------------------------------
Every taper set is a pair (tapers, eigenvalues):
    tapers      : (K, N) float64, one unit-norm taper per row
    eigenvalues : (K,)   float64, the weight applied to each tapered spectrum

Sets are memoised per argument tuple and returned read-only, so all trials of
one computation share the very same arrays.
-----------------------------------------------------------------------------
"""
__all__ = ["SUPPORTED_WINDOWS", "generate_tapers", "check_window"]

from functools import lru_cache
from typing import Optional, Tuple

import numpy as np
from scipy.signal.windows import dpss

SUPPORTED_WINDOWS = ("hanning", "ones", "dpss")


def check_window(window: str) -> str:
    """Normalise a window name and make sure it is supported."""
    if not isinstance(window, str):
        raise TypeError(f"Window must be a string, got {type(window).__name__}.")
    w = window.lower()
    if w == "hann":
        w = "hanning"
    if w not in SUPPORTED_WINDOWS:
        raise ValueError(
            f"Window '{window}' not recognized. Available: {list(SUPPORTED_WINDOWS)}"
        )
    return w


def _unit_norm(rows: np.ndarray, name: str) -> np.ndarray:
    norms = np.sqrt(np.sum(rows * rows, axis=1, keepdims=True))
    if np.any(norms == 0):
        raise ValueError(f"Signal too short for a '{name}' taper (zero-norm window).")
    return rows / norms


def _freeze(tapers: np.ndarray, eigenvalues: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    tapers = np.ascontiguousarray(tapers, dtype=np.float64)
    eigenvalues = np.ascontiguousarray(eigenvalues, dtype=np.float64)
    tapers.flags.writeable = False
    eigenvalues.flags.writeable = False
    return tapers, eigenvalues


@lru_cache(maxsize=64)
def _generate(n_samples: int, window: str, bandwidth: float, n_tapers: Optional[int]):
    if window == "hanning":
        tapers = _unit_norm(np.hanning(n_samples)[np.newaxis, :], window)
        return _freeze(tapers, np.ones(1))
    if window == "ones":
        tapers = _unit_norm(np.ones((1, n_samples)), window)
        return _freeze(tapers, np.ones(1))

    # dpss: time half-bandwidth product NW = bandwidth / 2
    NW = bandwidth / 2.0
    if n_tapers is None:
        n_tapers = max(1, int(np.floor(2.0 * NW)) - 1)
    tapers, ratios = dpss(n_samples, NW, Kmax=n_tapers, return_ratios=True)
    tapers = _unit_norm(np.atleast_2d(tapers), window)
    return _freeze(tapers, np.atleast_1d(ratios))


def generate_tapers(
    n_samples: int,
    window: str = "hanning",
    *,
    bandwidth: float = 4.0,
    n_tapers: Optional[int] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Return the taper set for a signal length and window type.

    Parameters
    ----------
    n_samples : int
        Signal length in samples (must be >= 1).
    window : str, optional
        'hanning' (single Hann taper), 'ones' (single boxcar taper) or
        'dpss' (Slepian multitapers). Defaults to 'hanning'.
    bandwidth : float, optional
        [dpss] Time-bandwidth product 2*NW. Defaults to 4.0.
    n_tapers : int, optional
        [dpss] Number of tapers. Defaults to floor(bandwidth) - 1.

    Returns
    -------
    tapers : (K, n_samples) ndarray, read-only
    eigenvalues : (K,) ndarray, read-only
    """
    n_samples = int(n_samples)
    if n_samples < 1:
        raise ValueError(f"`n_samples` must be >= 1, got {n_samples}.")
    window = check_window(window)
    bandwidth = float(bandwidth)
    if window == "dpss":
        if not np.isfinite(bandwidth) or bandwidth <= 0:
            raise ValueError(f"`bandwidth` must be a positive finite float, got {bandwidth!r}.")
        if n_tapers is not None and int(n_tapers) < 1:
            raise ValueError(f"`n_tapers` must be >= 1, got {n_tapers!r}.")
    else:
        # single-taper windows ignore the dpss parameters; keep one cache entry
        bandwidth, n_tapers = 0.0, None
    return _generate(n_samples, window, bandwidth, None if n_tapers is None else int(n_tapers))
