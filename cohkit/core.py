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
core.py — per-trial multitaper spectral kernels
-----------------------------------------------------------------------------
Design notes
- CSD convention: S_ij = X_i * conj(X_j), summed over tapers.
- Spectra are one-sided (rfft). Bin 0, and the last bin when nfft is even,
  appear once in the half spectrum and are halved after normalisation.
- Normalisation:
    PSD_i  = sum_k |X_ik|^2          / (sum eig^2 / 2)
    CSD_ij = sum_k X_ik conj(X_jk)   / (sqrt(sum eig^2) * sqrt(sum eig^2) / 2)
  so CSD_ii == PSD_i.
- The cross-spectral kernel is compiled with nogil=True; trial tasks running
  on worker threads execute it concurrently.
-----------------------------------------------------------------------------
"""
__all__ = [
    "compute_trial_spectra",
    "taper_digest",
    "_tapered_spectra",
    "_auto_spectra",
    "_cross_spectra",
    "_cross_spectra_np",
    "_psd_denominator",
    "_csd_denominator",
]

import hashlib
import logging
from typing import Hashable, List, Tuple

import numpy as np
from numba import njit

logger = logging.getLogger(__name__)


def _psd_denominator(eigenvalues: np.ndarray) -> float:
    return float(np.sum(np.abs(eigenvalues) ** 2)) / 2.0


def _csd_denominator(eigenvalues: np.ndarray) -> float:
    s = np.sqrt(float(np.sum(np.abs(eigenvalues) ** 2)))
    return s * s / 2.0


def _one_sided_correction(spec: np.ndarray, nfft: int) -> np.ndarray:
    """Halve bin 0 and, for even nfft, the last bin (last axis, in place)."""
    spec[..., 0] /= 2.0
    if nfft % 2 == 0:
        spec[..., -1] /= 2.0
    return spec


def _tapered_spectra(
    data: np.ndarray, tapers: np.ndarray, eigenvalues: np.ndarray, nfft: int
) -> np.ndarray:
    """
    Tapered half-spectra of every channel.

    Parameters
    ----------
    data : (C, N) ndarray
        Trial data.
    tapers : (K, N) ndarray
        Taper weights.
    eigenvalues : (K,) ndarray
        Per-taper spectrum weights.
    nfft : int
        FFT length (>= N; shorter signals are zero-padded).

    Returns
    -------
    spectra : (C, K, nfft//2 + 1) complex ndarray
    """
    if data.shape[1] != tapers.shape[1]:
        raise ValueError(
            f"Taper length {tapers.shape[1]} != signal length {data.shape[1]}."
        )
    if nfft < data.shape[1]:
        raise ValueError(f"nfft={nfft} is shorter than the signal ({data.shape[1]}).")
    centered = data - data.mean(axis=1, keepdims=True)
    tapered = centered[:, np.newaxis, :] * tapers[np.newaxis, :, :]
    spectra = np.fft.rfft(tapered, n=nfft, axis=-1)
    spectra *= eigenvalues[np.newaxis, :, np.newaxis]
    return spectra


def _auto_spectra(spectra: np.ndarray, eigenvalues: np.ndarray, nfft: int) -> np.ndarray:
    """(C, K, F) spectra -> (C, F) PSD."""
    power = spectra.real ** 2 + spectra.imag ** 2
    psd = power.sum(axis=1) / _psd_denominator(eigenvalues)
    return _one_sided_correction(psd, nfft)


@njit(cache=True, nogil=True)
def _cross_spectra_nb(spectra, denom, nfft_even):
    n_ch, n_tap, n_freq = spectra.shape
    out = np.empty((n_ch, n_ch, n_freq), dtype=np.complex128)
    last = n_freq - 1
    for i in range(n_ch):
        for j in range(i, n_ch):
            for f in range(n_freq):
                acc = 0.0 + 0.0j
                for k in range(n_tap):
                    acc += spectra[i, k, f] * spectra[j, k, f].conjugate()
                acc = acc / denom
                if f == 0:
                    acc = acc / 2.0
                elif nfft_even and f == last:
                    acc = acc / 2.0
                out[i, j, f] = acc
                if j != i:
                    out[j, i, f] = acc.conjugate()
    return out


def _cross_spectra(spectra: np.ndarray, eigenvalues: np.ndarray, nfft: int) -> np.ndarray:
    """
    (C, K, F) spectra -> (C, C, F) CSD.

    Only i <= j is accumulated; the lower triangle is the Hermitian mirror.
    """
    spectra = np.ascontiguousarray(spectra, dtype=np.complex128)
    return _cross_spectra_nb(spectra, _csd_denominator(eigenvalues), nfft % 2 == 0)


def _cross_spectra_np(spectra: np.ndarray, eigenvalues: np.ndarray, nfft: int) -> np.ndarray:
    """Pure-NumPy version of `_cross_spectra` (reference for tests)."""
    csd = np.einsum("ikf,jkf->ijf", spectra, np.conj(spectra)) / _csd_denominator(eigenvalues)
    return _one_sided_correction(csd, nfft)


def taper_digest(tapers: np.ndarray, eigenvalues: np.ndarray) -> str:
    """Content digest of a taper set, usable as a cache key component."""
    h = hashlib.blake2b(digest_size=16)
    for arr in (tapers, eigenvalues):
        arr = np.ascontiguousarray(arr, dtype=np.float64)
        h.update(str(arr.shape).encode())
        h.update(arr.tobytes())
    return h.hexdigest()


def compute_trial_spectra(
    trial,
    tapers: np.ndarray,
    eigenvalues: np.ndarray,
    nfft: int,
    taper_id: Hashable = None,
) -> Tuple[np.ndarray, List[Tuple[int, np.ndarray]]]:
    """
    PSD and per-row CSD of one trial.

    Parameters
    ----------
    trial : TrialData
        The trial. Its cache is consulted and refreshed.
    tapers, eigenvalues : ndarray
        Shared taper set.
    nfft : int
        Effective FFT length.
    taper_id : hashable, optional
        Identifies the taper set in the cache key. Defaults to
        `taper_digest(tapers, eigenvalues)`.

    Returns
    -------
    psd : (C, F) ndarray
    pair_csd : list of (i, (C, F) complex ndarray)
        Row i holds CSD(i, j) for every channel j.
    """
    if taper_id is None:
        taper_id = taper_digest(tapers, eigenvalues)
    key = trial.cache_key(nfft, taper_id)
    cached = trial.cached_spectra(key)
    if cached is not None:
        logger.debug(f"Reusing cached PSD/CSD for {trial!r}.")
        return cached

    spectra = _tapered_spectra(trial.data, tapers, eigenvalues, nfft)
    psd = _auto_spectra(spectra, eigenvalues, nfft)
    csd = _cross_spectra(spectra, eigenvalues, nfft)
    pair_csd = [(i, csd[i]) for i in range(csd.shape[0])]

    trial.store_spectra(key, psd, pair_csd)
    return psd, pair_csd
