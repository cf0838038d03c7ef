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
import hashlib
import logging
from typing import Any, Hashable, Iterable, Iterator, List, Optional, Tuple, Union

import numpy as np

from ._config import DEFAULT_NFFT, DEFAULT_WINDOW
from .exceptions import DimensionMismatchError
from .tapers import check_window

logger = logging.getLogger(__name__)

__all__ = ["TrialData", "ConnectivitySettings"]


class TrialData:
    """
    One trial: a (channels, samples) float64 matrix plus its spectral cache.

    The matrix is stored as a read-only copy, so nothing downstream can alter
    the caller's data. The cache holds the trial's own PSD and per-row CSD and
    is only reused when the cache key (spectral parameters and a digest of the
    data) matches.
    """

    def __init__(self, data: Any):
        x = np.array(data, dtype=np.float64, copy=True)
        if x.ndim != 2:
            raise ValueError(
                f"Trial data must be a 2D (channels, samples) array, got shape {x.shape}."
            )
        if x.shape[0] < 1 or x.shape[1] < 1:
            raise ValueError(f"Trial data must not be empty, got shape {x.shape}.")
        x = np.ascontiguousarray(x)
        x.flags.writeable = False
        self._data = x
        self._digest: Optional[str] = None

        self._cache: Optional[Tuple[Hashable, np.ndarray, List[Tuple[int, np.ndarray]]]] = None

    @property
    def data(self) -> np.ndarray:
        return self._data

    @property
    def n_channels(self) -> int:
        return int(self._data.shape[0])

    @property
    def n_samples(self) -> int:
        return int(self._data.shape[1])

    @property
    def shape(self) -> Tuple[int, int]:
        return self._data.shape

    @property
    def digest(self) -> str:
        """Content digest of the data matrix (computed once)."""
        if self._digest is None:
            h = hashlib.blake2b(digest_size=16)
            h.update(str(self._data.shape).encode())
            h.update(self._data.tobytes())
            self._digest = h.hexdigest()
        return self._digest

    def cache_key(self, nfft: int, taper_id: Hashable) -> Hashable:
        return (int(nfft), taper_id, self.digest)

    # The cache is one (key, psd, pair_csd) tuple, replaced in a single
    # assignment; readers take a local reference before comparing the key.

    @property
    def psd(self) -> Optional[np.ndarray]:
        cache = self._cache
        return None if cache is None else cache[1]

    @property
    def pair_csd(self) -> Optional[List[Tuple[int, np.ndarray]]]:
        cache = self._cache
        return None if cache is None else cache[2]

    @property
    def _cache_key(self) -> Optional[Hashable]:
        cache = self._cache
        return None if cache is None else cache[0]

    def cached_spectra(self, key: Hashable):
        """Return (psd, pair_csd) if cached under `key`, else None."""
        cache = self._cache
        if cache is not None and cache[0] == key:
            return cache[1], cache[2]
        return None

    def store_spectra(self, key: Hashable, psd: np.ndarray, pair_csd: List[Tuple[int, np.ndarray]]):
        self._cache = (key, psd, pair_csd)

    def clear_cache(self):
        self._cache = None

    def __repr__(self) -> str:
        return f"TrialData(channels={self.n_channels}, samples={self.n_samples})"


class ConnectivitySettings:
    """
    Input bundle for a connectivity computation.

    Holds the ordered trial collection and the spectral configuration. All
    validation happens in `validate()`, which the computation calls before
    any parallel work is launched.

    Parameters
    ----------
    trials : iterable of array-like or TrialData, optional
        Trials of shape (channels, samples). Raw arrays are wrapped in
        `TrialData`.
    nfft : int, optional
        Configured FFT length. The effective length is
        max(nfft, n_samples). Defaults to 512.
    window : str, optional
        Taper window: 'hanning', 'ones' or 'dpss'. Defaults to 'hanning'.
    sfreq : float, optional
        Sampling frequency in Hz. Only used to label frequency bins.
    bandwidth : float, optional
        [dpss] Time-bandwidth product. Defaults to 4.0.
    n_tapers : int, optional
        [dpss] Number of tapers. Defaults to floor(bandwidth) - 1.
    node_positions : array-like, optional
        (channels, 3) node coordinates, forwarded to the Network.
    """

    def __init__(
        self,
        trials: Optional[Iterable[Any]] = None,
        *,
        nfft: int = DEFAULT_NFFT,
        window: str = DEFAULT_WINDOW,
        sfreq: Optional[float] = None,
        bandwidth: float = 4.0,
        n_tapers: Optional[int] = None,
        node_positions: Optional[Any] = None,
    ):
        self.nfft = nfft
        self.window = window
        self.sfreq = sfreq
        self.bandwidth = bandwidth
        self.n_tapers = n_tapers
        self.node_positions = node_positions
        self._trials: List[TrialData] = []
        if trials is not None:
            self.extend(trials)

    # ---- Trial collection ----------------------------------------------------

    @staticmethod
    def _as_trial(trial: Union[TrialData, Any]) -> TrialData:
        return trial if isinstance(trial, TrialData) else TrialData(trial)

    def append(self, trial: Union[TrialData, Any]):
        self._trials.append(self._as_trial(trial))

    def extend(self, trials: Iterable[Any]):
        for t in trials:
            self.append(t)

    def remove_first(self, n: int = 1):
        """Drop the `n` oldest trials."""
        n = int(n)
        if n < 0:
            raise ValueError(f"`n` must be >= 0, got {n}.")
        del self._trials[:n]

    def clear(self):
        self._trials.clear()

    @property
    def trials(self) -> List[TrialData]:
        return list(self._trials)

    def __len__(self) -> int:
        return len(self._trials)

    def __iter__(self) -> Iterator[TrialData]:
        return iter(self._trials)

    def __getitem__(self, idx: int) -> TrialData:
        return self._trials[idx]

    def is_empty(self) -> bool:
        return len(self._trials) == 0

    # ---- Derived quantities --------------------------------------------------

    @property
    def n_channels(self) -> int:
        self._require_trials()
        return self._trials[0].n_channels

    @property
    def n_samples(self) -> int:
        self._require_trials()
        return self._trials[0].n_samples

    @property
    def effective_nfft(self) -> int:
        return max(int(self.nfft), self.n_samples)

    @property
    def n_freqs(self) -> int:
        return self.effective_nfft // 2 + 1

    @property
    def freqs(self) -> np.ndarray:
        """Bin frequencies in Hz, or bin indices when `sfreq` is not set."""
        if self.sfreq is None:
            return np.arange(self.n_freqs, dtype=np.float64)
        return np.fft.rfftfreq(self.effective_nfft, d=1.0 / float(self.sfreq))

    @property
    def taper_id(self) -> Hashable:
        w = check_window(self.window)
        if w == "dpss":
            return (w, float(self.bandwidth), self.n_tapers)
        return (w,)

    def _require_trials(self):
        if not self._trials:
            raise ValueError("No trials available.")

    # ---- Validation ----------------------------------------------------------

    def validate(self):
        """
        Check configuration and trial dimensions.

        Raises
        ------
        TypeError, ValueError
            Invalid configuration values.
        DimensionMismatchError
            A trial's shape disagrees with the first trial's shape.
        """
        if isinstance(self.nfft, bool) or not isinstance(self.nfft, (int, np.integer)):
            raise TypeError(f"`nfft` must be an int, got {self.nfft!r}.")
        if self.nfft < 1:
            raise ValueError(f"`nfft` must be >= 1, got {self.nfft}.")
        self.window = check_window(self.window)
        if self.sfreq is not None:
            fs = float(self.sfreq)
            if not np.isfinite(fs) or fs <= 0:
                raise ValueError(f"`sfreq` must be a positive finite float, got {self.sfreq!r}.")

        if not self._trials:
            return

        n_ch, n_s = self._trials[0].shape
        for k, trial in enumerate(self._trials[1:], start=1):
            if trial.shape != (n_ch, n_s):
                raise DimensionMismatchError(
                    f"Trial {k} has shape {trial.shape}, expected ({n_ch}, {n_s}) "
                    "from trial 0."
                )

        if self.node_positions is not None:
            pos = np.asarray(self.node_positions, dtype=np.float64)
            if pos.ndim != 2 or pos.shape[0] != n_ch:
                raise DimensionMismatchError(
                    f"`node_positions` must have shape ({n_ch}, d), got {pos.shape}."
                )

        logger.debug(
            f"Settings: trials={len(self._trials)} | channels={n_ch} | samples={n_s} | "
            f"nfft={self.effective_nfft} | window={self.window}"
        )

    def __repr__(self) -> str:
        return (
            f"ConnectivitySettings(trials={len(self._trials)}, nfft={self.nfft}, "
            f"window={self.window!r}, sfreq={self.sfreq})"
        )
