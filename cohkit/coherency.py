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
import time
import logging
from concurrent.futures import Executor
from typing import List, Optional, Tuple, Union

import numpy as np

from .network import Network
from .reducer import SpectralAccumulator, compute_spectral_sums, map_pairs
from .settings import ConnectivitySettings

logger = logging.getLogger(__name__)

__all__ = [
    "MODES",
    "coherency_row",
    "CoherencyAnalyzer",
    "calculate",
    "calculate_real",
    "calculate_imag",
    "compute_coherency",
    "compute_connectivity",
]

MODES = ("complex", "real", "imag")
_METHODS = {"coh": "real", "imagcoh": "imag"}


def coherency_row(i: int, csd_row: np.ndarray, psd_sum: np.ndarray) -> np.ndarray:
    """
    Coherency of channel `i` with every channel.

    Parameters
    ----------
    i : int
        Row channel.
    csd_row : (C, F) complex ndarray
        Trial-summed CSD(i, j) for all j.
    psd_sum : (C, F) ndarray
        Square-rooted, trial-summed PSD.

    Returns
    -------
    (C, F) complex ndarray
        CSD(i, j) / (PSD(i) * PSD(j)). Bins where a PSD is zero come out as
        NaN or Inf; they are not masked.
    """
    with np.errstate(divide="ignore", invalid="ignore"):
        return csd_row / (psd_sum[i][np.newaxis, :] * psd_sum)


class CoherencyAnalyzer:
    """
    Configures and executes a coherency computation over a trial set.

    The computation runs in two blocking phases on a thread pool:
    per-trial PSD/CSD estimation merged into shared sums, then per-row
    normalisation (and Network assembly for the real/imag modes).

    Parameters
    ----------
    settings : ConnectivitySettings
        Trials and spectral configuration.
    num_workers : int, optional
        Worker threads per phase. Defaults to `default_num_workers()`.
    executor : concurrent.futures.Executor, optional
        Thread-based executor to use instead of a per-call pool.
    progress : bool, optional
        Show tqdm progress bars. Defaults to False.
    """

    def __init__(
        self,
        settings: ConnectivitySettings,
        *,
        num_workers: Optional[int] = None,
        executor: Optional[Executor] = None,
        progress: bool = False,
    ):
        if not isinstance(settings, ConnectivitySettings):
            raise TypeError(
                f"`settings` must be a ConnectivitySettings, got {type(settings).__name__}."
            )
        self.settings = settings
        self._pool_kwargs = dict(num_workers=num_workers, executor=executor)
        self.progress = bool(progress)

    def spectral_sums(self) -> Optional[SpectralAccumulator]:
        """Phase 1 only: the finalised PSD/CSD sums (None for empty input)."""
        return compute_spectral_sums(self.settings, progress=self.progress, **self._pool_kwargs)

    def compute(self, mode: str = "real") -> Union[Network, List[Tuple[int, np.ndarray]], None]:
        """
        Executes the computation.

        Parameters
        ----------
        mode : str, optional
            'complex' returns a list of (i, coherency row) pairs; 'real' and
            'imag' return a Network weighted by the magnitude or the
            imaginary part of coherency. Defaults to 'real'.

        Returns
        -------
        Network, list or None
            None when the settings hold no trials.
        """
        if mode not in MODES:
            raise ValueError(f"Mode '{mode}' not recognized. Available: {list(MODES)}")

        acc = self.spectral_sums()
        if acc is None:
            return None

        if mode == "complex":
            return self._complex(acc)
        return self._network(acc, mode)

    def _complex(self, acc: SpectralAccumulator) -> List[Tuple[int, np.ndarray]]:
        psd_sum = acc.psd_sum

        def _row_task(pair):
            i, csd_row = pair
            return i, coherency_row(i, csd_row, psd_sum)

        t0 = time.perf_counter()
        result = map_pairs(_row_task, acc.pair_csd_sum, **self._pool_kwargs)
        logger.debug(f"Coherency CSD/(PSD_X * PSD_Y): {time.perf_counter() - t0:.4f} s")
        return result

    def _network(self, acc: SpectralAccumulator, mode: str) -> Network:
        settings = self.settings
        psd_sum = acc.psd_sum
        network = Network(
            settings.n_channels,
            n_freqs=settings.n_freqs,
            method="coh" if mode == "real" else "imagcoh",
            sfreq=settings.sfreq,
            nfft=settings.effective_nfft,
            positions=settings.node_positions,
        )
        to_weight = np.abs if mode == "real" else np.imag

        def _edge_task(pair):
            i, csd_row = pair
            cohy = coherency_row(i, csd_row, psd_sum)
            for j in range(i, cohy.shape[0]):
                network.add_edge(i, j, to_weight(cohy[j]))

        t0 = time.perf_counter()
        map_pairs(_edge_task, acc.pair_csd_sum, **self._pool_kwargs)
        logger.debug(
            f"Network creation CSD/(PSD_X * PSD_Y): {time.perf_counter() - t0:.4f} s "
            f"({network.n_edges} edges)"
        )
        return network


def calculate(settings: ConnectivitySettings, **kwargs) -> Optional[List[Tuple[int, np.ndarray]]]:
    """Complex coherency rows, without building a Network."""
    return CoherencyAnalyzer(settings, **kwargs).compute("complex")


def calculate_real(settings: ConnectivitySettings, **kwargs) -> Optional[Network]:
    """Network weighted by coherency magnitude."""
    return CoherencyAnalyzer(settings, **kwargs).compute("real")


def calculate_imag(settings: ConnectivitySettings, **kwargs) -> Optional[Network]:
    """Network weighted by the imaginary part of coherency."""
    return CoherencyAnalyzer(settings, **kwargs).compute("imag")


def compute_coherency(settings: ConnectivitySettings, mode: str = "real", **kwargs):
    """
    Computes coherency for a trial set in a single call.

    Parameters
    ----------
    settings : ConnectivitySettings
        Trials and spectral configuration.
    mode : str, optional
        'real', 'imag' or 'complex'. Defaults to 'real'.
    **kwargs :
        `num_workers`, `executor`, `progress`, passed to `CoherencyAnalyzer`.

    Returns
    -------
    Network, list of (i, ndarray), or None
    """
    # 1. Instantiate the analyzer
    analyzer = CoherencyAnalyzer(settings, **kwargs)

    # 2. Run both phases
    return analyzer.compute(mode)


def compute_connectivity(settings: ConnectivitySettings, method: str = "coh", **kwargs) -> Optional[Network]:
    """
    Computes a connectivity Network by measure name.

    Parameters
    ----------
    method : str
        'coh' (coherency magnitude) or 'imagcoh' (imaginary coherency).
    """
    key = method.lower()
    if key not in _METHODS:
        raise ValueError(
            f"Connectivity method '{method}' not recognized. Available: {list(_METHODS)}"
        )
    return compute_coherency(settings, _METHODS[key], **kwargs)
