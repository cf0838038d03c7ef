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
import threading
from concurrent.futures import (
    Executor,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    FIRST_COMPLETED,
    wait,
)
from typing import Any, Callable, Iterable, List, Optional, Tuple

import numpy as np
from tqdm import tqdm

from ._config import default_num_workers
from .core import compute_trial_spectra
from .exceptions import ComputationError
from .settings import ConnectivitySettings
from .tapers import generate_tapers

logger = logging.getLogger(__name__)

__all__ = [
    "SpectralAccumulator",
    "run_phase",
    "map_trials",
    "map_pairs",
    "compute_spectral_sums",
]


class SpectralAccumulator:
    """
    Trial-summed PSD and CSD, shared by all trial tasks of one computation.

    Attributes
    ----------
    psd_sum : (C, F) ndarray or None
        Sum of per-trial PSDs; square-rooted by `finalize()`.
    pair_csd_sum : list of (i, (C, F) complex ndarray)
        Sum of per-trial CSD rows.
    n_trials : int
        Number of merged contributions.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.psd_sum: Optional[np.ndarray] = None
        self.pair_csd_sum: List[Tuple[int, np.ndarray]] = []
        self.n_trials = 0
        self.finalized = False

    def merge(self, psd: np.ndarray, pair_csd: List[Tuple[int, np.ndarray]]):
        """Add one trial's PSD/CSD. The first contributor initialises the sums."""
        with self._lock:
            if self.finalized:
                raise RuntimeError("Cannot merge into a finalized accumulator.")
            if self.psd_sum is None:
                self.psd_sum = np.array(psd, dtype=np.float64, copy=True)
                self.pair_csd_sum = [
                    (int(i), np.array(m, dtype=np.complex128, copy=True)) for i, m in pair_csd
                ]
            else:
                if psd.shape != self.psd_sum.shape or len(pair_csd) != len(self.pair_csd_sum):
                    raise ValueError(
                        f"PSD shape {psd.shape} does not match accumulator {self.psd_sum.shape}."
                    )
                self.psd_sum += psd
                for (i, acc), (j, m) in zip(self.pair_csd_sum, pair_csd):
                    if i != j:
                        raise ValueError(f"CSD row order mismatch: {i} != {j}.")
                    acc += m
            self.n_trials += 1

    def finalize(self) -> np.ndarray:
        """Apply the elementwise square root to the PSD sum (once)."""
        with self._lock:
            if self.finalized:
                raise RuntimeError("Accumulator already finalized.")
            if self.psd_sum is None:
                raise RuntimeError("Nothing was merged into the accumulator.")
            np.sqrt(self.psd_sum, out=self.psd_sum)
            self.finalized = True
            return self.psd_sum


def run_phase(
    func: Callable[[Any], Any],
    items: Iterable[Any],
    *,
    executor: Optional[Executor] = None,
    num_workers: Optional[int] = None,
    progress: bool = False,
    desc: Optional[str] = None,
) -> List[Any]:
    """
    Map `func` over `items` on a worker pool and block until all are done.

    Parameters
    ----------
    func : callable
        Task body, called once per item.
    items : iterable
        Task inputs.
    executor : concurrent.futures.Executor, optional
        A thread-based executor to run on. If None, a ThreadPoolExecutor
        with `num_workers` threads is created for this call.
    num_workers : int, optional
        Pool size when no executor is given. With 1 the tasks run in the
        calling thread. Defaults to `default_num_workers()`.
    progress : bool, optional
        Show a tqdm progress bar. Defaults to False.
    desc : str, optional
        Progress bar label.

    Returns
    -------
    list
        `func(item)` for every item, in input order.

    Raises
    ------
    ComputationError
        If any task raised. Pending tasks are cancelled and no results are
        returned.
    """
    items = list(items)
    if not items:
        return []
    if isinstance(executor, ProcessPoolExecutor):
        raise TypeError("Shared accumulators require a thread-based executor.")

    if executor is None:
        n = default_num_workers() if num_workers is None else int(num_workers)
        if n < 1:
            raise ValueError(f"`num_workers` must be >= 1, got {n}.")
        if n == 1:
            results = []
            for k, item in enumerate(tqdm(items, desc=desc, disable=not progress)):
                try:
                    results.append(func(item))
                except Exception as exc:
                    raise ComputationError(f"{desc or 'task'} {k} failed: {exc}") from exc
            return results
        with ThreadPoolExecutor(max_workers=n, thread_name_prefix="cohkit") as pool:
            return _run_on(pool, func, items, progress, desc)
    return _run_on(executor, func, items, progress, desc)


def _run_on(executor: Executor, func, items, progress, desc) -> List[Any]:
    futures = [executor.submit(func, item) for item in items]
    with tqdm(total=len(futures), desc=desc, disable=not progress) as bar:
        pending = set(futures)
        while pending:
            done, pending = wait(pending, return_when=FIRST_COMPLETED)
            bar.update(len(done))
            failed = [f for f in done if f.exception() is not None]
            if failed:
                for f in pending:
                    f.cancel()
                wait(pending)
                k = futures.index(failed[0])
                exc = failed[0].exception()
                raise ComputationError(f"{desc or 'task'} {k} failed: {exc}") from exc
    return [f.result() for f in futures]


def map_trials(
    settings: ConnectivitySettings,
    accumulator: SpectralAccumulator,
    tapers: np.ndarray,
    eigenvalues: np.ndarray,
    **kwargs,
) -> SpectralAccumulator:
    """
    Phase 1: compute every trial's PSD/CSD and merge it into `accumulator`.

    Keyword arguments are passed to `run_phase`.
    """
    nfft = settings.effective_nfft
    taper_id = settings.taper_id

    def _trial_task(trial):
        psd, pair_csd = compute_trial_spectra(trial, tapers, eigenvalues, nfft, taper_id)
        accumulator.merge(psd, pair_csd)

    run_phase(_trial_task, settings.trials, desc="trials", **kwargs)
    return accumulator


def map_pairs(func: Callable[[Tuple[int, np.ndarray]], Any], pairs, **kwargs) -> List[Any]:
    """Phase 2: map `func` over (i, csd_row) pairs. See `run_phase`."""
    return run_phase(func, pairs, desc="pairs", **kwargs)


def compute_spectral_sums(
    settings: ConnectivitySettings,
    *,
    executor: Optional[Executor] = None,
    num_workers: Optional[int] = None,
    progress: bool = False,
) -> Optional[SpectralAccumulator]:
    """
    Validate the settings, run phase 1 and finalise the PSD sum.

    Returns
    -------
    SpectralAccumulator or None
        The finalised accumulator, or None if there are no trials.
    """
    settings.validate()
    if settings.is_empty():
        logger.warning("Input data is empty; nothing to compute.")
        return None

    t0 = time.perf_counter()
    tapers, eigenvalues = generate_tapers(
        settings.n_samples,
        settings.window,
        bandwidth=settings.bandwidth,
        n_tapers=settings.n_tapers,
    )
    accumulator = SpectralAccumulator()
    logger.debug(
        f"Preparation: {time.perf_counter() - t0:.4f} s "
        f"({tapers.shape[0]} taper(s), nfft={settings.effective_nfft}, nf={settings.n_freqs})"
    )

    t0 = time.perf_counter()
    map_trials(
        settings,
        accumulator,
        tapers,
        eigenvalues,
        executor=executor,
        num_workers=num_workers,
        progress=progress,
    )
    logger.debug(f"PSD/CSD computation: {time.perf_counter() - t0:.4f} s ({accumulator.n_trials} trials)")

    t0 = time.perf_counter()
    accumulator.finalize()
    logger.debug(f"Cwise sqrt: {time.perf_counter() - t0:.4f} s")
    return accumulator
