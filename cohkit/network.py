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
network.py — weighted connectivity graph
-----------------------------------------------------------------------------
The Network owns its edges in an arena (a list indexed by edge ID). Nodes
store the IDs of their incident edges only, so there is no ownership cycle
between nodes and edges.

Edge insertion takes the Network's lock once and performs all of
    arena append, source-node append, target-node append
before releasing it; readers never see an edge referenced by one endpoint
and missing from the other.
-----------------------------------------------------------------------------
"""
__all__ = ["NetworkEdge", "NetworkNode", "Network"]

import logging
import threading
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from matplotlib.axes import Axes
from matplotlib.figure import Figure

logger = logging.getLogger(__name__)


class NetworkEdge:
    """
    Undirected edge between two nodes with one weight per frequency bin.

    Parameters
    ----------
    source, target : int
        Endpoint node indices. Stored as (min, max).
    weights : array-like
        Per-frequency-bin weights.
    """

    def __init__(self, source: int, target: int, weights):
        source, target = int(source), int(target)
        if source > target:
            source, target = target, source
        w = np.array(weights, dtype=np.float64, copy=True).reshape(-1)
        w.flags.writeable = False
        self.source = source
        self.target = target
        self._weights = w
        self._bins: Tuple[int, int] = (0, w.shape[0])
        self.active = True

    @property
    def weights(self) -> np.ndarray:
        return self._weights

    @property
    def n_freqs(self) -> int:
        return int(self._weights.shape[0])

    @property
    def pair(self) -> Tuple[int, int]:
        return self.source, self.target

    @property
    def frequency_bins(self) -> Tuple[int, int]:
        return self._bins

    def set_frequency_bins(self, lower: int, upper: int):
        """Restrict `weight` to bins [lower, upper)."""
        lower, upper = int(lower), int(upper)
        if not (0 <= lower < upper <= self.n_freqs):
            raise ValueError(
                f"Invalid bin range [{lower}, {upper}) for {self.n_freqs} frequency bins."
            )
        self._bins = (lower, upper)

    @property
    def weight(self) -> float:
        """Mean weight over the active frequency bins."""
        lo, hi = self._bins
        return float(np.mean(self._weights[lo:hi]))

    def is_self_edge(self) -> bool:
        return self.source == self.target

    def __repr__(self) -> str:
        return f"NetworkEdge({self.source}, {self.target}, n_freqs={self.n_freqs})"


class NetworkNode:
    """
    Network node. Incident edges are kept as edge IDs into the owning Network.
    """

    def __init__(self, index: int, network: "Network", position: Optional[np.ndarray] = None):
        self.index = int(index)
        self._network = network
        self.position = None if position is None else np.asarray(position, dtype=np.float64)
        self.edge_ids: List[int] = []

    @property
    def edges(self) -> List[NetworkEdge]:
        return [self._network.get_edge(k) for k in self.edge_ids]

    @property
    def degree(self) -> int:
        return len(self.edge_ids)

    @property
    def thresholded_degree(self) -> int:
        return sum(1 for e in self.edges if e.active)

    @property
    def strength(self) -> float:
        """Sum of incident edge weights over the active frequency bins."""
        return float(sum(e.weight for e in self.edges))

    def __repr__(self) -> str:
        return f"NetworkNode({self.index}, degree={self.degree})"


class Network:
    """
    Channel x channel connectivity graph.

    Parameters
    ----------
    n_nodes : int
        Number of nodes (channels), indexed 0..n_nodes-1.
    n_freqs : int
        Length of every edge weight vector.
    method : str, optional
        Name of the connectivity measure that produced the weights.
    sfreq : float, optional
        Sampling frequency in Hz, for frequency-range selection.
    nfft : int, optional
        FFT length used, for frequency-range selection.
    positions : array-like, optional
        (n_nodes, d) node coordinates.
    """

    def __init__(
        self,
        n_nodes: int,
        *,
        n_freqs: int,
        method: Optional[str] = None,
        sfreq: Optional[float] = None,
        nfft: Optional[int] = None,
        positions=None,
    ):
        n_nodes, n_freqs = int(n_nodes), int(n_freqs)
        if n_nodes < 1:
            raise ValueError(f"`n_nodes` must be >= 1, got {n_nodes}.")
        if n_freqs < 1:
            raise ValueError(f"`n_freqs` must be >= 1, got {n_freqs}.")
        if positions is not None:
            positions = np.asarray(positions, dtype=np.float64)
            if positions.ndim != 2 or positions.shape[0] != n_nodes:
                raise ValueError(f"`positions` must have shape ({n_nodes}, d), got {positions.shape}.")

        self.n_freqs = n_freqs
        self.method = method
        self.sfreq = sfreq
        self.nfft = nfft
        self.threshold: Optional[float] = None
        self._lock = threading.Lock()
        self._edges: List[NetworkEdge] = []
        self._pairs: Dict[Tuple[int, int], int] = {}
        self._nodes = [
            NetworkNode(i, self, None if positions is None else positions[i])
            for i in range(n_nodes)
        ]

    # ---- Construction --------------------------------------------------------

    def add_edge(self, source: int, target: int, weights) -> int:
        """
        Insert an edge and register it with both endpoints.

        Returns
        -------
        int
            The new edge ID.

        Raises
        ------
        IndexError
            Node index out of range.
        ValueError
            Weight length differs from `n_freqs`, or the pair already has an edge.
        """
        edge = NetworkEdge(source, target, weights)
        n = len(self._nodes)
        if edge.source < 0 or edge.target >= n:
            raise IndexError(f"Edge {edge.pair} out of range for {n} nodes.")
        if edge.n_freqs != self.n_freqs:
            raise ValueError(f"Edge weight length {edge.n_freqs} != n_freqs {self.n_freqs}.")

        with self._lock:
            if edge.pair in self._pairs:
                raise ValueError(f"Network already has an edge between {edge.pair}.")
            edge_id = len(self._edges)
            self._edges.append(edge)
            self._pairs[edge.pair] = edge_id
            self._nodes[edge.source].edge_ids.append(edge_id)
            if not edge.is_self_edge():
                self._nodes[edge.target].edge_ids.append(edge_id)
        return edge_id

    # ---- Access --------------------------------------------------------------

    @property
    def nodes(self) -> List[NetworkNode]:
        return list(self._nodes)

    @property
    def edges(self) -> List[NetworkEdge]:
        with self._lock:
            return list(self._edges)

    @property
    def n_nodes(self) -> int:
        return len(self._nodes)

    @property
    def n_edges(self) -> int:
        return len(self._edges)

    def __len__(self) -> int:
        return self.n_edges

    def is_empty(self) -> bool:
        return self.n_edges == 0

    def get_node_at(self, index: int) -> NetworkNode:
        n = len(self._nodes)
        if not 0 <= index < n:
            raise IndexError(f"Node index {index} out of range for {n} nodes.")
        return self._nodes[index]

    def get_edge(self, edge_id: int) -> NetworkEdge:
        return self._edges[edge_id]

    def get_edge_between(self, i: int, j: int) -> Optional[NetworkEdge]:
        k = self._pairs.get((min(i, j), max(i, j)))
        return None if k is None else self._edges[k]

    @property
    def freqs(self) -> np.ndarray:
        """Bin frequencies in Hz, or bin indices without `sfreq`/`nfft`."""
        if self.sfreq is None or self.nfft is None:
            return np.arange(self.n_freqs, dtype=np.float64)
        return np.fft.rfftfreq(int(self.nfft), d=1.0 / float(self.sfreq))

    # ---- Frequency selection & thresholding ----------------------------------

    def set_frequency_bins(self, lower: int, upper: int):
        """Average edge weights over bins [lower, upper)."""
        for e in self.edges:
            e.set_frequency_bins(lower, upper)
        if self.threshold is not None:
            self.set_threshold(self.threshold)

    def set_frequency_range(self, fmin: float, fmax: float):
        """Average edge weights over the bins whose frequency lies in [fmin, fmax] Hz."""
        if self.sfreq is None or self.nfft is None:
            raise ValueError("Frequency range selection requires `sfreq` and `nfft`.")
        if not (np.isfinite(fmin) and np.isfinite(fmax) and fmax >= fmin):
            raise ValueError(f"Invalid frequency range ({fmin!r}, {fmax!r}).")
        idx = np.where((self.freqs >= fmin) & (self.freqs <= fmax))[0]
        if idx.size == 0:
            raise ValueError("No frequency bins found in the specified range.")
        self.set_frequency_bins(int(idx[0]), int(idx[-1]) + 1)

    def set_threshold(self, value: float):
        """Mark edges with weight >= `value` as active, all others inactive."""
        self.threshold = float(value)
        for e in self.edges:
            e.active = e.weight >= self.threshold

    def thresholded_edges(self) -> List[NetworkEdge]:
        return [e for e in self.edges if e.active]

    # ---- Summaries -----------------------------------------------------------

    def connectivity_matrix(self, thresholded: bool = False) -> np.ndarray:
        """
        Symmetric (n_nodes, n_nodes) matrix of edge weights.

        Missing edges (and inactive ones when `thresholded`) are 0.
        """
        n = self.n_nodes
        mat = np.zeros((n, n), dtype=np.float64)
        for e in self.edges:
            if thresholded and not e.active:
                continue
            mat[e.source, e.target] = e.weight
            mat[e.target, e.source] = e.weight
        return mat

    def min_max_weights(self, thresholded: bool = False) -> Tuple[float, float]:
        """Smallest and largest edge weight, ignoring self-edges."""
        w = [
            e.weight
            for e in self.edges
            if not e.is_self_edge() and (e.active or not thresholded)
        ]
        if not w:
            return 0.0, 0.0
        return float(np.nanmin(w)), float(np.nanmax(w))

    def distribution(self) -> np.ndarray:
        """Degree of every node."""
        return np.array([node.degree for node in self._nodes], dtype=np.int64)

    def to_dataframe(self) -> pd.DataFrame:
        """
        Exports the edges to a pandas DataFrame.

        One row per edge with columns `source`, `target`, `weight` (mean over
        the active bins), `active`, followed by one column per frequency bin.
        """
        edges = self.edges
        freqs = self.freqs
        rows = np.array([e.weights for e in edges]).reshape(len(edges), self.n_freqs)
        df = pd.DataFrame(rows, columns=[f"{f:g}" for f in freqs])
        df.insert(0, "active", [e.active for e in edges])
        df.insert(0, "weight", [e.weight for e in edges])
        df.insert(0, "target", [e.target for e in edges])
        df.insert(0, "source", [e.source for e in edges])
        return df

    def plot(
        self,
        *,
        ax: Optional[Axes] = None,
        thresholded: bool = False,
        cmap: str = "viridis",
        **kwargs,
    ) -> Tuple[Figure, Axes]:
        """
        Shows the connectivity matrix as an image.

        Returns
        -------
        tuple
            The matplotlib Figure and Axes.
        """
        fig, ax1 = (ax.get_figure(), ax) if ax is not None else plt.subplots()
        im = ax1.imshow(self.connectivity_matrix(thresholded), cmap=cmap, **kwargs)
        fig.colorbar(im, ax=ax1, label=self.method or "weight")
        ax1.set_xlabel("Node")
        ax1.set_ylabel("Node")
        fig.tight_layout()
        return fig, ax1

    def __repr__(self) -> str:
        return (
            f"Network(nodes={self.n_nodes}, edges={self.n_edges}, "
            f"n_freqs={self.n_freqs}, method={self.method!r})"
        )
