import threading
from typing import Optional
import numpy as np

__all__ = (
    "ExternalEMDHandler",
    "Histogram1DHandler",
    "CorrelationDimension",
    "PairListHandler",
    "HDF5Handler",
)


class ExternalEMDHandler:
    """
    Receives EMDs one at a time instead of having them stored

    handle() may be called from several worker threads at once, the merge
    into the handler's state happens under the handler's own lock.
    Subclasses implement _handle().
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.num_calls = 0

    def description(self) -> str:
        return type(self).__name__

    def handle(self, i: int, j: int, emd: float, weight: float = 1.0) -> None:
        with self._lock:
            self._handle(i, j, emd, weight)
            self.num_calls += 1

    def _handle(self, i: int, j: int, emd: float, weight: float) -> None:
        raise NotImplementedError

    def __call__(self, i: int, j: int, emd: float, weight: float = 1.0) -> None:
        self.handle(i, j, emd, weight)

    def finalize(self):
        return None


class Histogram1DHandler(ExternalEMDHandler):
    """
    Weighted histogram of EMD values, linear or logarithmic bins

    Values outside [axis_min, axis_max) are counted in underflow/overflow.
    """

    def __init__(self, nbins: int, axis_min: float, axis_max: float, log: bool = False) -> None:
        super().__init__()
        if nbins <= 0:
            raise ValueError(f"nbins must be positive, got {nbins}")
        if not axis_max > axis_min:
            raise ValueError("axis_max has to be larger than axis_min")
        if log and axis_min <= 0:
            raise ValueError("log binning needs a positive axis_min")
        self.nbins = nbins
        self.log = log
        if log:
            self.bin_edges = np.geomspace(axis_min, axis_max, nbins + 1)
        else:
            self.bin_edges = np.linspace(axis_min, axis_max, nbins + 1)
        self.hist = np.zeros(nbins)
        self.errs2 = np.zeros(nbins)
        self.underflow = 0.0
        self.overflow = 0.0

    def description(self) -> str:
        return (
            f"Histogram1DHandler\n"
            f"  nbins - {self.nbins}\n"
            f"  axis - [{self.bin_edges[0]}, {self.bin_edges[-1]})\n"
            f"  log - {self.log}"
        )

    def _handle(self, i: int, j: int, emd: float, weight: float) -> None:
        if emd < self.bin_edges[0]:
            self.underflow += weight
        elif emd >= self.bin_edges[-1]:
            self.overflow += weight
        else:
            index = int(np.searchsorted(self.bin_edges, emd, side="right")) - 1
            self.hist[index] += weight
            self.errs2[index] += weight**2

    def bin_centers(self) -> np.ndarray:
        if self.log:
            return np.sqrt(self.bin_edges[1:] * self.bin_edges[:-1])
        return (self.bin_edges[1:] + self.bin_edges[:-1]) / 2

    def finalize(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        with self._lock:
            return self.hist.copy(), np.sqrt(self.errs2), self.bin_edges.copy()


class CorrelationDimension(Histogram1DHandler):
    """
    Correlation dimension dim(Q) = d ln N(EMD < Q) / d ln Q

    Keeps a log binned histogram of the EMDs and differentiates the
    cumulative counts between neighbouring bin edges.
    """

    def __init__(self, nbins: int, axis_min: float, axis_max: float) -> None:
        super().__init__(nbins, axis_min, axis_max, log=True)

    def description(self) -> str:
        return "CorrelationDimension\n" + super().description().split("\n", 1)[1]

    def cumulative_vals(self) -> np.ndarray:
        """
        Weighted number of EMDs below each bin edge
        """
        with self._lock:
            return self.underflow + np.concatenate([[0.0], np.cumsum(self.hist)])

    def corrdim_bins(self) -> np.ndarray:
        # Interior edges, where the derivative is taken
        return self.bin_edges[1:-1]

    def corrdims(self) -> tuple[np.ndarray, np.ndarray]:
        cumulative = self.cumulative_vals()
        with self._lock:
            cumulative_errs2 = np.concatenate([[0.0], np.cumsum(self.errs2)])
        dln_edges = np.log(self.bin_edges[2:]) - np.log(self.bin_edges[:-2])
        with np.errstate(divide="ignore", invalid="ignore"):
            ln_cum = np.log(cumulative)
            ln_cum_errs = np.sqrt(cumulative_errs2) / cumulative
            # central difference of ln N around each interior edge
            dims = (ln_cum[2:] - ln_cum[:-2]) / dln_edges
            errs = np.sqrt(ln_cum_errs[2:]**2 + ln_cum_errs[:-2]**2) / dln_edges
        dims[~np.isfinite(dims)] = 0.0
        errs[~np.isfinite(errs)] = 0.0
        return dims, errs

    def finalize(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        dims, errs = self.corrdims()
        return dims, errs, self.corrdim_bins()


class PairListHandler(ExternalEMDHandler):
    """
    Collects (i, j, emd, weight) tuples in arrival order
    """

    def __init__(self) -> None:
        super().__init__()
        self.pairs: list[tuple[int, int, float, float]] = []

    def _handle(self, i: int, j: int, emd: float, weight: float) -> None:
        self.pairs.append((i, j, emd, weight))

    def finalize(self) -> list[tuple[int, int, float, float]]:
        with self._lock:
            return sorted(self.pairs)


class HDF5Handler(ExternalEMDHandler):
    """
    Writes every EMD into a 2D h5py dataset, filling both triangles for
    symmetric runs
    """

    def __init__(self, dataset, symmetric: bool = False, flush_every: Optional[int] = None) -> None:
        super().__init__()
        self.dataset = dataset
        self.symmetric = symmetric
        self.flush_every = flush_every

    def description(self) -> str:
        return f"HDF5Handler\n  dataset - {self.dataset.name}\n  shape - {self.dataset.shape}"

    def _handle(self, i: int, j: int, emd: float, weight: float) -> None:
        self.dataset[i, j] = emd
        if self.symmetric:
            self.dataset[j, i] = emd
        if self.flush_every and (self.num_calls + 1) % self.flush_every == 0:
            self.dataset.file.flush()

    def finalize(self):
        with self._lock:
            self.dataset.file.flush()
        return self.dataset
