from typing import Any, Callable, Union
import numpy as np

__all__ = (
    "PairwiseDistance",
    "FunctionDistance",
    "EuclideanDistance",
    "YPhiDistance",
    "PrecomputedDistance",
    "as_distance",
)


class PairwiseDistance:
    """
    Ground distance between two particles

    Subclasses implement distance(). pairwise() computes the full matrix
    between two particle collections and may be overridden with a
    vectorised version.
    """

    name = "PairwiseDistance"

    def distance(self, p0: Any, p1: Any) -> float:
        raise NotImplementedError

    def __call__(self, p0: Any, p1: Any) -> float:
        return self.distance(p0, p1)

    def pairwise(self, particles0: Any, particles1: Any) -> np.ndarray:
        dists = np.empty((len(particles0), len(particles1)), dtype=np.float64)
        for i, p0 in enumerate(particles0):
            for j, p1 in enumerate(particles1):
                dists[i, j] = self.distance(p0, p1)
        return dists

    def description(self) -> str:
        return self.name


class FunctionDistance(PairwiseDistance):
    """
    Wraps a plain function distance(p0, p1) -> float
    """

    def __init__(self, function: Callable[[Any, Any], float]) -> None:
        self.function = function
        self.name = getattr(function, "__name__", type(function).__name__)

    def distance(self, p0: Any, p1: Any) -> float:
        return float(self.function(p0, p1))


class EuclideanDistance(PairwiseDistance):
    name = "EuclideanDistance"

    def distance(self, p0: Any, p1: Any) -> float:
        return float(np.linalg.norm(np.asarray(p0, dtype=np.float64) - np.asarray(p1, dtype=np.float64)))

    def pairwise(self, particles0: Any, particles1: Any) -> np.ndarray:
        x0 = np.asarray(particles0, dtype=np.float64)
        x1 = np.asarray(particles1, dtype=np.float64)
        x0 = x0.reshape(len(x0), -1)
        x1 = x1.reshape(len(x1), -1)
        if x0.shape[1] != x1.shape[1]:
            raise ValueError(f"particles have different dimensions ({x0.shape[1]} and {x1.shape[1]})")
        return np.sqrt(((x0[:, np.newaxis, :] - x1[np.newaxis, :, :])**2).sum(axis=-1))


class YPhiDistance(PairwiseDistance):
    """
    Distance in the rapidity-azimuth plane, phi is periodic in 2pi
    """

    name = "YPhiDistance"

    @staticmethod
    def _dphi(phi0: np.ndarray, phi1: np.ndarray) -> np.ndarray:
        dphi = np.abs(phi0 - phi1) % (2*np.pi)
        return np.minimum(dphi, 2*np.pi - dphi)

    def distance(self, p0: Any, p1: Any) -> float:
        dy = p0[0] - p1[0]
        dphi = self._dphi(p0[1], p1[1])
        return float(np.sqrt(dy**2 + dphi**2))

    def pairwise(self, particles0: Any, particles1: Any) -> np.ndarray:
        x0 = np.asarray(particles0, dtype=np.float64).reshape(-1, 2)
        x1 = np.asarray(particles1, dtype=np.float64).reshape(-1, 2)
        dy = x0[:, np.newaxis, 0] - x1[np.newaxis, :, 0]
        dphi = self._dphi(x0[:, np.newaxis, 1], x1[np.newaxis, :, 1])
        return np.sqrt(dy**2 + dphi**2)


class PrecomputedDistance(PairwiseDistance):
    """
    Looks up distances in a fixed matrix, particles are integer indices

    Events built from bare weights (Event(weights)) carry their indices as
    particles, so this works directly on them.
    """

    name = "PrecomputedDistance"

    def __init__(self, dists: np.ndarray) -> None:
        self.dists = np.asarray(dists, dtype=np.float64)
        if self.dists.ndim != 2:
            raise ValueError(f"expected a 2D distance matrix, got shape {self.dists.shape}")

    def distance(self, p0: Any, p1: Any) -> float:
        return float(self.dists[int(np.ravel(p0)[0]), int(np.ravel(p1)[0])])

    def pairwise(self, particles0: Any, particles1: Any) -> np.ndarray:
        i = np.asarray(particles0).reshape(-1).astype(int)
        j = np.asarray(particles1).reshape(-1).astype(int)
        return self.dists[np.ix_(i, j)]


_NAMED_DISTANCES = {
    "euclidean": EuclideanDistance,
    "yphi": YPhiDistance,
}


def as_distance(distance: Union[str, PairwiseDistance, Callable[[Any, Any], float], np.ndarray]) -> PairwiseDistance:
    if isinstance(distance, PairwiseDistance):
        return distance
    if isinstance(distance, str):
        try:
            return _NAMED_DISTANCES[distance.lower()]()
        except KeyError:
            raise ValueError(f"Unknown distance {distance!r}, use one of {sorted(_NAMED_DISTANCES)}") from None
    if isinstance(distance, np.ndarray):
        return PrecomputedDistance(distance)
    if callable(distance):
        return FunctionDistance(distance)
    raise TypeError(f"Cannot use {type(distance).__name__} as a ground distance")
