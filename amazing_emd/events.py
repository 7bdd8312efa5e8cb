from typing import Any, Sequence, Union
import numpy as np

__all__ = ("Event", "as_event", "as_events")


class Event:
    """
    Weighted collection of particles

    weights is a 1D array of non-negative floats, particles an array
    (or any sequence) of positions with the same length. For arrays of
    coordinates particles has shape (n, d).
    """

    __slots__ = ("weights", "particles")

    def __init__(self, weights: Any, particles: Any = None) -> None:
        weights = np.asarray(weights, dtype=np.float64).reshape(-1)
        if particles is None:
            # Bare weights, ground distances have to be supplied externally
            particles = np.arange(len(weights))
        else:
            particles = _as_coordinates(particles)

        if len(weights) != len(particles):
            raise ValueError(
                f"number of weights ({len(weights)}) and particles ({len(particles)}) have to match"
            )
        if not np.all(np.isfinite(weights)):
            raise ValueError("weights have to be finite")
        if np.any(weights < 0):
            raise ValueError("weights have to be non-negative")

        self.weights = weights
        self.particles = particles

    @classmethod
    def from_array(cls, event: np.ndarray) -> "Event":
        """
        Event from rows of [weight, coord_1, ..., coord_d], e.g. (pt, y, phi)
        """
        event = np.asarray(event, dtype=np.float64)
        if event.ndim != 2 or event.shape[1] < 2:
            raise ValueError(f"expected an array of shape (n, 1+d), got {event.shape}")
        return cls(event[:, 0].copy(), event[:, 1:].copy())

    def to_array(self) -> np.ndarray:
        return np.column_stack([self.weights, np.asarray(self.particles, dtype=np.float64)])

    def size(self) -> int:
        return len(self.weights)

    def weight(self, k: int) -> float:
        return float(self.weights[k])

    def position(self, k: int) -> Any:
        return self.particles[k]

    @property
    def total_weight(self) -> float:
        return float(self.weights.sum())

    def with_weights(self, weights: np.ndarray) -> "Event":
        return Event(weights, self.particles)

    def with_particles(self, particles: Any) -> "Event":
        return Event(self.weights, particles)

    def __len__(self) -> int:
        return len(self.weights)

    def __repr__(self) -> str:
        return f"Event(n={len(self)}, total_weight={self.total_weight:.6g})"


def _as_coordinates(particles: Any) -> Any:
    # Numeric positions become a float array, anything else stays opaque
    try:
        coords = np.asarray(particles, dtype=np.float64)
    except (TypeError, ValueError):
        return particles
    if coords.ndim in (1, 2):
        return coords
    return particles


def as_event(event: Union[Event, np.ndarray, Sequence]) -> Event:
    """
    Coerces events, bare weight vectors and [weight, coords...] rows

    Any nested sequence is read row by row, so ((w0, x0), (w1, x1)) is an
    event with two particles. Separate weights and particles go through
    Event(weights, particles).
    """
    if isinstance(event, Event):
        return event
    array = np.asarray(event, dtype=np.float64)
    if array.ndim == 1:
        return Event(array)
    return Event.from_array(array)


def as_events(events: Sequence[Any]) -> list[Event]:
    return [as_event(event) for event in events]
