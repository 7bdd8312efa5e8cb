from typing import Callable, Sequence
import numpy as np

from amazing_emd.events import Event
from amazing_emd.utils import PHI_I, center_event, cutoff_event, flip_event, rotate_event, wrap_phi

__all__ = (
    "Preprocessor",
    "FunctionPreprocessor",
    "Compose",
    "CenterWeightedCentroid",
    "RotatePrincipalAxis",
    "FlipHardestParticle",
    "WrapPhi",
    "WeightCutoff",
    "compose",
    "as_preprocessor",
)


class Preprocessor:
    """
    Transformation Event -> Event applied once per event before any distance

    Implementations return a new event and leave their input untouched.
    """

    def description(self) -> str:
        return type(self).__name__

    def __call__(self, event: Event) -> Event:
        return event


class FunctionPreprocessor(Preprocessor):
    def __init__(self, function: Callable[[Event], Event]) -> None:
        self.function = function

    def description(self) -> str:
        return getattr(self.function, "__name__", type(self.function).__name__)

    def __call__(self, event: Event) -> Event:
        return self.function(event)


class Compose(Preprocessor):
    """
    Applies preprocessors from left to right
    """

    def __init__(self, preprocessors: Sequence[Preprocessor]) -> None:
        self.preprocessors = [as_preprocessor(p) for p in preprocessors]

    def description(self) -> str:
        return " -> ".join(p.description() for p in self.preprocessors) or "Identity"

    def __call__(self, event: Event) -> Event:
        for preprocessor in self.preprocessors:
            event = preprocessor(event)
        return event


class _ArrayPreprocessor(Preprocessor):
    # Runs a function on the [weight, coords...] array form of an event
    def _transform(self, array: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def __call__(self, event: Event) -> Event:
        if len(event) == 0:
            return event
        return Event.from_array(self._transform(event.to_array()))


class CenterWeightedCentroid(_ArrayPreprocessor):
    def _transform(self, array: np.ndarray) -> np.ndarray:
        return center_event(array)


class RotatePrincipalAxis(_ArrayPreprocessor):
    """
    Rotates 2D events so that their principal axis lies along the second coordinate
    """

    def _transform(self, array: np.ndarray) -> np.ndarray:
        if array.shape[1] != 3:
            raise ValueError("RotatePrincipalAxis needs 2D particles")
        return rotate_event(array)


class FlipHardestParticle(_ArrayPreprocessor):
    def _transform(self, array: np.ndarray) -> np.ndarray:
        if array.shape[1] != 3:
            raise ValueError("FlipHardestParticle needs 2D particles")
        return flip_event(array)


class WrapPhi(_ArrayPreprocessor):
    def _transform(self, array: np.ndarray) -> np.ndarray:
        if array.shape[1] <= PHI_I:
            raise ValueError("WrapPhi needs an azimuth column")
        return wrap_phi(array)


class WeightCutoff(_ArrayPreprocessor):
    """
    Drops particles with a weight not above min_weight
    """

    def __init__(self, min_weight: float) -> None:
        self.min_weight = min_weight

    def description(self) -> str:
        return f"WeightCutoff({self.min_weight})"

    def _transform(self, array: np.ndarray) -> np.ndarray:
        return cutoff_event(array, self.min_weight)


def as_preprocessor(preprocessor) -> Preprocessor:
    if isinstance(preprocessor, Preprocessor):
        return preprocessor
    if isinstance(preprocessor, type) and issubclass(preprocessor, Preprocessor):
        return preprocessor()
    if callable(preprocessor):
        return FunctionPreprocessor(preprocessor)
    raise TypeError(f"Cannot use {type(preprocessor).__name__} as a preprocessor")


def compose(*preprocessors) -> Compose:
    return Compose(preprocessors)
