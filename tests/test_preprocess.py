"""
Tests for event preprocessing and the jet array helpers
"""
import h5py
import numpy as np
import pytest

from amazing_emd.events import Event
from amazing_emd.preprocess import (
    CenterWeightedCentroid,
    Compose,
    FlipHardestParticle,
    RotatePrincipalAxis,
    WeightCutoff,
    WrapPhi,
    as_preprocessor,
    compose,
)
from amazing_emd.utils import PHI_I, center_event, load_events, normalize_event


class TestPreprocessors:
    def test_center(self) -> None:
        event = Event([1.0, 3.0], [[0.0, 2.0], [4.0, 2.0]])
        centered = CenterWeightedCentroid()(event)
        assert centered.particles == pytest.approx(np.array([[-3.0, 0.0], [1.0, 0.0]]))
        assert centered.weights == pytest.approx(event.weights)
        assert event.particles[0, 0] == 0.0

    def test_center_returns_shift(self) -> None:
        array = np.array([[1.0, 1.0, 1.0], [1.0, 3.0, -1.0]])
        centered, center = center_event(array, return_center=True)
        assert center == pytest.approx([2.0, 0.0])
        assert centered[:, 1:].sum(axis=0) == pytest.approx([0.0, 0.0])

    def test_rotate_aligns_principal_axis(self) -> None:
        event = Event(np.ones(3), [[-1.0, 0.0], [0.0, 0.0], [1.0, 0.0]])
        rotated = RotatePrincipalAxis()(event)
        assert rotated.particles[:, 0] == pytest.approx(np.zeros(3), abs=1e-12)
        assert np.abs(rotated.particles[:, 1]) == pytest.approx([1.0, 0.0, 1.0])

    def test_rotate_needs_two_dimensions(self) -> None:
        with pytest.raises(ValueError):
            RotatePrincipalAxis()(Event(np.ones(2), np.zeros((2, 3))))

    def test_flip(self) -> None:
        event = Event([1.0, 5.0], [[1.0, 1.0], [-2.0, -0.5]])
        flipped = FlipHardestParticle()(event)
        assert flipped.particles == pytest.approx(np.array([[-1.0, -1.0], [2.0, 0.5]]))
        assert event.particles[1, 0] == -2.0

    def test_wrap_phi(self) -> None:
        wrapped = WrapPhi()(Event([1.0], [[0.0, 2*np.pi + 0.5]]))
        assert wrapped.particles[0, 1] == pytest.approx(0.5)

    def test_wrap_phi_needs_azimuth(self) -> None:
        with pytest.raises(ValueError):
            WrapPhi()(Event([1.0, 2.0], [0.0, 1.0]))

    def test_weight_cutoff(self) -> None:
        event = Event([0.1, 1.0, 0.5], [[0.0, 0.0], [1.0, 1.0], [2.0, 2.0]])
        cut = WeightCutoff(0.2)(event)
        assert cut.weights == pytest.approx([1.0, 0.5])
        assert cut.particles == pytest.approx(np.array([[1.0, 1.0], [2.0, 2.0]]))
        assert "0.2" in WeightCutoff(0.2).description()

    def test_cutoff_can_empty_an_event(self) -> None:
        cut = WeightCutoff(1.0)(Event([0.5], [[0.0, 0.0]]))
        assert len(cut) == 0

    def test_empty_event_passes_through(self) -> None:
        empty = Event(np.zeros(0), np.zeros((0, 2)))
        assert len(CenterWeightedCentroid()(empty)) == 0

    def test_compose_applies_in_order(self) -> None:
        calls = []

        def first(event):
            calls.append("first")
            return event

        def second(event):
            calls.append("second")
            return event

        composed = compose(first, second)
        composed(Event([1.0], [0.0]))
        assert calls == ["first", "second"]
        assert composed.description() == "first -> second"
        assert Compose([]).description() == "Identity"

    def test_as_preprocessor(self) -> None:
        assert isinstance(as_preprocessor(CenterWeightedCentroid), CenterWeightedCentroid)
        with pytest.raises(TypeError):
            as_preprocessor(5)


class TestLoadEvents:
    @pytest.fixture
    def jet_file(self, tmp_path):
        jets = np.zeros((4, 5, 3))
        for k in range(4):
            # k + 2 particles, the rest is zero padding
            jets[k, :k + 2, 0] = np.arange(1, k + 3)
            jets[k, :k + 2, 1] = 0.1 * k
            jets[k, :k + 2, 2] = 4.0
        path = tmp_path / "jets.h5"
        with h5py.File(path, "w") as file:
            file.create_dataset("jet1_PFCands", data=jets)
            file.create_dataset("flat", data=jets.reshape(4, -1))
        return str(path)

    def test_strips_padding(self, jet_file) -> None:
        events = load_events(jet_file)
        assert [len(event) for event in events] == [2, 3, 4, 5]
        assert events[1][:, 0] == pytest.approx([1.0, 2.0, 3.0])
        assert events[0][0, PHI_I] == pytest.approx(4.0 - 2*np.pi)

    def test_keeps_requested_order(self, jet_file) -> None:
        with h5py.File(jet_file, "r") as file:
            events = load_events(file, indices=[3, 0, 2])
        assert [len(event) for event in events] == [5, 2, 4]

    def test_flat_layout(self, jet_file) -> None:
        events = load_events(jet_file, key="flat", indices=[1])
        assert events[0].shape == (3, 3)

    def test_normalize_event(self) -> None:
        event = normalize_event(np.array([1.0, 0.0, -4.0, 0.0, 0.0, 0.0]))
        assert event.shape == (1, 3)
        assert event[0, PHI_I] == pytest.approx(2*np.pi - 4.0)
