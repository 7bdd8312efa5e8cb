from typing import Optional, Sequence, Tuple, Union
import numpy as np
import h5py

# Column layout of jet arrays
PT_I, ETA_I, PHI_I = 0, 1, 2


def normalize_event(event: np.ndarray, n_columns: int = 3) -> np.ndarray:
    """
    Drops zero padded particles and wraps phi into [-pi, pi)
    """
    if event.ndim != 2:
        event = event.reshape(-1, n_columns)

    # Remove particles without momentum
    event = event[event[:, PT_I] > 0]
    if event.shape[1] > PHI_I:
        event = wrap_phi(event)
    return event


def wrap_phi(event: np.ndarray) -> np.ndarray:
    event = event.copy()
    event[:, PHI_I] = np.mod(event[:, PHI_I] + np.pi, 2*np.pi) - np.pi
    return event


def cutoff_event(event: np.ndarray, min_weight: float) -> np.ndarray:
    return event[event[:, PT_I] > min_weight]


def center_event(event: np.ndarray, return_center: bool = False) -> Union[np.ndarray, Tuple[np.ndarray, np.ndarray]]:
    """
    Moves the weighted centroid of all coordinate columns to the origin
    """
    event = event.copy()
    weights = event[:, PT_I]
    if weights.sum() > 0:
        center = np.average(event[:, 1:], axis=0, weights=weights)
    else:
        center = np.zeros(event.shape[1] - 1)
    event[:, 1:] -= center
    if return_center:
        return event, center
    return event


def rotate_event(event: np.ndarray, return_theta: bool = False) -> Union[np.ndarray, Tuple[np.ndarray, float]]:
    """
    Rotates a 2D event so that its principal axis lies along the phi axis
    """
    if event.shape[0] < 2:
        return (event, 0.0) if return_theta else event

    coords = np.vstack([event[:, ETA_I], event[:, PHI_I]])
    cov = np.cov(coords, aweights=event[:, PT_I])
    evals, evecs = np.linalg.eigh(cov)

    e_max = np.argmax(evals)
    eta_v1, phi_v1 = evecs[:, e_max]  # Eigenvector with largest eigenvalue

    theta = np.arctan2(eta_v1, phi_v1)

    rotation_mat = np.array(
        [[np.cos(theta), -np.sin(theta)], [np.sin(theta), np.cos(theta)]]
    )

    eta_transformed, phi_transformed = rotation_mat @ coords

    rotated_event = np.column_stack([
        event[:, PT_I],
        eta_transformed,
        phi_transformed
    ])

    if return_theta:
        return rotated_event, float(theta)
    return rotated_event


def flip_event(event: np.ndarray, return_flip: bool = False):
    """
    Mirrors a 2D event so that its hardest particle has non-negative coordinates
    """
    event = event.copy()
    argmax_pt = np.argmax(event[:, PT_I])
    ptmax_eta, ptmax_phi = event[argmax_pt, ETA_I], event[argmax_pt, PHI_I]
    if ptmax_eta < 0:
        event[:, ETA_I] *= -1.0
    if ptmax_phi < 0:
        event[:, PHI_I] *= -1.0

    if return_flip:
        return event, (ptmax_eta < 0, ptmax_phi < 0)
    return event


def load_events(
    file: Union[h5py.File, str],
    key: str = "jet1_PFCands",
    indices: Optional[Sequence[int]] = None,
    n_columns: int = 3,
) -> list[np.ndarray]:
    """
    Reads zero padded events of shape (n_events, n_particles*n_columns)
    or (n_events, n_particles, n_columns) and strips the padding
    """
    if isinstance(file, str):
        with h5py.File(file, "r") as h5_file:
            return load_events(h5_file, key, indices, n_columns)

    dataset = file[key]
    if indices is None:
        data = dataset[:]
    else:
        # h5py wants increasing indices
        order = np.argsort(indices)
        data = np.empty((len(indices), ) + dataset.shape[1:], dtype=dataset.dtype)
        data[order] = dataset[np.asarray(indices)[order].tolist()]
    return [normalize_event(np.asarray(event, dtype=np.float64), n_columns) for event in data]
