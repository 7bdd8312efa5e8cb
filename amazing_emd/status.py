from enum import Enum, IntEnum
from typing import Optional

__all__ = (
    "EMDStatus",
    "ExtraParticle",
    "EMDPairsStorage",
    "EMDStatusError",
    "check_emd_status",
)


class EMDStatus(IntEnum):
    Success = 0
    Empty = 1
    SupplyMismatch = 2
    Unbounded = 3
    MaxIterReached = 4
    Infeasible = 5


class ExtraParticle(IntEnum):
    Neither = -1
    Zero = 0
    One = 1


class EMDPairsStorage(Enum):
    Full = "full"
    FullSymmetric = "full_symmetric"
    FlattenedSymmetric = "flattened_symmetric"
    External = "external"


_STATUS_MESSAGES = {
    EMDStatus.Empty: "EMDStatus - Empty",
    EMDStatus.SupplyMismatch: "EMDStatus - SupplyMismatch, consider increasing epsilon_large_factor",
    EMDStatus.Unbounded: "EMDStatus - Unbounded",
    EMDStatus.MaxIterReached: "EMDStatus - MaxIterReached, consider increasing n_iter_max",
    EMDStatus.Infeasible: "EMDStatus - Infeasible",
}


class EMDStatusError(RuntimeError):
    def __init__(self, status: EMDStatus, pair: Optional[tuple[int, int]] = None) -> None:
        self.status = EMDStatus(status)
        self.pair = pair
        message = _STATUS_MESSAGES.get(self.status, "EMDStatus - Unknown")
        if pair is not None:
            message += f" (pair {pair[0]}, {pair[1]})"
        super().__init__(message)


def check_emd_status(status: EMDStatus, pair: Optional[tuple[int, int]] = None) -> None:
    """
    Raises an EMDStatusError for anything other than Success
    """
    if status != EMDStatus.Success:
        raise EMDStatusError(status, pair)
