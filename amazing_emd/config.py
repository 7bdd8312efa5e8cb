from dataclasses import dataclass, replace, asdict
from typing import Any, Optional, Union

from amazing_emd.status import ExtraParticle

__all__ = ("EMDConfig", )


@dataclass(frozen=True)
class EMDConfig:
    """
    Parameters of a single EMD computation

    R:
        Scale of the ground distance. Costs are (d/R)**beta, so moving one
        unit of weight across R costs 1
    beta:
        Exponent applied to the scaled ground distance
    norm:
        Divide the weights of each event by its total weight before solving
    extra_particle_policy:
        None picks the lighter event automatically, ExtraParticle.Neither
        forbids unequal weights, Zero/One force the event that may receive
        the extra particle. If the forced event is the heavier one the
        weights cannot be balanced and the status is SupplyMismatch
    extra_cost:
        Cost per unit weight of creating or destroying weight through the
        extra particle
    """
    R: float = 1.0
    beta: float = 1.0
    norm: bool = False
    extra_particle_policy: Optional[ExtraParticle] = None
    extra_cost: float = 1.0
    n_iter_max: int = 100000
    epsilon_large_factor: float = 1000.0
    epsilon_small_factor: float = 1.0
    do_timing: bool = False
    throw_on_error: bool = True

    def __post_init__(self) -> None:
        if not self.R > 0:
            raise ValueError(f"R must be positive, got {self.R}")
        if not self.beta > 0:
            raise ValueError(f"beta must be positive, got {self.beta}")
        if self.extra_cost < 0:
            raise ValueError(f"extra_cost must be non-negative, got {self.extra_cost}")
        if self.n_iter_max <= 0:
            raise ValueError(f"n_iter_max must be positive, got {self.n_iter_max}")
        if not self.epsilon_large_factor > 0 or not self.epsilon_small_factor > 0:
            raise ValueError("epsilon factors must be positive")
        if self.extra_particle_policy is not None:
            # Accept plain ints and names as well
            object.__setattr__(self, "extra_particle_policy", _as_extra(self.extra_particle_policy))

    def replace(self, **changes: Any) -> "EMDConfig":
        return replace(self, **changes)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _as_extra(value: Union[ExtraParticle, int, str]) -> ExtraParticle:
    if isinstance(value, str):
        try:
            return ExtraParticle[value.capitalize()]
        except KeyError:
            raise ValueError(f"Unknown extra particle policy {value!r}") from None
    return ExtraParticle(value)
