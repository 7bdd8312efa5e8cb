import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Union
import numpy as np

from amazing_emd.config import EMDConfig
from amazing_emd.distance import PairwiseDistance, as_distance
from amazing_emd.events import Event, as_event
from amazing_emd.network_simplex import EPSILON, NetworkSimplex
from amazing_emd.preprocess import Preprocessor, as_preprocessor
from amazing_emd.status import EMDStatus, ExtraParticle, check_emd_status

__all__ = ("EMD", "EMDResult", "TransportationProblem", "build_transportation_problem", "emd")

logger = logging.getLogger(__name__)


@dataclass
class TransportationProblem:
    """
    Bipartite flow network between two events

    Node k < n0 supplies weights0[k], node n0 + l demands weights1[l]. Arcs
    run from every supply node to every demand node in row-major order, so
    the flows reshape to an (n0, n1) matrix. n0 and n1 include the extra
    particle if there is one.
    """
    supplies: np.ndarray
    sources: np.ndarray
    targets: np.ndarray
    costs: np.ndarray
    n0: int
    n1: int
    extra: ExtraParticle

    def flow_matrix(self, flows: np.ndarray) -> np.ndarray:
        return flows.reshape(self.n0, self.n1)


def build_transportation_problem(
    weights0: np.ndarray,
    weights1: np.ndarray,
    costs: np.ndarray,
    extra: ExtraParticle = ExtraParticle.Neither,
    extra_cost: float = 1.0,
) -> TransportationProblem:
    weights0 = np.asarray(weights0, dtype=np.float64)
    weights1 = np.asarray(weights1, dtype=np.float64)
    costs = np.asarray(costs, dtype=np.float64)

    weightdiff = weights1.sum() - weights0.sum()
    if extra == ExtraParticle.Zero:
        weights0 = np.append(weights0, weightdiff)
        costs = np.vstack([costs, np.full((1, costs.shape[1]), extra_cost)])
    elif extra == ExtraParticle.One:
        weights1 = np.append(weights1, -weightdiff)
        costs = np.hstack([costs, np.full((costs.shape[0], 1), extra_cost)])

    n0, n1 = len(weights0), len(weights1)
    return TransportationProblem(
        supplies=np.concatenate([weights0, -weights1]),
        sources=np.repeat(np.arange(n0), n1),
        targets=n0 + np.tile(np.arange(n1), n0),
        costs=costs.reshape(-1),
        n0=n0,
        n1=n1,
        extra=extra,
    )


@dataclass
class EMDResult:
    status: EMDStatus
    distance: float = math.nan
    flows: Optional[np.ndarray] = None
    duration: Optional[float] = None
    extra: ExtraParticle = ExtraParticle.Neither
    n_iter: int = 0

    @property
    def success(self) -> bool:
        return self.status == EMDStatus.Success


class EMD:
    """
    Earth mover's distance between two events

    The ground distance between particles i and j enters as (d_ij/R)**beta.
    Unless norm is set, events of different total weight get an extra
    particle at distance extra_cost from everything, see EMDConfig.

    compute() always returns an EMDResult, calling the object returns the
    distance and raises EMDStatusError on failure if throw_on_error is set.
    """

    def __init__(
        self,
        distance: Union[str, PairwiseDistance, Any] = "euclidean",
        config: Optional[EMDConfig] = None,
        preprocessors: Sequence[Any] = (),
        **kwargs: Any,
    ) -> None:
        config = config or EMDConfig()
        if kwargs:
            config = config.replace(**kwargs)
        self.config = config
        self.distance = as_distance(distance)
        self.preprocessors: list[Preprocessor] = [as_preprocessor(p) for p in preprocessors]
        self.solver = NetworkSimplex(
            n_iter_max=config.n_iter_max,
            epsilon_large_factor=config.epsilon_large_factor,
            epsilon_small_factor=config.epsilon_small_factor,
        )
        self._result = EMDResult(EMDStatus.Empty)

    def preprocess(self, preprocessor: Any) -> "EMD":
        self.preprocessors.append(as_preprocessor(preprocessor))
        return self

    def copy(self) -> "EMD":
        """
        Same configuration with a solver of its own
        """
        return EMD(self.distance, self.config, self.preprocessors)

    def description(self) -> str:
        config = self.config
        lines = [
            "EMD",
            f"  {self.distance.description()}",
            f"  R - {config.R}",
            f"  beta - {config.beta}",
            f"  norm - {config.norm}",
            f"  extra_particle_policy - {'auto' if config.extra_particle_policy is None else config.extra_particle_policy.name}",
            f"  extra_cost - {config.extra_cost}",
        ]
        for preprocessor in self.preprocessors:
            lines.append(f"  preprocessor - {preprocessor.description()}")
        return "\n".join(lines) + "\n\n" + self.solver.description()

    def apply_preprocessors(self, event: Any) -> Event:
        event = as_event(event)
        for preprocessor in self.preprocessors:
            event = preprocessor(event)
        return event

    def ground_dists(self, event0: Event, event1: Event) -> np.ndarray:
        """
        Plain ground distances between the particles of two events
        """
        return self.distance.pairwise(event0.particles, event1.particles)

    def compute(self, event0: Any, event1: Any, dists: Optional[np.ndarray] = None, preprocessed: bool = False) -> EMDResult:
        config = self.config
        t0 = time.time() if config.do_timing else None

        if not preprocessed:
            event0, event1 = self.apply_preprocessors(event0), self.apply_preprocessors(event1)
        else:
            event0, event1 = as_event(event0), as_event(event1)

        result = self._compute(event0, event1, dists)
        if t0 is not None:
            result.duration = time.time() - t0
        self._result = result
        return result

    def _compute(self, event0: Event, event1: Event, dists: Optional[np.ndarray]) -> EMDResult:
        config = self.config
        if len(event0) == 0 or len(event1) == 0:
            return EMDResult(EMDStatus.Empty)

        weights0, weights1 = event0.weights, event1.weights
        if config.norm:
            total0, total1 = weights0.sum(), weights1.sum()
            if total0 <= 0 or total1 <= 0:
                return EMDResult(EMDStatus.Empty)
            weights0, weights1 = weights0 / total0, weights1 / total1

        if dists is None:
            dists = self.ground_dists(event0, event1)
        else:
            dists = np.asarray(dists, dtype=np.float64)
            if dists.shape != (len(event0), len(event1)):
                raise ValueError(f"expected ground distances of shape {(len(event0), len(event1))}, got {dists.shape}")
        if not np.all(np.isfinite(dists)) or np.any(dists < 0):
            raise ValueError("ground distances have to be finite and non-negative")

        costs = dists / config.R
        if config.beta != 1:
            costs = costs**config.beta

        extra = self._extra_particle(weights0, weights1)
        if extra is None:
            return EMDResult(EMDStatus.SupplyMismatch)

        problem = build_transportation_problem(weights0, weights1, costs, extra, config.extra_cost)
        flow_result = self.solver.solve(problem.supplies, problem.sources, problem.targets, problem.costs)
        if not flow_result.success:
            logger.debug("EMD computation failed with %s", flow_result.status.name)
            return EMDResult(flow_result.status, extra=extra, n_iter=flow_result.n_iter)

        return EMDResult(
            EMDStatus.Success,
            distance=flow_result.cost,
            flows=problem.flow_matrix(flow_result.flows),
            extra=extra,
            n_iter=flow_result.n_iter,
        )

    def _extra_particle(self, weights0: np.ndarray, weights1: np.ndarray) -> Optional[ExtraParticle]:
        """
        Which event gets the extra particle, None if the weights cannot be balanced
        """
        total0, total1 = float(weights0.sum()), float(weights1.sum())
        tolerance = self.config.epsilon_large_factor * EPSILON * max(total0, total1, 1e-300)
        if abs(total0 - total1) <= tolerance:
            return ExtraParticle.Neither

        needed = ExtraParticle.Zero if total0 < total1 else ExtraParticle.One
        policy = self.config.extra_particle_policy
        if policy is None or policy == needed:
            return needed
        return None

    def __call__(self, event0: Any, event1: Any, dists: Optional[np.ndarray] = None) -> float:
        result = self.compute(event0, event1, dists)
        if self.config.throw_on_error:
            check_emd_status(result.status)
        return result.distance

    def status(self) -> EMDStatus:
        return self._result.status

    def emd(self) -> float:
        return self._result.distance

    def flows(self) -> Optional[np.ndarray]:
        return self._result.flows

    def duration(self) -> Optional[float]:
        return self._result.duration

    def extra(self) -> ExtraParticle:
        return self._result.extra

    def n_iter(self) -> int:
        return self._result.n_iter


def emd(
    ev0: Any,
    ev1: Any,
    R: float = 1.0,
    beta: float = 1.0,
    norm: bool = False,
    distance: Union[str, PairwiseDistance, Any] = "euclidean",
    return_flow: bool = False,
    dists: Optional[np.ndarray] = None,
    **kwargs: Any,
):
    """
    EMD between two events given as [weight, coords...] arrays

    Returns the distance, or (distance, flow matrix) with return_flow. The
    flow matrix has an extra last row (column) if ev0 (ev1) needed an extra
    particle.
    """
    emd_obj = EMD(distance, R=R, beta=beta, norm=norm, **kwargs)
    distance_value = emd_obj(ev0, ev1, dists)
    if return_flow:
        return distance_value, emd_obj.flows()
    return distance_value
