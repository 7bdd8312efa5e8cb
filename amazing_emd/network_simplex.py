"""
Primal network simplex for min cost flow problems

The spanning tree of the basis is kept in flat integer-indexed arrays
(parent, pred, pred_dir, depth plus a set of children per node). An
artificial root is connected to every node through an uncapacitated big-M
arc so that the initial basis is always feasible. Entering arcs are chosen
with a block search over vectorised reduced costs and the leaving arc is the
last blocking arc on the cycle, which keeps the basis strongly feasible and
rules out cycling.
"""
import logging
import math
from dataclasses import dataclass
from typing import Optional
import numpy as np

from amazing_emd.status import EMDStatus

__all__ = ("NetworkSimplex", "FlowResult")

logger = logging.getLogger(__name__)

STATE_UPPER, STATE_TREE, STATE_LOWER = -1, 0, 1
DIR_UP, DIR_DOWN = 1, -1

BLOCK_SIZE_FACTOR = 1.0
MIN_BLOCK_SIZE = 10

EPSILON = float(np.finfo(np.float64).eps)


@dataclass
class FlowResult:
    status: EMDStatus
    flows: np.ndarray
    potentials: np.ndarray
    cost: float
    n_iter: int

    @property
    def success(self) -> bool:
        return self.status == EMDStatus.Success


class NetworkSimplex:
    """
    Reusable min cost flow solver

    An instance holds the state of one problem at a time, so concurrent
    solves need one instance each.
    """

    def __init__(
        self,
        n_iter_max: int = 100000,
        epsilon_large_factor: float = 1000.0,
        epsilon_small_factor: float = 1.0,
    ) -> None:
        if n_iter_max <= 0:
            raise ValueError(f"n_iter_max must be positive, got {n_iter_max}")
        self.n_iter_max = int(n_iter_max)
        self.epsilon_large_factor = float(epsilon_large_factor)
        self.epsilon_small_factor = float(epsilon_small_factor)

    def description(self) -> str:
        return (
            f"NetworkSimplex\n"
            f"  n_iter_max - {self.n_iter_max}\n"
            f"  epsilon_large_factor - {self.epsilon_large_factor}\n"
            f"  epsilon_small_factor - {self.epsilon_small_factor}"
        )

    def solve(
        self,
        supplies: np.ndarray,
        sources: np.ndarray,
        targets: np.ndarray,
        costs: np.ndarray,
        capacities: Optional[np.ndarray] = None,
    ) -> FlowResult:
        """
        Finds a minimum cost flow

        supplies[u] > 0 is produced at node u, supplies[u] < 0 consumed.
        Arc k goes from sources[k] to targets[k], costs costs[k] per unit and
        carries at most capacities[k] (unbounded if capacities is None).
        """
        supplies = np.asarray(supplies, dtype=np.float64).reshape(-1)
        sources = np.asarray(sources, dtype=np.int64).reshape(-1)
        targets = np.asarray(targets, dtype=np.int64).reshape(-1)
        costs = np.asarray(costs, dtype=np.float64).reshape(-1)
        if capacities is None:
            capacities = np.full(len(costs), np.inf)
        else:
            capacities = np.asarray(capacities, dtype=np.float64).reshape(-1)
        self._check_input(supplies, sources, targets, costs, capacities)

        n, m = len(supplies), len(costs)
        scale = float(np.abs(supplies).sum())
        self._eps_large = self.epsilon_large_factor * EPSILON * (scale if scale > 0 else 1.0)

        if abs(float(supplies.sum())) > self._eps_large:
            logger.debug("Supplies sum to %g, tolerance is %g", supplies.sum(), self._eps_large)
            return self._failure(EMDStatus.SupplyMismatch, n, m)

        self._init_tree(supplies, sources, targets, costs, capacities)
        status = self._run()
        return self._result(status, n, m)

    @staticmethod
    def _check_input(supplies, sources, targets, costs, capacities) -> None:
        n = len(supplies)
        if not (len(sources) == len(targets) == len(costs) == len(capacities)):
            raise ValueError("sources, targets, costs and capacities need the same length")
        if len(costs) and (sources.min() < 0 or targets.min() < 0 or sources.max() >= n or targets.max() >= n):
            raise ValueError("arcs have to connect existing nodes")
        if not np.all(np.isfinite(costs)):
            raise ValueError("costs have to be finite")
        if not np.all(np.isfinite(supplies)):
            raise ValueError("supplies have to be finite")
        if np.any(capacities < 0):
            raise ValueError("capacities have to be non-negative")

    def _failure(self, status: EMDStatus, n: int, m: int) -> FlowResult:
        return FlowResult(status, np.zeros(m), np.zeros(n), math.nan, 0)

    def _init_tree(self, supplies, sources, targets, costs, capacities) -> None:
        n, m = len(supplies), len(costs)
        root = n
        self._arc_num = m

        max_cost = float(np.abs(costs).max()) if m else 0.0
        art_cost = (max_cost + 1.0) * (n + 1)
        # Potentials are sums along tree paths of up to n arcs
        self._eps_small = self.epsilon_small_factor * EPSILON * art_cost * (n + 1)

        positive = supplies >= 0
        nodes = np.arange(n)
        self._source = np.concatenate([sources, np.where(positive, nodes, root)])
        self._target = np.concatenate([targets, np.where(positive, root, nodes)])
        self._cost = np.concatenate([costs, np.full(n, art_cost)])
        self._cap = np.concatenate([capacities, np.full(n, np.inf)])
        self._flow = np.concatenate([np.zeros(m), np.abs(supplies)])
        self._state = np.concatenate([
            np.full(m, STATE_LOWER, dtype=np.int8),
            np.full(n, STATE_TREE, dtype=np.int8),
        ])
        self._pi = np.append(np.where(positive, -art_cost, art_cost), 0.0)

        # Scalar lookups in the tree walks are faster on lists
        self._source_list = self._source.tolist()
        self._parent = [root]*n + [-1]
        self._pred = list(range(m, m + n)) + [-1]
        self._pred_dir = [DIR_UP if p else DIR_DOWN for p in positive.tolist()] + [0]
        self._depth = [1]*n + [0]
        self._children = [set() for _ in range(n)] + [set(range(n))]

        search_arc_num = m + n
        self._search_arc_num = search_arc_num
        self._block_size = max(int(math.ceil(BLOCK_SIZE_FACTOR*math.sqrt(search_arc_num))), MIN_BLOCK_SIZE)
        self._next_arc = 0

    def _run(self) -> EMDStatus:
        self._n_iter = 0
        while True:
            in_arc = self._find_entering_arc()
            if in_arc < 0:
                break
            if self._n_iter >= self.n_iter_max:
                logger.warning("Network simplex stopped after %d iterations without converging", self._n_iter)
                return EMDStatus.MaxIterReached
            if not self._pivot(in_arc):
                return EMDStatus.Unbounded
            self._n_iter += 1

        if np.any(np.abs(self._flow[self._arc_num:]) > self._eps_large):
            return EMDStatus.Infeasible
        return EMDStatus.Success

    def _find_entering_arc(self) -> int:
        total = self._search_arc_num
        if not total:
            return -1
        block_size = self._block_size
        start = self._next_arc
        scanned = 0
        while scanned < total:
            end = min(start + block_size, total)
            source = self._source[start:end]
            target = self._target[start:end]
            violation = self._state[start:end] * (self._cost[start:end] + self._pi[source] - self._pi[target])
            k = int(np.argmin(violation))
            scanned += end - start
            if violation[k] < -self._eps_small:
                self._next_arc = end if end < total else 0
                return start + k
            start = end if end < total else 0
        return -1

    def _find_join(self, u: int, v: int) -> int:
        parent, depth = self._parent, self._depth
        while u != v:
            if depth[u] > depth[v]:
                u = parent[u]
            elif depth[v] > depth[u]:
                v = parent[v]
            else:
                u, v = parent[u], parent[v]
        return u

    def _pivot(self, in_arc: int) -> bool:
        """
        Pushes flow around the cycle of in_arc and updates the basis

        Returns False if the cycle can take an unbounded amount of flow.
        """
        parent, pred, pred_dir = self._parent, self._pred, self._pred_dir
        flow, cap, state = self._flow, self._cap, self._state

        source = self._source_list[in_arc]
        target = int(self._target[in_arc])
        in_state = int(state[in_arc])
        if in_state == STATE_LOWER:
            first, second = source, target
        else:
            first, second = target, source
        join = self._find_join(first, second)

        # Leaving arc: strict on the first side, non-strict on the second
        delta = float(cap[in_arc])
        result = 0
        u_out = -1
        out_to_lower = in_state == STATE_UPPER
        u = first
        while u != join:
            e = pred[u]
            if pred_dir[u] == DIR_UP:
                d, to_lower = flow[e], True
            else:
                d, to_lower = cap[e] - flow[e], False
            if d < delta:
                delta, u_out, result, out_to_lower = d, u, 1, to_lower
            u = parent[u]
        u = second
        while u != join:
            e = pred[u]
            if pred_dir[u] == DIR_UP:
                d, to_lower = cap[e] - flow[e], False
            else:
                d, to_lower = flow[e], True
            if d <= delta:
                delta, u_out, result, out_to_lower = d, u, 2, to_lower
            u = parent[u]

        if delta == math.inf:
            return False

        if delta > 0:
            val = in_state * delta
            flow[in_arc] += val
            u = source
            while u != join:
                flow[pred[u]] -= pred_dir[u] * val
                u = parent[u]
            u = target
            while u != join:
                flow[pred[u]] += pred_dir[u] * val
                u = parent[u]

        if result == 0:
            # The entering arc blocks itself and goes to its other bound
            state[in_arc] = -in_state
            flow[in_arc] = 0.0 if out_to_lower else cap[in_arc]
            return True

        out_arc = pred[u_out]
        state[in_arc] = STATE_TREE
        state[out_arc] = STATE_LOWER if out_to_lower else STATE_UPPER
        flow[out_arc] = 0.0 if out_to_lower else cap[out_arc]

        if result == 1:
            u_in, v_in = first, second
        else:
            u_in, v_in = second, first
        self._update_tree(in_arc, u_in, v_in, u_out)
        return True

    def _update_tree(self, in_arc: int, u_in: int, v_in: int, u_out: int) -> None:
        parent, pred, pred_dir = self._parent, self._pred, self._pred_dir
        children, depth = self._children, self._depth
        source_list = self._source_list

        # Reverse the path from u_in up to u_out and hang it below v_in
        new_parent, new_pred = v_in, in_arc
        u = u_in
        while True:
            old_parent, old_pred = parent[u], pred[u]
            children[old_parent].discard(u)
            parent[u] = new_parent
            pred[u] = new_pred
            pred_dir[u] = DIR_UP if source_list[new_pred] == u else DIR_DOWN
            children[new_parent].add(u)
            if u == u_out:
                break
            new_parent, new_pred, u = u, old_pred, old_parent

        pi = self._pi
        if source_list[in_arc] == u_in:
            sigma = pi[v_in] - self._cost[in_arc] - pi[u_in]
        else:
            sigma = pi[v_in] + self._cost[in_arc] - pi[u_in]

        subtree = []
        stack = [u_in]
        while stack:
            w = stack.pop()
            depth[w] = depth[parent[w]] + 1
            subtree.append(w)
            stack.extend(children[w])
        pi[subtree] += sigma

    def _result(self, status: EMDStatus, n: int, m: int) -> FlowResult:
        if status != EMDStatus.Success:
            result = self._failure(status, n, m)
            result.n_iter = self._n_iter
            return result

        # Artificial arcs left in the basis carry no flow and are dropped
        flows = self._flow[:m].copy()
        flows[flows < 0] = 0.0  # roundoff
        cost = float(flows @ self._cost[:m])
        potentials = self._pi[:n] - self._pi[n]
        logger.debug("Network simplex converged after %d iterations, cost %g", self._n_iter, cost)
        return FlowResult(status, flows, potentials, cost, self._n_iter)
