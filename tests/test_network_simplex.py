"""
Tests for the network simplex min cost flow solver
"""
from itertools import permutations

import numpy as np
import pytest

from amazing_emd.network_simplex import NetworkSimplex
from amazing_emd.status import EMDStatus


def transportation(weights0, weights1, costs):
    n0, n1 = len(weights0), len(weights1)
    supplies = np.concatenate([weights0, -np.asarray(weights1, dtype=float)])
    sources = np.repeat(np.arange(n0), n1)
    targets = n0 + np.tile(np.arange(n1), n0)
    return supplies, sources, targets, np.asarray(costs, dtype=float).reshape(-1)


class TestTransportation:
    def test_single_arc(self) -> None:
        result = NetworkSimplex().solve(*transportation([1.0], [1.0], [[2.0]]))
        assert result.status == EMDStatus.Success
        assert result.cost == pytest.approx(2.0)
        assert result.flows == pytest.approx([1.0])

    def test_two_by_two_prefers_cheap_diagonal(self) -> None:
        costs = [[0.1, 0.9], [0.9, 0.1]]
        result = NetworkSimplex().solve(*transportation([1.0, 1.0], [1.0, 1.0], costs))
        assert result.status == EMDStatus.Success
        assert result.cost == pytest.approx(0.2)
        assert result.flows == pytest.approx([1.0, 0.0, 0.0, 1.0])

    def test_assignment_matches_brute_force(self, rng) -> None:
        """Unit weights reduce to an assignment problem"""
        n = 5
        costs = rng.uniform(0, 10, size=(n, n))
        best = min(sum(costs[i, p[i]] for i in range(n)) for p in permutations(range(n)))

        result = NetworkSimplex().solve(*transportation(np.ones(n), np.ones(n), costs))
        assert result.status == EMDStatus.Success
        assert result.cost == pytest.approx(best)

    def test_flows_conserve_supplies(self, rng) -> None:
        n0, n1 = 7, 9
        weights0 = rng.uniform(0, 1, n0)
        weights1 = rng.uniform(0, 1, n1)
        weights1 *= weights0.sum() / weights1.sum()
        costs = rng.uniform(0, 5, size=(n0, n1))

        result = NetworkSimplex().solve(*transportation(weights0, weights1, costs))
        assert result.status == EMDStatus.Success
        flows = result.flows.reshape(n0, n1)
        assert np.all(flows >= 0)
        assert flows.sum(axis=1) == pytest.approx(weights0)
        assert flows.sum(axis=0) == pytest.approx(weights1)
        assert result.cost == pytest.approx(float((flows * costs).sum()))

    def test_potentials_certify_optimality(self, rng) -> None:
        """Reduced costs are non-negative on every arc and zero where flow goes"""
        n0, n1 = 6, 6
        supplies, sources, targets, costs = transportation(np.ones(n0), np.ones(n1), rng.uniform(0, 3, size=(n0, n1)))
        result = NetworkSimplex().solve(supplies, sources, targets, costs)
        pi = result.potentials
        reduced = costs + pi[sources] - pi[targets]
        assert np.all(reduced >= -1e-9)
        assert np.all(np.abs(reduced[result.flows > 1e-12]) < 1e-9)

    def test_solver_is_reusable(self, rng) -> None:
        solver = NetworkSimplex()
        problem = transportation(np.ones(4), np.ones(4), rng.uniform(0, 1, size=(4, 4)))
        first = solver.solve(*problem)
        solver.solve(*transportation([1.0], [1.0], [[5.0]]))
        second = solver.solve(*problem)
        assert first.cost == pytest.approx(second.cost)


class TestGeneralNetworks:
    def test_capacities_force_expensive_path(self) -> None:
        # 0 -> 1 -> 3 is cheapest but 0 -> 1 only takes one unit
        supplies = [2.0, 0.0, 0.0, -2.0]
        sources = [0, 0, 1, 2, 1]
        targets = [1, 2, 3, 3, 2]
        costs = [1.0, 2.0, 1.0, 1.0, 0.0]
        capacities = [1.0, 2.0, 2.0, 2.0, 1.0]

        result = NetworkSimplex().solve(supplies, sources, targets, costs, capacities)
        assert result.status == EMDStatus.Success
        assert result.cost == pytest.approx(5.0)
        assert result.flows[0] == pytest.approx(1.0)
        assert result.flows[1] == pytest.approx(1.0)

    def test_entering_arc_saturates(self) -> None:
        # The cheap arc fills up and goes to its upper bound
        supplies = [3.0, -3.0]
        sources = [0, 0]
        targets = [1, 1]
        costs = [1.0, 4.0]
        capacities = [2.0, 10.0]

        result = NetworkSimplex().solve(supplies, sources, targets, costs, capacities)
        assert result.status == EMDStatus.Success
        assert result.flows == pytest.approx([2.0, 1.0])
        assert result.cost == pytest.approx(6.0)

    def test_zero_supplies(self) -> None:
        result = NetworkSimplex().solve([0.0, 0.0], [0], [1], [1.0])
        assert result.status == EMDStatus.Success
        assert result.cost == 0.0

    def test_no_nodes(self) -> None:
        result = NetworkSimplex().solve([], [], [], [])
        assert result.status == EMDStatus.Success
        assert len(result.flows) == 0


class TestStatuses:
    def test_supply_mismatch(self) -> None:
        result = NetworkSimplex().solve(*transportation([1.0], [2.0], [[1.0]]))
        assert result.status == EMDStatus.SupplyMismatch
        assert np.isnan(result.cost)

    def test_tiny_imbalance_is_tolerated(self) -> None:
        result = NetworkSimplex().solve(*transportation([1.0, 1e-17], [1.0], [[1.0], [1.0]]))
        assert result.status == EMDStatus.Success

    def test_imbalance_within_larger_tolerance(self) -> None:
        problem = transportation([1.0], [1.0 + 1e-9], [[1.0]])
        assert NetworkSimplex().solve(*problem).status == EMDStatus.SupplyMismatch
        assert NetworkSimplex(epsilon_large_factor=1e8).solve(*problem).status == EMDStatus.Success

    def test_infeasible_without_arcs(self) -> None:
        result = NetworkSimplex().solve([1.0, -1.0], [], [], [])
        assert result.status == EMDStatus.Infeasible

    def test_infeasible_with_small_capacity(self) -> None:
        result = NetworkSimplex().solve([1.0, -1.0], [0], [1], [1.0], [0.5])
        assert result.status == EMDStatus.Infeasible

    def test_unbounded_negative_cycle(self) -> None:
        result = NetworkSimplex().solve([0.0, 0.0], [0, 1], [1, 0], [-1.0, -1.0])
        assert result.status == EMDStatus.Unbounded

    def test_max_iter_reached(self, rng) -> None:
        n = 6
        problem = transportation(np.ones(n), np.ones(n), rng.uniform(0, 1, size=(n, n)))
        result = NetworkSimplex(n_iter_max=1).solve(*problem)
        assert result.status == EMDStatus.MaxIterReached
        assert result.n_iter == 1
        assert np.isnan(result.cost)

    def test_iteration_count_reported(self, rng) -> None:
        problem = transportation(np.ones(5), np.ones(5), rng.uniform(0, 1, size=(5, 5)))
        result = NetworkSimplex().solve(*problem)
        assert result.status == EMDStatus.Success
        assert result.n_iter > 0


class TestInputValidation:
    def test_length_mismatch(self) -> None:
        with pytest.raises(ValueError):
            NetworkSimplex().solve([1.0, -1.0], [0, 0], [1], [1.0])

    def test_unknown_node(self) -> None:
        with pytest.raises(ValueError):
            NetworkSimplex().solve([1.0, -1.0], [0], [2], [1.0])

    def test_negative_capacity(self) -> None:
        with pytest.raises(ValueError):
            NetworkSimplex().solve([1.0, -1.0], [0], [1], [1.0], [-1.0])

    def test_non_finite_cost(self) -> None:
        with pytest.raises(ValueError):
            NetworkSimplex().solve([1.0, -1.0], [0], [1], [np.nan])

    def test_invalid_n_iter_max(self) -> None:
        with pytest.raises(ValueError):
            NetworkSimplex(n_iter_max=0)
