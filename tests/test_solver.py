from collections import deque

import numpy as np
import pytest

from conftest import CIRCUIT_4X4
from snake_solver import (
    Direction,
    GridCellStore,
    MalformedCircuitError,
    PathAlgorithm,
    Solver,
)
from snake_utils import INF


def _assert_adjacent_chain(path):
    for a, b in zip(path, path[1:]):
        assert Direction.between(a, b) is not None, f"{a} → {b} 不相鄰"


def _reference_distance(game, destination):
    """純 Python BFS，作為最短距離的對照"""
    blocked = set(list(game.snake)[1:])
    start = game.snake[-1]
    dist = {start: 0}
    queue = deque([start])
    while queue:
        r, c = queue.popleft()
        for dr, dc in ((-1, 0), (1, 0), (0, -1), (0, 1)):
            nxt = (r + dr, c + dc)
            if (0 <= nxt[0] < game.height and 0 <= nxt[1] < game.width
                    and nxt not in blocked and nxt not in dist):
                dist[nxt] = dist[(r, c)] + 1
                queue.append(nxt)
    return dist.get(destination)


# =============================================================================
# Grid Cell Store
# =============================================================================


class TestGridCellStore:

    def test_fresh_cells(self):
        store = GridCellStore(3, 2)
        cell = store.get((1, 2))
        assert cell.parent is None
        assert cell.visited is False
        assert cell.distance == INF
        assert cell.circuit_idx == -1

    def test_set_and_get(self):
        store = GridCellStore(3, 3)
        store.set((1, 1), parent=(0, 1), visited=True, distance=4, circuit_idx=7)
        assert store.get((1, 1)) == ((0, 1), True, 4, 7)

        store.set((1, 1), parent=None)
        assert store.get((1, 1)).parent is None

    def test_reset_for_search_keeps_circuit(self):
        store = GridCellStore(2, 2)
        store.set((0, 1), parent=(0, 0), distance=1, circuit_idx=3, visited=True)
        store.reset_for_search()

        cell = store.get((0, 1))
        assert cell.parent is None
        assert cell.distance == INF
        assert cell.circuit_idx == 3
        assert cell.visited is True

    def test_index_round_trip(self):
        store = GridCellStore(5, 3)
        assert store.index((2, 4)) == 14
        assert store.coord(14) == (2, 4)

    def test_out_of_bounds_raises(self):
        store = GridCellStore(4, 4)
        with pytest.raises(IndexError):
            store.index((0, 4))
        with pytest.raises(IndexError):
            store.get((-1, 0))


# =============================================================================
# Shortest-Path Finder
# =============================================================================


class TestShortestPath:

    def test_open_board_four_steps(self, make_game, empty_store, path_alg):
        game = make_game(4, 4, [(1, 1)], path_alg=path_alg)
        solver = Solver(game, empty_store(4, 4))

        path = solver.find_shortest_path((3, 3))

        assert len(path) - 1 == 4
        assert path[0] == (1, 1)
        assert path[-1] == (3, 3)
        _assert_adjacent_chain(path)

    def test_bfs_and_astar_agree_with_reference(self, make_game, empty_store):
        snake = [(0, 2), (1, 2), (2, 2), (3, 2), (4, 2), (4, 3)]
        lengths = {}
        for alg in ("bfs", "astar"):
            game = make_game(6, 6, snake, path_alg=alg)
            solver = Solver(game, empty_store(6, 6))
            lengths[alg] = {}
            for r in range(6):
                for c in range(6):
                    if (r, c) in snake[1:]:
                        continue
                    path = solver.find_shortest_path((r, c))
                    lengths[alg][(r, c)] = len(path) - 1 if path else None
                    if path:
                        _assert_adjacent_chain(path)
                        assert not any(p in snake[1:-1] for p in path)

        reference = make_game(6, 6, snake)
        for coord, length in lengths["bfs"].items():
            assert length == _reference_distance(reference, coord)
            assert lengths["astar"][coord] == length

    def test_no_path_is_empty(self, make_game, empty_store, path_alg):
        snake = [(2, 0), (1, 0), (1, 1), (0, 1), (0, 2)]
        game = make_game(4, 4, snake, path_alg=path_alg)
        solver = Solver(game, empty_store(4, 4))

        assert solver.find_shortest_path((0, 0)) == []

    def test_search_state_reset_between_searches(self, make_game, empty_store):
        game = make_game(4, 4, [(0, 0)])
        solver = Solver(game, empty_store(4, 4))

        solver.find_shortest_path((3, 3))
        assert solver.store.get((3, 3)).distance == 6

        path = solver.find_shortest_path((0, 1))

        assert path == [(0, 0), (0, 1)]
        # 第二次搜尋在到達 (3, 3) 之前就結束了
        assert solver.store.get((3, 3)).distance == INF
        assert solver.store.get((3, 3)).parent is None

    def test_traverse_path_after_search(self, make_game, empty_store, path_alg):
        game = make_game(5, 5, [(4, 4), (4, 3), (4, 2)], path_alg=path_alg)
        solver = Solver(game, empty_store(5, 5))
        solver.find_shortest_path((0, 0))

        path = solver.traverse_path((0, 0))
        assert path[0] == (4, 2)
        assert path[-1] == (0, 0)
        _assert_adjacent_chain(path)


# =============================================================================
# Path Extender
# =============================================================================


class TestLongestPath:

    def test_extended_path_properties(self, make_game, empty_store, path_alg):
        game = make_game(6, 6, [(0, 0)], path_alg=path_alg)
        solver = Solver(game, empty_store(6, 6))

        shortest = solver.find_shortest_path((3, 3))
        longest = solver.find_longest_path((3, 3))

        assert len(longest) >= len(shortest)
        assert len(set(longest)) == len(longest)
        assert longest[0] == (0, 0)
        assert longest[-1] == (3, 3)
        _assert_adjacent_chain(longest)

    def test_avoids_body(self, make_game, empty_store):
        snake = [(5, 5), (4, 5), (3, 5), (3, 4), (3, 3)]
        game = make_game(6, 6, snake)
        solver = Solver(game, empty_store(6, 6))

        longest = solver.find_longest_path((5, 5))

        assert longest[0] == (3, 3)
        assert longest[-1] == (5, 5)
        assert not any(p in snake[1:-1] for p in longest)
        assert len(set(longest)) == len(longest)
        _assert_adjacent_chain(longest)

    def test_unreachable_is_empty(self, make_game, empty_store):
        snake = [(2, 0), (1, 0), (1, 1), (0, 1), (0, 2)]
        solver = Solver(make_game(4, 4, snake), empty_store(4, 4))
        assert solver.find_longest_path((0, 0)) == []


# =============================================================================
# Circuit Builder
# =============================================================================


class TestCircuit:

    def test_four_by_four_single_cell(self, circuit_store):
        order = [circuit_store.coord(i) for i in np.argsort(circuit_store.circuit_idx)]
        assert order == CIRCUIT_4X4
        assert circuit_store.get((0, 0)).circuit_idx == 0
        assert circuit_store.circuit_complete()

    def test_consecutive_indices_are_adjacent(self, circuit_store):
        order = [circuit_store.coord(i) for i in np.argsort(circuit_store.circuit_idx)]
        _assert_adjacent_chain(order + order[:1])

    def test_same_circuit_for_both_algorithms(self, make_game):
        bfs = Solver(make_game(4, 4, [(0, 0)], path_alg="bfs")).store
        astar = Solver(make_game(4, 4, [(0, 0)], path_alg="astar")).store
        assert np.array_equal(bfs.circuit_idx, astar.circuit_idx)

    def test_body_joins_circuit_on_default_board(self, make_game, path_alg):
        # 預設開局：30x20、蛇頭 (3, 3)、長度 3 朝右
        snake = [(3, 1), (3, 2), (3, 3)]
        n = 30 * 20
        store = Solver(make_game(30, 20, snake, path_alg=path_alg)).store

        assert store.circuit_complete()
        assert sorted(store.circuit_idx.tolist()) == list(range(n))
        assert store.get((3, 3)).circuit_idx == 0
        # 最長路徑停在尾巴，接著是蛇身中段，再繞回蛇頭
        assert store.get((3, 1)).circuit_idx == n - 2
        assert store.get((3, 2)).circuit_idx == n - 1

        order = [store.coord(i) for i in np.argsort(store.circuit_idx)]
        _assert_adjacent_chain(order + order[:1])

    def test_odd_board_is_rejected(self, make_game):
        with pytest.raises(MalformedCircuitError):
            Solver(make_game(3, 3, [(0, 0)]))

    def test_reused_store_keeps_circuit(self, make_game, circuit_store):
        before = circuit_store.circuit_idx.copy()
        game = make_game(4, 4, [(2, 1)], food=(3, 3))
        solver = Solver(game, circuit_store)
        solver.find_shortest_path((3, 3))

        again = Solver(game, circuit_store)

        assert np.array_equal(again.store.circuit_idx, before)
        assert np.all(again.store.parent == -1)
        assert np.all(again.store.distance == INF)

    def test_store_size_mismatch(self, make_game, empty_store):
        with pytest.raises(ValueError):
            Solver(make_game(4, 4, [(0, 0)]), empty_store(5, 4))

    def test_distance_to_tail_wraps(self, make_game, circuit_store):
        # 尾巴在 circuit_idx 12
        game = make_game(4, 4, [(2, 2), (1, 2), (1, 1)])
        solver = Solver(game, circuit_store)
        assert solver.distance_to_tail(14) == 2
        assert solver.distance_to_tail(12) == 0
        assert solver.distance_to_tail(3) == 7


# =============================================================================
# Navigation Policy
# =============================================================================


class TestNextDirection:

    def test_shortcut_taken(self, make_game, circuit_store, path_alg):
        game = make_game(4, 4, [(2, 1)], food=(1, 1), path_alg=path_alg)
        assert Solver(game, circuit_store).next_direction() == Direction.UP

    def test_shortcut_past_food_rejected(self, make_game, circuit_store, path_alg):
        game = make_game(4, 4, [(0, 0)], food=(2, 0), path_alg=path_alg)
        assert Solver(game, circuit_store).next_direction() == Direction.RIGHT

    def test_food_next_to_tail_rejects_one_step_shortcut(self, make_game, circuit_store, path_alg):
        game = make_game(4, 4, [(2, 2), (1, 2), (1, 1)], food=(2, 1), path_alg=path_alg)
        assert Solver(game, circuit_store).next_direction() == Direction.LEFT

    def test_long_snake_follows_circuit(self, make_game, circuit_store):
        snake = [(3, 2), (3, 1), (3, 0), (2, 0), (2, 1), (2, 2), (1, 2), (1, 1)]
        game = make_game(4, 4, snake, food=(0, 1))
        assert Solver(game, circuit_store).next_direction() == Direction.LEFT

    def test_circuit_wraps_to_zero(self, make_game, circuit_store):
        game = make_game(4, 4, [(1, 0)])
        assert Solver(game, circuit_store).next_direction() == Direction.UP

    def test_fallback_when_successor_occupied(self, make_game, circuit_store):
        game = make_game(4, 4, [(2, 0), (1, 0), (1, 1)])
        solver = Solver(game, circuit_store)

        assert solver.next_direction() == Direction.UP
        assert solver.fallback_count == 1

    def test_trapped_keeps_direction(self, make_game, circuit_store):
        snake = [(2, 0), (1, 0), (1, 1), (0, 1), (0, 0)]
        game = make_game(4, 4, snake, direction=Direction.UP)
        solver = Solver(game, circuit_store)

        assert solver.next_direction() == Direction.UP
        assert solver.fallback_count == 1


# =============================================================================
# Direction / PathAlgorithm
# =============================================================================


class TestEnums:

    def test_direction_between(self):
        assert Direction.between((1, 1), (0, 1)) == Direction.UP
        assert Direction.between((1, 1), (1, 2)) == Direction.RIGHT
        assert Direction.between((1, 1), (2, 2)) is None

    def test_direction_delta_and_opposite(self):
        assert Direction.UP.delta == (-1, 0)
        assert Direction.RIGHT.delta == (0, 1)
        assert Direction.LEFT.opposite == Direction.RIGHT
        assert Direction.from_name("down") == Direction.DOWN
        with pytest.raises(ValueError):
            Direction.from_name("north")

    def test_path_algorithm_from_name(self):
        assert PathAlgorithm.from_name("bfs") is PathAlgorithm.BFS
        assert PathAlgorithm.from_name("AStar") is PathAlgorithm.ASTAR
        with pytest.raises(ValueError):
            PathAlgorithm.from_name("dijkstra")
