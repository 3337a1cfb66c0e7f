from collections import deque

import numpy as np
import pytest

from snake_solver import Direction, GridCellStore, Solver


# 4x4 盤面、單格蛇在 (0, 0) 時建構出的 circuit（依 circuit_idx 排序）
CIRCUIT_4X4 = [
    (0, 0), (0, 1), (0, 2), (0, 3),
    (1, 3), (2, 3), (3, 3), (3, 2),
    (3, 1), (3, 0), (2, 0), (2, 1),
    (2, 2), (1, 2), (1, 1), (1, 0),
]


class StubGame:
    """求解器需要的最小遊戲狀態（snake[0] = 尾巴，snake[-1] = 頭）"""

    def __init__(self, width, height, snake, food=None, path_alg="bfs",
                 direction=Direction.RIGHT):
        self.width = width
        self.height = height
        self.N = width * height
        self.snake = deque(snake)
        self.food = food
        self.path_alg = path_alg
        self.direction = direction

    def occupancy_mask(self):
        mask = np.zeros(self.N, dtype=np.int8)
        for r, c in list(self.snake)[1:]:
            mask[r * self.width + c] = 1
        return mask


@pytest.fixture
def make_game():
    return StubGame


@pytest.fixture(params=["bfs", "astar"])
def path_alg(request):
    return request.param


@pytest.fixture
def circuit_store():
    """4x4 盤面上建好 circuit 的 store"""
    return Solver(StubGame(4, 4, [(0, 0)])).store


@pytest.fixture
def empty_store():
    def _make(width, height):
        return GridCellStore(width, height)
    return _make
