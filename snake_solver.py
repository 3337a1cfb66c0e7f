"""
🐍 Snake Self-Play - 自動駕駛求解器
=====================================

每個 tick 為蛇頭決定「下一步」方向，保證不會撞到自己，
長期來看會走遍整個盤面。

組成（由底層到上層）：
1. GridCellStore：每格的搜尋資料（parent / visited / distance / circuit_idx）
2. 最短路徑：BFS 或 A*（由 PathAlgorithm 決定）
3. 最長路徑：在最短路徑上貪婪地插入「繞道」，把路徑拉長
4. Circuit：開局時用最長路徑把整個盤面串成一個 Hamiltonian cycle
5. 導航策略：能證明安全時走捷徑吃食物，否則沿 circuit 前進

座標一律是 (r, c)：r 是列（y），c 是欄（x）。
蛇身 snake 是 deque：snake[0] 是尾巴，snake[-1] 是頭。
"""

from collections import namedtuple
from enum import Enum, IntEnum

import numpy as np

from snake_utils import (
    INF,                            # 「無限遠」距離
    create_search_buffers,          # 預分配搜尋緩衝區
    bfs_search_buffered,            # BFS 最短路徑核心
    astar_search_buffered,          # A* 最短路徑核心
    get_flood_fill_area_buffered,   # 計算某方向的可達空間大小
)


# ==================== 方向與演算法 ====================

class Direction(IntEnum):
    """四個移動方向，數值與 gymnasium 的 Discrete(4) 動作一致"""
    UP = 0
    DOWN = 1
    LEFT = 2
    RIGHT = 3

    @property
    def delta(self):
        return MOVES[self]

    @property
    def opposite(self):
        return OPPOSITE[self]

    @classmethod
    def from_name(cls, name):
        try:
            return cls[name.upper()]
        except KeyError:
            raise ValueError(f"未知的方向: {name!r}（可用: up, down, left, right）") from None

    @classmethod
    def between(cls, a, b):
        """相鄰兩格 a → b 的方向；不是單位位移時返回 None"""
        delta = (b[0] - a[0], b[1] - a[1])
        for direction, move in MOVES.items():
            if move == delta:
                return direction
        return None


# 將方向映射到座標變化 (行變化, 列變化)
MOVES = {
    Direction.UP: (-1, 0),
    Direction.DOWN: (1, 0),
    Direction.LEFT: (0, -1),
    Direction.RIGHT: (0, 1),
}

OPPOSITE = {
    Direction.UP: Direction.DOWN,
    Direction.DOWN: Direction.UP,
    Direction.LEFT: Direction.RIGHT,
    Direction.RIGHT: Direction.LEFT,
}


class PathAlgorithm(Enum):
    """最短路徑策略，在遊戲設定時決定一次"""
    ASTAR = "astar"
    BFS = "bfs"

    @classmethod
    def from_name(cls, name):
        try:
            return cls(name.lower())
        except ValueError:
            raise ValueError(f"未知的路徑演算法: {name!r}（可用: astar, bfs）") from None


class MalformedCircuitError(ValueError):
    """初始蛇身無法延伸成涵蓋全盤面的 Hamiltonian cycle"""


# 單一格子的快照（唯讀）
Cell = namedtuple("Cell", ["parent", "visited", "distance", "circuit_idx"])

_UNSET = object()


# =========================================================================
#                     GRID CELL STORE（每格搜尋資料）
# =========================================================================

class GridCellStore:
    """
    每格的搜尋資料，存成攤平的 numpy 陣列（索引 = r * width + c）

    - parent: 搜尋時的前一格（-1 = 無）
    - visited: 最長路徑建構時「已被路徑佔用」的標記
    - distance: 搜尋的暫定距離（INF = 未到達）
    - circuit_idx: 該格在 Hamiltonian cycle 中的位置（-1 = 尚未建構）

    同一個 store 可以跨 tick 重複使用：
    reset_for_search() 只清 parent / distance，circuit_idx 不動，
    所以 circuit 只需要在開局建構一次。
    """

    def __init__(self, width: int, height: int):
        self.width = width
        self.height = height
        self.N = width * height

        self.parent = np.full(self.N, -1, dtype=np.int32)
        self.visited = np.zeros(self.N, dtype=np.int8)
        self.distance = np.full(self.N, INF, dtype=np.int32)
        self.circuit_idx = np.full(self.N, -1, dtype=np.int32)

        # 搜尋核心的緩衝區也跟著 store 走，避免每個 tick 重新配置
        self.buffers = create_search_buffers(self.N)

    def index(self, coord) -> int:
        r, c = coord
        if not (0 <= r < self.height and 0 <= c < self.width):
            raise IndexError(f"座標超出盤面: {coord} (盤面 {self.width}x{self.height})")
        return r * self.width + c

    def coord(self, idx) -> tuple:
        return divmod(int(idx), self.width)

    def in_bounds(self, coord) -> bool:
        return 0 <= coord[0] < self.height and 0 <= coord[1] < self.width

    def reset_for_search(self):
        """清空 parent 與 distance（向量化操作），circuit_idx 保留"""
        self.parent.fill(-1)
        self.distance.fill(INF)

    def reset_visited(self):
        self.visited.fill(0)

    def get(self, coord) -> Cell:
        i = self.index(coord)
        parent = int(self.parent[i])
        return Cell(
            parent=None if parent < 0 else self.coord(parent),
            visited=bool(self.visited[i]),
            distance=int(self.distance[i]),
            circuit_idx=int(self.circuit_idx[i]),
        )

    def set(self, coord, parent=_UNSET, visited=None, distance=None, circuit_idx=None):
        i = self.index(coord)
        if parent is not _UNSET:
            self.parent[i] = -1 if parent is None else self.index(parent)
        if visited is not None:
            self.visited[i] = 1 if visited else 0
        if distance is not None:
            self.distance[i] = distance
        if circuit_idx is not None:
            self.circuit_idx[i] = circuit_idx

    def circuit_complete(self) -> bool:
        """circuit_idx 是否剛好是 0 .. N-1 的排列"""
        return bool(np.array_equal(np.sort(self.circuit_idx), np.arange(self.N)))


# =========================================================================
#                     SOLVER（導航策略）
# =========================================================================

class Solver:
    """
    自動駕駛求解器

    game 需要提供（唯讀）：
    - width, height, N: 盤面大小
    - snake: deque，snake[0] = 尾巴，snake[-1] = 頭
    - food: 食物座標（盤面滿了時為 None）
    - direction: 目前方向（Fallback 全部失敗時沿用）
    - path_alg: PathAlgorithm 或 "astar" / "bfs"
    - occupancy_mask(): 攤平的 int8 佔用陣列，尾巴已排除

    第一次建立時不傳 store，會建構 circuit；
    之後每個 tick 把上一次的 store 傳回來，circuit_idx 會被保留。
    """

    DEBUG_MODE = False

    def __init__(self, game, store=None):
        self.game = game
        self.width = game.width
        self.height = game.height
        self.N = game.N

        path_alg = game.path_alg
        self.path_alg = path_alg if isinstance(path_alg, PathAlgorithm) else PathAlgorithm.from_name(path_alg)

        build = store is None
        if build:
            store = GridCellStore(self.width, self.height)
        else:
            if (store.width, store.height) != (self.width, self.height):
                raise ValueError(
                    f"store 大小 {store.width}x{store.height} 與盤面 "
                    f"{self.width}x{self.height} 不符"
                )
            store.reset_for_search()
        self.store = store

        # 本 tick 的佔用快照（尾巴視為可走，因為它即將離開）
        self._blocked = np.ascontiguousarray(game.occupancy_mask(), dtype=np.int8)

        self.fallback_count = 0

        if build:
            self.build_cycle()

    # ==================== 基本查詢 ====================

    @property
    def head(self):
        return self.game.snake[-1]

    @property
    def tail(self):
        return self.game.snake[0]

    def is_blocked(self, coord) -> bool:
        return self._blocked[self.store.index(coord)] == 1

    def get_adj_coords(self, point):
        """四方向的盤面內鄰居（上、下、左、右）"""
        adj_points = []
        for dr, dc in MOVES.values():
            nxt = (point[0] + dr, point[1] + dc)
            if self.store.in_bounds(nxt):
                adj_points.append(nxt)
        return adj_points

    def validate_point(self, point) -> bool:
        """最長路徑繞道用：在盤面內、沒被佔用、還沒被路徑用過"""
        if not self.store.in_bounds(point):
            return False
        idx = self.store.index(point)
        return self._blocked[idx] == 0 and self.store.visited[idx] == 0

    # ==================== 最短路徑 ====================

    def find_shortest_path(self, destination):
        """
        從蛇頭到 destination 的最短路徑（含兩端點）

        找不到路徑時返回空列表，這不是錯誤，
        呼叫端應該改用 circuit。
        """
        store = self.store
        store.reset_for_search()

        src = store.index(self.head)
        dst = store.index(destination)
        buffers = store.buffers

        if self.path_alg is PathAlgorithm.ASTAR:
            found = astar_search_buffered(
                self._blocked, self.width, self.height, src, dst,
                store.parent, store.distance,
                buffers['closed'], buffers['heap'],
            )
        else:
            found = bfs_search_buffered(
                self._blocked, self.width, self.height, src, dst,
                store.parent, store.distance,
                buffers['queue'],
            )

        if not found:
            return []
        return self.traverse_path(destination)

    def traverse_path(self, destination):
        """沿著 parent 從終點走回起點，再反轉"""
        store = self.store
        path = []
        idx = store.index(destination)
        while idx >= 0:
            path.append(store.coord(idx))
            idx = int(store.parent[idx])
        path.reverse()
        return path

    # ==================== 最長路徑 ====================

    def find_longest_path(self, destination):
        """
        把最短路徑貪婪地拉長

        對每一段 current → next，測試兩個垂直方向：
        如果 current 與 next 往同一側平移一格後都可以走，
        就把這兩格插入路徑中間（形成一個小繞道），
        然後停在同一個位置繼續嘗試。
        無法繞道時才前進到下一段；
        最後一段（next 為終點）也無法繞道時結束。

        這是局部、不回溯的啟發式，不保證全域最長。

        如果起點就是終點（單格的蛇），先接上第一個可走的鄰居，
        讓路徑至少有一段可以延伸；這樣結果的終點就在起點旁邊，
        仍然可以閉合成 cycle。
        """
        path = self.find_shortest_path(destination)
        if not path:
            return path

        store = self.store
        store.reset_visited()

        if len(path) == 1:
            seed = next((p for p in self.get_adj_coords(path[0]) if self.validate_point(p)), None)
            if seed is None:
                return path
            path.append(seed)
            destination = seed

        for point in path:
            store.visited[store.index(point)] = 1

        idx = 0
        while True:
            current = path[idx]
            nxt = path[idx + 1]

            direction = Direction.between(current, nxt)
            if direction in (Direction.UP, Direction.DOWN):
                directions_to_test = (Direction.LEFT, Direction.RIGHT)
            else:
                directions_to_test = (Direction.UP, Direction.DOWN)

            extended = False
            for test_direction in directions_to_test:
                dr, dc = test_direction.delta
                current_test = (current[0] + dr, current[1] + dc)
                next_test = (nxt[0] + dr, nxt[1] + dc)

                if self.validate_point(current_test) and self.validate_point(next_test):
                    store.visited[store.index(current_test)] = 1
                    store.visited[store.index(next_test)] = 1
                    path.insert(idx + 1, current_test)
                    path.insert(idx + 2, next_test)
                    extended = True
                    break

            if not extended:
                if nxt == destination:
                    break
                idx += 1

        return path

    # ==================== Hamiltonian Circuit ====================

    def build_cycle(self):
        """
        開局時建構一次 circuit

        1. 從蛇頭到蛇尾的最長路徑
        2. 接上蛇身中段（不含頭尾），繞回蛇頭
        3. 依序編號 circuit_idx，蛇頭為 0

        盤面與初始蛇身必須能形成 Hamiltonian cycle
        （例如偶數寬高），否則丟出 MalformedCircuitError。
        """
        store = self.store
        snake = list(self.game.snake)

        path = self.find_longest_path(snake[0])
        sequence = path + snake[1:-1]

        store.circuit_idx.fill(-1)
        for count, point in enumerate(sequence):
            store.circuit_idx[store.index(point)] = count

        self._check_cycle(sequence)

        if self.DEBUG_MODE:
            print(f"🔁 Circuit 建構完成: {len(sequence)} 格 ({self.width}x{self.height})")

    def _check_cycle(self, sequence):
        store = self.store
        if len(sequence) != self.N or not store.circuit_complete():
            covered = int(np.count_nonzero(store.circuit_idx >= 0))
            raise MalformedCircuitError(
                f"Circuit 不完整: 涵蓋 {covered} / {self.N} 格。"
                f"盤面 {self.width}x{self.height} 與初始蛇身無法形成 Hamiltonian cycle"
            )

        # 每一對相鄰節點（含首尾）都必須真的相鄰（曼哈頓距離 = 1）
        for i, point in enumerate(sequence):
            nxt = sequence[(i + 1) % self.N]
            if Direction.between(point, nxt) is None:
                raise MalformedCircuitError(f"Circuit 在第 {i} 步不相鄰: {point} → {nxt}")

    def circuit_index(self, coord) -> int:
        return int(self.store.circuit_idx[self.store.index(coord)])

    def distance_to_tail(self, checked_idx) -> int:
        """checked_idx 在 circuit 上領先尾巴多少格（循環距離）"""
        tail_idx = self.circuit_index(self.tail)
        if tail_idx > checked_idx:
            checked_idx += self.N
        return checked_idx - tail_idx

    # ==================== 每個 tick 的決策 ====================

    def next_direction(self) -> Direction:
        """
        決定下一步方向

        1. 蛇長度不到盤面一半時，嘗試走捷徑吃食物
        2. 否則沿 circuit 前進（circuit_idx + 1，最後一格接回 0）
        3. circuit 的下一格不能走時，用 Flood Fill 選空間最大的方向
        """
        head = self.head

        if self.game.food is not None and len(self.game.snake) < self.N // 2:
            shortcut = self._shortcut()
            if shortcut is not None:
                return Direction.between(head, shortcut)

        successor = self._circuit_successor(head)
        if successor is not None and not self.is_blocked(successor):
            return Direction.between(head, successor)

        return self._fallback_direction()

    def _shortcut(self):
        """
        捷徑檢查：返回捷徑的第一步，不安全時返回 None

        以尾巴為基準計算 circuit 上的相對位置：
        第一步必須比蛇頭更前面，且不能超過食物，
        這樣吃到食物前都不會追上自己的尾巴。
        """
        food = self.game.food
        path = self.find_shortest_path(food)
        if len(path) < 2:
            return None

        tail_idx = self.circuit_index(self.tail)
        head_idx = self.circuit_index(path[0])
        next_idx = self.circuit_index(path[1])
        food_idx = self.circuit_index(food)

        # 只差一步、而且食物在 circuit 上緊貼尾巴：吃完會把自己困住
        if len(path) == 2 and (food_idx - tail_idx) % self.N in (1, self.N - 1):
            return None

        head_idx_rel = self.distance_to_tail(head_idx)
        next_idx_rel = self.distance_to_tail(next_idx)
        food_idx_rel = self.distance_to_tail(food_idx)

        if head_idx_rel < next_idx_rel <= food_idx_rel:
            return path[1]
        return None

    def _circuit_successor(self, head):
        cur_idx = self.circuit_index(head)
        wanted = (cur_idx + 1) % self.N
        for point in self.get_adj_coords(head):
            if self.circuit_index(point) == wanted:
                return point
        return None

    def _fallback_direction(self) -> Direction:
        """
        Smart Fallback：circuit 的下一格不能走

        選擇可達空間最大的方向（「死得最慢」）；
        四周都被擋住時沿用目前方向，讓遊戲層去判定結束。
        """
        self.fallback_count += 1
        head = self.head
        store = self.store
        buffers = store.buffers

        best_direction = None
        best_area = -1
        for direction, (dr, dc) in MOVES.items():
            nxt = (head[0] + dr, head[1] + dc)
            if not store.in_bounds(nxt) or self.is_blocked(nxt):
                continue
            area = get_flood_fill_area_buffered(
                self._blocked, self.width, self.height, store.index(nxt),
                buffers['flood'], buffers['queue'],
            )
            if area > best_area:
                best_area = area
                best_direction = direction

        if best_direction is None:
            if self.DEBUG_MODE:
                print(f"[!] 無路可走: head={head}，沿用目前方向")
            return Direction(self.game.direction)

        if self.DEBUG_MODE:
            print(f"[!] Circuit 中斷: head={head}，Fallback → {best_direction.name} (空間 {best_area})")
        return best_direction
