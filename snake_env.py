"""
🐍 Snake Self-Play - 遊戲環境
==============================

貪吃蛇的遊戲規則與盤面狀態，使用 Gymnasium 標準介面。
求解器（snake_solver.Solver）只從這裡「讀」狀態，並回傳建議方向。

主要功能：
1. 定義遊戲規則（移動、吃食物、撞牆 / 自撞、穿牆模式）
2. 提供佔用查詢（尾巴即將離開，所以不算佔用）
3. Self-play：每個 tick 用同一個 GridCellStore 建立求解器
4. Pygame 渲染（只在 render_mode="human" 時）

蛇身 snake 是 deque：snake[0] 是尾巴，snake[-1] 是頭。
"""

# ==================== 匯入必要的套件 ====================
import gymnasium as gym          # 遊戲環境標準介面
from gymnasium import spaces     # 定義觀察空間和動作空間
import numpy as np               # 數值計算
from collections import deque    # 雙端佇列，用於蛇身（頭尾操作都是 O(1)）
from dataclasses import dataclass
from enum import Enum

from snake_solver import Direction, PathAlgorithm, Solver

# ==================== 遊戲常數設定 ====================
WIDTH_DEFAULT = 30
HEIGHT_DEFAULT = 20
CELL_SIZE = 24          # 每格的像素大小（用於渲染）

# 觀察陣列中的格子種類
EMPTY = 0
BODY = 1
HEAD = 2
FOOD = 3

# 獎勵
FOOD_REWARD = 1.0
DEATH_REWARD = -10.0
STEP_PENALTY = -0.02

# 顏色定義（RGB 格式，用於遊戲畫面渲染）
BG = (13, 27, 42)              # 背景色（深藍色）
GRID_COLOR = (40, 55, 75)      # 網格線顏色
SNAKE_COLOR = (240, 200, 80)   # 蛇身顏色（黃色）
SNAKE_HEAD_COLOR = (90, 150, 255)  # 蛇頭顏色（藍色）
FOOD_COLOR = (230, 70, 70)     # 食物顏色（紅色）
BORDER_COLORS = {
    "running": (80, 200, 120),
    "paused": (240, 200, 80),
    "game_over": (230, 70, 70),
    "won": (255, 215, 0),
}


class State(Enum):
    RUNNING = "running"
    PAUSED = "paused"
    GAME_OVER = "game_over"
    WON = "won"


@dataclass
class GameOptions:
    """
    遊戲設定

    head_x / head_y 是蛇頭的欄 / 列，
    蛇身會沿著 direction 的反方向往後排 length 格。
    """
    width: int = WIDTH_DEFAULT
    height: int = HEIGHT_DEFAULT
    head_x: int = 3
    head_y: int = 3
    length: int = 3
    direction: Direction = Direction.RIGHT
    speed: float = 10.0
    borders: bool = True
    self_play: bool = False
    path_alg: PathAlgorithm = PathAlgorithm.ASTAR

    def validate(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"盤面大小必須為正數: {self.width}x{self.height}")
        if self.speed <= 0:
            raise ValueError(f"速度必須為正數: {self.speed}")

        if (self.head_x < 0 or self.head_y < 0
                or self.head_x >= self.width or self.head_y >= self.height
                or self.length <= 0):
            raise ValueError(
                f"蛇的初始狀態無效: head=({self.head_x}, {self.head_y}), length={self.length}"
            )

        fits = {
            Direction.UP: self.head_y + self.length <= self.height,
            Direction.DOWN: self.head_y - self.length + 1 >= 0,
            Direction.LEFT: self.head_x + self.length <= self.width,
            Direction.RIGHT: self.head_x - self.length + 1 >= 0,
        }[self.direction]
        if not fits:
            raise ValueError(
                f"蛇的初始狀態無效: 長度 {self.length} 往 {self.direction.name} "
                f"超出 {self.width}x{self.height} 盤面"
            )

    def initial_body(self):
        """初始蛇身，尾巴在前、頭在後"""
        dr, dc = self.direction.delta
        return [(self.head_y - dr * i, self.head_x - dc * i) for i in reversed(range(self.length))]


class SnakeEnv(gym.Env):
    """
    貪吃蛇遊戲環境

    核心方法：
    - reset(): 重置遊戲，開始新的一局
    - step(action): 執行一個動作，返回新狀態和獎勵
    - is_occupied() / occupancy_mask(): 給求解器的唯讀佔用查詢
    - autopilot_action(): self-play 時的建議方向
    """

    # Gymnasium 標準元數據
    metadata = {"render_modes": ["human"], "render_fps": 30}

    DEBUG_MODE = False  # 除錯模式開關

    def __init__(self, options=None, render_mode=None):
        super().__init__()
        self.options = options if options is not None else GameOptions()
        self.options.validate()
        self.render_mode = render_mode

        self.width = self.options.width
        self.height = self.options.height
        self.N = self.width * self.height
        self.borders = self.options.borders
        self.self_play = self.options.self_play
        self.path_alg = self.options.path_alg

        # 觀察空間：整個盤面（0 空格，1 蛇身，2 蛇頭，3 食物）
        self.observation_space = spaces.Box(
            low=EMPTY, high=FOOD, shape=(self.height, self.width), dtype=np.int8
        )
        # 動作空間：4 個離散動作（上、下、左、右）
        self.action_space = spaces.Discrete(4)

        # 網格陣列：0 = 空格，1 = 蛇身
        self.grid_array = np.zeros((self.height, self.width), dtype=np.int8)

        # ==================== 遊戲狀態變數 ====================
        self.snake = None
        self.food = None
        self.direction = self.options.direction
        self.state = State.RUNNING
        self.score = 0
        self.steps = 0

        # self-play 用：開局建好 circuit 的 store，之後每個 tick 重複使用
        self.cell_store = None

        # 統計資訊
        self.fallback_count = 0
        self.ignored_180_count = 0

        # 渲染相關
        self.window = None
        self.clock = None

    def reset(self, seed=None, options=None):
        super().reset(seed=seed)  # 食物位置由 self.np_random 決定

        self.grid_array.fill(0)
        self.snake = deque(self.options.initial_body())
        for r, c in self.snake:
            self.grid_array[r, c] = 1

        self.direction = self.options.direction
        self.state = State.RUNNING
        self.score = 0
        self.steps = 0
        self.fallback_count = 0
        self.ignored_180_count = 0

        self._spawn_food()

        # 開局建構 circuit（盤面不合法時會丟出 MalformedCircuitError）
        self.cell_store = None
        if self.self_play:
            self.cell_store = Solver(self).store

        return self._get_observation(), self._info()

    def step(self, action):
        action = Direction(int(action))

        if self.state is not State.RUNNING:
            done = self.state in (State.GAME_OVER, State.WON)
            return self._get_observation(), 0.0, done, False, self._info()

        # ==================== 180 度保護 ====================
        # 蛇長超過 2 時回頭會撞到脖子，改為繼續前進
        if len(self.snake) > 2 and action == self.direction.opposite:
            self.ignored_180_count += 1
            action = self.direction

        self.steps += 1
        self.direction = action

        dr, dc = action.delta
        head = self.snake[-1]
        nr, nc = head[0] + dr, head[1] + dc

        # 1. 撞牆檢查（沒有邊界時穿牆）
        if not (0 <= nr < self.height and 0 <= nc < self.width):
            if self.borders:
                return self._game_over()
            nr %= self.height
            nc %= self.width
        new_head = (nr, nc)

        # 2. 自撞檢查（尾巴位置除外）
        if self.is_occupied(new_head):
            return self._game_over()

        self.snake.append(new_head)
        self.grid_array[nr, nc] = 1

        terminated = False
        if new_head == self.food:
            self.score += 1
            reward = FOOD_REWARD
            self._spawn_food()
            if self.food is None:
                # 蛇填滿了整個盤面
                self.state = State.WON
                terminated = True
        else:
            old_tail = self.snake.popleft()
            if old_tail != new_head:
                self.grid_array[old_tail[0], old_tail[1]] = 0
            reward = STEP_PENALTY

        if self.DEBUG_MODE:
            grid_count = int(np.sum(self.grid_array == 1))
            snake_len = len(self.snake)
            assert grid_count == snake_len, f"資料不一致: 網格={grid_count}, 蛇={snake_len}"
            assert len(set(self.snake)) == snake_len, "蛇身有重複座標！"

        return self._get_observation(), reward, terminated, False, self._info()

    def _game_over(self):
        self.state = State.GAME_OVER
        return self._get_observation(), DEATH_REWARD, True, False, self._info()

    # ==================== 給求解器的唯讀查詢 ====================

    def is_occupied(self, coord) -> bool:
        """蛇身佔用的格子；尾巴即將離開，不算佔用"""
        r, c = coord
        return bool(self.grid_array[r, c] == 1) and coord != self.snake[0]

    def occupancy_mask(self):
        """攤平的佔用陣列（索引 r * width + c），尾巴已排除"""
        mask = self.grid_array.ravel().copy()
        tail_r, tail_c = self.snake[0]
        mask[tail_r * self.width + tail_c] = 0
        return mask

    def autopilot_action(self) -> Direction:
        """
        Self-play：用保留下來的 store 建立求解器，取得建議方向

        store 只有 parent / distance 會被清掉，circuit_idx 保留，
        所以 circuit 不需要每個 tick 重建。
        """
        if self.cell_store is None:
            solver = Solver(self)
            self.cell_store = solver.store
        else:
            solver = Solver(self, self.cell_store)

        direction = solver.next_direction()
        self.fallback_count += solver.fallback_count
        return direction

    # ==================== 遊戲狀態 ====================

    def is_running(self) -> bool:
        return self.state is State.RUNNING

    def is_game_over(self) -> bool:
        return self.state is State.GAME_OVER

    def toggle_pause(self):
        if self.state is State.PAUSED:
            self.state = State.RUNNING
        elif self.state is State.RUNNING:
            self.state = State.PAUSED

    def _info(self):
        return {
            "length": len(self.snake),
            "score": self.score,
            "fallback_count": self.fallback_count,
            "won": self.state is State.WON,
        }

    def _get_observation(self):
        obs = self.grid_array.copy()
        head = self.snake[-1]
        obs[head[0], head[1]] = HEAD
        if self.food is not None:
            obs[self.food[0], self.food[1]] = FOOD
        return obs

    def _spawn_food(self):
        """食物放在隨機空格；蛇身佔滿整個盤面時 food 為 None"""
        rng = self.np_random

        # 蛇還短的時候直接抽樣通常一次就中
        if len(self.snake) * 2 < self.N:
            for _ in range(16):
                cell = (int(rng.integers(self.height)), int(rng.integers(self.width)))
                if not self.grid_array[cell]:
                    self.food = cell
                    return

        free = np.flatnonzero(self.grid_array.ravel() == 0)
        if free.size == 0:
            self.food = None
            return
        r, c = divmod(int(rng.choice(free)), self.width)
        self.food = (r, c)

    # ==================== 渲染 ====================

    def render(self):
        """
        渲染遊戲畫面

        使用 Pygame 繪製遊戲視窗。
        只在 render_mode="human" 時執行。
        """
        if self.render_mode != "human":
            return

        # Lazy import（延遲載入）：加速環境創建
        import pygame

        width_px = self.width * CELL_SIZE
        height_px = self.height * CELL_SIZE

        if self.window is None:
            pygame.init()
            self.window = pygame.display.set_mode((width_px + 4, height_px + 4))
            self.clock = pygame.time.Clock()

        pygame.display.set_caption(
            f"Snake - {self.state.value} | 長度 {len(self.snake)} | 分數 {self.score}"
        )

        self.window.fill(BORDER_COLORS[self.state.value])
        self.window.fill(BG, pygame.Rect(2, 2, width_px, height_px))

        # 繪製網格線
        for c in range(self.width + 1):
            pygame.draw.line(self.window, GRID_COLOR,
                             (2 + c * CELL_SIZE, 2), (2 + c * CELL_SIZE, 2 + height_px))
        for r in range(self.height + 1):
            pygame.draw.line(self.window, GRID_COLOR,
                             (2, 2 + r * CELL_SIZE), (2 + width_px, 2 + r * CELL_SIZE))

        # 繪製蛇身（頭最後畫）
        for idx, (r, c) in enumerate(self.snake):
            color = SNAKE_HEAD_COLOR if idx == len(self.snake) - 1 else SNAKE_COLOR
            rect = pygame.Rect(2 + c * CELL_SIZE + 2, 2 + r * CELL_SIZE + 2,
                               CELL_SIZE - 4, CELL_SIZE - 4)
            pygame.draw.rect(self.window, color, rect, border_radius=4)

        # 繪製食物
        if self.food is not None:
            r, c = self.food
            rect = pygame.Rect(2 + c * CELL_SIZE + 4, 2 + r * CELL_SIZE + 4,
                               CELL_SIZE - 8, CELL_SIZE - 8)
            pygame.draw.rect(self.window, FOOD_COLOR, rect, border_radius=8)

        pygame.display.flip()
        self.clock.tick(self.metadata["render_fps"])

    def close(self):
        """關閉遊戲視窗"""
        if self.window is not None:
            import pygame
            pygame.quit()
            self.window = None
