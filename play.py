"""
🐍 Snake Self-Play - 觀察器 / 基準測試
========================================

兩種模式：
1. 視窗模式（預設）：Pygame 視窗，可以自己玩，或加上 --self-play 看自動駕駛
2. --headless：不開視窗，連續跑多局自動駕駛並輸出統計

操控（視窗模式）：
  WASD / HJKL / 方向鍵  - 轉向
  P / 空白              - 暫停
  R                     - 重新開始
  1-9                   - 調整速度倍率
  Q / ESC               - 離開
"""

import argparse
import sys
import time

from snake_env import GameOptions, SnakeEnv
from snake_solver import Direction, MalformedCircuitError, PathAlgorithm, Solver


# ==================== 終端機顏色（美化輸出）====================
class C:
    CYAN = '\033[96m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    BOLD = '\033[1m'
    DIM = '\033[2m'
    END = '\033[0m'
    MAGENTA = '\033[95m'


def build_parser():
    parser = argparse.ArgumentParser(
        prog="snake-selfplay",
        description="貪吃蛇：自己玩，或觀察 Hamiltonian circuit 自動駕駛",
    )
    parser.add_argument("--width", type=int, default=30, metavar="SIZE",
                        help="盤面寬度")
    parser.add_argument("--height", type=int, default=20, metavar="SIZE",
                        help="盤面高度")
    parser.add_argument("-s", "--speed", type=float, default=10.0, metavar="SPEED",
                        help="每秒移動幾格")
    parser.add_argument("-x", "--head-x", type=int, default=3, metavar="COORD",
                        help="蛇頭初始欄")
    parser.add_argument("-y", "--head-y", type=int, default=3, metavar="COORD",
                        help="蛇頭初始列")
    parser.add_argument("-l", "--length", type=int, default=3, metavar="LENGTH",
                        help="蛇的初始長度")
    parser.add_argument("-d", "--dir", dest="direction", default="right",
                        choices=["left", "right", "up", "down"],
                        help="蛇的初始方向")
    parser.add_argument("--no-border", action="store_true",
                        help="取消邊界（穿牆）")
    parser.add_argument("--algorithm", default="astar", choices=["astar", "bfs"],
                        help="最短路徑演算法")
    parser.add_argument("--self-play", action="store_true",
                        help="開啟自動駕駛")
    parser.add_argument("--headless", action="store_true",
                        help="不開視窗，直接跑自動駕駛基準測試")
    parser.add_argument("--episodes", type=int, default=5,
                        help="headless 模式的局數")
    parser.add_argument("--max-steps", type=int, default=0,
                        help="每局最多步數（0 = 盤面格數的 200 倍）")
    parser.add_argument("--seed", type=int, default=None,
                        help="隨機種子")
    parser.add_argument("--debug", action="store_true",
                        help="除錯模式（一致性檢查與 Fallback 訊息）")
    return parser


def options_from_args(args) -> GameOptions:
    options = GameOptions(
        width=args.width,
        height=args.height,
        head_x=args.head_x,
        head_y=args.head_y,
        length=args.length,
        direction=Direction.from_name(args.direction),
        speed=args.speed,
        borders=not args.no_border,
        self_play=args.self_play or args.headless,
        path_alg=PathAlgorithm.from_name(args.algorithm),
    )
    options.validate()
    return options


# =========================================================================
#                     HEADLESS 基準測試
# =========================================================================

def run_headless(options, episodes, max_steps=0, seed=None):
    """
    連續跑多局自動駕駛並輸出統計

    返回：
    - results: 每局的 info 字典（多了 steps 欄位）
    """
    env = SnakeEnv(options)
    limit = max_steps or env.N * 200
    results = []

    print(f"{C.MAGENTA}{'=' * 60}{C.END}")
    print(f"{C.MAGENTA}  🐍 SNAKE SELF-PLAY - {options.width}x{options.height} | "
          f"{options.path_alg.value}{C.END}")
    print(f"{C.MAGENTA}{'=' * 60}{C.END}")

    for episode in range(episodes):
        ep_seed = None if seed is None else seed + episode
        _, info = env.reset(seed=ep_seed)
        start = time.time()

        done = False
        while not done and env.steps < limit:
            _, _, done, _, info = env.step(env.autopilot_action())

        elapsed = time.time() - start
        info = dict(info, steps=env.steps)
        results.append(info)

        if info["won"]:
            status = f"{C.GREEN}[✓] 填滿盤面{C.END}"
        elif env.is_game_over():
            status = f"{C.RED}[✗] 撞到了{C.END}"
        else:
            status = f"{C.YELLOW}[!] 達到步數上限{C.END}"
        print(f"  第 {episode + 1:>3} 局 | 長度 {info['length']:>5}/{env.N} | "
              f"步數 {info['steps']:>8} | Fallback {info['fallback_count']:>4} | "
              f"{elapsed:6.2f}s | {status}")

    env.close()

    wins = sum(1 for info in results if info["won"])
    avg_len = sum(info["length"] for info in results) / max(1, len(results))
    print(f"{C.CYAN}  勝利 {wins}/{len(results)} | 平均長度 {avg_len:.1f}{C.END}")
    return results


# =========================================================================
#                     PYGAME 觀察器
# =========================================================================

# 方向鍵對照（延遲到 pygame 匯入後才建立）
def _key_directions(pygame):
    return {
        pygame.K_a: Direction.LEFT, pygame.K_h: Direction.LEFT, pygame.K_LEFT: Direction.LEFT,
        pygame.K_s: Direction.DOWN, pygame.K_j: Direction.DOWN, pygame.K_DOWN: Direction.DOWN,
        pygame.K_w: Direction.UP, pygame.K_k: Direction.UP, pygame.K_UP: Direction.UP,
        pygame.K_d: Direction.RIGHT, pygame.K_l: Direction.RIGHT, pygame.K_RIGHT: Direction.RIGHT,
    }


class SnakeViewer:
    def __init__(self, options):
        self.options = options
        self.env = SnakeEnv(options, render_mode="human")
        self.speed_multiplier = 1
        self.step_delay = 1.0 / options.speed
        self.env.reset()
        self.pending_direction = self.env.direction

    def _reset(self):
        self.env.reset()
        self.pending_direction = self.env.direction

    def _set_speed(self, multiplier):
        self.speed_multiplier = multiplier
        self.step_delay = 1.0 / (self.options.speed * multiplier)
        print(f"Speed: {multiplier}x")

    def handle_input(self, pygame, key_directions):
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                return False
            if event.type != pygame.KEYDOWN:
                continue

            key = event.key
            if key in (pygame.K_q, pygame.K_ESCAPE):
                return False
            if key == pygame.K_r:
                self._reset()
            elif key in (pygame.K_p, pygame.K_SPACE):
                self.env.toggle_pause()
            elif pygame.K_1 <= key <= pygame.K_9:
                self._set_speed(key - pygame.K_0)
            elif key in key_directions:
                self.pending_direction = key_directions[key]
        return True

    def update(self):
        if not self.env.is_running():
            return
        if self.env.self_play:
            self.pending_direction = self.env.autopilot_action()
        self.env.step(self.pending_direction)

    def run(self):
        import pygame

        print("=" * 60)
        print("  🐍 SNAKE SELF-PLAY")
        print("=" * 60)
        print("操控:")
        print("  WASD / HJKL / ←↓↑→ - 轉向")
        print("  P / 空白           - 暫停")
        print("  R                  - 重新開始")
        print("  1-9                - 調整速度")
        print("  Q / ESC            - 離開")
        print("=" * 60)

        self.env.render()
        key_directions = _key_directions(pygame)

        running = True
        last_step_time = time.time()
        while running:
            running = self.handle_input(pygame, key_directions)

            # 高速模式下每幀執行多步
            current_time = time.time()
            steps_to_run = min(int((current_time - last_step_time) / self.step_delay), 100)
            if steps_to_run > 0:
                for _ in range(steps_to_run):
                    self.update()
                last_step_time = current_time

            self.env.render()

        self.env.close()


def main(argv=None):
    args = build_parser().parse_args(argv)

    SnakeEnv.DEBUG_MODE = args.debug
    Solver.DEBUG_MODE = args.debug

    try:
        options = options_from_args(args)
        if args.headless:
            run_headless(options, args.episodes, args.max_steps, args.seed)
        else:
            SnakeViewer(options).run()
    except MalformedCircuitError as e:
        print(f"{C.RED}[✗] {e}{C.END}")
        print(f"{C.DIM}  提示: 試試偶數的寬高，或不同的初始蛇身{C.END}")
        return 1
    except ValueError as e:
        print(f"{C.RED}[✗] {e}{C.END}")
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
