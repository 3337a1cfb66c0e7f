"""
🐍 Snake Self-Play - Numba 加速搜尋核心
========================================

這個檔案包含自動駕駛（self-play）用到的底層搜尋演算法：
1. BFS（廣度優先搜尋）最短路徑
2. A*（曼哈頓距離啟發式）最短路徑
3. Flood Fill 區域大小計算（無路可走時的 Fallback）

所有核心都用 @njit 編譯，並且只操作「攤平」的一維陣列：
座標 (r, c) 對應索引 r * width + c。

技術特點：
- 預分配緩衝區：佇列、堆積、closed 標記都由呼叫端傳入，重複使用
- parent / distance 直接寫進 GridCellStore 的陣列，不另外配置
- A* 的同分處理是確定性的：(f, r, c) 字典序最小者先出堆積
"""

import numpy as np
from numba import njit  # Numba 的 No-Python JIT 編譯器

# =========================================================================
#                     全域常數（供 Numba 編譯時使用）
# =========================================================================

# 「無限遠」距離，與 int32 的最大值相同
INF = 2147483647

# 四方向鄰居偏移量 (上、下、左、右)，順序與 Direction 列舉一致
DR = np.array([-1, 1, 0, 0], dtype=np.int32)  # 行變化
DC = np.array([0, 0, -1, 1], dtype=np.int32)  # 列變化


# =========================================================================
#                 BFS 最短路徑（均勻權重）
# =========================================================================

@njit(cache=True)
def bfs_search_buffered(blocked, width, height, src, dst, parent_buf, dist_buf, queue_buf):
    """
    BFS 最短路徑：從 src 擴展到 dst

    所有邊的權重都是 1，所以第一次從佇列取出 dst 時，
    它的距離就是最短步數。

    參數：
    - blocked: 攤平的佔用陣列（1 = 蛇身，尾巴已排除）
    - width, height: 盤面大小
    - src, dst: 起點 / 終點的攤平索引
    - parent_buf: 每格的前一格索引（-1 = 無），就地寫入
    - dist_buf: 每格的暫定距離（INF = 未到達），就地寫入
    - queue_buf: 長度至少 width * height 的佇列緩衝區

    返回：
    - True 表示找到路徑，False 表示 frontier 已經空了
    """
    dist_buf[src] = 0

    q_head = 0
    q_tail_idx = 0
    queue_buf[q_tail_idx] = src
    q_tail_idx += 1

    while q_head < q_tail_idx:
        cur = queue_buf[q_head]
        q_head += 1

        if cur == dst:
            return True

        r = cur // width
        c = cur - r * width

        for i in range(4):
            nr, nc = r + DR[i], c + DC[i]
            if 0 <= nr < height and 0 <= nc < width:
                nxt = nr * width + nc
                # 第一次看到的格子就是最短距離
                if blocked[nxt] == 0 and dist_buf[nxt] == INF:
                    parent_buf[nxt] = cur
                    dist_buf[nxt] = dist_buf[cur] + 1
                    queue_buf[q_tail_idx] = nxt
                    q_tail_idx += 1

    return False


# =========================================================================
#                 A* 最短路徑（曼哈頓啟發式）
# =========================================================================

@njit(cache=True)
def _heap_push(heap, size, key):
    """最小堆積插入，返回新的大小"""
    i = size
    heap[i] = key
    while i > 0:
        p = (i - 1) >> 1
        if heap[p] <= heap[i]:
            break
        tmp = heap[p]
        heap[p] = heap[i]
        heap[i] = tmp
        i = p
    return size + 1


@njit(cache=True)
def _heap_pop(heap, size):
    """最小堆積取出堆頂，返回 (key, 新的大小)"""
    top = heap[0]
    size -= 1
    heap[0] = heap[size]
    i = 0
    while True:
        left = 2 * i + 1
        if left >= size:
            break
        smallest = left
        right = left + 1
        if right < size and heap[right] < heap[left]:
            smallest = right
        if heap[i] <= heap[smallest]:
            break
        tmp = heap[i]
        heap[i] = heap[smallest]
        heap[smallest] = tmp
        i = smallest
    return top, size


@njit(cache=True)
def astar_search_buffered(blocked, width, height, src, dst, parent_buf, dist_buf,
                          closed_buf, heap_buf):
    """
    A* 最短路徑

    優先權 f = g + h，h 為到 dst 的曼哈頓距離。
    堆積裡存的是單一個 int64 key = f * N + 攤平索引，
    所以 f 相同時會依 (r, c) 字典序取出，結果可重現。

    一個格子可以被推入多次，但只有在「尚未 closed」且
    「找到嚴格更短的 g」時才會更新 parent 並再次推入。
    已經 closed 的格子從堆積取出時直接跳過。

    參數：
    - blocked, width, height, src, dst, parent_buf, dist_buf: 同 BFS
    - closed_buf: 長度 N 的 int8 緩衝區（函數內會清空）
    - heap_buf: 長度至少 4N + 1 的 int64 緩衝區

    返回：
    - True 表示找到路徑
    """
    n = width * height
    closed_buf[:] = 0

    dst_r = dst // width
    dst_c = dst - dst_r * width
    src_r = src // width
    src_c = src - src_r * width

    dist_buf[src] = 0
    h0 = abs(src_r - dst_r) + abs(src_c - dst_c)
    size = _heap_push(heap_buf, 0, np.int64(h0) * n + src)

    while size > 0:
        key, size = _heap_pop(heap_buf, size)
        cur = key % n

        if closed_buf[cur] == 1:
            continue

        if cur == dst:
            return True

        closed_buf[cur] = 1

        r = cur // width
        c = cur - r * width

        for i in range(4):
            nr, nc = r + DR[i], c + DC[i]
            if 0 <= nr < height and 0 <= nc < width:
                nxt = nr * width + nc
                if blocked[nxt] == 0 and closed_buf[nxt] == 0:
                    g = dist_buf[cur] + 1
                    if g < dist_buf[nxt]:
                        parent_buf[nxt] = cur
                        dist_buf[nxt] = g
                        f = g + abs(nr - dst_r) + abs(nc - dst_c)
                        size = _heap_push(heap_buf, size, np.int64(f) * n + nxt)

    return False


# =========================================================================
#                 FLOOD FILL（無路可走時的 Fallback）
# =========================================================================

@njit(cache=True)
def get_flood_fill_area_buffered(blocked, width, height, start, visited_buf, queue_buf):
    """
    Flood Fill：計算從 start 出發能到達多少格子

    用途：沿著 circuit 的下一格不能走時，
    選擇「空間最大」的方向（死得最慢）。

    返回：
    - count: 可達格子數量（起點被阻擋時為 0）
    """
    if blocked[start] == 1:
        return 0

    visited_buf[:] = 0

    q_head = 0
    q_tail_idx = 0
    queue_buf[q_tail_idx] = start
    q_tail_idx += 1
    visited_buf[start] = 1
    count = 0

    while q_head < q_tail_idx:
        cur = queue_buf[q_head]
        q_head += 1
        count += 1

        r = cur // width
        c = cur - r * width

        for i in range(4):
            nr, nc = r + DR[i], c + DC[i]
            if 0 <= nr < height and 0 <= nc < width:
                nxt = nr * width + nc
                if visited_buf[nxt] == 0 and blocked[nxt] == 0:
                    visited_buf[nxt] = 1
                    queue_buf[q_tail_idx] = nxt
                    q_tail_idx += 1

    return count


# =========================================================================
#                     緩衝區工廠函數
# =========================================================================

def create_search_buffers(n: int) -> dict:
    """
    創建搜尋核心所需的預分配緩衝區

    由 GridCellStore 在建立時呼叫一次，之後每個 tick 都重複使用。

    緩衝區說明：
    - queue: BFS / Flood Fill 佇列（每格最多入列一次）
    - heap: A* 開放列表（每格最多被四個鄰居各推入一次）
    - closed: A* closed 標記
    - flood: Flood Fill 訪問標記

    參數：
    - n: 盤面格子總數
    """
    return {
        'queue': np.zeros(n, dtype=np.int32),
        'heap': np.zeros(4 * n + 1, dtype=np.int64),
        'closed': np.zeros(n, dtype=np.int8),
        'flood': np.zeros(n, dtype=np.int8),
    }
