"""
賓果盤引擎：5x5 不可變盤面上的純函式

職責：
1. 依 B-I-N-G-O 欄位範圍產生盤面
2. 盤面與儲存格式互轉（數字矩陣 + 已標記的平面索引）
3. 標記號碼、判斷連線

不做 I/O，不碰遊戲狀態
"""
import random
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional, Tuple

BOARD_SIZE = 5
FREE_ROW = FREE_COL = 2
FREE_INDEX = FREE_ROW * BOARD_SIZE + FREE_COL  # 12

COLUMN_LETTERS = "BINGO"
COLUMN_RANGES = [
    (1, 15),   # B
    (16, 30),  # I
    (31, 45),  # N
    (46, 60),  # G
    (61, 75),  # O
]


@dataclass(frozen=True)
class BoardCell:
    number: int
    marked: bool = False
    is_free: bool = False


Board = Tuple[Tuple[BoardCell, ...], ...]

FREE_CELL = BoardCell(number=0, marked=True, is_free=True)


def _is_free_position(row: int, col: int) -> bool:
    return row == FREE_ROW and col == FREE_COL


def _lines() -> List[Tuple[str, List[Tuple[int, int]]]]:
    lines = []
    for i in range(BOARD_SIZE):
        lines.append((f"row-{i}", [(i, c) for c in range(BOARD_SIZE)]))
    for i in range(BOARD_SIZE):
        lines.append((f"col-{i}", [(r, i) for r in range(BOARD_SIZE)]))
    lines.append(("diag-main", [(i, i) for i in range(BOARD_SIZE)]))
    lines.append(("diag-anti", [(i, BOARD_SIZE - 1 - i) for i in range(BOARD_SIZE)]))
    return lines


# 5 列 + 5 欄 + 2 條對角線
BINGO_LINES = _lines()


def generate_board(rng: Optional[random.Random] = None) -> Board:
    """
    產生新的賓果盤

    每一欄從自己的範圍內不重複抽號，中央格是預先標記的 FREE

    參數：
        rng: 可選的 random.Random（測試時用固定 seed）

    返回：
        Board
    """
    rng = rng or random.Random()
    columns = []
    for col, (low, high) in enumerate(COLUMN_RANGES):
        count = BOARD_SIZE - 1 if col == FREE_COL else BOARD_SIZE
        columns.append(rng.sample(range(low, high + 1), count))

    rows = []
    for row in range(BOARD_SIZE):
        cells = []
        for col in range(BOARD_SIZE):
            if _is_free_position(row, col):
                cells.append(FREE_CELL)
                continue
            # N 欄第 2 列是 FREE，下方各列往上借一格
            idx = row - 1 if col == FREE_COL and row > FREE_ROW else row
            cells.append(BoardCell(number=columns[col][idx]))
        rows.append(tuple(cells))
    return tuple(rows)


def serialize_board(board: Board) -> List[List[int]]:
    """只輸出數字矩陣（FREE 為 0），標記另外存"""
    return [[cell.number for cell in row] for row in board]


def deserialize_board(board_data: List[List[int]], marked_cells: Iterable[int] = ()) -> Board:
    """
    由儲存的數字矩陣與已標記索引重建盤面

    參數：
        board_data: 5x5 數字矩陣
        marked_cells: 已標記格子的平面索引（row * 5 + col）

    返回：
        Board；中央格一律是已標記的 FREE，不看 marked_cells
    """
    marked = set(marked_cells)
    rows = []
    for r, numbers in enumerate(board_data):
        cells = []
        for c, number in enumerate(numbers):
            if _is_free_position(r, c):
                cells.append(FREE_CELL)
            else:
                cells.append(BoardCell(number=number, marked=(r * BOARD_SIZE + c) in marked))
        rows.append(tuple(cells))
    return tuple(rows)


def mark_number(board: Board, number: int) -> Board:
    """標記號碼（冪等）；號碼不在盤面上時回傳相同內容的盤面"""
    return tuple(
        tuple(
            replace(cell, marked=True) if cell.number == number and not cell.is_free else cell
            for cell in row
        )
        for row in board
    )


def merge_marks(board: Board, marked_cells: Iterable[int]) -> Board:
    """把額外的已標記索引併入盤面，只增不減"""
    extra = set(marked_cells)
    return tuple(
        tuple(
            replace(cell, marked=True)
            if (r * BOARD_SIZE + c) in extra and not cell.marked
            else cell
            for c, cell in enumerate(row)
        )
        for r, row in enumerate(board)
    )


def winning_lines(board: Board) -> List[str]:
    """所有已連成的線，例如 ["row-0", "diag-main"]"""
    return [
        name for name, cells in BINGO_LINES
        if all(board[r][c].marked for r, c in cells)
    ]


def check_win(board: Board) -> bool:
    """
    判斷是否連線

    參數：
        board: 盤面

    返回：
        任一條線（5 列、5 欄、2 條對角線）全部標記時為 True；每次都從目前的標記重新計算
    """
    return any(
        all(board[r][c].marked for r, c in cells)
        for _, cells in BINGO_LINES
    )


def marked_indices(board: Board) -> List[int]:
    """已標記、非 FREE 格子的平面索引（由小到大）"""
    return [
        r * BOARD_SIZE + c
        for r, row in enumerate(board)
        for c, cell in enumerate(row)
        if cell.marked and not cell.is_free
    ]


def column_letter(number: int) -> str:
    """號碼所屬的欄位字母（B / I / N / G / O）"""
    for letter, (low, high) in zip(COLUMN_LETTERS, COLUMN_RANGES):
        if low <= number <= high:
            return letter
    raise ValueError(f"{number} is not a bingo number")


def call_label(number: int) -> str:
    """開號顯示用的標籤，例如 N-42"""
    return f"{column_letter(number)}-{number}"
