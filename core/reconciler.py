"""
Game State Reconciler：把變更通知 fold 進客戶端的本地狀態

每個連線中的玩家都有一份 LocalView：
    (Game, 自己的 Player, 自己的 Board, 其他玩家與其 Board, 開號紀錄)

fold(view, event) 只改本地狀態，並回傳「需要寫回儲存端」的 Effect，
真正的寫入由 SessionController 執行。

規則：
- called_numbers INSERT：標記自己的盤面；本地標記多於已寫回的標記才寫回，
  再判斷是否連線；連線且自己尚未 has_bingo 才宣告贏家
  （這是唯一能讓遊戲結束的路徑）
- players / boards 變更：整份重新讀取玩家列表（不做增量合併）
- games 變更：整個取代本地 Game（只有 status / winner 會變，而且都是單向的）

Effect 不是由「這筆事件改了什麼」決定，而是由「本地狀態還欠儲存端什麼」決定
（見 pending）。寫入失敗時本地狀態不回滾，下一次 fold 或 pump 會再產生同樣的 Effect。

標記是集合聯集（可交換、冪等），所以事件到達順序不影響最終結果；
「最新號碼」則以 called_at 最大者為準，不以到達順序為準。
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from models import GameStatus
from schemas import GameRow, PlayerRow, CalledNumberRow
from services.board_engine import Board, mark_number, check_win, marked_indices
from core.change_feed import (
    ChangeEvent,
    TABLE_GAMES,
    TABLE_PLAYERS,
    TABLE_BOARDS,
    TABLE_CALLED_NUMBERS,
)

logger = logging.getLogger(__name__)


# ============ 本地狀態 ============

@dataclass
class PlayerView:
    player: PlayerRow
    board: Optional[Board] = None


@dataclass
class LocalView:
    game: GameRow
    me: PlayerRow
    my_board: Board
    players: List[PlayerView] = field(default_factory=list)
    calls: Dict[int, CalledNumberRow] = field(default_factory=dict)
    # 已確認寫進儲存端的標記
    persisted_marks: Set[int] = field(default_factory=set)
    players_stale: bool = False

    @property
    def is_host(self) -> bool:
        """主持人 = 依加入時間排序後的第一位玩家"""
        return bool(self.players) and self.players[0].player.id == self.me.id

    @property
    def called_set(self) -> Set[int]:
        return set(self.calls)

    @property
    def calls_in_order(self) -> List[CalledNumberRow]:
        return sorted(self.calls.values(), key=lambda c: (c.called_at, c.number))

    @property
    def latest_call(self) -> Optional[CalledNumberRow]:
        if not self.calls:
            return None
        return max(self.calls.values(), key=lambda c: (c.called_at, c.number))

    def record_call(self, call: CalledNumberRow) -> bool:
        """記錄一筆開號；重複的號碼回傳 False"""
        if call.number in self.calls:
            return False
        self.calls[call.number] = call
        return True

    def mark_persisted(self, marked_cells: Iterable[int]) -> None:
        self.persisted_marks |= set(marked_cells)

    @property
    def has_unclaimed_win(self) -> bool:
        return (
            check_win(self.my_board)
            and not self.me.has_bingo
            and self.game.status == GameStatus.PLAYING
        )


# ============ Effects ============

@dataclass(frozen=True)
class PersistMarks:
    player_id: str
    marked_cells: Tuple[int, ...]


@dataclass(frozen=True)
class ClaimBingo:
    game_id: str
    player_id: str


@dataclass(frozen=True)
class ReloadPlayers:
    game_id: str


class GameStateReconciler:
    """把 ChangeEvent 依序 fold 進 LocalView"""

    def fold(self, view: LocalView, event: ChangeEvent) -> list:
        """
        套用一筆事件

        參數：
            view: 本地狀態（會被就地更新）
            event: 變更通知

        返回：
            需要依序執行的 Effect 列表（包含先前寫入失敗、尚未完成的部分）
        """
        if event.game_id != view.game.id:
            return []

        if event.table == TABLE_CALLED_NUMBERS:
            if not view.record_call(event.row):
                logger.debug(f"Duplicate call {event.row.number} for game {view.game.id}")
            view.my_board = mark_number(view.my_board, event.row.number)
        elif event.table in (TABLE_PLAYERS, TABLE_BOARDS):
            view.players_stale = True
        elif event.table == TABLE_GAMES:
            view.game = event.row
        else:
            logger.debug(f"Ignoring event on unknown table {event.table}")

        return self.pending(view)

    def catch_up(self, view: LocalView) -> list:
        """
        重新套用所有已開號碼（rejoin 時補上離線期間錯過的標記）
        """
        board = view.my_board
        for number in view.calls:
            board = mark_number(board, number)
        view.my_board = board
        return self.pending(view)

    def pending(self, view: LocalView) -> list:
        """
        本地狀態與儲存端之間還沒補上的寫入

        返回：
            依序為 PersistMarks、ClaimBingo、ReloadPlayers（都不需要時為空列表）
        """
        effects = []
        marks = marked_indices(view.my_board)
        if not set(marks) <= view.persisted_marks:
            effects.append(PersistMarks(view.me.id, tuple(marks)))

        if view.has_unclaimed_win:
            logger.info(f"Player {view.me.id} has an unclaimed line in game {view.game.id}")
            effects.append(ClaimBingo(view.game.id, view.me.id))

        if view.players_stale:
            effects.append(ReloadPlayers(view.game.id))
        return effects
