"""
Repository：遊戲資料的外部儲存介面

SessionController 只透過這個介面存取共享狀態（read / insert /
conditional update / subscribe），不直接碰 ORM 物件或共享記憶體。

SqlGameRepository 的每個方法都是一次「到儲存端的往返」：
1. 開一個新的 DB Session
2. 交給 GameManager 執行（@transactional 負責 commit / rollback）
3. 把 ORM 物件轉成 *Row（Session 關閉後仍可使用）
4. commit 成功後發布 ChangeEvent

SQLAlchemy 層的錯誤一律包成 StoreUnavailable 往上丟，不自動重試
"""
import logging
from contextlib import contextmanager
from typing import Callable, List, Optional, Protocol, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from schemas import GameRow, PlayerRow, BoardRow, CalledNumberRow
from core.change_feed import (
    ChangeFeed,
    Subscription,
    TABLE_GAMES,
    TABLE_PLAYERS,
    TABLE_BOARDS,
    TABLE_CALLED_NUMBERS,
    INSERT,
    UPDATE,
)
from core.exceptions import StoreUnavailable
from core.game_manager import GameManager

logger = logging.getLogger(__name__)


class GameRepository(Protocol):
    """外部儲存的介面（測試或其他後端可以替換）"""

    def create_game(self) -> GameRow: ...

    def get_game(self, game_id: str) -> GameRow: ...

    def list_open_games(self) -> List[GameRow]: ...

    def find_player(self, game_id: str, player_name: str) -> Optional[PlayerRow]: ...

    def get_player(self, player_id: str) -> PlayerRow: ...

    def insert_player(self, game_id: str, player_name: str) -> PlayerRow: ...

    def get_board(self, player_id: str) -> Optional[BoardRow]: ...

    def insert_board(self, player_id: str, board_data: List[List[int]],
                     marked_cells: List[int]) -> BoardRow: ...

    def update_marks(self, player_id: str, marked_cells: List[int]) -> BoardRow: ...

    def list_players_with_boards(self, game_id: str) -> List[Tuple[PlayerRow, Optional[BoardRow]]]: ...

    def list_calls(self, game_id: str) -> List[CalledNumberRow]: ...

    def insert_call(self, game_id: str, number: int) -> CalledNumberRow: ...

    def start_game(self, game_id: str) -> GameRow: ...

    def finalize_winner(self, game_id: str, player_id: str) -> Optional[GameRow]: ...

    def subscribe(self, game_id: str) -> Subscription: ...

    def release(self, game_id: str) -> None: ...


class SqlGameRepository:
    """以 SQLAlchemy 實作的 GameRepository"""

    def __init__(self, session_factory: Callable[[], Session], feed: ChangeFeed):
        self._session_factory = session_factory
        self.feed = feed

    @contextmanager
    def _session(self):
        db = self._session_factory()
        try:
            yield db
        except IntegrityError:
            # 由呼叫者決定如何處理（例如同名玩家改走 rejoin）
            raise
        except SQLAlchemyError as e:
            logger.error(f"Store operation failed: {e}", exc_info=True)
            raise StoreUnavailable(str(e)) from e
        finally:
            db.close()

    # ============ Game ============

    def create_game(self) -> GameRow:
        with self._session() as db:
            row = GameRow.model_validate(GameManager.create_game(db))
        self.feed.publish(TABLE_GAMES, INSERT, row.id, row)
        return row

    def get_game(self, game_id: str) -> GameRow:
        with self._session() as db:
            return GameRow.model_validate(GameManager.get_game(db, game_id))

    def list_open_games(self) -> List[GameRow]:
        with self._session() as db:
            return [GameRow.model_validate(g) for g in GameManager.list_open_games(db)]

    def start_game(self, game_id: str) -> GameRow:
        with self._session() as db:
            row = GameRow.model_validate(GameManager.start_game(db, game_id))
        self.feed.publish(TABLE_GAMES, UPDATE, game_id, row)
        return row

    def finalize_winner(self, game_id: str, player_id: str) -> Optional[GameRow]:
        """
        宣告贏家（條件式更新）

        返回：
            更新後的 GameRow；None 表示遊戲不是 playing，本次宣告無效
        """
        with self._session() as db:
            result = GameManager.finalize_winner(db, game_id, player_id)
            if result is None:
                return None
            game, player = result
            game_row = GameRow.model_validate(game)
            player_row = PlayerRow.model_validate(player)

        self.feed.publish(TABLE_PLAYERS, UPDATE, game_id, player_row)
        self.feed.publish(TABLE_GAMES, UPDATE, game_id, game_row)
        return game_row

    # ============ Player / Board ============

    def find_player(self, game_id: str, player_name: str) -> Optional[PlayerRow]:
        with self._session() as db:
            player = GameManager.find_player(db, game_id, player_name)
            return PlayerRow.model_validate(player) if player else None

    def get_player(self, player_id: str) -> PlayerRow:
        with self._session() as db:
            return PlayerRow.model_validate(GameManager.get_player(db, player_id))

    def insert_player(self, game_id: str, player_name: str) -> PlayerRow:
        """
        建立玩家；若同名玩家剛好被另一個連線搶先建立，直接回傳既有玩家
        """
        try:
            with self._session() as db:
                row = PlayerRow.model_validate(GameManager.insert_player(db, game_id, player_name))
        except IntegrityError:
            existing = self.find_player(game_id, player_name)
            if existing is None:
                raise StoreUnavailable(f"Could not create player {player_name} in game {game_id}")
            logger.warning(f"Player {player_name} already exists in game {game_id}, reusing {existing.id}")
            return existing

        self.feed.publish(TABLE_PLAYERS, INSERT, game_id, row)
        return row

    def get_board(self, player_id: str) -> Optional[BoardRow]:
        with self._session() as db:
            board = GameManager.get_board(db, player_id)
            return BoardRow.model_validate(board) if board else None

    def insert_board(self, player_id: str, board_data: List[List[int]],
                     marked_cells: List[int]) -> BoardRow:
        with self._session() as db:
            player = GameManager.get_player(db, player_id)
            game_id = player.game_id
            row = BoardRow.model_validate(
                GameManager.insert_board(db, player_id, board_data, marked_cells)
            )
        self.feed.publish(TABLE_BOARDS, INSERT, game_id, row)
        return row

    def update_marks(self, player_id: str, marked_cells: List[int]) -> BoardRow:
        with self._session() as db:
            player = GameManager.get_player(db, player_id)
            game_id = player.game_id
            row = BoardRow.model_validate(GameManager.update_marks(db, player_id, marked_cells))
        self.feed.publish(TABLE_BOARDS, UPDATE, game_id, row)
        return row

    def list_players_with_boards(self, game_id: str) -> List[Tuple[PlayerRow, Optional[BoardRow]]]:
        with self._session() as db:
            return [
                (PlayerRow.model_validate(player), BoardRow.model_validate(board) if board else None)
                for player, board in GameManager.list_players_with_boards(db, game_id)
            ]

    # ============ CalledNumber ============

    def list_calls(self, game_id: str) -> List[CalledNumberRow]:
        with self._session() as db:
            return [CalledNumberRow.model_validate(c) for c in GameManager.list_calls(db, game_id)]

    def insert_call(self, game_id: str, number: int) -> CalledNumberRow:
        with self._session() as db:
            row = CalledNumberRow.model_validate(GameManager.insert_call(db, game_id, number))
        self.feed.publish(TABLE_CALLED_NUMBERS, INSERT, game_id, row)
        return row

    # ============ Change feed ============

    def subscribe(self, game_id: str) -> Subscription:
        return self.feed.subscribe(game_id)

    def release(self, game_id: str) -> None:
        """遊戲結束且所有連線都離開後，丟掉它的變更通知狀態"""
        self.feed.release(game_id)
