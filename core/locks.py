"""
並發控制工具

提供 Database-level 的鎖定機制，縮小競態條件（Race Condition）的窗口

主要使用 PostgreSQL 的 SELECT ... FOR UPDATE 來實現悲觀鎖（Pessimistic Locking）
SQLite 不支援 FOR UPDATE，會被忽略（SQLite 本身是整個資料庫寫入鎖）
"""
from sqlalchemy.orm import Session, Query

from models import Game, Board


def with_game_lock(game_id: str, db: Session) -> Query:
    """
    鎖定一個 Game（行級鎖）

    使用場景：
    - 開始遊戲（waiting -> playing）
    - 宣告贏家（-> finished），確保同一時間只有一個請求在判斷 status

    範例：
        game = with_game_lock(game_id, db).first()
        if not game:
            raise GameNotFound(game_id)
        game.status = GameStatus.PLAYING
        db.commit()

    參數：
        game_id: Game 的 UUID
        db: SQLAlchemy Session

    返回：
        Query object（需要呼叫 .first() 或 .one() 來取得結果）

    注意：
        - nowait=False 表示如果鎖被佔用，會等待
        - 必須在 transaction 內使用（確保有 commit 或 rollback）
    """
    return db.query(Game).filter(
        Game.id == game_id
    ).with_for_update(nowait=False)


def with_board_lock(player_id: str, db: Session) -> Query:
    """
    鎖定一個玩家的 Board（行級鎖）

    使用場景：
    - 合併標記（marked_cells 只增不減），防止同一玩家兩個連線互相覆蓋

    參數：
        player_id: Player UUID
        db: SQLAlchemy Session

    返回：
        Query object
    """
    return db.query(Board).filter(
        Board.player_id == player_id
    ).with_for_update(nowait=False)
