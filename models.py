"""
資料庫模型

欄位名稱就是對外的資料契約（games / players / boards / called_numbers），
前端與變更通知都直接使用這些名稱，請勿任意更名。
"""
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    JSON,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class GameStatus(str, enum.Enum):
    WAITING = "waiting"
    PLAYING = "playing"
    FINISHED = "finished"


class Game(Base):
    __tablename__ = "games"

    id = Column(String(36), primary_key=True, default=_new_id)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    status = Column(
        SQLEnum(GameStatus, name="game_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=GameStatus.WAITING
    )
    # 建立者的識別碼，只做紀錄用；主持人一律以「最早加入的玩家」判定
    host_id = Column(String, nullable=False)
    winner_id = Column(String(36), nullable=True)

    players = relationship(
        "Player",
        back_populates="game",
        foreign_keys="Player.game_id",
        order_by="Player.created_at"
    )


class Player(Base):
    __tablename__ = "players"
    __table_args__ = (
        UniqueConstraint("game_id", "player_name", name="uq_players_game_name"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    game_id = Column(String(36), ForeignKey("games.id"), nullable=False, index=True)
    player_name = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    has_bingo = Column(Boolean, nullable=False, default=False)

    game = relationship("Game", back_populates="players", foreign_keys=[game_id])
    board = relationship("Board", back_populates="player", uselist=False)


class Board(Base):
    __tablename__ = "boards"

    id = Column(String(36), primary_key=True, default=_new_id)
    player_id = Column(String(36), ForeignKey("players.id"), nullable=False, unique=True)
    board_data = Column(JSON, nullable=False)  # 5x5 數字矩陣，中央 FREE 為 0
    marked_cells = Column(JSON, nullable=False, default=list)  # 已標記的 flat index（row*5+col）

    player = relationship("Player", back_populates="board")


class CalledNumber(Base):
    __tablename__ = "called_numbers"
    __table_args__ = (
        # 同一局不可重複開出同一個號碼
        UniqueConstraint("game_id", "number", name="uq_called_numbers_game_number"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    game_id = Column(String(36), ForeignKey("games.id"), nullable=False, index=True)
    number = Column(Integer, nullable=False)
    called_at = Column(DateTime(timezone=True), nullable=False, default=_now)
