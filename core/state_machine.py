"""
Game 狀態機：集中管理所有狀態轉換

waiting ──(主持人開始)──> playing ──(第一位玩家連線)──> finished

finished 是終止狀態，不允許任何後續轉換
"""
import logging

from models import Game, GameStatus
from core.exceptions import InvalidStateTransition

logger = logging.getLogger(__name__)


class GameStateMachine:
    """Game 狀態轉換規則"""

    TRANSITIONS = {
        GameStatus.WAITING: {GameStatus.PLAYING},
        GameStatus.PLAYING: {GameStatus.FINISHED},
        GameStatus.FINISHED: set(),
    }

    @classmethod
    def can_transition(cls, current: GameStatus, target: GameStatus) -> bool:
        return target in cls.TRANSITIONS.get(current, set())

    @classmethod
    def transition(cls, game: Game, target: GameStatus) -> Game:
        """
        執行狀態轉換（只改記憶體中的 ORM 物件，由呼叫者負責 commit）

        參數：
            game: 已鎖定的 Game
            target: 目標狀態

        返回：
            同一個 Game 物件

        異常：
            InvalidStateTransition: 不允許的轉換
        """
        current = GameStatus(game.status)
        if not cls.can_transition(current, target):
            raise InvalidStateTransition(
                f"Game {game.id} cannot go from {current.value} to {target.value}"
            )

        game.status = target
        logger.info(f"Game {game.id} state changed: {current.value} -> {target.value}")
        return game
