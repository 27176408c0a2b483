"""
Game Manager：管理 Game 的完整生命週期（資料庫層）

職責：
1. 建立 Game
2. 玩家加入（Player + Board）
3. 開始遊戲（狀態轉換 + 驗證）
4. 開號（寫入開號紀錄）
5. 宣告贏家（條件式更新）

Linus 原則：
- 單一職責：只管資料列的寫入，不管本地畫面狀態（那是 Reconciler 的事）
- 消除特殊情況：所有狀態變更經過 StateMachine
- 資料結構優先：先檢查資料是否符合要求，再執行操作
"""
import logging
import random
import string
import time
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import Game, Player, Board, CalledNumber, GameStatus
from core.state_machine import GameStateMachine
from core.locks import with_game_lock, with_board_lock
from core.exceptions import (
    GameNotFound,
    PlayerNotFound,
    BoardNotFound,
    NoPlayersInGame,
    NumberAlreadyCalled,
)
from database import transactional

logger = logging.getLogger(__name__)


def generate_host_token() -> str:
    """
    建立者識別碼，格式：host_<毫秒>_<9 碼隨機>

    注意：只做紀錄，不拿來判斷主持人
    """
    suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"host_{int(time.time() * 1000)}_{suffix}"


class GameManager:
    """Game 生命週期管理器"""

    @staticmethod
    @transactional
    def create_game(db: Session) -> Game:
        """
        建立新遊戲（status = waiting）

        參數：
            db: SQLAlchemy Session

        返回：
            Game
        """
        game = Game(host_id=generate_host_token(), status=GameStatus.WAITING)
        db.add(game)
        db.flush()  # 取得 game.id

        logger.info(f"Created game {game.id}")
        return game

    @staticmethod
    def get_game(db: Session, game_id: str) -> Game:
        game = db.query(Game).filter(Game.id == game_id).first()
        if not game:
            raise GameNotFound(game_id)
        return game

    @staticmethod
    def list_open_games(db: Session) -> List[Game]:
        """大廳列表：waiting / playing 的遊戲，新的在前"""
        return db.query(Game).filter(
            Game.status.in_([GameStatus.WAITING, GameStatus.PLAYING])
        ).order_by(Game.created_at.desc()).all()

    @staticmethod
    def find_player(db: Session, game_id: str, player_name: str) -> Optional[Player]:
        return db.query(Player).filter(
            Player.game_id == game_id,
            Player.player_name == player_name
        ).first()

    @staticmethod
    def get_player(db: Session, player_id: str) -> Player:
        player = db.query(Player).filter(Player.id == player_id).first()
        if not player:
            raise PlayerNotFound(player_id)
        return player

    @staticmethod
    @transactional
    def insert_player(db: Session, game_id: str, player_name: str) -> Player:
        """
        建立玩家（同一局同名只能有一位，由 unique constraint 保證）

        異常：
            GameNotFound: Game 不存在
            IntegrityError: 同名玩家已存在（由呼叫者改走 rejoin）
        """
        GameManager.get_game(db, game_id)

        player = Player(game_id=game_id, player_name=player_name, has_bingo=False)
        db.add(player)
        db.flush()

        logger.info(f"Player {player.id} ({player_name}) joined game {game_id}")
        return player

    @staticmethod
    def get_board(db: Session, player_id: str) -> Optional[Board]:
        return db.query(Board).filter(Board.player_id == player_id).first()

    @staticmethod
    @transactional
    def insert_board(db: Session, player_id: str, board_data: List[List[int]],
                     marked_cells: List[int]) -> Board:
        board = Board(player_id=player_id, board_data=board_data, marked_cells=list(marked_cells))
        db.add(board)
        db.flush()
        return board

    @staticmethod
    @transactional
    def update_marks(db: Session, player_id: str, marked_cells: List[int]) -> Board:
        """
        更新玩家的已標記格子

        標記只會由 false 變 true，所以這裡做聯集而不是覆蓋，
        同一玩家兩個連線同時寫入也不會互相抹掉

        異常：
            BoardNotFound: 玩家沒有 Board
        """
        board = with_board_lock(player_id, db).first()
        if not board:
            raise BoardNotFound(player_id)

        merged = sorted(set(board.marked_cells or []) | set(marked_cells))
        if merged != list(board.marked_cells or []):
            # JSON 欄位要整個重新指定，SQLAlchemy 才會偵測到變更
            board.marked_cells = merged
        return board

    @staticmethod
    def list_players_with_boards(db: Session, game_id: str) -> List[Tuple[Player, Optional[Board]]]:
        """依加入時間排序的玩家與各自的 Board"""
        rows = db.query(Player, Board).outerjoin(
            Board, Board.player_id == Player.id
        ).filter(
            Player.game_id == game_id
        ).order_by(Player.created_at.asc()).all()
        return [(player, board) for player, board in rows]

    @staticmethod
    def list_calls(db: Session, game_id: str) -> List[CalledNumber]:
        return db.query(CalledNumber).filter(
            CalledNumber.game_id == game_id
        ).order_by(CalledNumber.called_at.asc()).all()

    @staticmethod
    @transactional
    def insert_call(db: Session, game_id: str, number: int) -> CalledNumber:
        """
        寫入一筆開號紀錄

        異常：
            NumberAlreadyCalled: (game_id, number) 已存在
        """
        call = CalledNumber(game_id=game_id, number=number)
        db.add(call)
        try:
            db.flush()
        except IntegrityError as e:
            raise NumberAlreadyCalled(game_id, number) from e

        logger.info(f"Number {number} called in game {game_id}")
        return call

    @staticmethod
    @transactional
    def start_game(db: Session, game_id: str) -> Game:
        """
        開始遊戲（狀態轉換 waiting -> playing）

        前置條件：
        1. Game 必須存在
        2. Game 狀態必須是 waiting
        3. 至少一位玩家

        異常：
            GameNotFound: Game 不存在
            NoPlayersInGame: 沒有玩家
            InvalidStateTransition: Game 狀態不是 waiting
        """
        # 1. 取得並鎖定 Game
        game = with_game_lock(game_id, db).first()
        if not game:
            raise GameNotFound(game_id)

        # 2. 驗證玩家數量
        player_count = db.query(Player).filter(Player.game_id == game_id).count()
        if player_count < 1:
            raise NoPlayersInGame(f"Need at least 1 player to start game {game_id}")

        # 3. 狀態轉換
        GameStateMachine.transition(game, GameStatus.PLAYING)
        logger.info(f"Starting game {game_id} with {player_count} players")
        return game

    @staticmethod
    @transactional
    def finalize_winner(db: Session, game_id: str, player_id: str) -> Optional[Tuple[Game, Player]]:
        """
        宣告贏家（狀態轉換 -> finished，同時設定 winner_id 與 has_bingo）

        並發：
        - 以「status 仍是 playing 才更新」的條件式 UPDATE 實作（compare-and-swap）
        - 再加上行級鎖，縮小兩位玩家同時連線的競態窗口
        - 這並不是線性一致：不同資料庫/隔離等級下仍可能有邊界情況

        參數：
            db: SQLAlchemy Session
            game_id: Game UUID
            player_id: 宣告連線的玩家

        返回：
            (Game, Player) 若本次更新成功；None 表示遊戲不是 playing（已結束或尚未開始）

        異常：
            GameNotFound / PlayerNotFound（玩家不存在或不屬於此遊戲）
        """
        game = with_game_lock(game_id, db).first()
        if not game:
            raise GameNotFound(game_id)

        player = GameManager.get_player(db, player_id)
        if player.game_id != game_id:
            raise PlayerNotFound(player_id)

        if not GameStateMachine.can_transition(GameStatus(game.status), GameStatus.FINISHED):
            logger.warning(
                f"Game {game_id} is {GameStatus(game.status).value} (winner={game.winner_id}), "
                f"bingo claim from {player_id} rejected"
            )
            return None

        updated = db.query(Game).filter(
            Game.id == game_id,
            Game.status == GameStatus.PLAYING
        ).update(
            {Game.status: GameStatus.FINISHED, Game.winner_id: player_id},
            synchronize_session=False
        )
        if updated != 1:
            logger.warning(f"Conditional finish of game {game_id} matched no row, claim from {player_id} lost")
            return None

        player.has_bingo = True
        db.flush()
        db.refresh(game)

        logger.info(f"Game {game_id} finished, winner {player_id} ({player.player_name})")
        return game, player
