"""
Session Controller：一位玩家連線到一局遊戲的完整生命週期

職責：
1. bootstrap：找到（或建立）玩家與其 Board，載入 Game / 玩家列表 / 開號紀錄，訂閱變更通知
2. pump：依序取出收件匣的事件，交給 Reconciler fold，並執行回傳的 Effect
3. 主持人動作：start_game、call_number
4. close：取消訂閱

SessionRegistry 則保存目前所有連線中的 SessionController，
開號之後逐一 pump，讓每位玩家各自對自己的盤面做對帳。
"""
import logging
import random
import threading
from typing import Dict, List, Optional, Tuple

from models import GameStatus
from schemas import CalledNumberRow, GameRow
from services.board_engine import (
    FREE_INDEX,
    Board,
    deserialize_board,
    generate_board,
    merge_marks,
    marked_indices,
    serialize_board,
)
from services.call_sequencer import next_number
from core.exceptions import GameNotPlaying, NotHost, PlayerNotFound, StoreUnavailable
from core.reconciler import (
    ClaimBingo,
    GameStateReconciler,
    LocalView,
    PersistMarks,
    PlayerView,
    ReloadPlayers,
)
from core.repository import GameRepository

logger = logging.getLogger(__name__)


class SessionController:
    """單一玩家在單一遊戲中的連線"""

    def __init__(self, repository: GameRepository, game_id: str, player_name: str,
                 reconciler: Optional[GameStateReconciler] = None,
                 rng: Optional[random.Random] = None):
        self.repository = repository
        self.game_id = game_id
        self.player_name = player_name
        self.reconciler = reconciler or GameStateReconciler()
        self.rng = rng
        self.view: Optional[LocalView] = None
        self._subscription = None
        self._lock = threading.RLock()

    @property
    def player_id(self) -> Optional[str]:
        return self.view.me.id if self.view else None

    @property
    def is_host(self) -> bool:
        return bool(self.view and self.view.is_host)

    @property
    def closed(self) -> bool:
        return self._subscription is not None and self._subscription.closed

    # ============ 生命週期 ============

    def bootstrap(self) -> LocalView:
        """
        加入或重新加入遊戲

        流程：
        1. 先訂閱（之後收到的重複事件都是冪等的，不怕重疊）
        2. 載入 Game
        3. 依 (game_id, player_name) 找玩家；找不到就是第一次加入，建立玩家與新 Board
        4. 載入玩家列表、開號紀錄
        5. 補上離線期間錯過的標記

        返回：
            LocalView

        異常：
            GameNotFound: Game 不存在
            StoreUnavailable: 儲存端不可用
        """
        with self._lock:
            self._subscription = self.repository.subscribe(self.game_id)
            try:
                game = self.repository.get_game(self.game_id)

                player = self.repository.find_player(self.game_id, self.player_name)
                if player is None:
                    player = self.repository.insert_player(self.game_id, self.player_name)
                    logger.info(f"Player {self.player_name} joined game {self.game_id} for the first time")
                else:
                    logger.info(f"Player {self.player_name} rejoined game {self.game_id} as {player.id}")

                board, stored_marks = self._load_or_create_board(player.id)

                self.view = LocalView(game=game, me=player, my_board=board)
                self.view.mark_persisted(stored_marks)
                self._reload_players()
                for call in self.repository.list_calls(self.game_id):
                    self.view.record_call(call)

                self._run_effects(self.reconciler.catch_up(self.view))
            except Exception:
                self._subscription.close()
                raise
            return self.view

    def _load_or_create_board(self, player_id: str) -> Tuple[Board, List[int]]:
        stored = self.repository.get_board(player_id)
        if stored is not None:
            return deserialize_board(stored.board_data, stored.marked_cells), stored.marked_cells

        board = generate_board(self.rng)
        row = self.repository.insert_board(player_id, serialize_board(board), [FREE_INDEX])
        return board, row.marked_cells

    def close(self) -> None:
        """離開遊戲：取消訂閱，之後的事件都會被丟棄"""
        with self._lock:
            if self._subscription is not None and not self._subscription.closed:
                self._subscription.close()
                logger.info(f"Player {self.player_id} left game {self.game_id}")

    # ============ 事件處理 ============

    def pump(self) -> int:
        """
        依序處理收件匣中的所有事件

        事件一次取一筆；某個寫入失敗時，尚未取出的事件留在收件匣，
        失敗的寫入會在下一次 pump 一開始補做

        返回：
            套用的事件數

        異常：
            StoreUnavailable: 寫回儲存端失敗（本地狀態已更新，可直接重試）
        """
        with self._lock:
            if self.view is None or self._subscription is None or self._subscription.closed:
                return 0
            self._run_effects(self.reconciler.pending(self.view))

            applied = 0
            while True:
                event = self._subscription.next_event()
                if event is None:
                    return applied
                applied += 1
                self._run_effects(self.reconciler.fold(self.view, event))

    def _run_effects(self, effects: list) -> None:
        for effect in effects:
            if isinstance(effect, PersistMarks):
                row = self.repository.update_marks(effect.player_id, list(effect.marked_cells))
                self.view.mark_persisted(row.marked_cells)
            elif isinstance(effect, ClaimBingo):
                self._claim_bingo(effect)
            elif isinstance(effect, ReloadPlayers):
                self._reload_players()
            else:
                raise TypeError(f"Unknown effect {effect!r}")

    def _claim_bingo(self, effect: ClaimBingo) -> None:
        game = self.repository.finalize_winner(effect.game_id, effect.player_id)
        if game is None:
            logger.info(f"Bingo claim by {effect.player_id} lost, game {effect.game_id} already finished")
            self.view.game = self.repository.get_game(effect.game_id)
            return
        self.view.game = game
        self.view.me = self.view.me.model_copy(update={"has_bingo": True})

    def _reload_players(self) -> None:
        players: List[PlayerView] = []
        for player, board_row in self.repository.list_players_with_boards(self.game_id):
            board = deserialize_board(board_row.board_data, board_row.marked_cells) if board_row else None
            if player.id == self.view.me.id:
                self.view.me = player
                if board_row is not None:
                    # 標記只增不減：本地與儲存端取聯集
                    self.view.my_board = merge_marks(self.view.my_board, board_row.marked_cells)
                    self.view.mark_persisted(board_row.marked_cells)
                    board = merge_marks(board, marked_indices(self.view.my_board))
            players.append(PlayerView(player=player, board=board))
        self.view.players = players
        self.view.players_stale = False

    # ============ 主持人動作 ============

    def _require_host(self, action: str) -> None:
        if not self.is_host:
            raise NotHost(f"Only the host can {action} (player {self.player_id})")

    def start_game(self) -> GameRow:
        """
        開始遊戲（主持人限定）

        異常：
            NotHost: 不是主持人
            NoPlayersInGame: 沒有玩家
            InvalidStateTransition: 遊戲不是 waiting
        """
        with self._lock:
            self._reload_players()
            self._require_host("start the game")
            game = self.repository.start_game(self.game_id)
            self.view.game = game
            return game

    def call_number(self) -> CalledNumberRow:
        """
        開出下一個號碼（主持人限定，遊戲必須是 playing）

        已開號碼每次都從儲存端的開號紀錄重建，不信任本地狀態

        異常：
            NotHost: 不是主持人
            GameNotPlaying: 遊戲不是 playing
            ExhaustedPool: 75 個號碼都開完了
            NumberAlreadyCalled: 另一個主持端同時開出同一號碼
        """
        with self._lock:
            self._require_host("call numbers")

            game = self.repository.get_game(self.game_id)
            self.view.game = game
            if game.status != GameStatus.PLAYING:
                raise GameNotPlaying(
                    f"Numbers can only be called while playing (status: {GameStatus(game.status).value})"
                )

            already_called = {c.number for c in self.repository.list_calls(self.game_id)}
            number = next_number(already_called, self.rng)
            return self.repository.insert_call(self.game_id, number)


class SessionRegistry:
    """目前連線中的所有 SessionController（以 (game_id, player_id) 為鍵）"""

    def __init__(self, repository: GameRepository, rng: Optional[random.Random] = None):
        self.repository = repository
        self.rng = rng
        self._sessions: Dict[Tuple[str, str], SessionController] = {}
        self._lock = threading.Lock()

    def connect(self, game_id: str, player_name: str) -> SessionController:
        """
        加入遊戲；同一位玩家已有連線時直接沿用
        """
        existing = self.repository.find_player(game_id, player_name)
        if existing is not None:
            with self._lock:
                session = self._sessions.get((game_id, existing.id))
            if session is not None and not session.closed:
                session.pump()
                return session

        session = SessionController(self.repository, game_id, player_name, rng=self.rng)
        session.bootstrap()
        with self._lock:
            previous = self._sessions.get((game_id, session.player_id))
            self._sessions[(game_id, session.player_id)] = session
        if previous is not None and previous is not session:
            previous.close()
        return session

    def get(self, game_id: str, player_id: str) -> SessionController:
        """
        取得玩家的連線；伺服器重啟等原因導致連線不存在時，依玩家名稱重新連線

        異常：
            PlayerNotFound: 玩家不存在或不屬於此遊戲
        """
        with self._lock:
            session = self._sessions.get((game_id, player_id))
        if session is not None and not session.closed:
            return session

        player = self.repository.get_player(player_id)
        if player.game_id != game_id:
            raise PlayerNotFound(player_id)
        return self.connect(game_id, player.player_name)

    def pump_game(self, game_id: str) -> int:
        """
        讓此遊戲所有連線各自處理收件匣

        某位玩家寫回失敗只記 log，不影響其他玩家；失敗的寫入在該玩家下一次 pump 時補做。
        遊戲結束且所有連線都已寫回後，關閉並移除這局的所有連線，釋放變更通知狀態。

        返回：
            套用的事件總數
        """
        applied = 0
        finished = False
        failed = False
        for session in self.sessions_for(game_id):
            try:
                applied += session.pump()
            except StoreUnavailable as e:
                failed = True
                logger.warning(
                    f"Player {session.player_id} could not reconcile game {game_id}, will retry: {e}"
                )
            if session.view is not None and session.view.game.status == GameStatus.FINISHED:
                finished = True

        if finished and not failed:
            self._retire(game_id)
        return applied

    def _retire(self, game_id: str) -> None:
        with self._lock:
            keys = [key for key in self._sessions if key[0] == game_id]
            sessions = [self._sessions.pop(key) for key in keys]
        for session in sessions:
            session.close()
        self.repository.release(game_id)
        logger.info(f"Game {game_id} finished, closed {len(sessions)} session(s)")

    def disconnect(self, game_id: str, player_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop((game_id, player_id), None)
        if session is None:
            return False
        session.close()
        if session.view is not None and session.view.game.status == GameStatus.FINISHED:
            self.repository.release(game_id)
        return True

    def sessions_for(self, game_id: str) -> List[SessionController]:
        with self._lock:
            return [s for (gid, _), s in self._sessions.items() if gid == game_id]
