"""
變更通知（Change Feed）

每次寫入成功後，Repository 會在這裡發布一筆 ChangeEvent：
- 訂閱者（SessionController）各自擁有一個收件匣（單一 inbound channel），
  事件依序取出、逐筆 fold，不會有多個 callback 同時改動本地狀態
- 另外保留每個遊戲最近 N 筆事件（含遞增的 seq），
  讓 HTTP 客戶端用 ?since=seq 短輪詢補抓

Linus 原則：
- 只有一種事件形狀，table + kind 決定怎麼處理
- 取消訂閱是唯一的取消語意，進行中的讀寫不會被中斷
"""
import itertools
import logging
import queue
import threading
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional, Set

logger = logging.getLogger(__name__)

TABLE_GAMES = "games"
TABLE_PLAYERS = "players"
TABLE_BOARDS = "boards"
TABLE_CALLED_NUMBERS = "called_numbers"

INSERT = "INSERT"
UPDATE = "UPDATE"


@dataclass(frozen=True)
class ChangeEvent:
    seq: int
    table: str
    kind: str
    game_id: str
    row: Any  # schemas 中對應的 *Row


class Subscription:
    """單一客戶端對某個遊戲的訂閱（收件匣）"""

    def __init__(self, feed: "ChangeFeed", game_id: str):
        self.game_id = game_id
        self._feed = feed
        self._inbox: "queue.SimpleQueue[ChangeEvent]" = queue.SimpleQueue()
        self.closed = False

    def push(self, event: ChangeEvent) -> None:
        if not self.closed:
            self._inbox.put(event)

    def next_event(self) -> Optional[ChangeEvent]:
        """取出收件匣中最早的一筆事件；收件匣是空的或已取消訂閱時回傳 None"""
        if self.closed:
            return None
        try:
            return self._inbox.get_nowait()
        except queue.Empty:
            return None

    def drain(self) -> List[ChangeEvent]:
        """取出目前收件匣內的所有事件（依到達順序）"""
        events = []
        while True:
            try:
                events.append(self._inbox.get_nowait())
            except queue.Empty:
                break
        if self.closed:
            return []
        return events

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._feed.unsubscribe(self)


class ChangeFeed:
    """以 game_id 分組的 publish / subscribe"""

    def __init__(self, backlog_size: int = 500):
        self._lock = threading.Lock()
        self._seq = itertools.count(1)
        self._subscribers: Dict[str, Set[Subscription]] = defaultdict(set)
        self._backlog: Dict[str, Deque[ChangeEvent]] = defaultdict(
            lambda: deque(maxlen=backlog_size)
        )

    def subscribe(self, game_id: str) -> Subscription:
        sub = Subscription(self, game_id)
        with self._lock:
            self._subscribers[game_id].add(sub)
        logger.debug(f"New subscription on game {game_id}")
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subscribers.get(sub.game_id)
            if subs is None:
                return
            subs.discard(sub)
            if not subs:
                del self._subscribers[sub.game_id]

    def release(self, game_id: str) -> bool:
        """
        釋放已結束遊戲的 backlog

        還有訂閱者時保留

        返回：
            True 表示已釋放
        """
        with self._lock:
            if self._subscribers.get(game_id):
                logger.debug(f"Game {game_id} still has subscribers, backlog kept")
                return False
            self._subscribers.pop(game_id, None)
            self._backlog.pop(game_id, None)
        logger.info(f"Released change feed state for game {game_id}")
        return True

    def publish(self, table: str, kind: str, game_id: str, row: Any) -> ChangeEvent:
        """
        發布一筆事件給該遊戲的所有訂閱者

        參數：
            table: games / players / boards / called_numbers
            kind: INSERT / UPDATE
            game_id: 事件所屬的遊戲
            row: 寫入後的資料列

        返回：
            ChangeEvent（含 seq）
        """
        with self._lock:
            event = ChangeEvent(next(self._seq), table, kind, game_id, row)
            self._backlog[game_id].append(event)
            targets = list(self._subscribers.get(game_id, ()))

        for sub in targets:
            sub.push(event)
        return event

    def events_since(self, game_id: str, since: int = 0) -> List[ChangeEvent]:
        """回傳 seq > since 的事件（只保留最近 backlog_size 筆）"""
        with self._lock:
            return [e for e in self._backlog.get(game_id, ()) if e.seq > since]

    def subscriber_count(self, game_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(game_id, ()))
