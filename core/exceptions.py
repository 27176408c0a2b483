"""
自定義異常類別

集中管理所有業務邏輯異常，方便 API 層統一處理
"""


class BingoGameException(Exception):
    """所有遊戲異常的基類"""
    pass


# ============ Game 相關異常 ============

class GameNotFound(BingoGameException):
    """遊戲不存在"""
    def __init__(self, game_id):
        self.game_id = game_id
        super().__init__(f"Game {game_id} not found")


class NoPlayersInGame(BingoGameException):
    """遊戲內沒有任何玩家，無法開始"""
    pass


class GameNotPlaying(BingoGameException):
    """遊戲不在 playing 狀態（只有 playing 時可以開號）"""
    pass


# ============ 狀態轉換異常 ============

class InvalidStateTransition(BingoGameException):
    """非法的狀態轉換"""
    pass


# ============ Player 相關異常 ============

class PlayerNotFound(BingoGameException):
    """玩家不存在"""
    def __init__(self, player_id):
        self.player_id = player_id
        super().__init__(f"Player {player_id} not found")


class BoardNotFound(BingoGameException):
    """玩家尚未擁有賓果盤"""
    def __init__(self, player_id):
        self.player_id = player_id
        super().__init__(f"Board for player {player_id} not found")


class NotHost(BingoGameException):
    """只有主持人（最早加入的玩家）可以執行此動作"""
    pass


# ============ 開號相關異常 ============

class ExhaustedPool(BingoGameException):
    """1-75 已全部開出，本局無號可開"""
    def __init__(self, called_count: int = 75):
        self.called_count = called_count
        super().__init__(f"All numbers have been called ({called_count} drawn)")


class NumberAlreadyCalled(BingoGameException):
    """號碼已經開過（通常是兩個主持端同時開號）"""
    def __init__(self, game_id, number):
        self.game_id = game_id
        self.number = number
        super().__init__(f"Number {number} already called in game {game_id}")


# ============ 外部儲存異常 ============

class StoreUnavailable(BingoGameException):
    """資料庫或網路不可用，寫入/讀取失敗（不自動重試）"""
    pass
