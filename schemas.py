"""
Pydantic schemas

兩類：
- *Row：資料列的對外形狀（欄位名稱即資料契約），也是變更通知攜帶的內容
- Request / Response：HTTP API 的輸入與輸出
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import GameStatus


# ============ Row 形狀 ============

class GameRow(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    created_at: datetime
    status: GameStatus
    host_id: str
    winner_id: Optional[str] = None


class PlayerRow(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    game_id: str
    player_name: str
    created_at: datetime
    has_bingo: bool = False


class BoardRow(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    player_id: str
    board_data: List[List[int]]
    marked_cells: List[int]


class CalledNumberRow(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    game_id: str
    number: int
    called_at: datetime


# ============ Request ============

class PlayerJoin(BaseModel):
    player_name: str = Field(..., max_length=20)

    @field_validator("player_name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("player_name must not be blank")
        return value


class HostAction(BaseModel):
    player_id: str


# ============ Response ============

class BoardView(BaseModel):
    numbers: List[List[int]]
    marked_cells: List[int]
    has_bingo_line: bool
    winning_lines: List[str]


class PlayerWithBoard(BaseModel):
    player: PlayerRow
    board: Optional[BoardView] = None


class CallResponse(BaseModel):
    call: CalledNumberRow
    label: str  # 例如 "N-42"
    remaining: int


class JoinResponse(BaseModel):
    game: GameRow
    player: PlayerRow
    board: BoardView
    is_host: bool


class GameStateResponse(BaseModel):
    game: GameRow
    player: PlayerRow
    board: BoardView
    is_host: bool
    players: List[PlayerWithBoard]
    calls: List[CalledNumberRow]
    latest_call: Optional[CalledNumberRow] = None
    remaining: int


class ChangeEventResponse(BaseModel):
    seq: int
    table: str
    kind: str
    game_id: str
    row: dict


class ActionResponse(BaseModel):
    status: str
