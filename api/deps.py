"""
API 共用依賴

整個行程共用一個 ChangeFeed / Repository / SessionRegistry，
測試時可用 app.dependency_overrides 換掉
"""
from fastapi import HTTPException

from database import SessionLocal, settings
from core.change_feed import ChangeFeed
from core.repository import SqlGameRepository
from core.session_controller import SessionController, SessionRegistry
from core.exceptions import (
    BingoGameException,
    BoardNotFound,
    ExhaustedPool,
    GameNotFound,
    GameNotPlaying,
    InvalidStateTransition,
    NoPlayersInGame,
    NotHost,
    NumberAlreadyCalled,
    PlayerNotFound,
    StoreUnavailable,
)
from schemas import BoardView, PlayerWithBoard
from services.board_engine import Board, check_win, marked_indices, serialize_board, winning_lines

feed = ChangeFeed(backlog_size=settings.feed_backlog_size)
repository = SqlGameRepository(SessionLocal, feed)
registry = SessionRegistry(repository)


def get_repository() -> SqlGameRepository:
    return repository


def get_registry() -> SessionRegistry:
    return registry


def to_http_error(e: BingoGameException) -> HTTPException:
    """把業務異常轉成 HTTP 錯誤"""
    if isinstance(e, (GameNotFound, PlayerNotFound, BoardNotFound)):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, NotHost):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, (ExhaustedPool, NumberAlreadyCalled)):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, (InvalidStateTransition, GameNotPlaying, NoPlayersInGame)):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, StoreUnavailable):
        return HTTPException(status_code=503, detail="Store unavailable, please retry")
    return HTTPException(status_code=500, detail="Internal error")


def board_view(board: Board) -> BoardView:
    return BoardView(
        numbers=serialize_board(board),
        marked_cells=marked_indices(board),
        has_bingo_line=check_win(board),
        winning_lines=winning_lines(board)
    )


def players_with_boards(session: SessionController) -> list:
    return [
        PlayerWithBoard(
            player=pv.player,
            board=board_view(pv.board) if pv.board is not None else None
        )
        for pv in session.view.players
    ]
