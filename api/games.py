"""
Game API Endpoints

職責：
1. 建立遊戲 / 大廳列表
2. 主持人開始遊戲
3. 變更通知（短輪詢）
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
import logging

from schemas import GameRow, HostAction, ChangeEventResponse
from core.exceptions import BingoGameException
from core.repository import SqlGameRepository
from core.session_controller import SessionRegistry
from api.deps import get_repository, get_registry, to_http_error

router = APIRouter(prefix="/api/games", tags=["games"])
logger = logging.getLogger(__name__)


@router.post("", response_model=GameRow)
def create_game(repository: SqlGameRepository = Depends(get_repository)):
    """
    建立新遊戲（status = waiting）

    建立者之後要呼叫 /join 才會成為玩家；
    最早加入的玩家就是主持人
    """
    try:
        game = repository.create_game()
        logger.info(f"Game {game.id} created via API")
        return game

    except BingoGameException as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Failed to create game: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("", response_model=List[GameRow])
def list_games(repository: SqlGameRepository = Depends(get_repository)):
    """大廳：waiting / playing 的遊戲，新的在前"""
    try:
        return repository.list_open_games()

    except BingoGameException as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Failed to list games: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{game_id}", response_model=GameRow)
def get_game(game_id: str, repository: SqlGameRepository = Depends(get_repository)):
    try:
        return repository.get_game(game_id)

    except BingoGameException as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Failed to get game: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{game_id}/start", response_model=GameRow)
def start_game(
    game_id: str,
    action: HostAction,
    registry: SessionRegistry = Depends(get_registry)
):
    """
    開始遊戲（Host endpoint）

    前置條件：
    - player_id 必須是最早加入的玩家
    - Game 狀態必須是 waiting
    - 至少一位玩家
    """
    try:
        session = registry.get(game_id, action.player_id)
        game = session.start_game()
        registry.pump_game(game_id)
        return game

    except BingoGameException as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Failed to start game: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{game_id}/events", response_model=List[ChangeEventResponse])
def get_events(
    game_id: str,
    since: int = Query(0, ge=0),
    repository: SqlGameRepository = Depends(get_repository)
):
    """
    變更通知（短輪詢）

    前端記住最後一筆 seq，下次帶 ?since=seq 取得之後的事件
    遊戲結束且所有連線離開後 backlog 會被釋放，之後只回傳空列表
    """
    try:
        repository.get_game(game_id)
        return [
            ChangeEventResponse(
                seq=e.seq,
                table=e.table,
                kind=e.kind,
                game_id=e.game_id,
                row=e.row.model_dump(mode="json")
            )
            for e in repository.feed.events_since(game_id, since)
        ]

    except BingoGameException as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Failed to get events: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
