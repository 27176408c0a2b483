"""
Called Number API Endpoints

重點：
1. 開號只允許主持人、且遊戲必須是 playing
2. 開號後立即 pump 此遊戲所有連線，每位玩家各自標記並判斷連線
3. 75 個號碼開完回 409，前端顯示「本局號碼已開完」
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException
import logging

from schemas import HostAction, CallResponse, CalledNumberRow
from core.exceptions import BingoGameException
from core.repository import SqlGameRepository
from core.session_controller import SessionRegistry
from services.board_engine import call_label
from services.call_sequencer import remaining_numbers
from api.deps import get_repository, get_registry, to_http_error

router = APIRouter(prefix="/api/games", tags=["calls"])
logger = logging.getLogger(__name__)


@router.post("/{game_id}/calls", response_model=CallResponse)
def call_number(
    game_id: str,
    action: HostAction,
    registry: SessionRegistry = Depends(get_registry),
    repository: SqlGameRepository = Depends(get_repository)
):
    """
    開出下一個號碼（Host endpoint）

    流程：
    1. 找到主持人的連線
    2. 從開號紀錄重建已開號碼，抽出新號碼並寫入
    3. pump 所有連線（自動標記、寫回標記、宣告贏家）
    """
    try:
        session = registry.get(game_id, action.player_id)
        call = session.call_number()
        applied = registry.pump_game(game_id)

        logger.info(
            f"Called {call_label(call.number)} in game {game_id}, "
            f"{applied} events applied across sessions"
        )

        called = {c.number for c in repository.list_calls(game_id)}
        return CallResponse(
            call=call,
            label=call_label(call.number),
            remaining=len(remaining_numbers(called))
        )

    except BingoGameException as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Failed to call number: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{game_id}/calls", response_model=List[CalledNumberRow])
def list_calls(game_id: str, repository: SqlGameRepository = Depends(get_repository)):
    """開號紀錄（舊的在前）"""
    try:
        repository.get_game(game_id)
        return repository.list_calls(game_id)

    except BingoGameException as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Failed to list calls: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
