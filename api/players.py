"""
Player API Endpoints

職責：
1. 玩家加入 / 重新加入遊戲
2. 查詢玩家目前看到的遊戲狀態
3. 離開遊戲
"""
from fastapi import APIRouter, Depends, HTTPException, Query
import logging

from schemas import PlayerJoin, JoinResponse, GameStateResponse, ActionResponse
from core.exceptions import BingoGameException
from core.session_controller import SessionRegistry
from services.call_sequencer import remaining_numbers
from api.deps import get_registry, to_http_error, board_view, players_with_boards

router = APIRouter(prefix="/api/games", tags=["players"])
logger = logging.getLogger(__name__)


@router.post("/{game_id}/join", response_model=JoinResponse)
def join_game(
    game_id: str,
    player_data: PlayerJoin,
    registry: SessionRegistry = Depends(get_registry)
):
    """
    加入遊戲（玩家 endpoint）

    流程：
    1. 依 (game_id, player_name) 找玩家
    2. 找不到 -> 第一次加入：建立玩家與新的賓果盤
    3. 找到 -> rejoin：沿用原本的玩家與賓果盤，並補上錯過的標記
    4. 返回玩家與盤面
    """
    try:
        session = registry.connect(game_id, player_data.player_name)
        view = session.view

        logger.info(
            f"Player {view.me.id} ({view.me.player_name}) connected to game {game_id}"
        )

        return JoinResponse(
            game=view.game,
            player=view.me,
            board=board_view(view.my_board),
            is_host=view.is_host
        )

    except BingoGameException as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Failed to join game: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{game_id}/state", response_model=GameStateResponse)
def get_game_state(
    game_id: str,
    player_id: str = Query(...),
    registry: SessionRegistry = Depends(get_registry)
):
    """
    取得玩家目前看到的完整狀態

    會先處理收件匣中尚未套用的事件，再回傳快照
    """
    try:
        session = registry.get(game_id, player_id)
        registry.pump_game(game_id)
        view = session.view

        return GameStateResponse(
            game=view.game,
            player=view.me,
            board=board_view(view.my_board),
            is_host=view.is_host,
            players=players_with_boards(session),
            calls=view.calls_in_order,
            latest_call=view.latest_call,
            remaining=len(remaining_numbers(view.called_set))
        )

    except BingoGameException as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Failed to get game state: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.delete("/{game_id}/players/{player_id}/session", response_model=ActionResponse)
def leave_game(
    game_id: str,
    player_id: str,
    registry: SessionRegistry = Depends(get_registry)
):
    """離開遊戲：取消訂閱（玩家資料保留，之後可用同名 rejoin）"""
    try:
        registry.disconnect(game_id, player_id)
        return ActionResponse(status="ok")

    except Exception as e:
        logger.error(f"Failed to leave game: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
