"""
開號服務：從 1-75 中抽出下一個尚未開出的號碼

純計算邏輯，不保存任何狀態；已開號碼每次都由呼叫者從資料庫的開號紀錄重建
"""
import random
from typing import Iterable, List, Optional

from core.exceptions import ExhaustedPool

MIN_NUMBER = 1
MAX_NUMBER = 75


def remaining_numbers(already_called: Iterable[int]) -> List[int]:
    """
    尚未開出的號碼（由小到大）

    參數：
        already_called: 已開出的號碼

    返回：
        剩餘號碼列表
    """
    called = set(already_called)
    return [n for n in range(MIN_NUMBER, MAX_NUMBER + 1) if n not in called]


def next_number(already_called: Iterable[int], rng: Optional[random.Random] = None) -> int:
    """
    從剩餘號碼中均勻隨機抽出一個

    參數：
        already_called: 已開出的號碼
        rng: 可選的 random.Random（測試時用固定 seed）

    返回：
        1-75 之間、不在 already_called 內的號碼

    異常：
        ExhaustedPool: 75 個號碼都已開出
    """
    candidates = remaining_numbers(already_called)
    if not candidates:
        raise ExhaustedPool(MAX_NUMBER - MIN_NUMBER + 1)
    return (rng or random).choice(candidates)
