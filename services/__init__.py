"""
服務層

這個 package 包含純計算邏輯，不負責狀態轉換：
- board_engine：賓果盤產生、序列化、標記、連線判斷
- call_sequencer：開號邏輯
"""
