"""
核心業務邏輯層

這個 package 包含所有核心業務邏輯，包括：
- 狀態機：集中管理 Game 狀態轉換
- Manager：管理 Game / Player / Board / 開號紀錄的寫入
- Repository + Change Feed：外部儲存介面與變更通知
- Reconciler + Session Controller：每位玩家連線的本地狀態對帳
- Locks：並發控制工具
"""
