"""
HTTP API 層

各 router 只負責把請求交給 core，並把業務異常轉成 HTTP 錯誤
"""
