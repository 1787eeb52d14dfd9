"""
服務層

純計算與查詢，不負責 transaction：
- round_bootstrap_service：預設的三個回合
- enrollment_service：報名與回合的對應
- scoring_service：排名、名次、暫定得獎標記
- allocation_service：住宿資格、日期重疊與最適分配
- alert_service：到期掃描、活動提醒、低庫存通知
"""
