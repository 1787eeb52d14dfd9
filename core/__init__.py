"""
核心業務層

所有狀態變更都在這個 package 內完成：
- 狀態機：活動、回合、付款允許的狀態轉換
- Manager：活動生命週期、報名、分數、住宿、付款、通知
- Scheduler：到期掃描與提醒兩個背景排程
- Locks：並發控制工具
"""
