"""决策引擎层（engine）。

入口：`TradingEngine.execute_cycle()` 执行一个周期；命令行由仓库根目录 `main.py` 承载。
"""
