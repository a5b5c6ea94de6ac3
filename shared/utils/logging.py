import logging

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"


def setup_logger(name: str = "trading", level: int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(level)
    # 同名 logger 只挂一个控制台 handler，避免多次构建组件时重复输出
    if not any(getattr(h, "_zenith_console", False) for h in logger.handlers):
        ch = logging.StreamHandler()
        ch.setFormatter(logging.Formatter(_FORMAT))
        ch._zenith_console = True  # type: ignore[attr-defined]
        logger.addHandler(ch)
    return logger
