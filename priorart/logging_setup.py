import sys
from loguru import logger


def configure_logging(level: str = "INFO"):
    """替换 loguru 默认 sink，按配置级别输出到 stderr"""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
        backtrace=False,
        diagnose=False,
    )
