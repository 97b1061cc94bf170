import sys
from loguru import logger


def setup_logger(settings):
    """Configure loguru once for the whole application."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.LOG_LEVEL,
        format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
               "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        backtrace=settings.DEBUG,
        diagnose=settings.DEBUG,
    )
    logger.info(f"Logger initialized (level={settings.LOG_LEVEL}, environment={settings.ENVIRONMENT})")
