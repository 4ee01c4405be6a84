# backend/logging_config.py
import logging

from pythonjsonlogger.json import JsonFormatter

from config import Settings

PLAIN_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(settings: Settings) -> None:
    """Configure the root logger: JSON lines in production, plain text elsewhere."""
    level = getattr(logging, settings.log_level, logging.INFO)
    handler = logging.StreamHandler()
    if settings.is_production:
        handler.setFormatter(JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"levelname": "level", "asctime": "timestamp"},
        ))
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    # force=True: uvicorn configures the root logger before the app starts
    logging.basicConfig(level=level, handlers=[handler], force=True)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger(__name__).info("Logging: %s | Env: %s", settings.log_level, settings.environment)
