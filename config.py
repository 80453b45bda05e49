"""Application configuration, read from the environment."""
import logging
import os
from functools import lru_cache


@lru_cache
def get_config():
    return type("Config", (), {
        "db_path": os.environ.get("MEMORY_DB_PATH", "memory_game.db"),
        "server_url": os.environ.get("MEMORY_SERVER_URL", "http://localhost:5000"),
        "port": int(os.environ.get("PORT", 5000)),
        "debug": os.environ.get("DEBUG", "0").lower() in ("1", "true", "yes"),
        "client_id_file": os.environ.get("MEMORY_CLIENT_ID_FILE", ".client_id"),
        "log_level": os.environ.get("LOG_LEVEL", "INFO").upper(),
    })()


def configure_logging(level=None) -> None:
    """Set up root logging for scripts and the statistics server."""
    logging.basicConfig(
        level=level or get_config().log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
