import logging
import sys
from pathlib import Path

import structlog
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Upper bound on requests per batchUpdate call imposed by the Docs API.
API_MAX_BATCH_SIZE = 500


class SyncSettings(BaseSettings):
    """Runtime settings, read from DOCSYNC_* environment variables (or a .env file)."""

    model_config = SettingsConfigDict(env_prefix="DOCSYNC_", env_file=".env", extra="ignore")

    max_concurrency: int = Field(10, ge=1, le=50)
    batch_size: int = Field(50, ge=1, le=API_MAX_BATCH_SIZE)
    max_batch_size: int = Field(API_MAX_BATCH_SIZE, ge=1, le=API_MAX_BATCH_SIZE)
    tick_interval: float = Field(0.5, gt=0, description="Seconds between executor ticks.")
    poll_interval: float = Field(0.1, gt=0, description="Seconds between completion checks.")
    completion_timeout: float = Field(60.0, gt=0)
    batch_timeout: float = Field(300.0, gt=0)
    default_max_retries: int = Field(3, ge=1)
    index_offset: int = Field(1, ge=0, description="Document index of diff position 0.")
    log_level: str = "INFO"
    store_path: Path = Path(".docsync")


def configure_logging(level: str = "INFO", json: bool = False):
    """
    Routes stdlib logging and structlog to stderr.
    stdout stays free for command output (and JSON-RPC when serving MCP).
    """
    logging.basicConfig(stream=sys.stderr, level=getattr(logging, level.upper(), logging.INFO), force=True)

    renderer = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer(colors=False)
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper(), logging.INFO)),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )
