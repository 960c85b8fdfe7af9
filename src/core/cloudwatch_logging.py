"""
Optional shipping of pipeline logs to CloudWatch through watchtower.

Only story pipeline milestones and errors leave the process; request noise
stays in the local stream.

Environment variables:
  CLOUDWATCH_ENABLED    - "true" to enable (default: disabled)
  CLOUDWATCH_LOG_GROUP  - log group name (default: /app/story-studio)
  CLOUDWATCH_LOG_STREAM - stream name (default: story-studio-<hostname>-<pid>)
  CLOUDWATCH_LEVEL      - minimum level shipped (default: INFO)
"""

import logging
import os
import socket
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_LOG_GROUP = "/app/story-studio"


class PipelineLogFilter(logging.Filter):
    """Pass pipeline logs at INFO and above, plus any ERROR."""

    PIPELINE_MODULES = (
        "src.tasks.",
        "src.services.orchestrator",
        "src.services.story_workflow",
        "src.core.provider",
    )

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.ERROR:
            return True
        if record.levelno < logging.INFO:
            return False
        return record.name.startswith(self.PIPELINE_MODULES)


def _default_stream_name() -> str:
    return f"story-studio-{socket.gethostname()}-{os.getpid()}"


def _build_handler(log_group: str, stream: str) -> Optional[logging.Handler]:
    try:
        import watchtower
    except ImportError:
        logger.warning("CLOUDWATCH_ENABLED=true but watchtower is not installed")
        return None

    try:
        return watchtower.CloudWatchLogHandler(
            log_group_name=log_group,
            log_stream_name=stream,
            send_interval=10,
            max_batch_count=100,
        )
    except Exception as e:
        logger.warning(f"CloudWatch handler unavailable: {e}")
        return None


def setup_cloudwatch_logging() -> bool:
    """Attach the CloudWatch handler to the root logger. Returns True when attached."""
    if os.getenv("CLOUDWATCH_ENABLED", "").lower() != "true":
        return False

    log_group = os.getenv("CLOUDWATCH_LOG_GROUP", DEFAULT_LOG_GROUP)
    stream = os.getenv("CLOUDWATCH_LOG_STREAM") or _default_stream_name()
    handler = _build_handler(log_group, stream)
    if handler is None:
        return False

    handler.setLevel(os.getenv("CLOUDWATCH_LEVEL", "INFO").upper())
    handler.addFilter(PipelineLogFilter())
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logging.getLogger().addHandler(handler)
    logger.info(f"Shipping pipeline logs to CloudWatch ({log_group}/{stream})")
    return True


def flush_cloudwatch_logging() -> None:
    """Flush and detach CloudWatch handlers on shutdown."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        if type(handler).__name__ == "CloudWatchLogHandler":
            handler.flush()
            handler.close()
            root.removeHandler(handler)
