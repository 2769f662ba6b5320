"""Logging utilities for the motion publisher."""

import json
import logging
import sys
from typing import Any, Optional


# Create logger
logger = logging.getLogger("motion_publisher")


def setup_logging(verbose: bool = False, log_file: Optional[str] = None) -> None:
    """
    Setup logging for the publisher.
    
    Args:
        verbose: Log at DEBUG instead of INFO
        log_file: Optional file path to append logs to
    """
    level = logging.DEBUG if verbose else logging.INFO
    
    # Clear existing handlers
    logger.handlers.clear()
    logger.setLevel(logging.DEBUG if log_file else level)
    
    # Console handler
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S"
    ))
    logger.addHandler(console_handler)
    
    # File handler if specified; the daemon runs unattended so keep everything
    if log_file:
        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            "[%(asctime)s] %(levelname)s [%(threadName)s]: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        logger.addHandler(file_handler)
    
    if verbose:
        logger.debug("Verbose logging enabled")


def _format_body(body: Any, truncate: int) -> str:
    if isinstance(body, (dict, list)):
        body_str = json.dumps(body, indent=2, default=str)
    else:
        body_str = str(body)
    if len(body_str) > truncate:
        body_str = body_str[:truncate] + f"\n... (truncated, total {len(body_str)} chars)"
    return body_str


def log_request(method: str, url: str, headers: Optional[dict] = None, body: Any = None) -> None:
    """Log an outgoing HTTP request."""
    if not is_debug_enabled():
        return
    logger.debug(f">>> {method} {url}")
    if headers:
        # Filter out sensitive headers
        safe_headers = {k: v for k, v in headers.items() if 'auth' not in k.lower()}
        if safe_headers:
            logger.debug(f"    Headers: {safe_headers}")
    if body:
        logger.debug(f"    Body: {_format_body(body, 2000)}")


def log_response(status_code: Optional[int], headers: Optional[dict] = None, body: Any = None, truncate: int = 2000) -> None:
    """Log an incoming HTTP response."""
    if not is_debug_enabled():
        return
    logger.debug(f"<<< Response: {status_code}")
    if headers:
        content_type = headers.get('content-type', headers.get('Content-Type', 'unknown'))
        logger.debug(f"    Content-Type: {content_type}")
    if body:
        logger.debug(f"    Body: {_format_body(body, truncate)}")


def log_error(message: str, exception: Optional[BaseException] = None) -> None:
    """Log an error."""
    if exception:
        logger.error(f"{message}: {type(exception).__name__}: {exception}")
    else:
        logger.error(message)


def log_warning(message: str) -> None:
    """Log warning message."""
    logger.warning(message)


def log_info(message: str) -> None:
    """Log info message."""
    logger.info(message)


def log_debug(message: str) -> None:
    """Log debug message."""
    logger.debug(message)


def is_debug_enabled() -> bool:
    """Check if debug logging is enabled."""
    return logger.isEnabledFor(logging.DEBUG)
