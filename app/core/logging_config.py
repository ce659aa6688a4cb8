# app/core/logging_config.py
"""
Logging configuration for the CTA flow builder.
Provides file-based logging with rotation for debugging persistence API issues.
"""
import logging
import logging.handlers
import sys
from pathlib import Path


LOGS_DIR = Path(__file__).parent.parent.parent / "logs"

# Log files
ERROR_LOG_FILE = LOGS_DIR / "error.log"
DEBUG_LOG_FILE = LOGS_DIR / "debug.log"
FLOW_API_LOG_FILE = LOGS_DIR / "flow_api.log"


class ColoredFormatter(logging.Formatter):
    """Colored console formatter for better readability"""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
        'RESET': '\033[0m'
    }

    def format(self, record):
        log_color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        record.levelname = f"{log_color}{record.levelname}{self.COLORS['RESET']}"
        return super().format(record)


def setup_logging(app_name: str = "flowbuilder", level: str = "INFO"):
    """
    Setup logging with console and rotating file handlers.

    Creates three log files:
    - error.log: Only ERROR and CRITICAL messages
    - debug.log: All DEBUG and above messages
    - flow_api.log: Requests to the CTA flow persistence API
    """
    LOGS_DIR.mkdir(exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # ═══════════════════════════════════════════════════════════
    # Console Handler - with colors
    # ═══════════════════════════════════════════════════════════
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    console_handler.setFormatter(ColoredFormatter('%(levelname)s | %(name)s | %(message)s'))
    root_logger.addHandler(console_handler)

    # ═══════════════════════════════════════════════════════════
    # ERROR Log File - Rotating, only errors
    # ═══════════════════════════════════════════════════════════
    error_handler = logging.handlers.RotatingFileHandler(
        ERROR_LOG_FILE,
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding='utf-8'
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(logging.Formatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(filename)s:%(lineno)d | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    root_logger.addHandler(error_handler)

    # ═══════════════════════════════════════════════════════════
    # DEBUG Log File - Rotating, all messages
    # ═══════════════════════════════════════════════════════════
    debug_handler = logging.handlers.RotatingFileHandler(
        DEBUG_LOG_FILE,
        maxBytes=20 * 1024 * 1024,  # 20 MB
        backupCount=5,
        encoding='utf-8'
    )
    debug_handler.setLevel(logging.DEBUG)
    debug_handler.setFormatter(logging.Formatter(
        '%(asctime)s | %(levelname)-8s | %(name)-30s | %(filename)s:%(lineno)d | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    root_logger.addHandler(debug_handler)

    # ═══════════════════════════════════════════════════════════
    # Flow API Log File - persistence API traffic only
    # ═══════════════════════════════════════════════════════════
    flow_api_handler = logging.handlers.RotatingFileHandler(
        FLOW_API_LOG_FILE,
        maxBytes=20 * 1024 * 1024,  # 20 MB
        backupCount=5,
        encoding='utf-8'
    )
    flow_api_handler.setLevel(logging.DEBUG)
    flow_api_handler.setFormatter(logging.Formatter(
        '%(asctime)s | %(levelname)-8s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))

    flow_api_logger = get_flow_api_logger()
    flow_api_logger.addHandler(flow_api_handler)
    flow_api_logger.setLevel(logging.DEBUG)
    flow_api_logger.propagate = True  # Also send to root handlers

    logger = logging.getLogger(__name__)
    logger.info(f"{'='*60}")
    logger.info(f"Logging initialized for {app_name}")
    logger.info(f"Log directory: {LOGS_DIR}")
    logger.info(f"Flow API log: {FLOW_API_LOG_FILE}")
    logger.info(f"{'='*60}")

    return root_logger


def get_flow_api_logger():
    """Get logger specifically for persistence API traffic"""
    return logging.getLogger("flowbuilder.flow_api")


# ═══════════════════════════════════════════════════════════
# Helper functions for detailed logging
# ═══════════════════════════════════════════════════════════

def log_api_request(logger, method: str, endpoint: str, data: dict = None):
    """Log outgoing API request details"""
    logger.debug(f"🌐 API REQUEST: {method} {endpoint}")
    if data:
        logger.debug(f"Request Data: {data}")


def log_api_response(logger, status_code: int, response_data=None, error: Exception = None):
    """Log API response details"""
    if error:
        logger.error(f"❌ API RESPONSE: Status {status_code} | {type(error).__name__}: {error}")
    else:
        logger.debug(f"📥 API RESPONSE: Status {status_code}")
        if response_data is not None:
            logger.debug(f"Response Data: {response_data}")
