"""Logging configuration"""
import logging
import sys

_HANDLER_NAME = "ledgerly-console"


def setup_logging(log_level: str = "INFO"):
    """Configure application logging. Safe to call more than once."""

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    if not any(h.get_name() == _HANDLER_NAME for h in root_logger.handlers):
        formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.set_name(_HANDLER_NAME)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    # Chatty third-party loggers
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    for name in ("httpx", "httpcore", "hpack"):
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.info(f"Logging configured with level: {log_level}")
