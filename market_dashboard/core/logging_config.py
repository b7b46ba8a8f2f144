import json
import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Optional


class JSONFormatter(logging.Formatter):
    """Dict messages are written as one JSON object per line."""

    def format(self, record):
        if isinstance(record.msg, dict):
            log_data = dict(record.msg)
            log_data["level"] = record.levelname
            log_data["timestamp"] = datetime.now().isoformat()
            return json.dumps(log_data, default=str)
        return super().format(record)


def setup_logging(level: str = "INFO", log_dir: Optional[str] = None):
    """Configure the root logger and the 'performance' logger."""
    logger = logging.getLogger()
    logger.setLevel(level)
    logger.handlers.clear()

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    perf_logger = logging.getLogger('performance')
    perf_logger.setLevel(logging.INFO)
    perf_logger.handlers.clear()

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

        file_handler = RotatingFileHandler(
            os.path.join(log_dir, 'market_dashboard.log'),
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

        error_handler = RotatingFileHandler(
            os.path.join(log_dir, 'market_dashboard_errors.log'),
            maxBytes=5 * 1024 * 1024,  # 5MB
            backupCount=3
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)
        logger.addHandler(error_handler)

        performance_handler = RotatingFileHandler(
            os.path.join(log_dir, 'performance_metrics.log'),
            maxBytes=10 * 1024 * 1024,
            backupCount=5
        )
        performance_handler.setFormatter(JSONFormatter())
        perf_logger.addHandler(performance_handler)
        perf_logger.propagate = False
    else:
        console_perf = logging.StreamHandler(sys.stdout)
        console_perf.setFormatter(JSONFormatter())
        perf_logger.addHandler(console_perf)
        perf_logger.propagate = False

    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

    logger.info("Logging configured (level=%s, log_dir=%s)", level, log_dir)
