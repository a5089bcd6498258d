import json
import logging
import os
from logging.handlers import RotatingFileHandler

LOG_DIR = os.environ.get('LOG_DIR', 'logs')
if not os.path.exists(LOG_DIR):
    try:
        os.makedirs(LOG_DIR)
    except OSError:
        LOG_DIR = '.'

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class JsonFormatter(logging.Formatter):
    """Outputs log records as single-line JSON objects."""

    def format(self, record):
        log_entry = {
            "timestamp": self.formatTime(record, DATE_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "filename": record.filename,
            "lineno": record.lineno,
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def _rotating_handler(filename, level, max_bytes, backups):
    try:
        handler = RotatingFileHandler(
            os.path.join(LOG_DIR, filename),
            maxBytes=max_bytes,
            backupCount=backups
        )
    except OSError:
        return None
    handler.setLevel(level)
    return handler


def setup_logging(log_format=None):
    """Attach console and rotating file handlers to the root logger.

    Safe to call more than once; handlers are only added the first time.
    Returns the application logger.
    """
    app_logger = logging.getLogger('vineyard')
    root_logger = logging.getLogger()
    if getattr(root_logger, '_vineyard_configured', False):
        return app_logger

    if log_format is None:
        log_format = os.environ.get('LOG_FORMAT', 'text')
    formatter = JsonFormatter() if log_format.lower() == 'json' else logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)

    # 5MB app log, 2MB error-only log for quick issue identification
    handlers = [
        console_handler,
        _rotating_handler('vineyard.log', logging.DEBUG, 5 * 1024 * 1024, 5),
        _rotating_handler('errors.log', logging.ERROR, 2 * 1024 * 1024, 3),
    ]

    root_logger.setLevel(logging.DEBUG)
    for handler in handlers:
        if handler is None:
            continue
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)
    root_logger._vineyard_configured = True

    app_logger.setLevel(logging.DEBUG)

    # Reduce noise from third-party libraries
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('requests').setLevel(logging.WARNING)
    logging.getLogger('werkzeug').setLevel(logging.WARNING)

    app_logger.info("Vineyard logging initialized")
    return app_logger
