import logging
import logging.handlers
import os
import sys

LOG_FILE_NAME = "dbm_api.log"
LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(data_directory: str = "data"):
    """
    Send records to stdout and to ``<data_directory>/dbm_api.log``.

    The level comes from ``LOG_LEVEL`` (default INFO). Calling this again
    replaces the handlers installed by an earlier call.
    """
    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
    formatter = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)

    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    try:
        os.makedirs(data_directory, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            os.path.join(data_directory, LOG_FILE_NAME),
            maxBytes=10 * 1024 * 1024, backupCount=5
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    except OSError as e:
        root.error(f"Logging to {data_directory} disabled, cannot open log file: {e}")

    # APScheduler logs every job submission at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("dbm_api").setLevel(log_level)

    logging.info(f"Logging configured with level {log_level}")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
