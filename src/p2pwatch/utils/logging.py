import json
import logging
import logging.handlers
import sys
from typing import Any, Dict, Optional

FORMAT = '%(asctime)s %(levelname)s %(name)s %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logging(level=logging.INFO, log_file: Optional[str] = None):
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(FORMAT, datefmt=DATE_FORMAT))
    root = logging.getLogger()
    root.handlers = []
    root.addHandler(handler)
    if log_file:
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,
            backupCount=10,
            encoding='utf-8',
        )
        file_handler.setFormatter(logging.Formatter(FORMAT, datefmt=DATE_FORMAT))
        root.addHandler(file_handler)
    root.setLevel(level)
    # urllib3 logs every long-poll request at DEBUG
    logging.getLogger('urllib3').setLevel(logging.WARNING)


def json_msg(d: Dict[str, Any]) -> str:
    return json.dumps(d, separators=(',', ':'), ensure_ascii=False, default=str)
