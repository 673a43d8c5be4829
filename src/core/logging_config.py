import logging
import sys
from enum import Enum

from pythonjsonlogger import jsonlogger

LOG_FORMAT = '%(timestamp)s %(level)s %(name)s %(message)s'


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    One JSON object per record. Session context passed through ``extra``
    (``session_id``, ``phase``) is emitted as ``sessionId`` and the phase slug.
    """

    def add_fields(self, log_record, record, message_dict):
        super(CustomJsonFormatter, self).add_fields(log_record, record, message_dict)
        log_record.setdefault('timestamp', record.created)
        log_record['level'] = record.levelname
        log_record['module'] = record.module
        log_record['lineno'] = record.lineno

        session_id = log_record.pop('session_id', None)
        if session_id is not None:
            log_record['sessionId'] = session_id
        phase = log_record.get('phase')
        if isinstance(phase, Enum):
            log_record['phase'] = phase.name.lower()


def setup_logging(log_level_str: str = "INFO"):
    """
    Installs the JSON handler on the root logger once; later calls only
    change the level.
    """
    log_level = getattr(logging, log_level_str.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    if any(isinstance(h.formatter, CustomJsonFormatter) for h in root_logger.handlers):
        root_logger.debug(f"JSON logging already configured; level set to {logging.getLevelName(log_level)}")
        return

    log_handler = logging.StreamHandler(sys.stdout)
    log_handler.setFormatter(CustomJsonFormatter(LOG_FORMAT))
    root_logger.addHandler(log_handler)
    root_logger.info(f"Structured JSON logging configured with level: {logging.getLevelName(log_level)}")
