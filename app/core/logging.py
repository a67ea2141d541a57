import logging
from pathlib import Path
from typing import Optional
from pythonjsonlogger.json import JsonFormatter

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

_configured = False

def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure the root logger with JSON output on console and optional file."""
    global _configured
    if _configured:
        return

    root = logging.getLogger()
    root.setLevel(level.upper())
    # create a json formatter for structured logging
    formatter = JsonFormatter(LOG_FORMAT)

    ch = logging.StreamHandler()
    ch.setFormatter(formatter)
    root.addHandler(ch)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_file)
        fh.setFormatter(formatter)
        root.addHandler(fh)

    _configured = True

class JobLoggerAdapter(logging.LoggerAdapter):
    """Attach the job key to every record so a pipeline can be followed across invocations."""

    def process(self, msg, kwargs):
        extra = kwargs.setdefault("extra", {})
        extra.setdefault("job_key", self.extra["job_key"])
        return msg, kwargs

def get_job_logger(job_key: str) -> logging.LoggerAdapter:
    """Return a logger bound to a job key."""
    return JobLoggerAdapter(logging.getLogger("app.jobs"), {"job_key": job_key})
