import json
import logging
import os
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone

# Exposed so middleware can set the request id for every log line
req_id_var: ContextVar[str] = ContextVar("req_id", default="-")

_SECRET_PATTERNS = [
    (re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+"), r"\1****"),
    (
        re.compile(
            r"(\b(?:access_token|refresh_token|client_secret|code)[\"']?\s*[=:]\s*[\"']?)[^\s&\"',}]+",
            re.IGNORECASE,
        ),
        r"\1****",
    ),
    (re.compile(r"(Basic\s+)[A-Za-z0-9+/=]+"), r"\1****"),
]


def redact(text: str) -> str:
    for pattern, repl in _SECRET_PATTERNS:
        text = pattern.sub(repl, text)
    return text


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z"),
            "req_id": getattr(record, "req_id", req_id_var.get()),
            "level": record.levelname,
            "component": record.name,
            "msg": record.getMessage(),
        }
        payload["env"] = os.getenv("ENV", "").strip()
        if hasattr(record, "meta"):
            payload["meta"] = record.meta
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        try:
            return json.dumps(payload, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            return payload.get("msg", "")


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.req_id = req_id_var.get()
        return True


class RedactSecretsFilter(logging.Filter):
    """Mask bearer tokens and OAuth secrets before a record is emitted."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        meta = getattr(record, "meta", None)
        if isinstance(meta, dict):
            record.meta = {
                k: redact(v) if isinstance(v, str) else v for k, v in meta.items()
            }
        return True


def _flag(name: str) -> bool:
    return os.getenv(name, "").lower() in {"1", "true", "yes", "on"}


def configure_logging() -> None:
    """
    Call once at app startup.
    LOG_LEVEL env var controls verbosity (default INFO).
    LOG_TO_STDOUT / DEBUG_MODE switch from JSON on stderr to a plain console format.
    """
    level = os.getenv("LOG_LEVEL", "INFO").upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level, logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if _flag("LOG_TO_STDOUT") or _flag("DEBUG_MODE"):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - [%(req_id)s] %(message)s")
        )
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(JsonFormatter())

    # Filters on the handler so records from child loggers pass through them too
    handler.addFilter(RequestIdFilter())
    handler.addFilter(RedactSecretsFilter())
    root_logger.addHandler(handler)

    # Reduce third-party verbosity unless LOG_LEVEL is DEBUG
    if level != "DEBUG":
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
        logging.getLogger("asyncio").setLevel(logging.WARNING)

    logging.getLogger(__name__).info("logging configured", extra={"meta": {"level": level}})

