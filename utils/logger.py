import json
import logging
import sys
from datetime import datetime, timezone

_NOISY_PREFIX = "HTTP Request:"


class _HideRequestNoise(logging.Filter):
    """Blocks the per‑request INFO line httpx prints for every indexer page."""
    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        return not record.getMessage().startswith(_NOISY_PREFIX)


class JsonFormatter(logging.Formatter):
    """Structured JSON formatter for deterministic, parseable logs."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "module": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(level: str = "INFO", json_logs: bool = False) -> logging.Logger:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(root.handlers):
        if getattr(handler, "_snapshot_job", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler._snapshot_job = True  # type: ignore[attr-defined]
    handler.addFilter(_HideRequestNoise())
    if json_logs:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s")
        )
    root.addHandler(handler)

    for name in ("web3", "urllib3", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)
    return root
