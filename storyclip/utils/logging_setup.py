from __future__ import annotations

import contextvars
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Optional

# Every record under the package logger carries these, "-" when unset
LOG_FIELDS = ("session_id", "stage", "segment")
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | " + " | ".join(f"%({f})s" for f in LOG_FIELDS) + " | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

PACKAGE_LOGGER = "storyclip"

_RUN_CONTEXT: contextvars.ContextVar[Mapping[str, str]] = contextvars.ContextVar("storyclip_run_context", default={})


def current_context() -> Dict[str, str]:
    """Fields bound by the innermost ``log_context`` of this task."""
    return dict(_RUN_CONTEXT.get())


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        bound = _RUN_CONTEXT.get()
        for field in LOG_FIELDS:
            setattr(record, field, bound.get(field) or "-")
        return True


@contextmanager
def log_context(**fields: Optional[Any]) -> Iterator[None]:
    """
    Bind pipeline fields for the records logged inside the block.

    Nested blocks inherit the outer fields and may override them. ``None``
    leaves a field as it is. Each asyncio task sees its own binding.

    Example:
        ```python
        with log_context(session_id="a1b2", stage="generate"):
            with log_context(segment=3):
                logger.info("Generating clip 4/6")
        ```
    """
    unknown = set(fields) - set(LOG_FIELDS)
    if unknown:
        raise ValueError(f"Unknown log context fields: {sorted(unknown)}")
    merged = dict(_RUN_CONTEXT.get())
    merged.update({k: str(v) for k, v in fields.items() if v is not None})
    token = _RUN_CONTEXT.set(merged)
    try:
        yield
    finally:
        _RUN_CONTEXT.reset(token)


def configure_logging(
    log_file: str = "logs/storyclip.log",
    level: str = "INFO",
    enable_console: bool = False,
    force: bool = False,
) -> logging.Logger:
    """Handlers go on the package logger; the root logger is left alone."""
    package = logging.getLogger(PACKAGE_LOGGER)
    if getattr(package, "_storyclip_configured", False) and not force:
        return package

    for handler in list(package.handlers):
        package.removeHandler(handler)
        handler.close()

    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)

    handlers = [logging.FileHandler(log_path, encoding="utf-8")]
    if enable_console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setFormatter(formatter)
        # Filters on a logger skip records from its children; handler filters do not
        handler.addFilter(ContextFilter())
        package.addHandler(handler)

    package.setLevel(str(level).upper())
    package._storyclip_configured = True
    return package


def configure_from_config(cfg: Mapping[str, Any], force: bool = False) -> logging.Logger:
    log_cfg = cfg.get("logging", {})
    return configure_logging(
        log_file=log_cfg.get("log_file", "logs/storyclip.log"),
        level=log_cfg.get("level", "INFO"),
        enable_console=bool(log_cfg.get("enable_console", False)),
        force=force,
    )


def setup_logger(name: str) -> logging.Logger:
    """Module logger under the package namespace; configures handlers on first use."""
    from storyclip.config.config import config

    configure_from_config(config)
    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + "."):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)
