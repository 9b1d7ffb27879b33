"""Logging setup and GitHub Actions workflow-command helpers."""

from __future__ import annotations

import json
import logging
import uuid
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

ROOT_LOGGER = "migration_bot"


def escape_annotation(message: str) -> str:
    return message.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


class ActionsFormatter(logging.Formatter):
    """Render warnings and errors as workflow commands so the runner annotates the job."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        if record.levelno >= logging.ERROR:
            return f"::error::{escape_annotation(message)}"
        if record.levelno >= logging.WARNING:
            return f"::warning::{escape_annotation(message)}"
        if record.levelno <= logging.DEBUG:
            return f"::debug::{escape_annotation(message)}"
        return message


def configure_logging(level: int = logging.INFO, annotate: bool = False) -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler()
    if annotate:
        handler.setFormatter(ActionsFormatter("%(message)s"))
    else:
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if annotate else level)
    root.propagate = False
    return root


def write_outputs(outputs: dict[str, Any], path: Path | None) -> None:
    """Append step outputs to the runner's output file, or log them when there is none."""

    if path is None:
        for name, value in outputs.items():
            logger.info("output %s=%s", name, _render_value(value))
        return

    with path.open("a", encoding="utf-8") as handle:
        for name, value in outputs.items():
            rendered = _render_value(value)
            if "\n" in rendered or "\r" in rendered:
                delimiter = f"ghadelimiter_{uuid.uuid4().hex}"
                handle.write(f"{name}<<{delimiter}\n{rendered}\n{delimiter}\n")
            else:
                handle.write(f"{name}={rendered}\n")


def _render_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2)
