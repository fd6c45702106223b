"""Locate and import the user function."""

from __future__ import annotations

import importlib.util
import sys
from pathlib import Path
from typing import Any, Callable

import structlog

from fnruntime.settings import Settings

LOGGER = structlog.get_logger(__name__)

MODULE_NAME = "function_handler"
BUNDLED_HANDLER = Path(__file__).resolve().parents[1] / "function" / "handler.py"


class HandlerLoadError(RuntimeError):
    """Raised when the configured handler cannot be imported or is not callable."""


def candidate_paths(settings: Settings, cwd: Path | None = None) -> list[Path]:
    if settings.handler_path is not None:
        return [settings.handler_path]
    cwd = cwd or Path.cwd()
    return [
        cwd / "handler.py",
        cwd / "function" / "handler.py",
        BUNDLED_HANDLER,
    ]


def resolve_handler_path(settings: Settings, cwd: Path | None = None) -> Path:
    candidates = candidate_paths(settings, cwd)
    for path in candidates:
        if path.is_file():
            return path
    tried = ", ".join(str(path) for path in candidates)
    raise HandlerLoadError(f"no handler module found (tried {tried})")


def load_handler(settings: Settings, cwd: Path | None = None) -> Callable[..., Any]:
    path = resolve_handler_path(settings, cwd)

    spec = importlib.util.spec_from_file_location(MODULE_NAME, path)
    if spec is None or spec.loader is None:
        raise HandlerLoadError(f"cannot import handler from {path}")
    module = importlib.util.module_from_spec(spec)
    # Let the function import sibling modules from its own directory.
    handler_dir = str(path.parent)
    if handler_dir not in sys.path:
        sys.path.insert(0, handler_dir)
    sys.modules[MODULE_NAME] = module
    try:
        spec.loader.exec_module(module)
    except Exception as exc:
        sys.modules.pop(MODULE_NAME, None)
        raise HandlerLoadError(f"failed to import {path}: {exc}") from exc

    handler = getattr(module, settings.handler_name, None)
    if handler is None:
        raise HandlerLoadError(f"{path} does not define {settings.handler_name!r}")
    if not callable(handler):
        raise HandlerLoadError(f"{settings.handler_name!r} in {path} is not callable")

    LOGGER.info("handler.loaded", path=str(path), name=settings.handler_name)
    return handler
