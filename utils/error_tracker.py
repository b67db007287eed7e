"""scankit exception types and the process-wide error hook."""

from __future__ import annotations

import signal
import sys
import traceback
from typing import Any, Callable, Dict, List, Optional, Sequence

from .logger import Logger


class ScanKitError(Exception):
    """Base class for scankit errors."""


class InvalidInputError(ScanKitError, ValueError):
    """Empty mandatory input or a parameter outside its documented range."""


class IndexUnavailableError(ScanKitError):
    """For callers that treat a missing closest point as fatal."""


class ErrorTracker:
    """
    Routes uncaught exceptions and termination signals through the project
    logger, running registered cleanups (last registered first) before the
    process goes down. ``uninstall`` restores whatever was there before.
    """

    logger = Logger.get_logger("errors")
    _orig_hook: Optional[Callable[..., None]] = None
    _orig_signals: Dict[int, Any] = {}
    _cleanup_funcs: List[Callable[[], None]] = []

    @classmethod
    def register_cleanup(cls, func: Callable[[], None]) -> None:
        cls._cleanup_funcs.append(func)

    @classmethod
    def unregister_cleanup(cls, func: Callable[[], None]) -> None:
        """Drop ``func`` once its owner finished normally; unknown funcs are ignored."""
        if func in cls._cleanup_funcs:
            cls._cleanup_funcs.remove(func)

    @classmethod
    def _run_cleanup(cls) -> None:
        while cls._cleanup_funcs:
            func = cls._cleanup_funcs.pop()
            try:
                func()
            except Exception as e:
                cls.logger.error(f"cleanup {getattr(func, '__name__', func)!r} failed: {e}")

    @classmethod
    def _hook(cls, exc_type, exc, tb) -> None:
        if not issubclass(exc_type, KeyboardInterrupt):
            text = "".join(traceback.format_exception(exc_type, exc, tb))
            cls.logger.error(f"Unhandled exception:\n{text}")
        cls._run_cleanup()
        if cls._orig_hook is not None:
            cls._orig_hook(exc_type, exc, tb)

    @classmethod
    def install_excepthook(cls) -> None:
        if cls._orig_hook is not None:
            return
        cls._orig_hook = sys.excepthook
        sys.excepthook = cls._hook
        cls.logger.debug("exception hook installed")

    @classmethod
    def install_signal_handlers(
        cls, signums: Sequence[int] = (signal.SIGINT, signal.SIGTERM)
    ) -> None:
        """Log, clean up and exit(1) on the given signals."""

        def _handler(signum, frame) -> None:
            cls.logger.warning(f"received signal {signal.Signals(signum).name}")
            cls._run_cleanup()
            raise SystemExit(1)

        for s in signums:
            cls._orig_signals.setdefault(s, signal.getsignal(s))
            signal.signal(s, _handler)

    @classmethod
    def uninstall(cls) -> None:
        if cls._orig_hook is not None:
            sys.excepthook = cls._orig_hook
            cls._orig_hook = None
        for s, handler in cls._orig_signals.items():
            signal.signal(s, signal.SIG_DFL if handler is None else handler)
        cls._orig_signals.clear()
        cls._cleanup_funcs.clear()

    @classmethod
    def report(cls, exc: BaseException) -> None:
        """Log a caught exception with its traceback."""
        if exc.__traceback__ is None:
            cls.logger.error(f"{type(exc).__name__}: {exc}")
            return
        text = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        cls.logger.error(text)
