# utils/logger.py
"""loguru setup shared by every scankit module, plus tqdm progress bars."""

from __future__ import annotations

import os
import sys
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, TypeVar, cast

from loguru import logger as _logger
from tqdm.auto import tqdm

T = TypeVar("T")

MODULE_W = 8
LINE_W = 3


@dataclass(frozen=True)
class LoggingCfg:
    """Defaults; SCANKIT_LOG_LEVEL / SCANKIT_LOG_DIR override them."""

    level: str = os.environ.get("SCANKIT_LOG_LEVEL", "INFO")
    json: bool = True
    log_dir: Path = Path(os.environ.get("SCANKIT_LOG_DIR", ".logs"))
    console_format: str = (
        "<green>{time:HH:mm:ss.SSS}</green>"
        "[<level>{level:.3}</level>]"
        f"[<cyan>{{extra[module]:<{MODULE_W}.{MODULE_W}}}</cyan>:"
        f"<cyan>{{line:>{LINE_W}}}</cyan>] "
        "<level>{message}</level>"
    )
    file_format: str = (
        f"{{time:YYYY-MM-DD HH:mm:ss.SSS}} {{level:<7}} "
        f"{{extra[module]}}:{{line}} {{message}}"
    )
    bar_format: str = "{desc}: {percentage:3.0f}%|{bar}| {n_fmt}/{total_fmt} [{elapsed}]"
    # loops shorter than this run without a bar
    progress_min_total: int = 5_000


LOGCFG = LoggingCfg()


class Logger:
    """
    One process-wide loguru setup: a colored console sink and a file sink
    (JSON lines by default) under ``log_dir``. Modules call
    ``Logger.get_logger(name)`` once at import time.
    """

    _configured: bool = False
    _log_dir: Path = LOGCFG.log_dir
    _log_file: Optional[Path] = None
    _lock = threading.Lock()

    @staticmethod
    def _handlers(level: str, json_format: bool) -> List[Dict]:
        Logger._log_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        suffix = "log.json" if json_format else "log"
        Logger._log_file = Logger._log_dir / f"scankit_{stamp}.{suffix}"
        return [
            dict(sink=sys.stdout, level=level, format=LOGCFG.console_format),
            dict(
                sink=str(Logger._log_file),
                level=level,
                format=LOGCFG.file_format,
                serialize=json_format,
            ),
        ]

    @staticmethod
    def _setup(level: str, json_format: bool) -> None:
        with Logger._lock:
            if Logger._configured:
                return
            _logger.configure(
                handlers=Logger._handlers(level, json_format),
                extra={"module": "-"},
            )
            Logger._configured = True

    @staticmethod
    def configure(
        level: Optional[str] = None,
        log_dir: Optional[Path | str] = None,
        json_format: Optional[bool] = None,
    ) -> None:
        """Explicit setup; a no-op once any logger has been handed out."""
        if log_dir is not None and not Logger._configured:
            Logger._log_dir = Path(log_dir)
        Logger._setup(
            level or LOGCFG.level,
            LOGCFG.json if json_format is None else bool(json_format),
        )

    @staticmethod
    def log_file() -> Optional[Path]:
        return Logger._log_file

    @staticmethod
    def get_logger(name: str):
        Logger._setup(LOGCFG.level, LOGCFG.json)
        return _logger.bind(module=name)

    @staticmethod
    def progress(
        iterable: Iterable[T],
        desc: Optional[str] = None,
        total: Optional[int] = None,
    ) -> Iterable[T]:
        """tqdm in the project style; disabled for short loops."""
        n = total
        if n is None and hasattr(iterable, "__len__"):
            n = len(iterable)  # type: ignore[arg-type]
        return cast(
            Iterable[T],
            tqdm(
                iterable,
                desc=desc,
                total=n,
                leave=False,
                disable=n is not None and n < LOGCFG.progress_min_total,
                bar_format=LOGCFG.bar_format,
            ),
        )

    @staticmethod
    @contextmanager
    def stage(log, name: str) -> Iterator[None]:
        """Log ``[name]`` start / finish with wall time."""
        t0 = time.perf_counter()
        log.info(f"[{name}] start")
        yield
        log.info(f"[{name}] done in {time.perf_counter() - t0:.2f}s")
