from __future__ import annotations

import threading

from utils.error_tracker import ErrorTracker, ScanKitError
from utils.logger import Logger

from .config import PipelineCfg
from .coverage import coverage_table
from .pipeline import ProgressReport, run_progress

LOG = Logger.get_logger("main")


def _log_table(report: ProgressReport) -> None:
    for row in coverage_table(report.coverage):
        pct = row["coverage_percent"]
        shown = "n/a" if pct is None else f"{pct:.1f}"
        LOG.info(f"element {row['element']:>8}: {row['matched_points']:>7} pts  {shown}")


def run(cfg: PipelineCfg | None = None) -> ProgressReport | None:
    """
    Entry point: configure logging, install ErrorTracker, run the progress
    pipeline, log the per-element table and keep the registered scan next to
    the JSON report. Returns None when the inputs cannot be processed.
    """
    Logger.configure()
    ErrorTracker.install_excepthook()
    ErrorTracker.install_signal_handlers()
    cancel = threading.Event()
    ErrorTracker.register_cleanup(cancel.set)

    cfg = cfg or PipelineCfg()
    LOG.info(f"[START] root={cfg.data_root}")
    try:
        report = run_progress(cfg, cancel=cancel)
    except ScanKitError as e:
        ErrorTracker.report(e)
        return None
    finally:
        ErrorTracker.unregister_cleanup(cancel.set)

    _log_table(report)
    if cfg.write_report:
        from .io import save_cloud

        save_cloud(report.cloud, cfg.report_dir() / "registered.ply")
    LOG.info(f"[DONE] log file: {Logger.log_file()}")
    return report


def _main() -> None:
    """Module runner for `python -m scankit.main`."""
    run(PipelineCfg())


if __name__ == "__main__":
    _main()
