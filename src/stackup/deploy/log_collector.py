"""Run artifacts for stackup deployments.

Writes the outcome of a run to disk so it can be inspected after the
terminal output is gone.

Output Structure::

    {output_dir}/{run_id}/
    ├── summary.json          # DeploymentReport
    └── services/
        ├── app.log           # log tail captured on health timeout
        └── database.log

Related Modules:
    - :mod:`stackup.deploy.results` — Models serialised by the collector
    - :mod:`stackup.cli.deploy` — Writes artifacts after every run
"""

from __future__ import annotations

from pathlib import Path

from stackup.core.logging import get_logger
from stackup.deploy.results import DeploymentReport

logger = get_logger(__name__)


class LogCollector:
    """Collects the summary and captured unit logs of one run.

    Parameters
    ----------
    output_dir
        Base directory for output.
    run_id
        Unique run identifier.
    """

    def __init__(self, output_dir: Path, run_id: str) -> None:
        self.run_dir = Path(output_dir) / run_id
        self.run_dir.mkdir(parents=True, exist_ok=True)
        self.run_id = run_id

    def services_dir(self) -> Path:
        """Get or create the directory for unit logs."""
        d = self.run_dir / "services"
        d.mkdir(parents=True, exist_ok=True)
        return d

    def save_service_log(self, unit: str, text: str) -> Path:
        path = self.services_dir() / f"{unit}.log"
        path.write_text(text, encoding="utf-8")
        logger.debug("logs.captured", unit=unit, path=str(path))
        return path

    def write_summary(self, report: DeploymentReport) -> Path:
        """Write machine-readable summary JSON."""
        path = self.run_dir / "summary.json"
        path.write_text(report.model_dump_json(indent=2), encoding="utf-8")
        logger.info("summary.written", path=str(path))
        return path

    def collect(self, report: DeploymentReport) -> Path:
        """Write the summary plus every log tail captured during the run."""
        for outcome in report.stages:
            if outcome.log_tail:
                unit = outcome.details.get("health", {}).get("unit", outcome.name)
                self.save_service_log(unit, outcome.log_tail)
        return self.write_summary(report)
