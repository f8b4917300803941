"""Declarative stage descriptors.

A deployment is an ordered tuple of :class:`Stage` values consumed by one
generic runner loop (:class:`~stackup.deploy.orchestrator.StageOrchestrator`).
A stage says what to do, which unit must become healthy afterwards, how
long to wait for it, whether a failure aborts the run, and how long to
pause before the next stage.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from stackup.deploy.results import Layer, StageStatus

__all__ = ["Layer", "Stage", "StageContext", "StageOutput", "StageStatus"]


@dataclass
class StageOutput:
    """What a stage action reports back besides "it did not raise"."""

    message: str = ""
    warnings: list[str] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class StageContext:
    """Per-run state handed to every stage action."""

    run_id: str
    data: dict[str, Any] = field(default_factory=dict)


StageAction = Callable[[StageContext], "StageOutput | None"]


@dataclass(frozen=True)
class Stage:
    """One step of the deployment sequence.

    Attributes
    ----------
    name
        Unique stage name, shown in the report.
    action
        Callable run on entry. Raising marks the stage failed.
    layer
        Architectural layer, used for grouping in the report.
    fatal
        A failure aborts the run (FAILED) instead of degrading (DEGRADED).
    health_check
        Unit that must report healthy after the action before the run
        proceeds.
    timeout
        Upper bound, in seconds, on the health wait.
    pause_after
        Fixed pause, in seconds, once the stage has ended.
    """

    name: str
    action: StageAction
    layer: Layer
    fatal: bool = True
    health_check: str | None = None
    timeout: float = 0.0
    pause_after: float = 0.0
    description: str = ""
