"""
Linear stage runner for the batch part of a refresh.

Stages run in the order they were added, each receiving the context produced
so far and returning additions to it. The first failing stage marks the rest
as skipped and its exception is re-raised, so callers see the original error
(UpstreamError, ConflictError) while the summary still shows where and after
how long the run stopped.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)


class StageStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class Stage:
    name: str
    execute_fn: Callable[[dict[str, Any]], dict[str, Any] | None]
    status: StageStatus = StageStatus.PENDING
    error: str | None = None
    duration_ms: float = 0.0

    def summary(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "duration_ms": round(self.duration_ms, 2),
            "error": self.error,
        }


class StagePipeline:
    """
    Usage:
        pipeline = StagePipeline("refresh")
        pipeline.add_stage("fetch", fetch_fn).add_stage("aggregate", aggregate_fn)
        context = pipeline.run()
    """

    def __init__(self, name: str):
        self.name = name
        self.stages: dict[str, Stage] = {}

    def add_stage(
        self, name: str, execute_fn: Callable[[dict[str, Any]], dict[str, Any] | None]
    ) -> StagePipeline:
        if name in self.stages:
            raise ValueError(f"Duplicate stage name: {name}")
        self.stages[name] = Stage(name=name, execute_fn=execute_fn)
        return self

    def run(self, initial_context: dict[str, Any] | None = None) -> dict[str, Any]:
        context = dict(initial_context or {})
        logger.info("Starting '%s' with %d stages", self.name, len(self.stages))

        failure: Exception | None = None
        for stage in self.stages.values():
            if failure is not None:
                stage.status = StageStatus.SKIPPED
                continue

            stage.status = StageStatus.RUNNING
            start = time.perf_counter()
            try:
                context.update(stage.execute_fn(context) or {})
                stage.status = StageStatus.SUCCESS
            except Exception as exc:
                stage.status = StageStatus.FAILED
                stage.error = str(exc)
                failure = exc
                logger.error("Stage '%s' of '%s' failed: %s", stage.name, self.name, exc)
            finally:
                stage.duration_ms = (time.perf_counter() - start) * 1000

        if failure is not None:
            raise failure
        logger.info("'%s' finished", self.name)
        return context

    @property
    def status(self) -> str:
        if any(s.status == StageStatus.FAILED for s in self.stages.values()):
            return "failed"
        if all(s.status == StageStatus.SUCCESS for s in self.stages.values()):
            return "completed"
        return "pending"

    def summary(self) -> dict[str, Any]:
        return {
            "pipeline": self.name,
            "status": self.status,
            "stages": {name: stage.summary() for name, stage in self.stages.items()},
        }
