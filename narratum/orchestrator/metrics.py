"""In-process metrics for pipeline runs.

The collector only records; it never influences pipeline behavior. Values
are kept as plain float series keyed by metric name, e.g.
``pipeline.duration``, ``stage.generate.duration`` or
``agent.narrator.duration`` (all durations in milliseconds).
"""

import math
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Sequence

from narratum.agents.base import AgentType


@dataclass(frozen=True)
class MetricStatistics:
    """Aggregate view of one metric series."""
    name: str
    count: int = 0
    min: float = 0.0
    max: float = 0.0
    average: float = 0.0
    p50: float = 0.0
    p95: float = 0.0
    p99: float = 0.0

    @classmethod
    def calculate(cls, name: str, values: Sequence[float]) -> "MetricStatistics":
        if not values:
            return cls(name)
        ordered = sorted(values)
        return cls(
            name=name,
            count=len(ordered),
            min=ordered[0],
            max=ordered[-1],
            average=sum(ordered) / len(ordered),
            p50=percentile(ordered, 50),
            p95=percentile(ordered, 95),
            p99=percentile(ordered, 99)
        )


def percentile(ordered: Sequence[float], rank: int) -> float:
    """Nearest-rank percentile of an ascending sequence."""
    if not ordered:
        return 0.0
    index = math.ceil(rank * len(ordered) / 100) - 1
    return ordered[max(0, min(index, len(ordered) - 1))]


@dataclass(frozen=True)
class PipelineMetricsSummary:
    """What one run cost, as reported by ``MetricsCollector.end_pipeline``.

    Attributes:
        pipeline_id: Identifier of the run
        total_duration: Seconds between start_pipeline and end_pipeline
        stage_durations: Seconds per stage name
        agent_durations: Accumulated seconds per agent role
        total_agent_calls: Generation calls made during the run
        retry_count: Retries recorded during the run
        success: Outcome of the run
    """
    pipeline_id: str
    total_duration: float
    stage_durations: Dict[str, float] = field(default_factory=dict)
    agent_durations: Dict[AgentType, float] = field(default_factory=dict)
    total_agent_calls: int = 0
    retry_count: int = 0
    success: bool = False

    @property
    def average_stage_duration(self) -> float:
        if not self.stage_durations:
            return 0.0
        return sum(self.stage_durations.values()) / len(self.stage_durations)

    @property
    def slowest_stage(self) -> Optional[str]:
        if not self.stage_durations:
            return None
        return max(self.stage_durations, key=self.stage_durations.get)

    @property
    def slowest_agent(self) -> Optional[AgentType]:
        if not self.agent_durations:
            return None
        return max(self.agent_durations, key=self.agent_durations.get)


@dataclass
class _RunRecord:
    started_at: float
    stage_durations: Dict[str, float] = field(default_factory=dict)
    agent_durations: Dict[AgentType, float] = field(default_factory=lambda: defaultdict(float))
    agent_calls: int = 0
    retries: int = 0


class MetricsCollector:
    """Collects durations and counters across pipeline runs.

    Safe to share between concurrent runs; one lock guards all state.
    Recording against an unknown pipeline id only updates the global series.
    """

    def __init__(self, max_points_per_metric: int = 1000):
        self.max_points_per_metric = max_points_per_metric
        self._series: Dict[str, Deque[float]] = defaultdict(
            lambda: deque(maxlen=max_points_per_metric if max_points_per_metric > 0 else None)
        )
        self._counters: Dict[str, int] = defaultdict(int)
        self._runs: Dict[str, _RunRecord] = {}
        self._lock = threading.Lock()

    def start_pipeline(self, pipeline_id: str) -> None:
        with self._lock:
            self._runs[pipeline_id] = _RunRecord(started_at=time.time())

    def record_stage(self, pipeline_id: str, stage: str, duration: float) -> None:
        with self._lock:
            run = self._runs.get(pipeline_id)
            if run is not None:
                run.stage_durations[stage] = duration
            self._record(f"stage.{stage.lower()}.duration", duration * 1000)

    def record_agent_call(self, pipeline_id: str, agent: AgentType, duration: float, success: bool) -> None:
        with self._lock:
            run = self._runs.get(pipeline_id)
            if run is not None:
                run.agent_durations[agent] += duration
                run.agent_calls += 1
            self._record(f"agent.{agent.value}.duration", duration * 1000)
            self._counters["agent.calls"] += 1
            if not success:
                self._counters["agent.failures"] += 1

    def record_retry(self, pipeline_id: str, attempt: int) -> None:
        with self._lock:
            run = self._runs.get(pipeline_id)
            if run is not None:
                run.retries += 1
            self._counters["pipeline.retry.count"] += 1

    def end_pipeline(self, pipeline_id: str, success: bool) -> PipelineMetricsSummary:
        """Close a run and return its summary.

        Raises:
            KeyError: If the pipeline was never started or already ended
        """
        with self._lock:
            run = self._runs.pop(pipeline_id, None)
            if run is None:
                raise KeyError(f"Pipeline {pipeline_id} not found")

            summary = PipelineMetricsSummary(
                pipeline_id=pipeline_id,
                total_duration=time.time() - run.started_at,
                stage_durations=dict(run.stage_durations),
                agent_durations=dict(run.agent_durations),
                total_agent_calls=run.agent_calls,
                retry_count=run.retries,
                success=success
            )
            self._record("pipeline.duration", summary.total_duration * 1000)
            self._counters["pipeline.success" if success else "pipeline.failure"] += 1
            return summary

    def discard_pipeline(self, pipeline_id: str) -> None:
        """Forget an open run without recording an outcome; unknown ids are ignored."""
        with self._lock:
            self._runs.pop(pipeline_id, None)

    @property
    def open_pipeline_count(self) -> int:
        with self._lock:
            return len(self._runs)

    def get_statistics(self, name: str) -> MetricStatistics:
        with self._lock:
            values = list(self._series.get(name, ()))
        return MetricStatistics.calculate(name, values)

    def get_counter(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    @property
    def metric_names(self) -> List[str]:
        with self._lock:
            return sorted(self._series)

    def reset(self) -> None:
        with self._lock:
            self._series.clear()
            self._counters.clear()
            self._runs.clear()

    def _record(self, name: str, value: float) -> None:
        self._series[name].append(value)
