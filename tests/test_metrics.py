"""Unit tests for the in-process metrics collector."""

import threading

import pytest

from narratum.agents.base import AgentType
from narratum.orchestrator.metrics import MetricsCollector, MetricStatistics, PipelineMetricsSummary, percentile


class TestMetricStatistics:
    """Test aggregate statistics over one series."""

    def test_empty_series(self):
        """Test an empty series yields zeroed statistics."""
        stats = MetricStatistics.calculate("pipeline.duration", [])

        assert stats.count == 0
        assert stats.p95 == 0.0

    def test_statistics(self):
        """Test min, max, average and nearest-rank percentiles."""
        stats = MetricStatistics.calculate("stage.generate.duration", [float(v) for v in range(100, 0, -1)])

        assert stats.count == 100
        assert stats.min == 1.0
        assert stats.max == 100.0
        assert stats.average == pytest.approx(50.5)
        assert stats.p50 == 50.0
        assert stats.p95 == 95.0
        assert stats.p99 == 99.0

    def test_percentile_single_value(self):
        """Test any percentile of one value is that value."""
        assert percentile([7.0], 1) == 7.0
        assert percentile([7.0], 99) == 7.0


class TestMetricsCollector:
    """Test recording across pipeline runs."""

    def test_run_summary(self):
        """Test a run summary collects stages, agents and retries."""
        metrics = MetricsCollector()
        metrics.start_pipeline("run-1")
        metrics.record_stage("run-1", "Generate", 0.5)
        metrics.record_stage("run-1", "Validate", 0.1)
        metrics.record_agent_call("run-1", AgentType.NARRATOR, 0.3, True)
        metrics.record_agent_call("run-1", AgentType.NARRATOR, 0.2, False)
        metrics.record_agent_call("run-1", AgentType.CHARACTER, 0.1, True)
        metrics.record_retry("run-1", 2)

        summary = metrics.end_pipeline("run-1", success=False)

        assert isinstance(summary, PipelineMetricsSummary)
        assert summary.stage_durations == {"Generate": 0.5, "Validate": 0.1}
        assert summary.slowest_stage == "Generate"
        assert summary.average_stage_duration == pytest.approx(0.3)
        assert summary.agent_durations[AgentType.NARRATOR] == pytest.approx(0.5)
        assert summary.slowest_agent == AgentType.NARRATOR
        assert summary.total_agent_calls == 3
        assert summary.retry_count == 1
        assert not summary.success

    def test_global_series_and_counters(self):
        """Test series names and counters are updated."""
        metrics = MetricsCollector()
        metrics.start_pipeline("run-1")
        metrics.record_stage("run-1", "Generate", 0.25)
        metrics.record_agent_call("run-1", AgentType.SUMMARY, 0.1, False)
        metrics.record_retry("run-1", 2)
        metrics.end_pipeline("run-1", success=True)

        assert metrics.get_statistics("stage.generate.duration").max == pytest.approx(250.0)
        assert metrics.get_statistics("agent.summary.duration").count == 1
        assert metrics.get_statistics("pipeline.duration").count == 1
        assert metrics.get_counter("agent.calls") == 1
        assert metrics.get_counter("agent.failures") == 1
        assert metrics.get_counter("pipeline.retry.count") == 1
        assert metrics.get_counter("pipeline.success") == 1
        assert metrics.get_counter("pipeline.failure") == 0
        assert "pipeline.duration" in metrics.metric_names

    def test_unknown_run(self):
        """Test recording against an unknown run only updates global series."""
        metrics = MetricsCollector()

        metrics.record_stage("ghost", "Generate", 0.1)

        assert metrics.get_statistics("stage.generate.duration").count == 1
        with pytest.raises(KeyError):
            metrics.end_pipeline("ghost", success=True)

    def test_run_can_only_end_once(self):
        """Test ending a run twice raises."""
        metrics = MetricsCollector()
        metrics.start_pipeline("run-1")
        metrics.end_pipeline("run-1", success=True)

        with pytest.raises(KeyError):
            metrics.end_pipeline("run-1", success=True)

    def test_discard_pipeline(self):
        """Test discarding closes an open run without recording an outcome."""
        metrics = MetricsCollector()
        metrics.start_pipeline("run-1")

        metrics.discard_pipeline("run-1")
        metrics.discard_pipeline("ghost")

        assert metrics.open_pipeline_count == 0
        assert metrics.get_counter("pipeline.success") == 0
        assert metrics.get_counter("pipeline.failure") == 0
        with pytest.raises(KeyError):
            metrics.end_pipeline("run-1", success=False)

    def test_series_bounded(self):
        """Test old points are dropped beyond the per-metric limit."""
        metrics = MetricsCollector(max_points_per_metric=3)
        for duration in (1.0, 2.0, 3.0, 4.0):
            metrics.record_stage("run-1", "Generate", duration)

        stats = metrics.get_statistics("stage.generate.duration")

        assert stats.count == 3
        assert stats.min == 2000.0

    def test_zero_limit_keeps_every_point(self):
        """Test a limit of 0 leaves the series unbounded."""
        metrics = MetricsCollector(max_points_per_metric=0)
        for _ in range(2500):
            metrics.record_stage("run-1", "Generate", 0.001)

        assert metrics.get_statistics("stage.generate.duration").count == 2500

    def test_reset(self):
        """Test reset forgets series, counters and runs."""
        metrics = MetricsCollector()
        metrics.start_pipeline("run-1")
        metrics.record_retry("run-1", 2)

        metrics.reset()

        assert metrics.metric_names == []
        assert metrics.get_counter("pipeline.retry.count") == 0
        with pytest.raises(KeyError):
            metrics.end_pipeline("run-1", success=True)

    def test_concurrent_recording(self):
        """Test concurrent runs do not lose counts."""
        metrics = MetricsCollector()

        def run(index):
            pipeline_id = f"run-{index}"
            metrics.start_pipeline(pipeline_id)
            for _ in range(50):
                metrics.record_agent_call(pipeline_id, AgentType.NARRATOR, 0.01, True)
            metrics.end_pipeline(pipeline_id, success=True)

        threads = [threading.Thread(target=run, args=(i,)) for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert metrics.get_counter("agent.calls") == 400
        assert metrics.get_counter("pipeline.success") == 8
