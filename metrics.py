"""Prometheus textfile metrics export for pytest session summaries.

Besides pass/fail totals, the session tracks how often page objects had to
degrade to a soft failure (wait timeouts, stale click retries) so flaky UI
behavior shows up on dashboards even when tests end up green.

The writer intentionally builds a fresh registry per write to avoid leaking
global metric state across repeated local runs in the same Python process.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path

from prometheus_client import CollectorRegistry, Gauge, generate_latest


@dataclass
class ReadinessStats:
    """Soft-failure counters shared by every page object in one session."""

    visibility_timeouts: int = 0
    clickable_timeouts: int = 0
    invisibility_timeouts: int = 0
    stale_click_retries: int = 0
    failed_clicks: int = 0

    def record(self, counter: str) -> None:
        setattr(self, counter, getattr(self, counter) + 1)


@dataclass(frozen=True)
class SessionMetrics:
    """Aggregate session counters exported at pytest session finish."""

    total: int
    passed: int
    failed: int
    skipped: int
    duration_seconds: float
    flaky: int = 0
    readiness: ReadinessStats = field(default_factory=ReadinessStats)


def write_metrics(path: str, summary: SessionMetrics) -> None:
    """Write metrics atomically to the Prometheus textfile collector path."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)

    registry = CollectorRegistry()
    gauges = {
        "qa_tests_total": Gauge("qa_tests_total", "Total tests collected", registry=registry),
        "qa_tests_passed": Gauge("qa_tests_passed", "Passed tests", registry=registry),
        "qa_tests_failed": Gauge("qa_tests_failed", "Failed tests", registry=registry),
        "qa_tests_skipped": Gauge("qa_tests_skipped", "Skipped tests", registry=registry),
        "qa_tests_flaky": Gauge("qa_tests_flaky", "Tests that required reruns", registry=registry),
        "qa_test_session_duration_seconds": Gauge(
            "qa_test_session_duration_seconds",
            "Total pytest session duration in seconds",
            registry=registry,
        ),
    }
    soft_failures = Gauge(
        "qa_element_soft_failures",
        "Element readiness waits and clicks that degraded instead of failing",
        ["kind"],
        registry=registry,
    )

    gauges["qa_tests_total"].set(summary.total)
    gauges["qa_tests_passed"].set(summary.passed)
    gauges["qa_tests_failed"].set(summary.failed)
    gauges["qa_tests_skipped"].set(summary.skipped)
    gauges["qa_tests_flaky"].set(summary.flaky)
    gauges["qa_test_session_duration_seconds"].set(summary.duration_seconds)
    for kind, count in asdict(summary.readiness).items():
        soft_failures.labels(kind=kind).set(count)

    # Write-then-rename avoids partially written files being scraped by Prometheus.
    tmp_path = target.with_suffix(f"{target.suffix}.tmp")
    tmp_path.write_bytes(generate_latest(registry))
    tmp_path.replace(target)
