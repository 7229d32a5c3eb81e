"""Pytest plugin wiring settings, browser sessions and page objects together.

Settings are resolved once per session and handed to every page object by
reference. Browser-backed tests get an isolated context per test; unit tests
that never request `page` run without a browser at all. Hooks emit structured
start/end events and, when METRICS_PATH is set, a Prometheus textfile that
includes element readiness soft failures.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import time
from dataclasses import asdict
from pathlib import Path
from typing import Generator

import pytest
from playwright.sync_api import Browser, Page, Playwright, sync_playwright
from playwright.sync_api import Error as PlaywrightError

from config import BROWSER_CHOICES, LOG_LEVEL_CHOICES, MODE_CHOICES, Settings, get_settings
from metrics import ReadinessStats, SessionMetrics, write_metrics
from pages.base_page import BasePage
from qa_logging import setup_logging

try:
    from pytest_metadata.plugin import metadata_key
except Exception:  # pragma: no cover - optional plugin path
    metadata_key = None

LOGGER = logging.getLogger("qa")
_session_start: float | None = None
_session_results = {"passed": 0, "failed": 0, "skipped": 0}
_rerun_nodeids: set[str] = set()
_counted_nodeids: set[str] = set()
_readiness_stats = ReadinessStats()


def _artifact_dir(settings: Settings, nodeid: str) -> Path:
    """Filesystem-safe per-test artifact directory."""
    name = re.sub(r"[^\w.-]+", "__", nodeid).strip("._") or "test"
    return settings.artifacts_dir / name


def _keep(mode: str, failed: bool) -> bool:
    return mode == "on" or (mode == "on-failure" and failed)


def _retries(item: pytest.Item) -> int:
    # pytest-rerunfailures sets execution_count on reruns.
    return max(getattr(item, "execution_count", 1) - 1, 0)


def _soft_failures_since(item: pytest.Item) -> dict[str, int]:
    """Soft failures recorded while this test ran, not the session total."""
    before: dict[str, int] = getattr(item, "_qa_soft_failures_before", {})
    return {kind: count - before.get(kind, 0) for kind, count in asdict(_readiness_stats).items()}


def pytest_addoption(parser: pytest.Parser) -> None:
    """Register framework CLI options layered on top of env/default config."""
    group = parser.getgroup("qa-ui")
    group.addoption("--base-url", dest="base_url", default=None, help="Application base URL")
    group.addoption(
        "--browser",
        dest="browser",
        choices=sorted(BROWSER_CHOICES),
        default=None,
        help="Browser engine",
    )
    group.addoption(
        "--headed",
        action="store_const",
        const=False,
        dest="headless",
        default=None,
        help="Run headed (same as HEADLESS=false)",
    )
    group.addoption(
        "--headless", action="store_const", const=True, dest="headless", help="Force headless mode"
    )
    group.addoption(
        "--slowmo-ms", type=int, dest="slowmo_ms", default=None, help="Launch slow motion delay"
    )
    group.addoption(
        "--viewport", dest="viewport", default=None, help="Viewport size as WIDTHxHEIGHT"
    )
    group.addoption(
        "--artifacts-dir", dest="artifacts_dir", default=None, help="Per-test artifacts directory"
    )
    group.addoption(
        "--pw-trace",
        dest="pw_trace",
        choices=sorted(MODE_CHOICES),
        default=None,
        help="Playwright tracing policy: on|off|on-failure",
    )
    group.addoption(
        "--screenshot",
        dest="screenshot",
        choices=sorted(MODE_CHOICES),
        default=None,
        help="Screenshot capture policy: on|off|on-failure",
    )
    group.addoption(
        "--timeout-ms",
        type=int,
        dest="timeout_ms",
        default=None,
        help="Default action/navigation timeout in milliseconds",
    )
    group.addoption("--locale", dest="locale", default=None, help="Context locale (default en-US)")
    group.addoption(
        "--timezone-id", dest="timezone_id", default=None, help="Context timezone (default UTC)"
    )
    group.addoption(
        "--wait-timeout-s",
        type=int,
        dest="wait_timeout_s",
        default=None,
        help="Element readiness wait budget in seconds (default 100)",
    )
    group.addoption(
        "--qa-log-level",
        dest="qa_log_level",
        choices=sorted(LOG_LEVEL_CHOICES),
        default=None,
        help="Level for the JSON framework log (default INFO)",
    )


def pytest_configure(config: pytest.Config) -> None:
    """Register markers and enrich pytest-html metadata when the plugin is present."""
    config.addinivalue_line("markers", "browser: drives a real Playwright browser")

    if metadata_key is None:
        return

    settings = get_settings(config)
    metadata = config.stash.setdefault(metadata_key, {})
    metadata["base_url"] = settings.base_url
    metadata["browser"] = settings.browser_name
    metadata["headless"] = str(settings.headless)
    metadata["wait_timeout_s"] = str(settings.wait_timeout_s)
    metadata["commit_sha"] = os.getenv("GITHUB_SHA", "")[:12] or "local"


@pytest.fixture(scope="session", autouse=True)
def _init_logging(pytestconfig: pytest.Config) -> None:
    setup_logging(get_settings(pytestconfig).log_level_value)


@pytest.fixture(scope="session")
def settings(pytestconfig: pytest.Config) -> Settings:
    """Session-cached settings; the only configuration page objects ever see."""
    return get_settings(pytestconfig)


@pytest.fixture(scope="session")
def readiness_stats() -> ReadinessStats:
    """Session-wide soft-failure counters exported with the session metrics."""
    return _readiness_stats


@pytest.fixture(scope="session")
def playwright_instance() -> Generator[Playwright, None, None]:
    with sync_playwright() as playwright:
        yield playwright


@pytest.fixture(scope="session")
def browser(settings: Settings, playwright_instance: Playwright) -> Generator[Browser, None, None]:
    """Session-scoped browser reused across isolated per-test contexts."""
    browser_type = getattr(playwright_instance, settings.browser_name)
    try:
        browser = browser_type.launch(headless=settings.headless, slow_mo=settings.slowmo_ms)
    except PlaywrightError as exc:
        pytest.skip(f"{settings.browser_name} could not be launched: {exc.message}")
    yield browser
    browser.close()


@pytest.fixture
def page(
    request: pytest.FixtureRequest,
    browser: Browser,
    settings: Settings,
) -> Generator[Page, None, None]:
    """Per-test context/page; keeps a screenshot and trace according to retention policy."""
    context = browser.new_context(
        viewport=settings.viewport,
        locale=settings.locale,
        timezone_id=settings.timezone_id,
    )
    context.set_default_timeout(settings.timeout_ms)
    context.set_default_navigation_timeout(settings.timeout_ms)
    if settings.trace != "off":
        context.tracing.start(screenshots=True, snapshots=True, sources=True)

    page = context.new_page()
    yield page

    rep_call = getattr(request.node, "rep_call", None)
    failed = bool(rep_call and rep_call.failed)
    test_dir = _artifact_dir(settings, request.node.nodeid)
    test_dir.mkdir(parents=True, exist_ok=True)
    artifacts: dict[str, str] = {}

    if _keep(settings.screenshot, failed):
        # Tab switching may have moved the test onto another page of the context.
        current = context.pages[-1] if context.pages else page
        screenshot_path = test_dir / "screenshot.png"
        try:
            current.screenshot(path=str(screenshot_path), full_page=True)
            artifacts["screenshot"] = str(screenshot_path)
        except PlaywrightError:
            LOGGER.exception("screenshot_capture_failed", extra={"test_nodeid": request.node.nodeid})

    if settings.trace != "off":
        trace_path = test_dir / "trace.zip"
        try:
            if _keep(settings.trace, failed):
                context.tracing.stop(path=str(trace_path))
                artifacts["trace"] = str(trace_path)
            else:
                context.tracing.stop()
        except PlaywrightError:
            LOGGER.exception("trace_capture_failed", extra={"test_nodeid": request.node.nodeid})

    request.node._qa_artifacts = artifacts  # type: ignore[attr-defined]
    context.close()

    if not artifacts:
        shutil.rmtree(test_dir, ignore_errors=True)


@pytest.fixture
def base_page(page: Page, settings: Settings, readiness_stats: ReadinessStats) -> BasePage:
    """Page object bound to the per-test page, configured from session settings."""
    return BasePage(
        page=page,
        base_url=settings.base_url,
        timeout_ms=settings.timeout_ms,
        visibility_policy=settings.visibility_policy,
        invisibility_policy=settings.invisibility_policy,
        stats=readiness_stats,
    )


def pytest_sessionstart(session: pytest.Session) -> None:
    global _session_start
    _session_start = time.perf_counter()


def pytest_sessionfinish(session: pytest.Session, exitstatus: int) -> None:
    """Publish Prometheus textfile metrics if METRICS_PATH is configured."""
    metrics_path = os.getenv("METRICS_PATH")
    if _session_start is None or not metrics_path:
        return
    summary = SessionMetrics(
        total=session.testscollected or 0,
        passed=_session_results["passed"],
        failed=_session_results["failed"],
        skipped=_session_results["skipped"],
        flaky=len(_rerun_nodeids),
        duration_seconds=time.perf_counter() - _session_start,
        readiness=_readiness_stats,
    )
    write_metrics(metrics_path, summary)


def pytest_runtest_setup(item: pytest.Item) -> None:
    item._qa_test_started_at = time.perf_counter()  # type: ignore[attr-defined]
    item._qa_soft_failures_before = asdict(_readiness_stats)  # type: ignore[attr-defined]
    LOGGER.info(
        "test_start",
        extra={
            "event": "test_start",
            "test_nodeid": item.nodeid,
            "worker": os.getenv("PYTEST_XDIST_WORKER", "master"),
            "retries": _retries(item),
        },
    )


@pytest.hookimpl(hookwrapper=True, tryfirst=True)
def pytest_runtest_makereport(item: pytest.Item, call: pytest.CallInfo[None]):
    """Keep per-phase reports on the item, attach artifacts and log the end event."""
    outcome = yield
    report = outcome.get_result()
    setattr(item, f"rep_{report.when}", report)
    if report.when != "teardown":
        return

    artifacts: dict[str, str] = getattr(item, "_qa_artifacts", {})
    pytest_html = item.config.pluginmanager.getplugin("html")
    if pytest_html and artifacts:
        extras = list(getattr(report, "extras", []))
        if "screenshot" in artifacts:
            extras.append(pytest_html.extras.image(artifacts["screenshot"]))
        if "trace" in artifacts:
            extras.append(pytest_html.extras.url(artifacts["trace"], name="trace.zip"))
        report.extras = extras

    setup_report = getattr(item, "rep_setup", None)
    call_report = getattr(item, "rep_call", None)
    if setup_report is not None and setup_report.failed:
        outcome_name = "error"
    elif call_report is not None:
        outcome_name = call_report.outcome
    elif setup_report is not None and setup_report.skipped:
        outcome_name = "skipped"
    else:
        outcome_name = "error" if report.failed else report.outcome

    started_at = getattr(item, "_qa_test_started_at", None)
    LOGGER.info(
        "test_end",
        extra={
            "event": "test_end",
            "test_nodeid": item.nodeid,
            "outcome": outcome_name,
            "duration_ms": int((time.perf_counter() - started_at) * 1000) if started_at else None,
            "artifacts": sorted(artifacts),
            "soft_failures": _soft_failures_since(item),
            "retries": _retries(item),
        },
    )


def pytest_runtest_logreport(report: pytest.TestReport) -> None:
    """Track one aggregate outcome per test for session metrics export."""
    if report.outcome == "rerun":
        _rerun_nodeids.add(report.nodeid)
        return

    counts = report.when == "call" or (report.when == "setup" and report.skipped)
    if not counts or report.nodeid in _counted_nodeids:
        return

    _counted_nodeids.add(report.nodeid)
    if report.passed:
        _session_results["passed"] += 1
    elif report.failed:
        _session_results["failed"] += 1
    elif report.skipped:
        _session_results["skipped"] += 1


@pytest.hookimpl(optionalhook=True)
def pytest_html_report_title(report) -> None:
    report.title = "Element Readiness UI Report"
