"""Pytest config for Python regression tests.

We keep helper modules (like `_tolerances.py`, `_models.py`) alongside tests
and ensure they are importable regardless of how pytest is invoked.
"""

from __future__ import annotations

import os
import sys
import time
from collections import defaultdict
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

import pytest

# Make `tests/python` importable as a top-level module path.
THIS_DIR = Path(__file__).resolve().parent
if str(THIS_DIR) not in sys.path:
    sys.path.insert(0, str(THIS_DIR))

from _models import make_line_model  # noqa: E402


class _TimingRecorder:
    def __init__(self, *, enabled: bool):
        self.enabled = enabled
        self.seconds: dict[str, dict[str, float]] = defaultdict(lambda: defaultdict(float))

    @contextmanager
    def time_block(self, *, nodeid: str, label: str) -> Iterator[None]:
        if not self.enabled:
            yield
            return
        t0 = time.perf_counter()
        try:
            yield
        finally:
            self.seconds[nodeid][label] += time.perf_counter() - t0


class _TimingFacade:
    def __init__(self, *, recorder: _TimingRecorder, nodeid: str):
        self._recorder = recorder
        self._nodeid = nodeid

    @contextmanager
    def time(self, label: str) -> Iterator[None]:
        with self._recorder.time_block(nodeid=self._nodeid, label=label):
            yield


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--ps-test-timings",
        action="store_true",
        default=False,
        help="Record and print per-test timing of scan/toy stages.",
    )


def pytest_configure(config: pytest.Config) -> None:
    enabled = bool(config.getoption("--ps-test-timings") or os.environ.get("PLUGINSCAN_TEST_TIMINGS") == "1")
    # Stash on config so fixtures/hooks can access.
    config._ps_timing_recorder = _TimingRecorder(enabled=enabled)  # type: ignore[attr-defined]


@pytest.fixture()
def ps_timing(request: pytest.FixtureRequest) -> _TimingFacade:
    recorder: _TimingRecorder = request.config._ps_timing_recorder  # type: ignore[attr-defined]
    return _TimingFacade(recorder=recorder, nodeid=request.node.nodeid)


def pytest_terminal_summary(terminalreporter: Any, exitstatus: int, config: pytest.Config) -> None:
    recorder: _TimingRecorder = config._ps_timing_recorder  # type: ignore[attr-defined]
    if not recorder.enabled or not recorder.seconds:
        return
    terminalreporter.section("pluginscan timing breakdown (PLUGINSCAN_TEST_TIMINGS=1 / --ps-test-timings)")
    for nodeid in sorted(recorder.seconds):
        labels = recorder.seconds[nodeid]
        terminalreporter.write_line(f"{nodeid}: " + ", ".join(f"{k}={v:.2f}s" for k, v in sorted(labels.items())))


@pytest.fixture
def line_model():
    return make_line_model()


@pytest.fixture
def scan_dir(tmp_path: Path) -> Path:
    d = tmp_path / "root"
    d.mkdir()
    return d
