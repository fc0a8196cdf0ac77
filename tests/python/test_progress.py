import logging

import pytest

from pluginscan import ProgressCounter


def test_skipped_slots_count_towards_progress(caplog):
    caplog.set_level(logging.INFO, logger="pluginscan.progress")
    p = ProgressCounter(10, label="scan")
    for _ in range(4):
        p.step()
    p.skip(6)
    assert p.fraction == 1.0
    assert any("100%" in r.getMessage() for r in caplog.records)


def test_message_count_is_bounded(caplog):
    caplog.set_level(logging.INFO, logger="pluginscan.progress")
    p = ProgressCounter(1000, n_messages=10)
    for _ in range(1000):
        p.step()
    assert len(caplog.records) == 10


def test_never_exceeds_total():
    p = ProgressCounter(3)
    p.skip(5)
    p.step()
    assert p.done == 3
    assert ProgressCounter(0).fraction == 1.0
    with pytest.raises(ValueError):
        ProgressCounter(-1)
