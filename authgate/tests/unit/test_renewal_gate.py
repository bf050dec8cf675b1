"""
Unit tests for the per-user renewal lock.
"""

from __future__ import annotations

import threading
import time
from datetime import timedelta

import pytest

from authgate.app.services.renewal_gate import RenewalGate


def test_same_user_is_serialized():
    gate = RenewalGate()
    inside = []
    overlaps = []

    def worker():
        with gate.hold(1):
            inside.append(1)
            if len(inside) > 1:
                overlaps.append(True)
            time.sleep(0.02)
            inside.pop()

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert overlaps == []


def test_different_users_do_not_block_each_other():
    gate = RenewalGate()
    entered = threading.Event()

    def hold_user_two():
        with gate.hold(2):
            entered.set()

    with gate.hold(1):
        t = threading.Thread(target=hold_user_two)
        t.start()
        assert entered.wait(timeout=1.0)
        t.join()


def test_entries_are_dropped_when_idle():
    gate = RenewalGate()
    with gate.hold(1):
        with gate.hold(2):
            assert gate.active_users() == 2
    assert gate.active_users() == 0


def test_lock_is_released_on_exception():
    gate = RenewalGate()
    with pytest.raises(RuntimeError):
        with gate.hold(1):
            raise RuntimeError("boom")

    acquired = threading.Event()

    def worker():
        with gate.hold(1):
            acquired.set()

    t = threading.Thread(target=worker)
    t.start()
    assert acquired.wait(timeout=1.0)
    t.join()
    assert gate.active_users() == 0


# ═══════════════════════════════════════════════════════════════════════════
# Handoff of replaced handles
# ═══════════════════════════════════════════════════════════════════════════

class TestHandoff:

    def test_replacement_is_returned_for_old_handle(self):
        gate = RenewalGate()
        gate.remember("at-old", "replacement")
        assert gate.replacement_for("at-old") == "replacement"
        assert gate.replacement_for("at-other") is None

    def test_forget_drops_replacement(self):
        gate = RenewalGate()
        gate.remember("at-old", "replacement")
        gate.forget("at-old")
        assert gate.replacement_for("at-old") is None

    def test_replacement_expires_after_ttl(self):
        gate = RenewalGate(handoff_ttl=timedelta(0))
        gate.remember("at-old", "replacement")
        assert gate.replacement_for("at-old") is None
        assert gate.pending_handoffs() == 0

    def test_raw_handles_are_not_kept(self):
        gate = RenewalGate()
        gate.remember("at-secret-handle", "replacement")
        assert "at-secret-handle" not in gate._handoffs
