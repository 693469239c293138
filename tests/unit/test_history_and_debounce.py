"""
Unit tests for the undo/redo history stack and the debouncer.
"""

import asyncio

import pytest

from cluster_playground.utils.debounce import Debouncer
from cluster_playground.utils.history import HistoryStack


@pytest.mark.unit
class TestHistoryStack:
    """Test suite for HistoryStack."""

    def test_empty(self):
        history = HistoryStack()
        assert history.current is None
        assert history.cursor == -1
        assert not history.can_undo()
        assert not history.can_redo()
        assert history.undo() is None
        assert history.redo() is None

    def test_undo_redo(self):
        history = HistoryStack()
        for entry in ("a", "b", "c"):
            history.push(entry)

        assert history.undo() == "b"
        assert history.undo() == "a"
        assert history.undo() is None
        assert history.current == "a"
        assert history.redo() == "b"
        assert history.redo() == "c"
        assert history.redo() is None

    def test_push_after_undo_discards_redo_tail(self):
        history = HistoryStack()
        for entry in ("a", "b", "c"):
            history.push(entry)
        history.undo()
        history.undo()

        history.push("d")

        assert history.entries == ("a", "d")
        assert not history.can_redo()
        assert history.current == "d"

    def test_capacity_evicts_oldest(self):
        history = HistoryStack(capacity=3)
        for entry in range(5):
            history.push(entry)

        assert history.entries == (2, 3, 4)
        assert len(history) == 3
        assert history.cursor == 2

    def test_seek(self):
        history = HistoryStack()
        for entry in ("a", "b", "c"):
            history.push(entry)

        assert history.seek(0) == "a"
        assert history.cursor == 0
        assert history.entries == ("a", "b", "c")
        assert history.redo() == "b"

        with pytest.raises(IndexError):
            history.seek(3)

    def test_clear(self):
        history = HistoryStack()
        history.push("a")
        history.clear()
        assert len(history) == 0
        assert history.current is None

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            HistoryStack(capacity=0)


@pytest.mark.unit
class TestDebouncer:
    """Test suite for Debouncer."""

    @pytest.mark.asyncio
    async def test_fires_once_after_quiescence(self):
        calls = []
        debouncer = Debouncer(0.2, calls.append)

        for value in range(5):
            debouncer.trigger(value)
            await asyncio.sleep(0.01)
        assert calls == []
        assert debouncer.pending

        await asyncio.sleep(0.4)
        assert calls == [4]
        assert not debouncer.pending

    @pytest.mark.asyncio
    async def test_cancel(self):
        calls = []
        debouncer = Debouncer(0.02, lambda: calls.append(1))

        debouncer.trigger()
        debouncer.cancel()
        await asyncio.sleep(0.05)

        assert calls == []

    @pytest.mark.asyncio
    async def test_flush(self):
        calls = []
        debouncer = Debouncer(10.0, lambda: calls.append(1))

        debouncer.trigger()
        debouncer.flush()

        assert calls == [1]
        assert not debouncer.pending

    def test_trigger_needs_running_loop(self):
        with pytest.raises(RuntimeError):
            Debouncer(0.1, lambda: None).trigger()
