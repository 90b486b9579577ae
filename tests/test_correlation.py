"""Tests for the correlation table."""

import time

import pytest

from mcpbridge.mcp.correlation import CorrelationTable
from mcpbridge.mcp.errors import MCPConnectionError, PeerError, RequestTimeout


class TestCorrelationTable:
    """Tests for CorrelationTable."""

    def test_complete_resolves_once(self):
        """Test complete resolves once."""
        table = CorrelationTable()
        future = table.register(1)
        assert 1 in table

        assert table.complete(1, False, {"ok": True}) is True
        assert future.result(timeout=1) == {"ok": True}
        assert 1 not in table

        # A second reply with the same id changes nothing.
        assert table.complete(1, False, {"ok": False}) is False
        assert future.result(timeout=1) == {"ok": True}

    def test_complete_with_error(self):
        """Test complete with error."""
        table = CorrelationTable()
        future = table.register(5)
        table.complete(5, True, {"code": -32601, "message": "Method not found", "data": {"m": "x"}})

        with pytest.raises(PeerError) as exc_info:
            future.result(timeout=1)
        assert exc_info.value.code == -32601
        assert exc_info.value.data == {"m": "x"}
        assert "Method not found" in str(exc_info.value)

    def test_unknown_id_is_ignored(self):
        """Test unknown id is ignored."""
        table = CorrelationTable()
        future = table.register(1)
        assert table.complete(99, False, "stray") is False
        assert not future.done()
        table.complete(1, False, "mine")
        assert future.result(timeout=1) == "mine"

    def test_timeout_rejects_and_evicts(self):
        """Test timeout rejects and evicts."""
        table = CorrelationTable()
        future = table.register(3, timeout=0.05)

        with pytest.raises(RequestTimeout) as exc_info:
            future.result(timeout=2)
        assert exc_info.value.request_id == 3
        assert len(table) == 0

        # The late reply has no effect.
        assert table.complete(3, False, "late") is False

    def test_reply_beats_timer(self):
        """Test reply beats timer."""
        table = CorrelationTable()
        future = table.register(4, timeout=0.2)
        table.complete(4, False, "fast")
        time.sleep(0.3)
        assert future.result(timeout=1) == "fast"

    def test_default_timeout(self):
        """Test default timeout."""
        table = CorrelationTable(default_timeout=0.05)
        future = table.register(1)
        with pytest.raises(RequestTimeout):
            future.result(timeout=2)

    def test_duplicate_live_id_rejected(self):
        """Test duplicate live id rejected."""
        table = CorrelationTable()
        table.register(1)
        with pytest.raises(ValueError):
            table.register(1)
        table.fail_all(RuntimeError("cleanup"))

    def test_discard(self):
        """Test that a discarded request never resolves."""
        table = CorrelationTable()
        future = table.register(1, timeout=0.05)
        table.discard(1)
        time.sleep(0.1)
        assert not future.done()
        assert len(table) == 0

    def test_fail_all(self):
        """Test rejecting every pending request at once."""
        table = CorrelationTable()
        futures = [table.register(i) for i in range(3)]

        assert table.fail_all(MCPConnectionError("gone")) == 3
        for future in futures:
            with pytest.raises(MCPConnectionError):
                future.result(timeout=1)
        assert len(table) == 0
