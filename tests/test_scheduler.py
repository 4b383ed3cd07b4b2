"""Tests for the background conversation sweep."""

from __future__ import annotations

from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

from extensions import ServiceManager
from scheduler import init_scheduler, sweep_conversations
from session_store import ConversationRecord


class TestSweepJob:
    def test_sweep_removes_stale_records(self, app):
        store = ServiceManager.get_store()
        store.put(ConversationRecord(user_id="u1", subject="Area",
                                     last_active=datetime.now() - timedelta(days=8)))
        store.put(ConversationRecord(user_id="u1", subject="Indices", last_active=datetime.now()))

        assert sweep_conversations(app) == 1
        assert len(store) == 1


class TestInitScheduler:
    @patch("apscheduler.schedulers.background.BackgroundScheduler")
    def test_registers_single_instance_job(self, mock_cls, app):
        scheduler = MagicMock()
        mock_cls.return_value = scheduler

        assert init_scheduler(app) is scheduler

        kwargs = scheduler.add_job.call_args.kwargs
        assert kwargs["id"] == "conversation_sweep"
        assert kwargs["trigger"] == "interval"
        assert kwargs["hours"] == 1
        assert kwargs["max_instances"] == 1
        scheduler.start.assert_called_once()
