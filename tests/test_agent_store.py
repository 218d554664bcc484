"""Tests for the Supabase agent store's suggestion claim (mocked client)."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from app.core.schemas_agent import SuggestionStatus
from app.db.agent_store import SupabaseAgentStore


def _claim_query(client: MagicMock, rows):
    update = client.table.return_value.update.return_value
    update.eq.return_value.eq.return_value.execute.return_value = SimpleNamespace(data=rows)
    return update


class TestClaimSuggestion:
    @pytest.mark.asyncio
    async def test_update_is_conditional_on_pending(self):
        client = MagicMock()
        update = _claim_query(client, [{"id": "sug-1"}])

        claimed = await SupabaseAgentStore(client=client).claim_suggestion("sug-1", SuggestionStatus.REJECTED)

        assert claimed is True
        client.table.assert_called_once_with("knowledge_suggestions")
        payload = client.table.return_value.update.call_args.args[0]
        assert payload["status"] == "rejected"
        assert "resolved_at" in payload
        update.eq.assert_called_once_with("id", "sug-1")
        update.eq.return_value.eq.assert_called_once_with("status", "pending")

    @pytest.mark.asyncio
    async def test_no_row_updated_means_not_claimed(self):
        client = MagicMock()
        _claim_query(client, [])

        claimed = await SupabaseAgentStore(client=client).claim_suggestion("sug-1", SuggestionStatus.APPLIED)

        assert claimed is False
