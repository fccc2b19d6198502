import json
from unittest.mock import MagicMock

import pytest

from quotecase.errors import OracleUnavailable
from quotecase.infra.groq_adapter import GroqAdapter


def _client_returning(content):
    client = MagicMock()
    completion = MagicMock()
    completion.choices = [MagicMock(message=MagicMock(content=content))]
    client.chat.completions.create.return_value = completion
    return client


class TestGroqAdapter:
    def test_returns_fact_list(self):
        payload = {"facts": [{"key": "routing.incoterm", "value": "FOB", "valueType": "text"}]}
        client = _client_returning(json.dumps(payload))
        adapter = GroqAdapter(client=client)

        facts = adapter.extract_facts("Please quote FOB", "[packing.pdf]\nGross weight 10 kg")

        assert facts == payload["facts"]
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["temperature"] == 0
        assert kwargs["response_format"] == {"type": "json_object"}
        assert "ATTACHMENTS" in kwargs["messages"][1]["content"]

    def test_client_error_is_unavailable(self):
        client = MagicMock()
        client.chat.completions.create.side_effect = RuntimeError("503 from upstream")

        with pytest.raises(OracleUnavailable):
            GroqAdapter(client=client).extract_facts("text")

    @pytest.mark.parametrize("content", ["", "not json at all", "[1, 2]", '{"facts": "nope"}'])
    def test_bad_payloads_are_unavailable(self, content):
        with pytest.raises(OracleUnavailable):
            GroqAdapter(client=_client_returning(content)).extract_facts("text")

    def test_without_client_is_disabled(self):
        adapter = GroqAdapter(client=MagicMock())
        adapter.client = None

        assert adapter.enabled is False
        with pytest.raises(OracleUnavailable):
            adapter.extract_facts("text")
