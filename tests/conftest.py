from __future__ import annotations

from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from quotecase.domain.models import CandidateFact, make_value
from quotecase.domain.states import SourceType
from quotecase.infra.repositories import InMemoryRepository
from quotecase.services.case_service import CaseService


OWNER = "agent-7"


@pytest.fixture
def repo():
    return InMemoryRepository()


@pytest.fixture
def offline_oracle():
    """Oracle stand-in with no API key: extraction runs on the regex engine."""
    oracle = MagicMock()
    oracle.enabled = False
    return oracle


@pytest.fixture
def service(repo, offline_oracle):
    return CaseService(repo, oracle=offline_oracle)


@pytest.fixture
def make_case(repo):
    """Seed a case with one email (and optional attachments) in the repository."""

    def _make(
        body,
        *,
        status="NEW",
        subject="Quotation request",
        sender="buyer@client-co.com",
        attachments=(),
        owner=OWNER,
    ):
        thread_id = f"thread-{uuid4()}"
        case = repo.add_case({"thread_id": thread_id, "created_by": owner, "status": status})
        email = repo.add_email(
            {
                "thread_id": thread_id,
                "from_address": sender,
                "subject": subject,
                "body_text": body,
                "sent_at": "2026-03-02T09:00:00+00:00",
            }
        )
        for att in attachments:
            repo.add_attachment({"email_id": email["id"], **att})
        return case

    return _make


@pytest.fixture
def put_fact(repo):
    """Write a fact straight into the store, bypassing the pipeline."""

    def _put(case_id, key, value, value_type="text", source=SourceType.AI_EXTRACTION, confidence=0.8):
        candidate = CandidateFact(
            key=key,
            category=key.split(".", 1)[0],
            value=make_value(value, value_type),
            source_type=source,
            confidence=confidence,
        )
        return repo.supersede_fact(case_id, candidate)

    return _put
