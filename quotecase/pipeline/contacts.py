from __future__ import annotations

import logging
from typing import Any

from quotecase.domain.models import CandidateFact, TextValue
from quotecase.domain.states import SourceType


logger = logging.getLogger(__name__)

PUBLIC_MAIL_DOMAINS = frozenset(
    {"gmail.com", "yahoo.com", "yahoo.fr", "hotmail.com", "hotmail.fr", "outlook.com", "live.com", "orange.sn"}
)


def sender_domain(address: str | None) -> str | None:
    if not address or "@" not in address:
        return None
    domain = address.rsplit("@", 1)[1].strip().strip(">").lower()
    return domain or None


class KnownContactMatcher:
    """Maps correspondent domains to known client codes."""

    def __init__(self, repo: Any) -> None:
        self.repo = repo

    def match(self, emails: list[dict[str, Any]]) -> list[CandidateFact]:
        for email in emails:
            domain = sender_domain(email.get("from_address"))
            if not domain or domain in PUBLIC_MAIL_DOMAINS:
                continue
            contact = self.repo.find_known_contact(domain)
            if not contact:
                continue
            logger.info("Matched sender domain %s to client %s", domain, contact.get("client_code"))
            ref = str(email.get("id") or "") or None
            facts = [
                CandidateFact(
                    key="contacts.client_code",
                    category="contacts",
                    value=TextValue(str(contact["client_code"])),
                    source_type=SourceType.KNOWN_CONTACT_MATCH,
                    confidence=0.95,
                    excerpt=f"sender domain {domain}",
                    source_reference=ref,
                )
            ]
            if contact.get("company_name"):
                facts.append(
                    CandidateFact(
                        key="contacts.client_company",
                        category="contacts",
                        value=TextValue(str(contact["company_name"])),
                        source_type=SourceType.KNOWN_CONTACT_MATCH,
                        confidence=0.95,
                        excerpt=f"sender domain {domain}",
                        source_reference=ref,
                    )
                )
            return facts
        return []
