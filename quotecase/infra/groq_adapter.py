from __future__ import annotations

import json
from typing import Any

from groq import Groq
from pydantic import ValidationError

from quotecase.config import settings
from quotecase.contracts.payloads import OracleResponse
from quotecase.errors import OracleUnavailable


SYSTEM_PROMPT = (
    "You extract shipment quotation facts from freight-forwarding correspondence. "
    "Return strict JSON: {\"facts\": [{\"key\", \"category\", \"value\", \"valueType\", "
    "\"confidence\", \"sourceExcerpt\", \"isAssumption\"}]}. "
    "Keys are dotted lower-case (routing.origin_port, routing.destination_city, routing.incoterm, "
    "routing.origin_airport, routing.destination_airport, cargo.description, cargo.weight_kg, "
    "cargo.volume_cbm, cargo.pieces_count, cargo.containers, cargo.value, cargo.currency, "
    "cargo.hs_code, contacts.client_email, timing.loading_date). valueType is one of "
    "text, number, json, date. cargo.containers is a json list of {quantity, type} with type like 40HC. "
    "Weights in kilograms, volumes in cubic metres. Set isAssumption true for anything not stated explicitly. "
    "Never invent values."
)


class GroqAdapter:
    def __init__(self, client: Any | None = None) -> None:
        self.client = client or (
            Groq(api_key=settings.groq_api_key, timeout=settings.oracle_timeout_seconds)
            if settings.groq_api_key
            else None
        )
        self.model = settings.groq_model
        self.user_agent = settings.groq_user_agent

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def extract_facts(self, thread_text: str, attachment_text: str = "") -> list[dict[str, Any]]:
        if not self.client:
            raise OracleUnavailable("GROQ_API_KEY not configured")

        user_text = f"EMAIL THREAD:\n{thread_text}"
        if attachment_text:
            user_text += f"\n\nATTACHMENTS:\n{attachment_text}"
        data = self._chat_json(SYSTEM_PROMPT, user_text)
        try:
            return OracleResponse.model_validate(data).facts
        except ValidationError as exc:
            raise OracleUnavailable(f"Unexpected oracle payload: {exc}") from exc

    def _chat_json(self, system_prompt: str, user_text: str) -> dict[str, Any]:
        try:
            completion = self.client.chat.completions.create(
                model=self.model,
                temperature=0,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_text[:12000]},
                ],
                extra_headers={"User-Agent": self.user_agent} if self.user_agent else None,
                timeout=settings.oracle_timeout_seconds,
            )
            content = completion.choices[0].message.content
        except Exception as exc:
            raise OracleUnavailable(f"Groq call failed: {exc}") from exc

        if not content:
            raise OracleUnavailable("Groq returned an empty completion")
        try:
            data = json.loads(content)
        except json.JSONDecodeError as exc:
            raise OracleUnavailable(f"Groq returned non-JSON content: {exc}") from exc
        if not isinstance(data, dict):
            raise OracleUnavailable("Groq returned a non-object JSON payload")
        return data
