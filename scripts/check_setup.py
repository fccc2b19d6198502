from __future__ import annotations

import json

import requests

from quotecase.config import settings


REQUIRED_TABLES = (
    "quote_cases",
    "emails",
    "email_attachments",
    "quote_facts",
    "quote_gaps",
    "case_timeline_events",
    "hs_codes",
    "known_business_contacts",
)


def check_endpoint(url: str, headers: dict[str, str] | None = None) -> tuple[int | None, str]:
    try:
        res = requests.get(url, headers=headers or {}, timeout=20)
        return res.status_code, res.text[:200]
    except requests.RequestException as exc:
        return None, str(exc)


def main() -> None:
    key = settings.supabase_key
    print("== ENV VALIDATION ==")
    print(
        json.dumps(
            {
                "APP_ENV": settings.app_env,
                "PERSISTENCE_BACKEND": settings.persistence_backend,
                "SUPABASE_URL_VALID": settings.supabase_url_valid(),
                "SUPABASE_KEY_PRESENT": settings.supabase_key_present(),
                "GROQ_KEY_PRESENT": settings.oracle_configured(),
                "GROQ_MODEL": settings.groq_model,
                "BODY_MAX_CHARS": settings.body_max_chars,
            },
            indent=2,
        )
    )

    if not settings.supabase_url_valid() or not key:
        print("\nSupabase not configured; the API will run on the in-memory repository.")
    else:
        print("\n== SUPABASE TABLES ==")
        headers = {"apikey": key, "Authorization": f"Bearer {key}"}
        for table in REQUIRED_TABLES:
            status, detail = check_endpoint(f"{settings.supabase_url}/rest/v1/{table}?select=id&limit=1", headers)
            print(f"{table}: status={status}")
            if status is None or status >= 400:
                print(f"  detail={detail}")
                print("  note=run supabase/schema.sql in the SQL editor, then retry.")

    print("\n== EXTRACTION ORACLE ==")
    if settings.oracle_configured():
        status, detail = check_endpoint(
            "https://api.groq.com/openai/v1/models",
            headers={"Authorization": f"Bearer {settings.groq_api_key}", "User-Agent": settings.groq_user_agent},
        )
        print(f"groq_models: status={status}")
        if status is None or status >= 400:
            print(f"  detail={detail}")
    else:
        print("groq_models: skipped (no GROQ_API_KEY, regex extractor will be used)")


if __name__ == "__main__":
    main()
