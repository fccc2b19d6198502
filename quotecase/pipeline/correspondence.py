from __future__ import annotations

import base64
import binascii
import logging
import quopri
import re

from bs4 import BeautifulSoup

from quotecase.config import settings


logger = logging.getLogger(__name__)

_HEADER_TOKENS = re.compile(
    r"\s+(?=(?:Content-Type|Content-Transfer-Encoding|Content-Disposition|Content-ID|MIME-Version):)",
    re.IGNORECASE,
)
_BOUNDARY_RE = re.compile(r'boundary="?([^";\s]+)"?', re.IGNORECASE)
_CONTENT_TYPE_RE = re.compile(r"Content-Type:\s*([\w.+-]+/[\w.+-]+)", re.IGNORECASE)
_ENCODING_RE = re.compile(r"Content-Transfer-Encoding:\s*([\w-]+)", re.IGNORECASE)
_CHARSET_RE = re.compile(r'charset="?([\w-]+)"?', re.IGNORECASE)
_BASE64_BODY_RE = re.compile(r"^[A-Za-z0-9+/=\s]+$")


def _truncate(text: str, max_chars: int) -> str:
    return text.strip()[:max_chars]


def strip_html(raw: str) -> str:
    soup = BeautifulSoup(raw, "html.parser")
    for node in soup.find_all(["style", "script"]):
        node.decompose()
    lines = (line.strip() for line in soup.get_text("\n").replace("\xa0", " ").splitlines())
    text = re.sub(r"[ \t]+", " ", "\n".join(lines))
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def _looks_like_html(text: str) -> bool:
    return bool(re.search(r"<(html|body|div|p|table|br)\b", text, re.IGNORECASE))


def _try_base64(text: str) -> str | None:
    """Decode ``text`` when it is a bare base64 body of printable UTF-8, else None."""
    compact = re.sub(r"\s", "", text)
    if len(compact) < 16 or len(compact) % 4 or not _BASE64_BODY_RE.match(compact):
        return None
    try:
        decoded = base64.b64decode(compact, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    printable = sum(1 for ch in decoded if ch.isprintable() or ch in "\r\n\t")
    if not decoded or printable / len(decoded) < 0.9:
        return None
    return decoded


def _decode_bytes(data: bytes, charset: str | None) -> str:
    try:
        return data.decode(charset or "utf-8", errors="replace")
    except LookupError:
        return data.decode("utf-8", errors="replace")


def _decode_body(body: str, encoding: str | None, charset: str | None) -> str:
    enc = (encoding or "").lower()
    if enc == "base64":
        compact = re.sub(r"\s", "", body)
        return _decode_bytes(base64.b64decode(compact + "=" * (-len(compact) % 4)), charset)
    if enc == "quoted-printable":
        return _decode_bytes(quopri.decodestring(body.encode("utf-8", errors="replace")), charset)
    return body


def _split_headers(part: str) -> tuple[str, str]:
    pieces = re.split(r"\r?\n\s*\r?\n", part, maxsplit=1)
    if len(pieces) == 2 and all(
        re.match(r"^([\w-]+:|\s)", line) for line in pieces[0].splitlines() if line
    ):
        return pieces[0], pieces[1]
    # Flattened part: headers run up to the last header value token.
    last = None
    for m in re.finditer(r"Content-[\w-]+:\s*[^\s;]+(?:;\s*\w+=\"?[^\s\"]+\"?)*", part, re.IGNORECASE):
        last = m
    if last is None:
        return "", part
    return part[: last.end()], part[last.end():]


def _collect_parts(text: str, boundary: str, depth: int = 0) -> list[tuple[str, str]]:
    """Return (content_type, decoded_body) leaves of a multipart body."""
    leaves: list[tuple[str, str]] = []
    # chunks[0] is the preamble; a chunk starting with "--" follows the closing marker.
    for chunk in text.split(f"--{boundary}")[1:]:
        if chunk.startswith("--"):
            break
        chunk = chunk.strip()
        if not chunk:
            continue
        headers, body = _split_headers(chunk)
        ctype_match = _CONTENT_TYPE_RE.search(headers)
        ctype = ctype_match.group(1).lower() if ctype_match else "text/plain"
        if ctype.startswith("image/"):
            continue
        nested = _BOUNDARY_RE.search(headers)
        if ctype.startswith("multipart/") and nested and depth < 3:
            leaves.extend(_collect_parts(body, nested.group(1), depth + 1))
            continue
        enc_match = _ENCODING_RE.search(headers)
        charset_match = _CHARSET_RE.search(headers)
        encoding = enc_match.group(1) if enc_match else ""
        decoded = _decode_body(body, encoding, charset_match.group(1) if charset_match else None)
        leaves.append((ctype, decoded))
    return leaves


def extract_plain_text(raw_body: str | None, max_chars: int | None = None) -> str:
    limit = max_chars or settings.body_max_chars
    if not raw_body:
        return ""
    try:
        text = _HEADER_TOKENS.sub("\n", str(raw_body))
        boundary = _BOUNDARY_RE.search(text)
        if not boundary:
            decoded = _try_base64(text)
            if decoded is None:
                return _truncate(str(raw_body), limit)
            if _looks_like_html(decoded):
                decoded = strip_html(decoded)
            return _truncate(decoded, limit)

        marker = boundary.group(1)
        text = re.sub(rf"\s+(?=--{re.escape(marker)})", "\n", text)
        leaves = _collect_parts(text, marker)
        for ctype, body in leaves:
            if ctype == "text/plain" and body.strip():
                return _truncate(body, limit)
        for ctype, body in leaves:
            if ctype == "text/html" and body.strip():
                return _truncate(strip_html(body), limit)
        return _truncate(str(raw_body), limit)
    except (binascii.Error, ValueError, UnicodeError) as exc:
        logger.debug("Body normalization failed, returning raw text: %s", exc)
        return _truncate(str(raw_body), limit)
