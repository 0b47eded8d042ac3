"""Issue Text — strips portal footers from issue/comment bodies and parses them back.

Invariants:
    - Stripping is idempotent: strip(strip(x)) == strip(x)
    - Empty or None input yields "" (strip) or None (extract)
    - Backslashes are removed before matching so escaped brackets (\\[external\\]) match

Footer formats written by the portal:
    single-line:  [Portal Metadata] User: Jane Doe jane@example.com Time: Oct 18, 2025, 10:33 PM GMT+7
    multi-line:   [Portal Metadata]\\nUser: Jane Doe jane@example.com\\nTime: ...
    legacy:       \\n---\\nPosted by: ...
"""

import re

_SINGLE_LINE_FOOTER = re.compile(
    r"\s*\[Portal Metadata\]\s*User:.*Time:.*$", re.IGNORECASE | re.MULTILINE,
)
_EXTERNAL_PREFIX = re.compile(r"^\[external\]\s*", re.IGNORECASE)

_SINGLE_LINE_META = re.compile(
    r"\[Portal Metadata\]\s*User:\s*([^0-9]+?)\s+([\w.+-]+@[\w.-]+)\s*Time:\s*(.+?)(?:\s*$|\n)",
    re.IGNORECASE,
)
_MULTI_LINE_USER = re.compile(
    r"\[Portal Metadata\][\s\S]*?User:\s*([^0-9]+?)\s+([\w.+-]+@[\w.-]+)", re.IGNORECASE,
)
_MULTI_LINE_TIME = re.compile(r"Time:\s*(.+?)(?:\s*$|\n)", re.IGNORECASE)


def _normalize(text: str) -> str:
    cleaned = text.replace("\\", "").strip()
    if cleaned.startswith("\ufeff"):
        cleaned = cleaned[1:]
    return cleaned


def _strip_footers(text: str) -> str:
    cleaned = _SINGLE_LINE_FOOTER.sub("", text).strip()
    cut = cleaned.find("\n\n[Portal Metadata]")
    if cut == -1:
        cut = cleaned.find("\n[Portal Metadata]")
    if cut != -1:
        cleaned = cleaned[:cut].strip()
    cut = cleaned.find("\n---\nPosted by:")
    if cut != -1:
        cleaned = cleaned[:cut].strip()
    return cleaned


def strip_metadata_from_description(text: str | None) -> str:
    if not text:
        return ""
    return _strip_footers(_normalize(text))


def strip_external_prefix(text: str | None) -> str:
    """Comment body without the [external] marker and portal footers."""
    if not text:
        return ""
    cleaned = _normalize(text)
    if _EXTERNAL_PREFIX.match(cleaned):
        cleaned = _EXTERNAL_PREFIX.sub("", cleaned, count=1).strip()
    return _strip_footers(cleaned)


def _initials(name: str) -> str:
    return "".join(word[0] for word in name.split(" ") if word).upper()[:2]


def extract_portal_metadata(text: str | None) -> dict | None:
    """Portal author recorded in a footer, or None when there is no footer."""
    if not text:
        return None
    match = _SINGLE_LINE_META.search(text)
    if match:
        name, email, timestamp = (g.strip() for g in match.groups())
    else:
        user_match = _MULTI_LINE_USER.search(text)
        time_match = _MULTI_LINE_TIME.search(text)
        if not (user_match and time_match):
            return None
        name = user_match.group(1).strip()
        email = user_match.group(2).strip()
        timestamp = time_match.group(1).strip()
    return {
        "userName": name,
        "userEmail": email,
        "timestamp": timestamp,
        "userInitials": _initials(name),
    }
