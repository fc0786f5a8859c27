"""Text helpers for moving Zammad HTML bodies into Discord messages."""

import html
import re
from typing import Optional

_BLOCKQUOTE = re.compile(r"<blockquote[\s\S]*?</blockquote>", re.IGNORECASE)
_QUOTE_CONTAINERS = [
    # Gmail, Outlook, Yahoo and Zammad's own signature marker. Greedy to
    # the end of the body: everything after the marker is quoted history.
    re.compile(r"<div\s[^>]*class=[\"']gmail_quote[\"'][\s\S]*", re.IGNORECASE),
    re.compile(r"<div\s[^>]*id=[\"']appendonsend[\"'][\s\S]*", re.IGNORECASE),
    re.compile(r"<div\s[^>]*class=[\"']yahoo_quoted[\"'][\s\S]*", re.IGNORECASE),
    re.compile(r"<div\s[^>]*data-signature=[\"']true[\"'][\s\S]*", re.IGNORECASE),
]
_WROTE_LINE = re.compile(r"On\s.+wrote:\s*$", re.IGNORECASE | re.MULTILINE)
_OUTLOOK_HEADER = re.compile(
    r"[-_]{2,}[\s\S]*?From:\s.+[\s\S]*?Subject:\s.+", re.IGNORECASE
)

_CONTENT_TYPE_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/heic": ".heic",
    "video/mp4": ".mp4",
    "video/3gpp": ".3gp",
    "audio/mpeg": ".mp3",
    "audio/ogg": ".ogg",
    "application/pdf": ".pdf",
}


def truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 1] + "…"


def strip_quoted_email(body: str) -> str:
    """Drop the quoted reply chain so only the new reply remains."""
    cleaned = body
    previous = None
    # Nested blockquotes need repeated passes
    while previous != cleaned:
        previous = cleaned
        cleaned = _BLOCKQUOTE.sub("", cleaned)
    for pattern in _QUOTE_CONTAINERS:
        cleaned = pattern.sub("", cleaned)
    cleaned = _WROTE_LINE.sub("", cleaned)
    cleaned = _OUTLOOK_HEADER.sub("", cleaned)
    return cleaned


def strip_html(body: str) -> str:
    text = re.sub(r"<br\s*/?>", "\n", body, flags=re.IGNORECASE)
    text = re.sub(r"</(p|div|li)>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<li[^>]*>", "- ", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", "", text)
    text = html.unescape(text).replace("\xa0", " ")
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def extract_display_name(sender: Optional[str]) -> Optional[str]:
    """'John Doe <john@example.com>' -> 'John Doe'; bare emails -> None"""
    if not sender:
        return None
    match = re.match(r"^(.+?)\s*<[^>]+>$", sender)
    if match:
        return match.group(1).strip().strip('"') or None
    if "@" in sender and " " not in sender:
        return None
    return sender.strip() or None


def short_owner_label(full_name: Optional[str]) -> Optional[str]:
    """'Jane Doe' -> 'Jane D.'"""
    if not full_name:
        return None
    parts = full_name.split()
    if len(parts) == 1:
        return parts[0]
    return f"{parts[0]} {parts[-1][0]}."


def ensure_file_extension(filename: str, content_type: Optional[str]) -> str:
    if re.search(r"\.\w{2,5}$", filename) or not content_type:
        return filename
    content_type = content_type.split(";")[0].strip().lower()
    extension = _CONTENT_TYPE_EXTENSIONS.get(content_type)
    if extension:
        return f"{filename}{extension}"
    subtype = content_type.split("/")[-1] if "/" in content_type else ""
    if re.fullmatch(r"[a-z0-9]+", subtype) and subtype != "octet-stream":
        return f"{filename}.{subtype}"
    return filename


def format_megabytes(size: int) -> str:
    if size <= 0:
        return "? MB"
    return f"{size / 1024 / 1024:.1f} MB"
