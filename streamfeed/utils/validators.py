"""
StreamFeed Input Validators
==========================

Validation and sanitization helpers for remote identifiers, file names,
titles, keywords and URLs.
"""

import hashlib
import re
import unicodedata
from pathlib import PurePosixPath
from typing import List
from urllib.parse import unquote, urlparse


_UNSAFE_PATH_CHARS = re.compile(r'[^A-Za-z0-9._-]')
_CONTROL_CHARS = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]')


def safe_path_component(value: str, fallback_seed: str = "") -> str:
    """Turn an arbitrary string into a single safe file name component.

    Characters outside ``[A-Za-z0-9._-]`` become ``_``. Leading dots are
    replaced so the result is never hidden, and empty or dot-only input
    falls back to a short hash of ``fallback_seed`` (or of the input).
    """
    cleaned = _UNSAFE_PATH_CHARS.sub('_', value.strip())
    cleaned = re.sub(r'^\.+', lambda m: '_' * len(m.group(0)), cleaned)

    if not cleaned.strip('._'):
        seed = fallback_seed or value or "empty"
        return hashlib.sha1(seed.encode('utf-8')).hexdigest()[:12]

    return cleaned


def filename_from_url(url: str) -> str:
    """Unquoted basename of a URL path, made safe for the local filesystem.

    Empty basenames (``http://host/``, ``http://host/dir/``) fall back to a
    short sha1 of the URL.
    """
    path = urlparse(url).path
    basename = PurePosixPath(unquote(path)).name if path else ""
    return safe_path_component(basename, fallback_seed=url)


def slugify(text: str, max_length: int = 200) -> str:
    """URL slug for a title or tag name."""
    normalized = unicodedata.normalize('NFKD', text).encode('ascii', 'ignore').decode('ascii')
    slug = re.sub(r'[^\w\s-]', '', normalized.lower())
    slug = re.sub(r'[\s_-]+', '-', slug).strip('-')
    return slug[:max_length].rstrip('-') or 'untitled'


def sanitize_text(text: str) -> str:
    """Drop control characters and collapse whitespace."""
    text = _CONTROL_CHARS.sub('', text)
    return re.sub(r'\s+', ' ', text).strip()


def split_keywords(raw: str) -> List[str]:
    """Split a comma separated keyword list.

    Entries are trimmed, empty entries dropped, and case-insensitive
    duplicates removed keeping the first spelling.
    """
    seen = set()
    keywords = []
    for part in raw.split(','):
        keyword = sanitize_text(part)
        if keyword and keyword.lower() not in seen:
            seen.add(keyword.lower())
            keywords.append(keyword)
    return keywords


def validate_url(url: str) -> bool:
    """Check that a string is an absolute http(s) URL."""
    try:
        parsed = urlparse(url)
        return parsed.scheme in ('http', 'https') and bool(parsed.netloc)
    except ValueError:
        return False
