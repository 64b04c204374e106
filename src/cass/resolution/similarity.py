"""String similarity toolkit shared by deduplication and entity resolution.

Both stages must make identical match decisions, so every name, URL and
text comparison goes through the functions in this module.
"""

import re
from urllib.parse import parse_qsl, urlencode, urlparse

from rapidfuzz.distance import Levenshtein

from ..models import RawRecord

# Trailing top-level domains left on names like "acme.io"
_TLD_SUFFIX = re.compile(r"\.(com|io|ai|xyz|app|co|org|net)$")

# Corporate and generic suffix words
_NAME_SUFFIX = re.compile(
    r"[\s,]+(inc|incorporated|llc|ltd|limited|corp|corporation|co|company|"
    r"labs?|io|ai|app|hq|gmbh|plc)\.?$"
)

_NON_ALNUM = re.compile(r"[^a-z0-9]")

TRACKING_PARAMS = {"ref", "fbclid", "gclid"}

_TWITTER_URL = re.compile(r"(?:twitter|x)\.com/@?([A-Za-z0-9_]+)", re.IGNORECASE)
_GITHUB_URL = re.compile(r"github\.com/([A-Za-z0-9_.-]+)", re.IGNORECASE)
_AT_HANDLE = re.compile(r"(?<![\w.])@([A-Za-z0-9_]{2,15})\b")
_FOUNDED_BY = re.compile(r"(?:founded|created|built) by ([A-Z][a-z]+ [A-Z][a-z]+)")


def normalize_name(name: str) -> str:
    """Normalize an organization name for matching.

    Lowercases, drops trailing corporate/generic suffixes ("Inc", "Labs",
    ".io") and removes every non-alphanumeric character. Idempotent.

    Args:
        name: Name to normalize

    Returns:
        Normalized name (may be empty)
    """
    if not name:
        return ""

    normalized = name.lower().strip()

    previous = None
    while previous != normalized:
        previous = normalized
        normalized = _TLD_SUFFIX.sub("", normalized)
        normalized = _NAME_SUFFIX.sub("", normalized).strip()

    return _NON_ALNUM.sub("", normalized)


def string_similarity(a: str, b: str) -> float:
    """Edit-distance similarity in [0, 1].

    1 - (Levenshtein distance / length of the longer string).
    """
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - Levenshtein.distance(a, b) / longest


def text_overlap(a: str, b: str) -> float:
    """Jaccard similarity of case-folded whitespace-separated words."""
    words_a = set(a.casefold().split())
    words_b = set(b.casefold().split())
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def extract_domain(url: str | None) -> str | None:
    """Host of a URL without a leading ``www.``, or None if unparsable."""
    if not url:
        return None
    try:
        host = urlparse(url.strip()).hostname
    except ValueError:
        return None
    if not host:
        return None
    return host[4:] if host.startswith("www.") else host


def normalize_url(url: str | None) -> str:
    """Canonical form of a URL used as the exact identifying key.

    Lowercases, removes tracking parameters (utm_*, ref, fbclid, gclid),
    the leading ``www.`` and any trailing slash. Unparsable input is
    returned lowercased and stripped.
    """
    if not url:
        return ""
    cleaned = url.strip().lower()
    try:
        parsed = urlparse(cleaned)
    except ValueError:
        return cleaned
    if not parsed.hostname:
        return cleaned

    host = parsed.hostname[4:] if parsed.hostname.startswith("www.") else parsed.hostname
    if parsed.port:
        host = f"{host}:{parsed.port}"
    query = urlencode(
        [
            (key, value)
            for key, value in parse_qsl(parsed.query, keep_blank_values=True)
            if key not in TRACKING_PARAMS and not key.startswith("utm_")
        ]
    )
    path = parsed.path.rstrip("/")
    normalized = f"{parsed.scheme}://{host}{path}"
    return f"{normalized}?{query}" if query else normalized


def extract_social_handles(record: RawRecord) -> dict[str, str]:
    """Collect lowercase social handles keyed by channel."""
    handles: dict[str, str] = {}
    attrs = record.attributes

    if attrs.twitter_url:
        match = _TWITTER_URL.search(attrs.twitter_url)
        if match:
            handles["twitter"] = match.group(1).lower()
    if "twitter" not in handles and record.description:
        match = _AT_HANDLE.search(record.description)
        if match:
            handles["twitter"] = match.group(1).lower()

    if attrs.github_url:
        match = _GITHUB_URL.search(attrs.github_url)
        if match:
            handles["github"] = match.group(1).lower()

    if attrs.discord_url:
        handles["discord"] = attrs.discord_url.rstrip("/").rsplit("/", 1)[-1].lower()

    return handles


def extract_founders(record: RawRecord) -> set[str]:
    """Lowercase founder names from the author, attributes and description."""
    names: set[str] = set()
    if record.author and "bot" not in record.author.lower():
        names.add(record.author.lower())
    for founder in record.attributes.founders or []:
        names.add(founder.lower())
    match = _FOUNDED_BY.search(record.description)
    if match:
        names.add(match.group(1).lower())
    return names
