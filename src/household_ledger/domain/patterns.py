import re
from functools import lru_cache

# Purchase-method tags banks put in front of the merchant
_PREFIX_RE = re.compile(
    r"^(VISA PURCHASE|EFTPOS|DIRECT DEBIT|DIRECT CREDIT|TRANSFER|ATM)\s*",
    re.IGNORECASE,
)
_TRAILING_DATE_RE = re.compile(r"\s+\d{2}/\d{2}.*$")
_TRAILING_REGION_RE = re.compile(r"\s+[A-Z]{2}\s+AUS?$")

PATTERN_WORDS = 3


def extract_pattern(description: str) -> str:
    """
    Derive a reusable rule pattern from a bank description.

    "VISA PURCHASE WOOLWORTHS 1234 SYDNEY 12/03" -> "WOOLWORTHS 1234 SYDNEY"
    """
    cleaned = _PREFIX_RE.sub("", description.strip(), count=1)
    cleaned = _TRAILING_DATE_RE.sub("", cleaned)
    cleaned = _TRAILING_REGION_RE.sub("", cleaned).strip()
    words = cleaned.split()[:PATTERN_WORDS]
    return " ".join(words).upper()


@lru_cache(maxsize=2048)
def compile_pattern(pattern: str) -> re.Pattern[str] | None:
    """Compile ``pattern`` case-insensitively, or ``None`` if it is not a valid regex."""
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error:
        return None


def pattern_matches(pattern: str, description: str) -> bool:
    compiled = compile_pattern(pattern)
    if compiled is not None:
        return compiled.search(description) is not None
    return pattern.upper() in description.upper()
