"""Text and price normalization for scraped product fields.

Price handling is a heuristic: the first run of digits, dots and commas is
taken as the price token and every grouping character is stripped from it.
This conflates thousands separators with decimal points ("19.99" becomes
"1999"). Known limitation: there is no locale-aware decimal handling.
"""

import logging
import re

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_PRICE_TOKEN = re.compile(r"[\d.,]+")


def clean_text(text: str) -> str:
    """Trim and collapse every whitespace run to a single space."""
    return _WHITESPACE.sub(" ", text).strip()


def extract_price(raw: str) -> str:
    """Extract a numeric token from a raw price string.

    Args:
        raw: Price text as found on the page, e.g. "  $1,234.56 ".

    Returns:
        The token with "," and "." removed when that parses as a number,
        the unstripped token when it does not, or the cleaned input when
        no numeric token is present at all.
    """
    cleaned = clean_text(raw)
    match = _PRICE_TOKEN.search(cleaned)
    if match is None:
        if cleaned:
            logger.warning("Could not extract numerical value from price string: %r", cleaned)
        return cleaned

    token = match.group(0)
    stripped = token.replace(",", "").replace(".", "")
    try:
        float(stripped)
    except ValueError:
        logger.warning(
            "Failed to parse cleaned price %r (match %r, original %r), returning match",
            stripped, token, cleaned,
        )
        return token
    return stripped


def extract_category(raw: str) -> str:
    # Breadcrumb handling will live here; for now a plain clean.
    return clean_text(raw)
