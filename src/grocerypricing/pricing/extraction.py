"""Extraction of price records from noisy language-model responses.

Upstream responses may wrap JSON in markdown code fences, surround it with
prose, or be cut off mid-array by the token limit. None of the functions here
raise: anything unparseable degrades to ``None`` (or an empty record).
"""

import json
import re
from typing import Any

from grocerypricing.logging_config import get_logger

logger = get_logger(__name__)

_LEADING_JSON_FENCE = re.compile(r"^```json\s*", re.IGNORECASE)
_LEADING_FENCE = re.compile(r"^```\s*")
_TRAILING_FENCE = re.compile(r"```\s*$")
_ARRAY_OF_OBJECTS = re.compile(r"\[[\s\S]*\{")
_DOLLAR_AMOUNT = re.compile(r"\$\s*(\d[\d,]*(?:\.\d+)?|\.\d+)")
_ANY_AMOUNT = re.compile(r"(\d+(?:\.\d+)?)")


def strip_code_fences(text: str) -> str:
    """Remove a leading ```json / ``` fence and a trailing ``` fence."""
    cleaned = (text or "").strip()
    cleaned = _LEADING_JSON_FENCE.sub("", cleaned)
    cleaned = _LEADING_FENCE.sub("", cleaned)
    cleaned = _TRAILING_FENCE.sub("", cleaned)
    return cleaned.strip()


def find_matching_bracket(text: str, start: int) -> int:
    """
    Find the index of the bracket closing the one at ``start``.

    Brackets inside string literals are ignored; a quote preceded by an odd
    number of backslashes does not end a string.

    Returns:
        Index of the matching closing bracket, or -1 if none is found.
    """
    depth = 0
    in_string = False
    escaped = False

    for i in range(start, len(text)):
        ch = text[i]
        if escaped:
            escaped = False
            continue
        if ch == "\\" and in_string:
            escaped = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch in "[{":
            depth += 1
        elif ch in "]}":
            depth -= 1
            if depth == 0:
                return i

    return -1


def _load_list(candidate: str) -> list[Any] | None:
    try:
        value = json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return None
    return value if isinstance(value, list) else None


def extract_json_array(text: str) -> list[dict[str, Any]] | None:
    """
    Extract the first JSON array of objects embedded in ``text``.

    Examples:
        >>> extract_json_array('```json\\n[{"a":1}]\\n```')
        [{'a': 1}]
        >>> extract_json_array('Sure! [{"a":1},{"b":2}] Hope that helps')
        [{'a': 1}, {'b': 2}]
        >>> extract_json_array('not json at all') is None
        True
    """
    if not text:
        return None

    cleaned = strip_code_fences(text)

    match = _ARRAY_OF_OBJECTS.search(cleaned)
    if match:
        start = match.start()
        end = find_matching_bracket(cleaned, start)
        if end != -1:
            result = _load_list(cleaned[start : end + 1])
            if result is not None:
                return result
            logger.debug("Extracted array candidate was not valid JSON")

    # Second pass: anchor at the first '[' and try every depth-0 close
    start = cleaned.find("[")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(cleaned)):
        ch = cleaned[i]
        if escaped:
            escaped = False
            continue
        if ch == "\\" and in_string:
            escaped = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
            if depth == 0:
                result = _load_list(cleaned[start : i + 1])
                if result is not None:
                    return result

    return None


def parse_records(text: str) -> list[dict[str, Any]]:
    """
    Parse upstream content into raw price records.

    Tries array extraction first, then a direct ``json.loads`` of the whole
    (fence-stripped) text, wrapping a single object in a list.

    Returns:
        A list of dict records; empty if nothing could be parsed.
    """
    records = extract_json_array(text)
    if records is None:
        cleaned = strip_code_fences(text)
        try:
            parsed = json.loads(cleaned)
        except (json.JSONDecodeError, ValueError):
            return []
        records = parsed if isinstance(parsed, list) else [parsed]

    return [record for record in records if isinstance(record, dict)]


def parse_text_response(text: str, ingredient_name: str) -> dict[str, Any]:
    """
    Line-based fallback for responses that contain no usable JSON.

    Picks up ``store: X`` lines, the first dollar amount (taken as the package
    price, with a 10% portion estimate) and the last size-looking line.
    A record without a price has ``packagePrice == 0``.
    """
    store_name = "Unknown Store"
    package_price = 0.0
    package_size = ""

    for line in (text or "").splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        lowered = stripped.lower()

        if "store" in lowered and ":" in stripped:
            store_name = stripped.split(":", 1)[1].strip() or store_name

        if "$" in stripped and package_price == 0:
            match = _DOLLAR_AMOUNT.search(stripped) or _ANY_AMOUNT.search(stripped)
            if match:
                package_price = float(match.group(1).replace(",", ""))

        if "size" in lowered or "lb" in stripped or "oz" in stripped:
            package_size = stripped

    return {
        "ingredient": ingredient_name,
        "storeName": store_name,
        "productName": ingredient_name,
        "packagePrice": package_price,
        "portionCost": round(package_price * 0.1, 2),
        "packageSize": package_size,
        "unitPrice": f"${package_price / 10:.2f}",
        "storeType": "mainstream",
    }
