"""
Changelog item classification based on content keywords.

Classifies a single bullet line into breaking, removal, fix, feature,
or other.
"""

from typing import Iterable, Literal


ItemKind = Literal["breaking", "removal", "fix", "feature", "other"]

ITEM_KINDS: tuple[ItemKind, ...] = ("breaking", "removal", "fix", "feature", "other")


# Keywords for classification (lowercase). Checked in this order;
# a line can match several lists, the first hit wins.
REMOVAL_KEYWORDS = ["removed", "deprecated", "no longer"]
FIX_KEYWORDS = ["fix", "fixed", "bug", "issue"]
FEATURE_KEYWORDS = ["add", "new", "feature", "support"]


def _contains_any(text: str, keywords: list[str]) -> bool:
    return any(keyword in text for keyword in keywords)


def classify_item(content: str) -> ItemKind:
    """
    Classify a changelog bullet by case-insensitive substring matching.

    Precedence: breaking > removal > fix > feature > other. "Removed
    support for X" is breaking, never a plain removal.

    Args:
        content: Bullet text with the list marker already stripped.

    Returns:
        The item kind.
    """
    text = content.lower()

    if "breaking" in text or ("removed" in text and "support" in text):
        return "breaking"
    if _contains_any(text, REMOVAL_KEYWORDS):
        return "removal"
    if _contains_any(text, FIX_KEYWORDS):
        return "fix"
    if _contains_any(text, FEATURE_KEYWORDS):
        return "feature"
    return "other"


def count_by_kind(items: Iterable) -> dict[ItemKind, int]:
    """Count classified items per kind (all kinds present, zero-filled)."""
    counts: dict[ItemKind, int] = {kind: 0 for kind in ITEM_KINDS}
    for item in items:
        counts[item.kind] += 1
    return counts
