"""
Merchant normalization utilities.

Turns raw statement descriptions into a stable merchant name used for
grouping (top merchants, per-category merchant breakdowns, subscriptions).
"""

import re


# =============================================================================
# BRAND ALIASES
# Checked in order against the lowercased, cleaned description. Each entry is
# (required substrings, merchant name); every substring must be present.
# Settings can append entries through `merchant_aliases`.
# =============================================================================
MERCHANT_ALIASES = [
    (('uber', 'eats'), 'Uber Eats'),
    (('uber canada',), 'Uber'),
    (('uber holdings',), 'Uber'),
    (('costco', 'instacart'), 'Costco (Instacart)'),
    (('amazon',), 'Amazon'),
    (('amzn',), 'Amazon'),
    (('doordash',), 'DoorDash'),
]


def clean_description(description):
    """Strip POS reference suffixes and normalize whitespace.

    Removes a trailing `*REF123` style reference, a trailing dash and
    collapses runs of whitespace.
    """
    cleaned = re.sub(r'\*[A-Z0-9]+$', '', description, flags=re.IGNORECASE)
    cleaned = re.sub(r'\s*-\s*$', '', cleaned)
    cleaned = re.sub(r'\s+', ' ', cleaned)
    return cleaned.strip()


def apply_special_transformations(cleaned, aliases=None):
    """Return the aliased merchant name for a cleaned description, or None."""
    lowered = cleaned.lower()
    for needles, name in (aliases if aliases is not None else MERCHANT_ALIASES):
        if all(needle in lowered for needle in needles):
            return name
    return None


def simplify_merchant_name(description, aliases=None):
    """Normalize a description to a merchant name for grouping.

    Args:
        description: Raw transaction description
        aliases: Optional alias table, defaults to MERCHANT_ALIASES

    Returns:
        Merchant name, e.g. "Amazon" for "AMZN Mktp CA*2K1AB3"
    """
    cleaned = clean_description(description)
    special = apply_special_transformations(cleaned, aliases)
    if special:
        return special
    return cleaned


def build_aliases(extra):
    """Combine user aliases from settings with the built-in table.

    Args:
        extra: Iterable of (match, name) where match is a substring or a
               list of substrings that must all be present.

    Returns:
        Alias table with user entries first so they take priority.
    """
    user_aliases = []
    for match, name in extra or []:
        needles = (match,) if isinstance(match, str) else tuple(match)
        user_aliases.append((tuple(n.lower() for n in needles), name))
    return user_aliases + list(MERCHANT_ALIASES)
