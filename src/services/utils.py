"""Helper functions for naming conventions and id handling."""
import re
from collections.abc import Iterable, Mapping, Set
from typing import Any

_ES_SUFFIXES = ("s", "x", "z", "ch", "sh")


def pluralize(word: str) -> str:
    """
    Pluralize the last segment of a snake_case name.

    Examples:
        >>> pluralize("benefit")
        'benefits'
        >>> pluralize("card_category")
        'card_categories'
        >>> pluralize("address")
        'addresses'
    """
    if re.search(r"[^aeiou]y$", word):
        return word[:-1] + "ies"
    if word.endswith(_ES_SUFFIXES):
        return word + "es"
    return word + "s"


def singularize(word: str) -> str:
    """
    Singularize the last segment of a snake_case name.

    Examples:
        >>> singularize("related_articles")
        'related_article'
        >>> singularize("categories")
        'category'
    """
    if word.endswith("ies") and len(word) > 3:
        return word[:-3] + "y"
    if re.search(r"(ss|x|z|ch|sh)es$", word):
        return word[:-2]
    if word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


def is_id_collection(value: Any) -> bool:
    """
    Check whether a value is a collection of ids.

    Strings, bytes and mappings are not id collections even though they are
    iterable. A form that submits no checkboxes typically leaves the field as
    None or an empty string, which is therefore not a collection either.
    """
    if isinstance(value, (str, bytes, Mapping)):
        return False
    return isinstance(value, (list, tuple, Set))


def unique_in_order(values: Iterable[Any]) -> list[Any]:
    """Remove duplicates while keeping the first occurrence order."""
    return list(dict.fromkeys(values))
