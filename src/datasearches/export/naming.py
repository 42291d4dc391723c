"""Output naming for a search: reference strings and file-name safety.

Names in a search definition may contain placeholders, replaced
case-insensitively:

    %ref%        search reference with '/' replaced
    %shortref%   reference reduced to its digits
    %subref%     last part of the short reference
    %sitename%   site name
    %radius%     buffer size and unit, e.g. '500m'
"""

from __future__ import annotations

import re
from dataclasses import dataclass

ILLEGAL_CHARACTERS = '<>:"/\\|?*'
PATH_SEPARATORS = "/\\"


def strip_illegals(text: str, rep_char: str = "_", is_path: bool = False) -> str:
    """Replace characters that are not allowed in file names.

    Args:
        text: Name to clean
        rep_char: Replacement character
        is_path: Keep path separators
    """
    illegal = ILLEGAL_CHARACTERS
    if is_path:
        illegal = "".join(c for c in illegal if c not in PATH_SEPARATORS)
    cleaned = "".join(rep_char if c in illegal or ord(c) < 32 else c for c in text)
    return cleaned.strip().rstrip(".")


def keep_numbers(text: str, rep_char: str = "_") -> str:
    """Keep digits and separators, collapsing runs of separators."""
    kept = "".join(c if c.isdigit() else rep_char for c in text)
    if not rep_char:
        return kept
    collapsed = re.sub(f"{re.escape(rep_char)}+", rep_char, kept)
    return collapsed.strip(rep_char)


def get_subref(short_ref: str, rep_char: str = "_") -> str:
    """The part of a short reference after its last separator."""
    if rep_char and rep_char in short_ref:
        return short_ref.rsplit(rep_char, 1)[1]
    return short_ref


@dataclass(frozen=True)
class SearchStrings:
    """Values substituted into the output names of one search."""

    reference: str
    short_ref: str
    subref: str
    site_name: str
    radius: str

    @classmethod
    def build(
        cls,
        search_ref: str,
        site_name: str = "",
        radius: str = "",
        rep_char: str = "_",
    ) -> SearchStrings:
        reference = search_ref.replace("/", rep_char)
        short_ref = keep_numbers(reference, rep_char)
        return cls(
            reference=reference,
            short_ref=short_ref,
            subref=get_subref(short_ref, rep_char),
            site_name=strip_illegals(site_name, rep_char),
            radius=radius,
        )

    def replace(self, text: str) -> str:
        """Substitute every placeholder in text."""
        replacements = {
            "%ref%": self.reference,
            "%shortref%": self.short_ref,
            "%subref%": self.subref,
            "%sitename%": self.site_name,
            "%radius%": self.radius,
        }
        for placeholder, value in replacements.items():
            text = re.sub(re.escape(placeholder), lambda _m, v=value: v, text, flags=re.IGNORECASE)
        return text

    def output_name(self, template: str, rep_char: str = "_", is_path: bool = False) -> str:
        """Substitute placeholders, then remove illegal characters."""
        return strip_illegals(self.replace(template), rep_char, is_path=is_path)
