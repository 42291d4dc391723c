"""Column, group, statistic and order specifications.

Specifications arrive as plain strings from layer definitions:

    columns:     'SiteName, Area, "Designated"'   comma separated, "..." = literal
    group:       'SiteName;Status'                semicolon (or comma) separated
    statistics:  'Area SUM;Status FIRST'          semicolon separated "<field> <FUNC>"
    order:       'SiteName, Status'               comma separated
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from datasearches.core.models import AggregateFunction, FieldInfo
from datasearches.export.schema import field_exists

LITERAL_QUOTE = '"'

_LIST_SEPARATORS = re.compile(r"[;,]")


def is_literal(token: str) -> bool:
    """Literal tokens start with a double quote and are emitted verbatim."""
    return token.startswith(LITERAL_QUOTE)


def split_columns(spec: str | None) -> list[str]:
    """Split a comma separated column specification into trimmed tokens."""
    if not spec:
        return []
    return [token.strip() for token in spec.split(",") if token.strip()]


def split_group_columns(spec: str | None) -> list[str]:
    if not spec:
        return []
    return [token.strip() for token in _LIST_SEPARATORS.split(spec) if token.strip()]


@dataclass(frozen=True)
class Projection:
    """Outcome of projecting a column specification onto a dataset."""

    tokens: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)

    @property
    def spec(self) -> str:
        """The cleaned specification, as written in a header line."""
        return ",".join(self.tokens)

    @property
    def is_empty(self) -> bool:
        return not self.tokens

    @property
    def field_tokens(self) -> list[str]:
        return [t for t in self.tokens if not is_literal(t)]


def project(column_spec: str | None, fields: Sequence[FieldInfo]) -> Projection:
    """Drop unknown field names from a column specification.

    Literal tokens pass through without validation. Known fields keep their
    relative order; unknown ones are returned as missing.
    """
    tokens: list[str] = []
    missing: list[str] = []
    for token in split_columns(column_spec):
        if is_literal(token) or field_exists(fields, token):
            tokens.append(token)
        else:
            missing.append(token)
    return Projection(tokens=tokens, missing=missing)


@dataclass(frozen=True)
class Statistic:
    """A (field, aggregate function) pair."""

    field: str
    function: AggregateFunction

    @classmethod
    def parse(cls, text: str) -> Statistic:
        """Parse '<field> <FUNC>'.

        Raises:
            ValueError: If the text is not a field name followed by a known function
        """
        parts = text.split()
        if len(parts) != 2:
            raise ValueError(f"Statistic must be '<field> <FUNCTION>': {text!r}")
        try:
            function = AggregateFunction(parts[1].upper())
        except ValueError as e:
            raise ValueError(f"Unknown aggregate function {parts[1]!r} in {text!r}") from e
        return cls(field=parts[0], function=function)

    def as_param(self) -> tuple[str, str]:
        return self.field, self.function.value

    def __str__(self) -> str:
        return f"{self.field} {self.function.value}"


def parse_statistics(spec: str | None) -> tuple[list[Statistic], list[str]]:
    """Parse a ';'-separated statistics specification.

    Returns:
        (statistics, invalid entries)
    """
    statistics: list[Statistic] = []
    invalid: list[str] = []
    for entry in (spec or "").split(";"):
        entry = entry.strip()
        if not entry:
            continue
        try:
            statistics.append(Statistic.parse(entry))
        except ValueError:
            invalid.append(entry)
    return statistics, invalid


def format_statistics(statistics: Sequence[Statistic]) -> str:
    return ";".join(str(s) for s in statistics)
