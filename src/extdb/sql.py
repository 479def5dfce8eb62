"""
Statement preparation for named-parameter SQL.

Statements use `:name` placeholders. Preparation runs in two steps:

    SQL → Parse (cached) → Bind values → sqlalchemy.text clause

- `parse_statement()` splits the SQL into literal text and placeholders,
  skipping comments, quoted literals and `::` casts.
- `prepare_statement()` binds values by name: sequence values expand into
  one placeholder per item (`IN (:ids)` → `IN (:ids_0, :ids_1)`), an empty
  sequence renders as NULL, and configured bind types convert values and
  attach a SQLAlchemy type.

Only placeholders that appear in the statement are bound; a placeholder
with no value is left for the driver to report.
"""
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import cachetools
import sqlalchemy as sa
from extdb.options import resolve_bind_type
from more_itertools import collapse

__all__ = [
    'Placeholder',
    'PreparedStatement',
    'parse_statement',
    'prepare_statement',
    'clear_statement_cache',
    'is_sequence_value',
]

logger = logging.getLogger(__name__)

_TOKENIZE = re.compile(r"""
    (?P<comment>--[^\n]*|/\*.*?\*/)
    |(?P<string>'(?:[^']|'')*'|"(?:[^"]|"")*")
    |(?P<cast>::)
    |(?P<named>(?<![:\w]):(?P<pname>[A-Za-z_]\w*))
""", re.VERBOSE | re.DOTALL)

_statement_cache = cachetools.LRUCache(maxsize=256)


@dataclass(frozen=True, slots=True)
class Placeholder:
    """A `:name` placeholder found in a statement."""
    name: str


@dataclass(slots=True)
class PreparedStatement:
    """Statement text and parameters ready for execution."""
    sql: str
    params: dict[str, Any] = field(default_factory=dict)
    types: dict[str, sa.types.TypeEngine] = field(default_factory=dict)

    @property
    def clause(self) -> sa.TextClause:
        clause = sa.text(self.sql)
        if self.types:
            clause = clause.bindparams(*[
                sa.bindparam(name, type_=type_) for name, type_ in self.types.items()
            ])
        return clause


def is_sequence_value(value: Any) -> bool:
    """Check whether a bind value should be expanded into a list.

    >>> is_sequence_value((1, 2))
    True
    >>> is_sequence_value('abc')
    False
    """
    return isinstance(value, (list, tuple, set, frozenset))


@cachetools.cached(cache=_statement_cache)
def parse_statement(sql: str) -> tuple[str | Placeholder, ...]:
    """Split SQL into literal text and placeholders in a single pass.

    Colons inside comments and quoted literals are escaped so SQLAlchemy
    renders them verbatim.

    >>> parse_statement('SELECT * FROM t WHERE id = :id')
    ('SELECT * FROM t WHERE id = ', Placeholder(name='id'))
    """
    segments: list[str | Placeholder] = []
    text: list[str] = []
    last_end = 0

    for match in _TOKENIZE.finditer(sql):
        start, end = match.span()
        text.append(sql[last_end:start])
        if match.group('comment') or match.group('string'):
            text.append(match.group().replace(':', r'\:'))
        elif match.group('cast'):
            text.append('::')
        else:
            if text:
                segments.append(''.join(text))
                text = []
            segments.append(Placeholder(match.group('pname')))
        last_end = end

    text.append(sql[last_end:])
    trailing = ''.join(text)
    if trailing:
        segments.append(trailing)
    return tuple(s for s in segments if s != '')


def clear_statement_cache() -> None:
    """Drop all parsed statements."""
    _statement_cache.clear()


def _bind_one(name: str, value: Any, convert: Any, params: dict[str, Any]) -> None:
    if convert is None or value is None:
        params[name] = value
        return
    try:
        params[name] = convert(value)
    except (ValueError, TypeError, ArithmeticError) as exc:
        raise ValueError(f'Cannot convert bind value {name!r}={value!r}: {exc}') from exc


def _expanded_key(name: str, index: int, taken: set[str]) -> str:
    """Name for one item of an expanded sequence, unused by the caller.
    """
    key = f'{name}_{index}'
    while key in taken:
        key = f'{key}_'
    taken.add(key)
    return key


def prepare_statement(sql: str, values: Mapping[str, Any],
                      bind_types: Mapping[str, Any] | None = None) -> PreparedStatement:
    """Bind `values` into `sql` by placeholder name.

    Parameters
        sql: Statement with `:name` placeholders
        values: Merged bind values
        bind_types: Optional name -> bind type coercions

    Returns
        PreparedStatement with expanded SQL, parameters and bind types
    """
    bind_types = bind_types or {}
    parts: list[str] = []
    params: dict[str, Any] = {}
    types: dict[str, sa.types.TypeEngine] = {}

    segments = parse_statement(sql)
    taken = set(values) | {s.name for s in segments if isinstance(s, Placeholder)}
    expansions: dict[str, str] = {}

    for segment in segments:
        if not isinstance(segment, Placeholder):
            parts.append(segment)
            continue

        name = segment.name
        if name not in values:
            parts.append(f':{name}')
            continue

        type_, convert = None, None
        if name in bind_types:
            type_, convert = resolve_bind_type(bind_types[name])

        value = values[name]
        if not is_sequence_value(value):
            _bind_one(name, value, convert, params)
            if type_ is not None:
                types[name] = type_
            parts.append(f':{name}')
            continue

        if name in expansions:
            parts.append(expansions[name])
            continue

        items = list(collapse(value))
        if not items:
            parts.append('NULL')
            continue

        expanded = []
        for i, item in enumerate(items):
            key = _expanded_key(name, i, taken)
            _bind_one(key, item, convert, params)
            if type_ is not None:
                types[key] = type_
            expanded.append(f':{key}')
        expansions[name] = ', '.join(expanded)
        parts.append(expansions[name])

    prepared = PreparedStatement(''.join(parts), params, types)
    logger.debug(f'Prepared statement with {len(params)} bound parameter(s)')
    return prepared
