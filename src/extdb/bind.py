"""
Staged bind values for the next statement.

Values staged here are merged into the next execution and then discarded,
so a parameter set for one query never leaks into an unrelated later one.
"""
import logging
from collections.abc import Mapping
from typing import Any

__all__ = ['BindValues', 'merge_values']

logger = logging.getLogger(__name__)


def merge_values(staged: Mapping[str, Any], values: Mapping[str, Any] | None) -> dict[str, Any]:
    """Merge staged values with call-site values; call-site values win.

    >>> merge_values({'a': 1, 'b': 2}, {'b': 3})
    {'a': 1, 'b': 3}
    """
    merged = dict(staged)
    if values:
        merged.update(values)
    return merged


class BindValues:
    """Accumulates values to bind to the next statement.
    """

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}

    def __len__(self) -> int:
        return len(self._values)

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def add(self, name: str, value: Any) -> None:
        """Stage one value, replacing any earlier value for the same name.
        """
        self._values[name] = value

    def update(self, values: Mapping[str, Any]) -> None:
        """Stage every entry of `values` in iteration order.
        """
        for name, value in values.items():
            self._values[name] = value

    def get(self) -> dict[str, Any]:
        """Return a copy of the staged values without clearing them.
        """
        return dict(self._values)

    def take(self) -> dict[str, Any]:
        """Return the staged values and clear them.
        """
        values, self._values = self._values, {}
        if values:
            logger.debug(f'Consumed {len(values)} staged bind value(s): {sorted(values)}')
        return values
