"""Object materialization for object-shaped fetches.

Rows become objects in two phases:

1. allocate the instance with ``cls.__new__(cls)``; ``__init__`` is not run.
   Dataclass fields start at their default, their ``default_factory()``
   result, or None when they have neither
2. assign every column to the attribute of the same name, then call
   ``__post_init__(*ctor_args)`` if the class defines one

Column values always win over constructor defaults, since ``__init__`` never
runs. Dataclasses get their usual ``__post_init__`` hook, now seeing the
loaded fields. Constructor arguments can only reach ``__post_init__``, so a
class without one cannot take them.
"""
import dataclasses
import importlib
from collections.abc import Mapping, Sequence
from typing import Any

from extdb.exceptions import ShapeConstructionError

__all__ = ['resolve_target', 'materialize']


def _has_post_init(cls: type) -> bool:
    return callable(getattr(cls, '__post_init__', None))


def _check_ctor_args(cls: type, ctor_args: Sequence[Any]) -> None:
    if ctor_args and not _has_post_init(cls):
        raise ShapeConstructionError(
            f'{cls.__name__} defines no __post_init__ to receive constructor arguments {tuple(ctor_args)!r}')


def resolve_target(target: type | str, ctor_args: Sequence[Any] = ()) -> type:
    """Resolve a class or a dotted ``package.module.Class`` path.

    Raises ShapeConstructionError when constructor arguments are given for a
    class without ``__post_init__``.

    >>> resolve_target('types.SimpleNamespace').__name__
    'SimpleNamespace'
    """
    if isinstance(target, type):
        cls = target
    elif not isinstance(target, str) or '.' not in target:
        raise ShapeConstructionError(f'Expected a class or a dotted class path, got {target!r}')
    else:
        module_name, _, attr = target.rpartition('.')
        try:
            module = importlib.import_module(module_name)
            cls = getattr(module, attr)
        except (ImportError, AttributeError) as exc:
            raise ShapeConstructionError(f'Cannot resolve target type {target!r}: {exc}') from exc
        if not isinstance(cls, type):
            raise ShapeConstructionError(f'{target!r} is not a class')

    _check_ctor_args(cls, ctor_args)
    return cls


def _assign(obj: Any, name: str, value: Any) -> None:
    try:
        setattr(obj, name, value)
    except dataclasses.FrozenInstanceError:
        object.__setattr__(obj, name, value)
    except (AttributeError, TypeError) as exc:
        raise ShapeConstructionError(
            f'Cannot assign {name!r} on {type(obj).__name__}: {exc}') from exc


def _field_default(f: dataclasses.Field) -> Any:
    if f.default is not dataclasses.MISSING:
        return f.default
    if f.default_factory is not dataclasses.MISSING:
        return f.default_factory()
    return None


def materialize(cls: type, row: Mapping[str, Any], ctor_args: Sequence[Any] = ()) -> Any:
    """Build an instance of `cls` from a row dictionary.
    """
    _check_ctor_args(cls, ctor_args)
    try:
        obj = cls.__new__(cls)
    except TypeError as exc:
        raise ShapeConstructionError(f'Cannot allocate {cls.__name__}: {exc}') from exc

    if dataclasses.is_dataclass(cls):
        for f in dataclasses.fields(cls):
            _assign(obj, f.name, _field_default(f))

    for name, value in row.items():
        _assign(obj, name, value)

    if _has_post_init(cls):
        obj.__post_init__(*ctor_args)
    return obj
