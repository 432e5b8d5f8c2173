"""Turn raw result rows into caller-defined records.

A target type takes part in materialization in one of three ways:

- a dataclass, whose fields are matched to row columns by name. Fields that
  need wire-coercion declare it with :func:`wire_field`::

      @dataclass
      class PriceRow:
          symbol: str
          max_price: float = wire_field(f64_from_str)

- any class exposing a ``from_row(row)`` classmethod, which receives the raw
  mapping and builds the record itself;
- ``dict``, which yields a shallow copy of each raw row.
"""

from __future__ import annotations

import dataclasses
import datetime
import functools
import types
import typing
from collections.abc import Callable, Mapping, Sequence
from typing import Any, Protocol, TypeVar, runtime_checkable

from .decode import datetime_from_str, optional_datetime_from_str
from .errors import DecodeError, ExecutionStateError

T = TypeVar("T")

WIRE_DECODER = "spice_runner.wire_decoder"

_MISSING = dataclasses.MISSING


@runtime_checkable
class RowDecodable(Protocol):
    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Any:
        ...


def wire_field(
    decoder: Callable[[Any], Any],
    *,
    default: Any = _MISSING,
    default_factory: Any = _MISSING,
) -> Any:
    """Declare a dataclass field whose wire value is passed through ``decoder``."""
    return dataclasses.field(
        default=default,
        default_factory=default_factory,
        metadata={WIRE_DECODER: decoder},
    )


def materialize_rows(rows: Sequence[Mapping[str, Any]], row_type: type[T]) -> list[T]:
    """Decode every row into ``row_type`` or raise on the first failure.

    No partial list is ever returned: the first :class:`DecodeError` aborts
    the whole batch and names the row index and field.
    """
    build = check_row_type(row_type)
    records: list[T] = []
    for index, row in enumerate(rows):
        if not isinstance(row, Mapping):
            raise DecodeError(f"expected an object row, got {type(row).__name__}", value=row, row_index=index)
        try:
            records.append(build(row))
        except DecodeError as exc:
            if exc.row_index is None:
                raise exc.locate(field=exc.field or "<row>", row_index=index) from exc
            raise
        except KeyError as exc:
            field = exc.args[0] if exc.args and isinstance(exc.args[0], str) else "<row>"
            raise DecodeError(f"missing column {exc}", field=field, row_index=index) from exc
        except (ValueError, TypeError) as exc:
            raise DecodeError(str(exc), field="<row>", row_index=index) from exc
    return records


def check_row_type(row_type: type[T]) -> Callable[[Mapping[str, Any]], T]:
    """Return the row builder for ``row_type``, or raise if it cannot be built from rows."""
    if row_type is dict:
        return dict  # type: ignore[return-value]
    if dataclasses.is_dataclass(row_type):
        return functools.partial(_build_dataclass, row_type, _field_plan(row_type))
    if callable(getattr(row_type, "from_row", None)):
        return row_type.from_row  # type: ignore[attr-defined]
    raise ExecutionStateError(
        f"{getattr(row_type, '__name__', row_type)} cannot be built from result rows: "
        "use a dataclass, dict, or a class with a from_row classmethod"
    )


@functools.lru_cache(maxsize=128)
def _field_plan(row_type: type) -> tuple[tuple[dataclasses.Field, Any], ...]:
    hints = typing.get_type_hints(row_type)
    return tuple(
        (f, hints.get(f.name, Any)) for f in dataclasses.fields(row_type) if f.init
    )


def _build_dataclass(row_type: type[T], plan: Sequence[tuple[dataclasses.Field, Any]], row: Mapping[str, Any]) -> T:
    values: dict[str, Any] = {}
    for f, hint in plan:
        if f.name not in row:
            if f.default is _MISSING and f.default_factory is _MISSING:
                raise DecodeError("missing column", field=f.name)
            continue
        raw = row[f.name]
        decoder = f.metadata.get(WIRE_DECODER) or _implicit_decoder(hint)
        if decoder is not None:
            try:
                values[f.name] = decoder(raw)
            except DecodeError as exc:
                raise DecodeError(exc.reason, value=raw, field=f.name) from exc
            except (TypeError, ValueError) as exc:
                raise DecodeError(str(exc), value=raw, field=f.name) from exc
        else:
            _check_passthrough(f.name, raw, hint)
            values[f.name] = raw
    return row_type(**values)


_SIMPLE_TYPES = (str, int, float, bool)


def _check_passthrough(name: str, value: Any, hint: Any) -> None:
    if not _matches(value, hint):
        raise DecodeError(
            f"expected {_describe(hint)}, got {type(value).__name__} {value!r}",
            value=value,
            field=name,
        )


def _matches(value: Any, hint: Any) -> bool:
    if hint is Any:
        return True
    origin = typing.get_origin(hint)
    if origin is typing.Union or origin is types.UnionType:
        return any(_matches(value, arg) for arg in typing.get_args(hint))
    if hint is type(None):
        return value is None
    if hint in _SIMPLE_TYPES:
        if value is None:
            return False
        if hint is float:
            return isinstance(value, int | float) and not isinstance(value, bool)
        if hint is int:
            return isinstance(value, int) and not isinstance(value, bool)
        return isinstance(value, hint)
    if typing.get_origin(hint) is None and isinstance(hint, type):
        return isinstance(value, hint)
    # parametrized generics such as list[str] are not checked element-wise
    return True


def _implicit_decoder(hint: Any) -> Callable[[Any], Any] | None:
    if hint is datetime.datetime:
        return datetime_from_str
    if typing.get_origin(hint) in (typing.Union, types.UnionType) and set(typing.get_args(hint)) == {
        datetime.datetime,
        type(None),
    }:
        return optional_datetime_from_str
    return None


def _describe(hint: Any) -> str:
    return getattr(hint, "__name__", None) or str(hint)
