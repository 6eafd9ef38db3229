"""Argument validation helpers used by the public entry points."""

from typing import Any, Iterable

from ..errors import ArgumentError


def arg_string(value: Any, name: str) -> str:
    if not isinstance(value, str):
        raise ArgumentError(
            f"Expected `{name}` to be type `str`, got `{type(value).__name__}`", name
        )
    return value


def arg_string_non_empty(value: Any, name: str) -> str:
    arg_string(value, name)
    if not value:
        raise ArgumentError(f"Expected `{name}` to be non-empty string", name)
    return value


def arg_callable(value: Any, name: str) -> Any:
    if not callable(value):
        raise ArgumentError(
            f"Expected `{name}` to be callable, got `{type(value).__name__}`", name
        )
    return value


def arg_number(value: Any, name: str) -> Any:
    # bool is an int subclass but never a meaningful amount
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ArgumentError(
            f"Expected `{name}` to be a number, got `{type(value).__name__}`", name
        )
    return value


def arg_one_of(value: Any, name: str, values: Iterable[Any], error_cls=ArgumentError) -> Any:
    values = list(values)
    if value not in values:
        raise error_cls(
            f"Expected `{name}` to be one of [{', '.join(map(str, values))}], got `{value}`",
            name
        )
    return value
