from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    ok: bool = True


@dataclass(frozen=True)
class Err:
    error: str
    ok: bool = False


ValidationResult = Union[Ok[Any], Err]
Validator = Callable[[str], ValidationResult]
