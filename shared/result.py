"""
Typed operation results.

Service operations return ``Ok(value)`` or ``Err(error)`` instead of raising,
so callers can branch on the error kind deterministically::

    result = await otp.validate(email, purpose, code)
    if isinstance(result, Err) and isinstance(result.error, ChallengeMismatchError):
        warn(result.error.remaining_attempts)

HTTP handlers call ``unwrap()``; an ``Err`` raises its AppError, which the
global exception handler renders.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from errors import AppError

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    error: AppError

    @property
    def ok(self) -> bool:
        return False

    def unwrap(self):
        raise self.error


Result = Union[Ok[T], Err]
