"""Task group helpers."""

from __future__ import annotations


def first_exception(group: BaseExceptionGroup[Exception]) -> Exception:
    """Return the first leaf exception of a (possibly nested) exception group."""
    exc: BaseException = group
    while isinstance(exc, BaseExceptionGroup):
        exc = exc.exceptions[0]
    assert isinstance(exc, Exception)  # noqa: S101
    return exc
