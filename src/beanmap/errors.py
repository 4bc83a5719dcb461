from __future__ import annotations

from typing import Optional


class MappingError(RuntimeError):
    """Base error raised by the mapper. Wraps the root cause when there is one."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause

    @property
    def root_cause(self) -> BaseException:
        error: BaseException = self
        while isinstance(error, MappingError) and error.__cause__ is not None:
            error = error.__cause__
        return error


class ConfigurationError(MappingError):
    """Missing map-id mapping, unknown converter id, iterate field without hint."""


class ConversionError(MappingError):
    """An accessor or converter failed while a field was being mapped."""


class ValidationError(MappingError):
    """A public entry point received a None source or destination."""
