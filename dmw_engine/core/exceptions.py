#!/usr/bin/env python
# coding: utf-8

"""
Exception classes for the windowed differential methylation engine.
"""


class DMWEngineError(Exception):
    """Base exception for all engine errors."""
    pass


class InputError(DMWEngineError, ValueError):
    """Raised when site records or input files are malformed."""

    def __init__(self, message: str, n_invalid: int = 0):
        super().__init__(message)
        self.n_invalid = n_invalid


class InsufficientDataError(DMWEngineError):
    """Raised when a sample or group has no usable data for a two-group test."""

    def __init__(self, message: str, sample_id: str = None, group: str = None):
        super().__init__(message)
        self.sample_id = sample_id
        self.group = group


class ConfigError(DMWEngineError, ValueError):
    """Raised when a parameter value is out of its valid range."""

    def __init__(self, param: str, value, valid_range: str = ""):
        msg = f"Invalid value for '{param}': {value!r}"
        if valid_range:
            msg += f". Expected: {valid_range}"
        super().__init__(msg)
        self.param = param
        self.value = value
