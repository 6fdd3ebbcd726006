"""
errors.py
~~~~~~~~~

Exceptions raised by the loader and the network engine.

I/O failures are not wrapped: a missing or unreadable file propagates as
the builtin ``OSError`` subclass raised by ``open``.
"""


class SimpleNetError(Exception):
    """Base class for all simple_net errors."""


class FormatError(SimpleNetError, ValueError):
    """An IDX file does not have the expected magic number or layout."""


class DimensionError(SimpleNetError, ValueError):
    """Vector or dataset sizes do not agree with each other."""
