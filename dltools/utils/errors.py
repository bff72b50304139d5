"""
Exceptions raised by the data buffer and advantage utilities.
"""


class DataBufferError(Exception):
    """Base class for replay buffer failures."""


class ShapeMismatch(DataBufferError, ValueError):
    """Field arrays disagree on the number of records they carry."""


class UnknownField(DataBufferError, KeyError):
    """A field name that the buffer does not declare."""

    def __str__(self):
        # KeyError quotes its argument; keep the plain message
        return str(self.args[0]) if self.args else ''


class InsufficientData(DataBufferError, RuntimeError):
    """Not enough stored records to satisfy a sample request."""
