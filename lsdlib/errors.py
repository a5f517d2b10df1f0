"""Exceptions raised while decoding TMD / TOD / MML data."""


class LsdFormatError(ValueError):
    """Base class for all structural decode errors.

    Attributes:
        offset: absolute stream position the error refers to, or None
    """

    def __init__(self, message, offset=None):
        if offset is not None:
            message = f"{message} (at offset {offset:#x})"
        super().__init__(message)
        self.offset = offset


class BadFormatError(LsdFormatError):
    """Leading magic, version or declared length does not match the format."""


class UnsupportedVariantError(LsdFormatError):
    """A structurally valid record whose shape cannot be decoded.

    The byte length of an unknown shape is not known, so the surrounding
    stream cannot be resynchronised after one of these.
    """

    def __init__(self, message, variant=None, offset=None):
        super().__init__(message, offset)
        self.variant = variant


class TruncatedInputError(LsdFormatError, EOFError):
    """Fewer bytes were available than a field requires."""

    def __init__(self, requested, available, offset=None):
        super().__init__(
            f"Tried to read {requested} bytes, but only got {available}.", offset
        )
        self.requested = requested
        self.available = available
