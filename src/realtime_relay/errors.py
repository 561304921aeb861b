"""Exceptions raised inside the realtime relay."""


class RelayError(Exception):
    """Base class for relay errors."""


class ForwardTokenError(RelayError):
    """A forward token could not be decoded into a credential bundle."""


class FrameDecodeError(RelayError):
    """An upstream frame is not a JSON object with a string `type`."""
