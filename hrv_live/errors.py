# hrv_live/errors.py
"""
Exception hierarchy.

Only transport, decoding and persistence problems are exceptions. Invalid
state-machine transitions and artifact samples are ordinary outcomes and are
never raised.
"""


class HrvLiveError(Exception):
    """Base class for hrv_live errors."""


class MalformedNotification(HrvLiveError):
    """A device notification payload that cannot be decoded."""


class SerializationError(HrvLiveError):
    """A session record that cannot be written, read or reconstructed."""
