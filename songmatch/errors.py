"""
Error kinds raised by the fingerprinting engine.

"No match found" is not an error: recognition returns an empty result.
"""


class SongMatchError(Exception):
    """Base class for every error raised by songmatch."""


class ConfigError(SongMatchError, ValueError):
    """Invalid or unreadable configuration."""


class DecodeError(SongMatchError):
    """The external decoder is missing or the input is not valid audio."""


class EmptyAudioError(SongMatchError):
    """Decoding produced zero usable samples."""


class InsufficientDataError(SongMatchError):
    """The audio is shorter than a single analysis frame."""


class StorageError(SongMatchError):
    """The fingerprint catalog is unavailable or a write failed."""


class TrackNotFoundError(SongMatchError, KeyError):
    """No track with the given id exists in the catalog."""
