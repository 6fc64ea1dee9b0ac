"""Exceptions raised by the acquisition pipeline."""


class TacliError(Exception):
    """Base class for errors raised by this package."""


class NotFound(TacliError):
    """No stream playlist could be discovered for an episode."""


class ManifestTimeout(TacliError, TimeoutError):
    """A manifest download did not land on disk in time."""


class FilesystemError(TacliError):
    """Reading or writing the cache directory failed."""


class ProcessError(TacliError):
    """The browser or the player could not be started or talked to."""


class PartialCache(TacliError):
    """A top-level manifest is empty or is not an HLS playlist."""
