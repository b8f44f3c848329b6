"""Exception types raised by the search engine."""


class PlacefinderError(Exception):
    """Base class for all place search errors."""


class CorpusError(PlacefinderError):
    """The local gazetteer corpus could not be queried."""


class RemoteSourceError(PlacefinderError):
    """A remote geocoding source failed."""

    def __init__(self, source: str, message: str):
        super().__init__(message)
        self.source = source


class SourceTimeoutError(RemoteSourceError):
    """A remote geocoding source did not finish within its time limit."""
