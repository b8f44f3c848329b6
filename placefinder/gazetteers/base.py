"""Base class for remote geocoding sources."""
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

import requests

from placefinder.core.config import HTTP_TIMEOUT, USER_AGENT
from placefinder.core.errors import RemoteSourceError, SourceTimeoutError
from placefinder.core.lookups import NameTables
from placefinder.core.models import LocationMap, SourceMetrics


class RemoteSource(ABC):
    """A remote gazetteer queried alongside the local corpus."""

    def __init__(self, name: str, timeout: float, tables: NameTables, session: Optional[requests.Session] = None):
        """
        Initialize source.

        Args:
            name: Name used in error messages and results (e.g. 'GeoNames')
            timeout: Seconds the aggregator waits before giving up on a lookup
            tables: Name tables for country and state normalization
            session: Optional requests session, mostly for tests
        """
        self.name = name
        self.timeout = timeout
        self.tables = tables
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)

    @abstractmethod
    def lookup(
        self,
        target_city: str,
        target_state: str,
        postal_code: str = "",
        cancel_event: Optional[threading.Event] = None
    ) -> Tuple[LocationMap, SourceMetrics]:
        """
        Search the source.

        Args:
            target_city: City key from the parsed query
            target_state: State or country key from the parsed query
            postal_code: Postal code, if the query is a postal code search
            cancel_event: Set by the caller when it stops waiting for the result

        Returns:
            Tuple of (matching locations, metrics)

        Raises:
            RemoteSourceError: If the source cannot be queried
        """
        pass

    def check_cancelled(self, cancel_event: Optional[threading.Event]):
        if cancel_event is not None and cancel_event.is_set():
            raise SourceTimeoutError(self.name, f"{self.name} search timed out")

    def get_json(self, url: str, params: Dict[str, Any], timeout: float = HTTP_TIMEOUT) -> Any:
        """GET a JSON document, mapping transport and decoding failures to RemoteSourceError."""
        try:
            response = self.session.get(url, params=params, timeout=timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.Timeout as e:
            raise SourceTimeoutError(self.name, f"{self.name} search timed out") from e
        except requests.exceptions.RequestException as e:
            raise RemoteSourceError(self.name, f"{self.name} error: {e}") from e
        except ValueError as e:
            raise RemoteSourceError(self.name, f"{self.name} returned invalid JSON") from e
