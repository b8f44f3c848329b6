"""Abstract query interface over the local gazetteer corpus."""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntEnum
from typing import Iterable, List, Optional, Sequence

from placefinder.core.config import MIN_EXTERNAL_SOURCE, POSTAL_SOURCE_TAG
from placefinder.core.models import Origin


class MatchType(IntEnum):
    """Corpus match strategies, tried in this order."""
    EXACT_MATCH = 0
    EXACT_MATCH_ALT = 1
    STARTS_WITH = 2
    SOUNDS_LIKE = 3


def origin_for_source(source: Optional[str]) -> Origin:
    """Map a corpus source tag to the origin it represents."""
    if source == POSTAL_SOURCE_TAG:
        return Origin.SUPPLEMENTAL

    if source and source.isdigit() and int(source) >= MIN_EXTERNAL_SOURCE:
        return Origin.CORPUS_UPDATE

    return Origin.CORPUS


@dataclass(frozen=True)
class CorpusRow:
    """A gazetteer record as stored in the corpus."""
    id: int
    name: str
    country: str
    admin1: str = ""
    admin2: str = ""
    latitude: float = 0.0
    longitude: float = 0.0
    elevation: Optional[float] = None
    timezone: Optional[str] = None
    rank: int = 0
    feature_code: str = "P.PPL"
    source: str = ""
    geonames_id: int = 0
    postal_code: Optional[str] = None

    @property
    def is_update_tier(self) -> bool:
        """Rows added by external updates, trusted only on extended searches."""
        return origin_for_source(self.source) == Origin.CORPUS_UPDATE

    @property
    def origin(self) -> Origin:
        return origin_for_source(self.source)


@dataclass(frozen=True)
class AltNameRow:
    """An alternate (often localized) name pointing at a gazetteer record."""
    gazetteer_id: int
    name: str
    lang: str = ""


@dataclass(frozen=True)
class PostalRow:
    """A postal code record; country is the ISO-2 code."""
    id: int
    code: str
    name: str
    country: str
    admin1: str = ""
    latitude: float = 0.0
    longitude: float = 0.0
    accuracy: int = 0
    timezone: Optional[str] = None
    source: str = POSTAL_SOURCE_TAG
    gazetteer_id: int = 0


class Corpus(ABC):
    """Query interface the corpus matcher runs its strategies against."""

    @abstractmethod
    def search(self, match_type: MatchType, values: Sequence[str], positive_rank_only: bool) -> List[CorpusRow]:
        """
        Search gazetteer records.

        Args:
            match_type: EXACT_MATCH takes (key,), STARTS_WITH takes the half-open
                range (low, high), SOUNDS_LIKE takes (primary, secondary) phonetic codes
            values: Strategy arguments as above
            positive_rank_only: Restrict to rows with rank > 0

        Returns:
            Matching rows in no particular order
        """

    @abstractmethod
    def find_alt_names(self, match_type: MatchType, values: Sequence[str], lang: Optional[str],
                       any_language: bool = False) -> List[AltNameRow]:
        """
        Search populated-place alternate names.

        With any_language, names tagged with no language, English or lang all
        match. Otherwise only current, non-colloquial names in lang match.
        """

    @abstractmethod
    def find_postal_codes(self, code: str) -> List[PostalRow]:
        pass

    @abstractmethod
    def places_by_id(self, ids: Iterable[int], positive_rank_only: bool) -> List[CorpusRow]:
        pass
