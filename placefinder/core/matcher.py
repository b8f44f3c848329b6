"""Multi-pass, multi-strategy candidate matching against the local corpus."""
import re
from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Set, Tuple, Union

from placefinder.core.config import POSTAL_SOURCE_TAG, ZIP_RANK, ZIP_SUPPLEMENT_RANK
from placefinder.core.corpus import AltNameRow, Corpus, CorpusRow, MatchType, PostalRow
from placefinder.core.lookups import NameTables
from placefinder.core.models import Location, LocationMap, ParsedQuery
from placefinder.core.normalization import (
    close_match_for_city,
    close_match_for_state,
    county_state_cleanup,
    get_flag_code,
    is_all_uppercase_words,
    phonetic_codes,
    simplify,
    strip_trailing_number,
    to_mixed_case,
)
from placefinder.utils.logging import log_structured

# Appended to a key to form the exclusive upper bound of a prefix range scan
RANGE_SENTINEL = "~"

# Rank penalty for matches found only after falling back from a requested language
LANGUAGE_FALLBACK_PENALTY = 2

# Postal codes accurate to at least this level override gazetteer coordinates
MIN_POSTAL_ACCURACY_FOR_COORDINATES = 5

SOFT_CAP_FACTOR = 4

ADMIN_CODE_PATTERN = re.compile(r"^[A-Z]{3,}$")

LinkedRow = Union[AltNameRow, PostalRow]


class CorpusMatcher:
    """Runs the corpus search strategies for one parsed query at a time."""

    def __init__(self, corpus: Corpus, tables: NameTables):
        self.corpus = corpus
        self.tables = tables

    def _is_localized(self, lang: Optional[str]) -> bool:
        return bool(lang) and lang != self.tables.default_lang

    def search(
        self,
        parsed: ParsedQuery,
        extended_search: bool,
        max_matches: int,
        can_match_by_sound: bool = True,
        lang: Optional[str] = None
    ) -> LocationMap:
        """
        Find corpus locations for a parsed query.

        Pass 0 searches the primary parse among rows with rank > 0. Pass 1
        relaxes the rank condition and tries the alternate parse, if any; it is
        only run when pass 0 found nothing or an alternate parse exists.

        Args:
            parsed: Parsed query. Its postal code and target state may be
                adjusted for retries, and its alternate fields are cleared if
                the alternate parse produced nothing.
            extended_search: Include rows from the external-update tier on pass 0
            max_matches: Match cap; scanning stops once four times this many are found
            can_match_by_sound: Allow the phonetic strategy
            lang: Language for localized names

        Returns:
            LocationMap of matches, each corpus record at most once
        """
        examined: Set[int] = set()
        matches = LocationMap()
        postal = bool(parsed.postal_code)
        postal_retried = False
        alt_parse_matches = 0
        pass_penalty = 0
        pass_index = 0

        while pass_index < 2:
            if pass_index == 1 and matches and not parsed.alt_city:
                break

            alt_parse = pass_index > 0 and bool(parsed.alt_city)
            city = parsed.alt_city if alt_parse else parsed.target_city
            target_state = parsed.alt_state if alt_parse else parsed.target_state
            simplified_city = simplify(city)
            sound_matches = 0

            for match_type in MatchType:
                fetched = self._fetch(match_type, parsed, city, simplified_city, pass_index, can_match_by_sound, lang)

                if fetched is None:
                    continue

                rows, linked, rank_adjust = fetched
                rank_adjust -= pass_penalty

                for row in rows:
                    if row.id in examined:
                        continue

                    location = self._make_location(
                        row, linked, parsed, target_state, match_type, rank_adjust,
                        extended_search, pass_index, len(rows), lang
                    )

                    if location is None:
                        continue

                    examined.add(row.id)

                    if location.matched_by_sound:
                        sound_matches += 1

                    matches.add(location, state=row.admin1)
                    alt_parse_matches += 1 if alt_parse else 0

                    if len(matches) > max_matches * SOFT_CAP_FACTOR:
                        break

                if len(matches) > max_matches * SOFT_CAP_FACTOR:
                    break

                # Phonetic matching only when nothing better turned up; postal codes need one step
                if ((pass_index == 0 or matches) and match_type >= MatchType.STARTS_WITH) or postal:
                    break

            if postal and " " in parsed.postal_code and not postal_retried:
                # "zip+4" style codes: retry with the trailing segment removed
                parsed.postal_code = re.sub(r"\s+\S.*$", "", parsed.postal_code)
                postal_retried = True
                continue
            elif postal:
                break
            elif self._is_localized(lang):
                pass_penalty = LANGUAGE_FALLBACK_PENALTY if matches else 0
                lang = None
                continue
            elif (pass_index == 0 and len(matches) == sound_matches and parsed.target_state and
                  simplified_city == simplify(parsed.target_state)):
                parsed.target_state = ""
                continue

            pass_penalty = 0
            pass_index += 1

        if alt_parse_matches == 0:
            parsed.clear_alternate()

        log_structured(
            "debug",
            "Corpus search complete",
            search=parsed.normalized_search,
            matches=len(matches),
            alt_parse_matches=alt_parse_matches
        )

        return matches

    def _fetch(
        self,
        match_type: MatchType,
        parsed: ParsedQuery,
        city: str,
        simplified_city: str,
        pass_index: int,
        can_match_by_sound: bool,
        lang: Optional[str]
    ) -> Optional[Tuple[List[CorpusRow], Dict[int, LinkedRow], int]]:
        """
        Run one strategy against the corpus.

        Returns:
            (rows, rows linked by gazetteer id, rank adjustment), or None when
            the strategy does not apply
        """
        localized = self._is_localized(lang)
        positive_only = pass_index == 0
        postal_rows: Optional[List[PostalRow]] = None
        linked_rows: Optional[Sequence[LinkedRow]] = None
        rows: List[CorpusRow] = []
        rank_adjust = 0

        if match_type == MatchType.SOUNDS_LIKE and localized:
            return None

        if not parsed.postal_code and not simplified_city:
            return None

        if match_type == MatchType.EXACT_MATCH:
            if parsed.postal_code:
                postal_rows = self.corpus.find_postal_codes(parsed.postal_code)
                linked_rows = postal_rows
            else:
                rank_adjust = 1

                if localized and pass_index == 0:
                    linked_rows = self.corpus.find_alt_names(match_type, [simplified_city], lang)
                else:
                    rows = self.corpus.search(match_type, [simplified_city], positive_only)
        elif match_type == MatchType.EXACT_MATCH_ALT:
            linked_rows = self.corpus.find_alt_names(match_type, [simplified_city], lang, any_language=True)
        elif match_type == MatchType.STARTS_WITH:
            values = [simplified_city, simplified_city + RANGE_SENTINEL]

            if localized and pass_index == 0:
                linked_rows = self.corpus.find_alt_names(match_type, values, lang)
            else:
                rows = self.corpus.search(match_type, values, positive_only)
        else:
            codes = phonetic_codes(city) if can_match_by_sound else None

            if codes is None:
                return None

            rank_adjust = -1
            rows = self.corpus.search(match_type, list(codes), positive_only)

        linked: Dict[int, LinkedRow] = {}

        if linked_rows:
            linked = {row.gazetteer_id: row for row in linked_rows}
            ids = [gazetteer_id for gazetteer_id in linked if gazetteer_id]
            rows = self.corpus.places_by_id(ids, positive_only) if ids else []

        if postal_rows is None and any(row.source == POSTAL_SOURCE_TAG for row in rows):
            postal_rows = [self._as_postal_row(row) for row in rows if row.source == POSTAL_SOURCE_TAG]
            rows = [row for row in rows if row.source != POSTAL_SOURCE_TAG]

        if postal_rows:
            rows = self._apply_postal_rows(rows, postal_rows)

        return rows, linked, rank_adjust

    @staticmethod
    def _as_postal_row(row: CorpusRow) -> PostalRow:
        return PostalRow(
            id=row.id,
            code=row.postal_code or "",
            name=row.name,
            country=row.country,
            admin1=row.admin1,
            latitude=row.latitude,
            longitude=row.longitude,
            timezone=row.timezone,
            source=row.source,
        )

    def _apply_postal_rows(self, rows: List[CorpusRow], postal_rows: List[PostalRow]) -> List[CorpusRow]:
        """
        Fold postal code records into the gazetteer rows they point at.

        Postal records without a matching gazetteer row become supplemental
        zip-only rows with negative ids, merged when they describe the same
        spot under the same name.
        """
        resolved = {row.id: row for row in rows}
        add_ons: List[CorpusRow] = []

        for postal_row in postal_rows:
            target = resolved.get(postal_row.gazetteer_id) if postal_row.gazetteer_id else None

            if target:
                changes = {"source": postal_row.source}

                if postal_row.accuracy >= MIN_POSTAL_ACCURACY_FOR_COORDINATES:
                    changes["latitude"] = postal_row.latitude
                    changes["longitude"] = postal_row.longitude

                resolved[target.id] = replace(target, **changes)
                continue

            name = postal_row.name

            if re.search(r"[/()]", name) or is_all_uppercase_words(name):
                name = to_mixed_case(re.sub(r"[/()].*$", "", name).strip())

            add_on = CorpusRow(
                id=-postal_row.id,
                name=name,
                country=self.tables.code2_to_code3.get(postal_row.country, postal_row.country),
                admin1=postal_row.admin1 if postal_row.admin1 and len(postal_row.admin1) > 1 else "",
                admin2="",
                latitude=postal_row.latitude,
                longitude=postal_row.longitude,
                timezone=postal_row.timezone,
                rank=ZIP_SUPPLEMENT_RANK,
                feature_code="P.PPL",
                source=postal_row.source,
                geonames_id=-postal_row.id,
            )

            for index, existing in enumerate(add_ons):
                if (existing.country == add_on.country and
                        existing.admin1 == add_on.admin1 and
                        existing.timezone == add_on.timezone and
                        abs(existing.latitude - add_on.latitude) < 0.1 and
                        abs(existing.longitude - add_on.longitude) < 0.1 and
                        strip_trailing_number(existing.name) == strip_trailing_number(add_on.name)):
                    add_ons[index] = replace(existing, name=strip_trailing_number(existing.name))
                    break
            else:
                add_ons.append(add_on)

        return [resolved[row.id] for row in rows] + add_ons

    def _make_location(
        self,
        row: CorpusRow,
        linked: Dict[int, LinkedRow],
        parsed: ParsedQuery,
        target_state: str,
        match_type: MatchType,
        rank_adjust: int,
        extended_search: bool,
        pass_index: int,
        result_count: int,
        lang: Optional[str]
    ) -> Optional[Location]:
        """Build a Location from a corpus row, or None if the row is filtered out."""
        postal = bool(parsed.postal_code)
        linked_row = linked.get(row.id)
        city = linked_row.name if linked_row is not None and linked_row.name else row.name
        country = row.country

        if not postal:
            if row.is_update_tier and not extended_search and pass_index == 0:
                return None
            if not close_match_for_state(target_state, row.admin1, country, self.tables, lang):
                return None

        if postal:
            rank = ZIP_RANK
            zip_code = parsed.postal_code

            if result_count > 1:
                target_city = parsed.target_city
                rank += 2 if target_city and close_match_for_city(target_city, city) else 0
                rank += 1 if target_city and close_match_for_state(target_city, row.admin1, country, self.tables) else 0
                rank += 1 if target_state and close_match_for_state(target_state, row.admin1, country, self.tables) else 0
                rank += 1 if target_state and close_match_for_city(target_state, city) else 0
        else:
            zip_code = row.postal_code or ""
            rank = min(max(row.rank + rank_adjust, 0), ZIP_RANK - 1)

        county = self.tables.admin2_name(country, row.admin1, row.admin2) or row.admin2
        state = county_state_cleanup(row.admin1)

        if state.isdigit() or (country not in ("USA", "CAN") and ADMIN_CODE_PATTERN.match(state)):
            state = self.tables.admin1_name(country, state, lang) or state

        return Location(
            city=city,
            county=county_state_cleanup(county),
            state=state,
            country=country,
            long_country=self.tables.country_name(country, lang),
            flag_code=get_flag_code(country, row.admin1, self.tables),
            latitude=row.latitude,
            longitude=row.longitude,
            elevation=row.elevation,
            zone=row.timezone,
            zip=zip_code,
            rank=rank,
            place_type=row.feature_code,
            source=row.source,
            origin=row.origin,
            geonames_id=row.geonames_id,
            matched_by_alternate_name=match_type == MatchType.EXACT_MATCH_ALT,
            matched_by_sound=match_type == MatchType.SOUNDS_LIKE,
        )
