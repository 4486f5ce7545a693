"""
Filename parsing: turn an arbitrary media filename into a structured identity guess.

This module is pure (no I/O). The scanner calls it for every candidate file, the
metadata resolver consumes its output, and the library facade re-runs it when
refreshing metadata for an existing item.

Classification rules:
- TV-show markers (SxxEyy, NxM, "Season N Episode M") win over everything else.
  Air-date years are common in episode names, so a year never demotes a
  TV-shaped name to a movie.
- Otherwise a plausible 4-digit year (1880 .. next year) makes it a movie.
- Everything else is "other" and is not indexed by the scanner.
"""

from __future__ import annotations

import datetime as _dt
import re
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

from marquee.core import patterns

UNKNOWN_TITLE = "Unknown"
MIN_YEAR = 1880
MAX_SEASON = 99
MAX_EPISODE = 999


class MediaType(str, Enum):
    """Media classification of a file."""

    MOVIE = "movie"
    TVSHOW = "tvshow"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class ParsedFilename:
    """
    Identity guess produced purely from a filename.

    `title` is never empty. For `TVSHOW`, `season` and `episode` are both set and >= 1.
    """

    type: MediaType
    title: str
    year: int | None = None
    season: int | None = None
    episode: int | None = None
    original_filename: str | None = None

    @property
    def is_candidate(self) -> bool:
        """True for movies and TV episodes (files the scanner indexes)."""
        return self.type in (MediaType.MOVIE, MediaType.TVSHOW)

    def to_dict(self) -> dict[str, Any]:
        result = asdict(self)
        result["type"] = self.type.value
        return result


@dataclass(frozen=True, slots=True)
class _TvMatch:
    prefix: str
    season: int
    episode: int


def _strip_path(filename: str) -> str:
    return re.split(r"[\\/]", filename)[-1]


def _strip_extension(name: str) -> str:
    return patterns.EXTENSION_PATTERN.sub("", name)


def clean_title(raw: str | None) -> str:
    """
    Normalize a raw title fragment for display and lookup.

    - dots/underscores become spaces
    - quality/source/codec tokens and release-group tags are removed
    - dangling separators and repeated whitespace are dropped

    Idempotent: clean_title(clean_title(x)) == clean_title(x).
    """
    if not raw:
        return UNKNOWN_TITLE

    # Removing a token can expose another one ("1080p-x264 Foo"), so repeat
    # until a pass changes nothing.
    s = raw
    previous = None
    while previous != s:
        previous = s
        s = _clean_pass(s)
    return s or UNKNOWN_TITLE


def _clean_pass(s: str) -> str:
    s = s.replace(".", " ").replace("_", " ")
    s = patterns.BRACKET_TAG_PATTERN.sub(" ", s)
    s = patterns.NOISE_PATTERN.sub(" ", s)
    s = patterns.EMPTY_PARENS_PATTERN.sub(" ", s)
    s = patterns.WHITESPACE_PATTERN.sub(" ", s)

    # Removing a token can leave separators behind ("Title - ", "( ").
    previous = None
    while previous != s:
        previous = s
        s = s.lstrip(patterns.LEADING_JUNK).rstrip(patterns.TRAILING_JUNK)
        s = patterns.EMPTY_PARENS_PATTERN.sub("", s)

    return patterns.WHITESPACE_PATTERN.sub(" ", s).strip()


class FilenameParser:
    """
    Stateless filename parser.

    `current_year` is only injectable for tests; by default the upper year bound
    follows the calendar (next year is still accepted for early releases).
    """

    def __init__(self, *, current_year: int | None = None) -> None:
        self._current_year = current_year

    @property
    def max_year(self) -> int:
        year = self._current_year if self._current_year is not None else _dt.date.today().year
        return year + 1

    def _valid_year(self, year: int) -> bool:
        return MIN_YEAR <= year <= self.max_year

    # ---- Predicates ----

    def is_tv_show(self, filename: str | None) -> bool:
        """True if any TV-show marker is present (validity of the numbers is not checked)."""
        if not filename:
            return False
        base = _strip_extension(_strip_path(str(filename)))
        return any(p.search(base) for p in patterns.TV_SHOW_PATTERNS)

    def has_year(self, filename: str | None) -> bool:
        """True if the name carries a plausible 4-digit release year."""
        if not filename:
            return False
        base = _strip_extension(_strip_path(str(filename)))
        return any(
            self._valid_year(int(m.group(2)))
            for m in patterns.YEAR_TOKEN_PATTERN.finditer(base)
        )

    def classify_type(self, filename: str | None) -> MediaType:
        """Classify by shape only: TV markers first, then a year, else other."""
        if self.is_tv_show(filename):
            return MediaType.TVSHOW
        if self.has_year(filename):
            return MediaType.MOVIE
        return MediaType.OTHER

    # ---- Parsing ----

    def parse(self, filename: str | None) -> ParsedFilename:
        """
        Parse a filename (or path) into a `ParsedFilename`. Never raises.

        None/empty input yields `ParsedFilename(type=OTHER, title="Unknown")`.
        """
        if not filename:
            return ParsedFilename(type=MediaType.OTHER, title=UNKNOWN_TITLE)

        original = _strip_path(str(filename))
        base = _strip_extension(original)
        base = patterns.LEADING_GROUP_PATTERN.sub("", base).strip() or base

        media_type = self.classify_type(original)

        if media_type is MediaType.TVSHOW:
            parsed = self._parse_tv_show(base, original)
            if parsed is not None:
                return parsed
            # TV-shaped but unusable numbers: never reinterpret as a movie.
            return ParsedFilename(
                type=MediaType.OTHER, title=clean_title(base), original_filename=original
            )

        if media_type is MediaType.MOVIE:
            return self._parse_movie(base, original)

        return ParsedFilename(
            type=MediaType.OTHER, title=clean_title(base), original_filename=original
        )

    def _match_tv(self, base: str) -> _TvMatch | None:
        for pattern in patterns.TV_SHOW_PATTERNS:
            m = pattern.search(base)
            if m is None:
                continue
            return _TvMatch(
                prefix=base[: m.start()],
                season=int(m.group("season")),
                episode=int(m.group("episode")),
            )
        return None

    def _parse_tv_show(self, base: str, original: str) -> ParsedFilename | None:
        match = self._match_tv(base)
        if match is None:
            return None
        if not (1 <= match.season <= MAX_SEASON and 1 <= match.episode <= MAX_EPISODE):
            return None

        prefix = match.prefix
        year: int | None = None
        ym = patterns.TRAILING_YEAR_PATTERN.search(prefix)
        if ym is not None and self._valid_year(int(ym.group("year"))):
            candidate = prefix[: ym.start()]
            # A show literally named after a year ("1923 S01E01") keeps it as its title.
            if clean_title(candidate) != UNKNOWN_TITLE:
                year = int(ym.group("year"))
                prefix = candidate

        return ParsedFilename(
            type=MediaType.TVSHOW,
            title=clean_title(prefix),
            year=year,
            season=match.season,
            episode=match.episode,
            original_filename=original,
        )

    def _parse_movie(self, base: str, original: str) -> ParsedFilename:
        candidates = [
            m
            for m in patterns.YEAR_TOKEN_PATTERN.finditer(base)
            if self._valid_year(int(m.group(2)))
        ]
        # "(2003)" beats a bare "2003".
        candidates.sort(key=lambda m: 0 if (m.group(1) and m.group(3)) else 1)
        if not candidates:
            return ParsedFilename(
                type=MediaType.OTHER, title=clean_title(base), original_filename=original
            )

        for m in candidates:
            title = clean_title(base[: m.start()])
            if title != UNKNOWN_TITLE:
                return ParsedFilename(
                    type=MediaType.MOVIE,
                    title=title,
                    year=int(m.group(2)),
                    original_filename=original,
                )

        # Nothing before any year ("2012.mkv"): the year is the title.
        first = candidates[0]
        rest = clean_title(base[first.end() :])
        title = first.group(2) if rest == UNKNOWN_TITLE else f"{first.group(2)} {rest}"
        return ParsedFilename(type=MediaType.MOVIE, title=title, original_filename=original)


_default_parser = FilenameParser()


def parse_filename(filename: str | None) -> ParsedFilename:
    """Parse with a shared default parser (the parser holds no mutable state)."""
    return _default_parser.parse(filename)
