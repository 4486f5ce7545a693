"""
Token lists and compiled patterns used when cleaning media filenames.

This module is the single place that knows which release/quality words are noise.
`marquee.core.filename_parser` builds on top of it; nothing here does any I/O.

Tokens are matched case-insensitively as whole tokens, after dots and underscores
have been turned into spaces. Multi-word tokens are written with a single space.
"""

from __future__ import annotations

import re
from typing import Final, Iterable

RESOLUTIONS: Final[frozenset[str]] = frozenset(
    {"2160p", "1440p", "1080p", "1080i", "720p", "576p", "480p", "360p", "4k", "uhd", "fhd"}
)

HDR_FORMATS: Final[frozenset[str]] = frozenset(
    {"hdr", "hdr10", "hdr10+", "dolby vision", "dovi", "10bit", "8bit"}
)

VIDEO_SOURCES: Final[frozenset[str]] = frozenset(
    {
        "webrip", "web-dl", "webdl", "hdtv", "pdtv",
        "bluray", "blu-ray", "bdrip", "brrip", "hdrip", "remux",
        "dvdrip", "dvdscr", "dvd", "dvdr", "hdcam", "hdts", "camrip",
        "screener", "r5",
    }
)

VIDEO_CODECS: Final[frozenset[str]] = frozenset(
    {
        "x264", "x265", "h264", "h265", "h 264", "h 265",
        "hevc", "avc", "xvid", "divx", "vp9", "av1",
    }
)

AUDIO_CODECS: Final[frozenset[str]] = frozenset(
    {
        "aac", "aac2", "ac3", "eac3", "ddp", "mp3", "flac", "opus",
        "dts", "dts-hd", "dtshd", "truehd", "atmos",
        "5 1", "7 1",
    }
)

CONTAINERS: Final[frozenset[str]] = frozenset({"mkv", "mp4", "avi", "m4v", "wmv", "mov"})

EDITION_TAGS: Final[frozenset[str]] = frozenset(
    {
        "extended", "unrated", "remastered", "directors cut", "theatrical",
        "proper", "repack", "rerip", "dubbed", "subbed",
    }
)

STREAMING_SERVICES: Final[frozenset[str]] = frozenset(
    {"nf", "amzn", "dsnp", "hmax", "atvp", "pcok"}
)

NOISE_TOKENS: Final[frozenset[str]] = (
    RESOLUTIONS
    | HDR_FORMATS
    | VIDEO_SOURCES
    | VIDEO_CODECS
    | AUDIO_CODECS
    | CONTAINERS
    | EDITION_TAGS
    | STREAMING_SERVICES
)


def _build_token_pattern(words: Iterable[str]) -> re.Pattern[str]:
    """
    Build one regex that matches any of `words` as a whole token.

    A token starts at the beginning of the string or after a separator
    (space or an opening bracket) and ends at the end of the string, at a
    separator or at a hyphen. A `-GROUP` suffix glued to a noise token at the
    very end of the string is the release-group tag and is consumed with it.
    """
    # Longest first so "dts-hd" wins over "dts" at the same position.
    escaped = [re.escape(w).replace(r"\ ", r"\s+") for w in sorted(words, key=len, reverse=True)]
    return re.compile(
        r"(?<![^\s\[\(\{])"
        r"(?:" + "|".join(escaped) + r")"
        r"(?:-[A-Za-z0-9]+(?=\s*$))?"
        r"(?![^\s\]\)\}\-])",
        re.IGNORECASE,
    )


NOISE_PATTERN: Final[re.Pattern[str]] = _build_token_pattern(NOISE_TOKENS)

# [Group] / {Group} tags anywhere in the name.
BRACKET_TAG_PATTERN: Final[re.Pattern[str]] = re.compile(r"\[[^\]]*\]|\{[^}]*\}")

# Leading "[Group] " before the actual title.
LEADING_GROUP_PATTERN: Final[re.Pattern[str]] = re.compile(r"^\s*\[[^\]]*\]\s*")

EMPTY_PARENS_PATTERN: Final[re.Pattern[str]] = re.compile(r"\(\s*\)")

WHITESPACE_PATTERN: Final[re.Pattern[str]] = re.compile(r"\s+")

LEADING_JUNK: Final[str] = " \t-–—)]},;:"
TRAILING_JUNK: Final[str] = " \t-–—([{,;:"

# Extension: a trailing ".xxx" of 1-5 alphanumerics containing at least one letter,
# so "Movie.2003" keeps its year.
EXTENSION_PATTERN: Final[re.Pattern[str]] = re.compile(r"\.(?=[A-Za-z0-9]*[A-Za-z])[A-Za-z0-9]{1,5}$")

# A 4-digit token bounded by non-digits; the optional parentheses are captured
# so a "(2003)" style year can be preferred over a bare one.
YEAR_TOKEN_PATTERN: Final[re.Pattern[str]] = re.compile(r"(\()?(?<!\d)(\d{4})(?!\d)(\))?")

TV_SXXEYY_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?<![A-Za-z0-9])[Ss](?P<season>\d{1,2})[\s._\-]?[Ee](?P<episode>\d{1,3})(?!\d)"
)

TV_NXM_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?<![A-Za-z0-9])(?P<season>\d{1,2})[xX](?P<episode>\d{1,3})(?![A-Za-z0-9])"
)

TV_VERBOSE_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"season[\s._\-]*(?P<season>\d{1,2})[\s._\-]*episode[\s._\-]*(?P<episode>\d{1,3})(?!\d)",
    re.IGNORECASE,
)

# Priority order: explicit SxxEyy, then NxM, then the verbose form.
TV_SHOW_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    TV_SXXEYY_PATTERN,
    TV_NXM_PATTERN,
    TV_VERBOSE_PATTERN,
)

# Trailing year on a TV title prefix, e.g. "Doctor Who (2005) " or "Doctor.Who.2005.".
TRAILING_YEAR_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"[\s._\-]*\(?(?<!\d)(?P<year>\d{4})\)?[\s._\-]*$"
)
