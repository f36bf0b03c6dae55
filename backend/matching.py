"""
Grouping keys for tracks and albums.

Exports spell the same recording or album in many ways: feature credits in
the title, remaster and deluxe tags, punctuation. The helpers here fold those
spellings onto one key so tallies count them together.
"""

import re
from dataclasses import dataclass
from typing import Optional

_FEATURE_PATTERNS = [
    re.compile(r"\(feat\.\s*(.*?)\)", re.I),
    re.compile(r"\[feat\.\s*(.*?)\]", re.I),
    re.compile(r"\(ft\.\s*(.*?)\)", re.I),
    re.compile(r"\[ft\.\s*(.*?)\]", re.I),
    re.compile(r"\(with\s*(.*?)\)", re.I),
    re.compile(r"\[with\s*(.*?)\]", re.I),
    re.compile(r"\sfeat\.\s+(.*?)(?=\s*[-,]|$)", re.I),
    re.compile(r"\sft\.\s+(.*?)(?=\s*[-,]|$)", re.I),
    re.compile(r"\sfeaturing\s+(.*?)(?=\s*[-,]|$)", re.I),
]
_HYPHEN_REMIX = re.compile(r"\s-\s.*?remix", re.I)
_VERSION_TAGS = re.compile(r"[(\[][^)\]]*?(?:version|edit|remix)[)\]]")
_PUNCTUATION = re.compile(r"[^\w\s]")
_SPACES = re.compile(r"\s+")


@dataclass(frozen=True)
class NormalizedTitle:
    normalized: str
    feature_artists: tuple = ()


def normalize_title(title: Optional[str]) -> NormalizedTitle:
    """Case-fold a title and strip feature tags, version/edit/remix labels and punctuation."""
    if not title:
        return NormalizedTitle("")

    features = []
    text = title.lower()
    for pattern in _FEATURE_PATTERNS:
        match = pattern.search(text)
        if match and match.group(1):
            features.append(match.group(1).strip())
            text = text.replace(match.group(0), " ", 1)

    text = _HYPHEN_REMIX.sub("", text)
    text = _VERSION_TAGS.sub("", text)
    text = _SPACES.sub(" ", text).replace(" - ", " ")
    text = text.strip().strip("-")
    text = _PUNCTUATION.sub("", text)
    text = _SPACES.sub(" ", text).strip()
    return NormalizedTitle(text, tuple(features))


def primary_artist(artist: str) -> str:
    """Leading artist of a credit such as 'A & B' or 'A feat. B'."""
    lowered = artist.lower()
    for marker in ("&", ","):
        index = artist.find(marker)
        if index > 0:
            return artist[:index].strip()
    for marker in (" feat", " ft"):
        index = lowered.find(marker)
        if index > 0:
            return artist[:index].strip()
    return artist


def create_match_key(track: Optional[str], artist: Optional[str]) -> str:
    """Key under which different spellings of the same recording group together."""
    if not track or not artist:
        return ""
    clean_track = normalize_title(track).normalized
    clean_artist = normalize_title(primary_artist(artist)).normalized
    return f"{clean_track}-{clean_artist}"


_ALBUM_EDITIONS = re.compile(
    r"[(\[]?\s*(deluxe|special|expanded|remastered|anniversary|edition|version|complete|bonus|tracks)"
    r"(\s*edition)?\s*[)\]]?",
    re.I,
)
_ALBUM_YEAR = re.compile(r"[(\[]\s*\d{4}\s*[)\]]")
_ALBUM_FEAT = re.compile(r"[(\[]?\s*feat\..*[)\]]?", re.I)
_EMPTY_BRACKETS = re.compile(r"[(\[]\s*[)\]]")


def normalize_album_name(album: Optional[str]) -> str:
    if not album:
        return ""
    text = album.lower()
    text = _ALBUM_EDITIONS.sub("", text)
    text = _ALBUM_YEAR.sub("", text)
    text = _ALBUM_FEAT.sub("", text)
    text = _EMPTY_BRACKETS.sub("", text)
    return _SPACES.sub(" ", text).strip()


def album_key(album: Optional[str], artist: Optional[str]) -> Optional[str]:
    """
    Album grouping key: normalized album name plus lower-cased artist.

    Same-titled albums by different artists stay apart, and edition tags do
    not split one album in two. Returns None when there is no album.
    """
    if not album:
        return None
    name = normalize_album_name(album) or album.strip().lower()
    if not artist:
        return name
    return f"{name}-{artist.strip().lower()}"


def track_key(track: Optional[str], artist: Optional[str], entity_key: str) -> str:
    """Match key for a track, or its entity key when title or artist is missing."""
    return create_match_key(track, artist) or entity_key
