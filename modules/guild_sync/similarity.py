"""Near-duplicate guild name detection over forum thread titles."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Generic, Iterable, List, Sequence, TypeVar

from rapidfuzz import fuzz

GENERAL_THRESHOLD = 0.6
ALERT_THRESHOLD = 0.8

_WHITESPACE_RE = re.compile(r"\s+")

T = TypeVar("T")

__all__ = [
    "ALERT_THRESHOLD",
    "GENERAL_THRESHOLD",
    "SimilarCluster",
    "extract_guild_name",
    "find_similar_clusters",
    "mentions_any",
    "normalize_title",
    "similarity",
]


def normalize_title(title: str | None) -> str:
    return (title or "").strip().lower()


def _squash(text: str) -> str:
    return _WHITESPACE_RE.sub("", text.lower())


def similarity(left: str, right: str) -> float:
    """Score in ``[0, 1]``; case and whitespace are ignored."""

    a = _squash(left or "")
    b = _squash(right or "")
    if not a and not b:
        return 1.0
    return fuzz.ratio(a, b) / 100.0


def extract_guild_name(title: str | None) -> str:
    """Guild part of a ``<Name> - Scope`` title, without the angle brackets."""

    head = (title or "").split(" - ", 1)[0].strip()
    if head.startswith("<") and head.endswith(">"):
        head = head[1:-1].strip()
    return head


@dataclass
class SimilarCluster(Generic[T]):
    key: str
    members: List[T] = field(default_factory=list)

    def guild_names(self, title_of: Callable[[T], str]) -> list[str]:
        names: list[str] = []
        for member in self.members:
            name = extract_guild_name(title_of(member)).lower()
            if name and name not in names:
                names.append(name)
        return names


def find_similar_clusters(
    items: Sequence[T],
    *,
    title_of: Callable[[T], str],
    threshold: float = GENERAL_THRESHOLD,
) -> list[SimilarCluster[T]]:
    """Pairwise compare every title; the earlier title of a matching pair keys
    the cluster and the later one is appended to it.

    Clusters may overlap: a title can key its own cluster and also be a member
    of an earlier one. Output is advisory, so that is left as is.
    """

    titles = [normalize_title(title_of(item)) for item in items]
    clusters: dict[str, SimilarCluster[T]] = {}
    for i in range(len(titles)):
        for j in range(i + 1, len(titles)):
            if similarity(titles[i], titles[j]) < threshold:
                continue
            cluster = clusters.get(titles[i])
            if cluster is None:
                cluster = clusters[titles[i]] = SimilarCluster(key=titles[i])
            cluster.members.append(items[j])
    return list(clusters.values())


def mentions_any(haystacks: Iterable[str], names: Iterable[str]) -> bool:
    """True when any of ``names`` appears (case-insensitively) in any haystack."""

    lowered = [h.lower() for h in haystacks if h]
    for name in names:
        needle = name.lower()
        if needle and any(needle in hay for hay in lowered):
            return True
    return False
