"""
Asset selection — pick exactly one file from a release's asset list.

Filters are tried in declared order. The first filter that matches
anything decides:

    one match   → selected
    no match    → try the next filter
    many        → rank by host tag match, then by fewest qualifiers;
                  a tie at the top is an error, never a coin flip

Selection depends only on (filters, candidate names, machine), so the
same release always yields the same asset.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from dws.core.errors import AmbiguousAsset, InvalidFilter, NoMatchingAsset
from dws.core.models.machine import MachineDescriptor

logger = logging.getLogger(__name__)

_QUALIFIER_SPLIT = re.compile(r"[-_.]+")


@dataclass(frozen=True)
class Selection:
    """The chosen asset and which filter chose it."""

    name: str
    pattern: str
    pattern_index: int


def tag_score(filename: str, machine: MachineDescriptor) -> int:
    """How precisely a filename names this host: +1 for OS, +1 for arch."""
    tokens = set(t for t in _QUALIFIER_SPLIT.split(filename.lower()) if t)
    lowered = filename.lower()
    score = 0
    if any(_mentions(alias, tokens, lowered) for alias in machine.os_aliases):
        score += 1
    if any(_mentions(alias, tokens, lowered) for alias in machine.arch_aliases):
        score += 1
    return score


def _mentions(alias: str, tokens: set[str], lowered: str) -> bool:
    # Multi-part aliases ("x86_64") are split by the tokenizer, so fall
    # back to a substring check for them.
    if _QUALIFIER_SPLIT.search(alias):
        return alias in lowered
    return alias in tokens


def qualifier_count(filename: str) -> int:
    """Number of ``-``/``_``/``.`` separated tokens in a filename."""
    return len([t for t in _QUALIFIER_SPLIT.split(filename) if t])


def compile_filters(filters: list[str]) -> list[re.Pattern[str]]:
    compiled = []
    for pattern in filters:
        try:
            compiled.append(re.compile(pattern))
        except re.error as e:
            raise InvalidFilter(f"invalid asset_filter regex `{pattern}`: {e}") from e
    return compiled


def refine(matches: list[str], machine: MachineDescriptor) -> list[str]:
    """Narrow a multi-match down by ranking; returns the top tier."""
    best_score = max(tag_score(m, machine) for m in matches)
    top = [m for m in matches if tag_score(m, machine) == best_score]
    fewest = min(qualifier_count(m) for m in top)
    return sorted(m for m in top if qualifier_count(m) == fewest)


def select_asset(
    filters: list[str],
    candidates: list[str],
    machine: MachineDescriptor,
) -> Selection:
    """Choose one candidate filename.

    Args:
        filters: Ordered regex patterns (``re.search`` semantics).
            An empty list behaves like a single ``.*`` filter.
        candidates: Asset filenames from one release.
        machine: Host descriptor used to break ties.

    Returns:
        Selection naming the asset and the winning filter.

    Raises:
        InvalidFilter: a pattern does not compile.
        NoMatchingAsset: no filter matched any candidate.
        AmbiguousAsset: the first matching filter leaves a tie.
    """
    patterns = filters or [".*"]
    compiled = compile_filters(patterns)
    names = sorted(set(candidates))

    for index, regex in enumerate(compiled):
        matches = [name for name in names if regex.search(name)]
        if not matches:
            logger.debug("Filter %r matched nothing, advancing", regex.pattern)
            continue
        if len(matches) == 1:
            logger.debug("Filter %r selected %s", regex.pattern, matches[0])
            return Selection(name=matches[0], pattern=regex.pattern, pattern_index=index)

        top = refine(matches, machine)
        if len(top) == 1:
            logger.debug(
                "Filter %r matched %d assets; ranked %s first",
                regex.pattern, len(matches), top[0],
            )
            return Selection(name=top[0], pattern=regex.pattern, pattern_index=index)
        raise AmbiguousAsset(regex.pattern, top)

    raise NoMatchingAsset(list(patterns), names)
