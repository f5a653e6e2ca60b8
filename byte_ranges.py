"""
SongCast Server - HTTP Range Handling
Parsing and resolution of RFC 7233 byte ranges.

Only the first range of a multi-range header is ever served; multipart
responses are not supported. Callers pick ``specs[0]`` from the result of
``parse_range_header`` and resolve it with ``resolve_range``.
"""

import re
from dataclasses import dataclass
from typing import List


class MalformedRange(ValueError):
    """Range header does not follow the ``bytes=...`` grammar."""


class UnsatisfiableRange(ValueError):
    """Requested window does not overlap the resource."""


# ============================================================================
# Parsed range specs
# ============================================================================

class RangeSpec:
    """Base class for a single parsed range-spec."""


@dataclass(frozen=True)
class Bounded(RangeSpec):
    """``bytes=first-last``"""
    first: int
    last: int


@dataclass(frozen=True)
class OpenEnded(RangeSpec):
    """``bytes=first-`` (from ``first`` to end of resource)"""
    first: int


@dataclass(frozen=True)
class SuffixLength(RangeSpec):
    """``bytes=-n`` (the last ``n`` bytes)"""
    length: int


@dataclass(frozen=True)
class ByteRange:
    """Inclusive byte window inside a resource."""
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def content_range(self, total: int) -> str:
        """Value for the Content-Range header."""
        return f"bytes {self.start}-{self.end}/{total}"


# ============================================================================
# Parser
# ============================================================================

_SPEC_RE = re.compile(r'^(\d*)\s*-\s*(\d*)$')


def parse_range_header(value: str) -> List[RangeSpec]:
    """
    Parse a Range header value.

    Args:
        value: Raw header, e.g. ``"bytes=0-99"``, ``"bytes=500-"``,
               ``"bytes=-500"`` or ``"bytes=0-1,5-9"``

    Returns:
        All range-specs in header order. Empty elements are skipped, so
        ``"bytes="`` yields an empty list; the caller must reject that.
        Only the first spec is meant to be served.

    Raises:
        MalformedRange: unit is not ``bytes`` or a spec is not
            ``first-last``, ``first-`` or ``-suffix``
    """
    unit, sep, ranges = value.strip().partition('=')
    if not sep or unit.strip().lower() != 'bytes':
        raise MalformedRange(f"Unsupported range unit in {value!r}")

    specs: List[RangeSpec] = []
    for part in ranges.split(','):
        part = part.strip()
        if not part:
            continue

        match = _SPEC_RE.match(part)
        if match is None:
            raise MalformedRange(f"Invalid range spec {part!r}")

        first, last = match.groups()
        if first and last:
            if int(last) < int(first):
                raise MalformedRange(f"Range end before start in {part!r}")
            specs.append(Bounded(int(first), int(last)))
        elif first:
            specs.append(OpenEnded(int(first)))
        elif last:
            specs.append(SuffixLength(int(last)))
        else:
            raise MalformedRange("Empty range spec '-'")

    return specs


# ============================================================================
# Resolver
# ============================================================================

def resolve_range(spec: RangeSpec, total_length: int) -> ByteRange:
    """
    Turn a parsed spec into a concrete window for a resource of
    ``total_length`` bytes.

    The window is clamped first (start floored at 0, end capped at the last
    byte) and only then rejected if empty, so a suffix longer than the
    resource is served from byte 0.

    Raises:
        UnsatisfiableRange: clamped window is empty
    """
    if isinstance(spec, Bounded):
        start, end = spec.first, spec.last
    elif isinstance(spec, OpenEnded):
        start, end = spec.first, total_length - 1
    elif isinstance(spec, SuffixLength):
        start, end = total_length - spec.length, total_length - 1
    else:
        raise TypeError(f"Unknown range spec: {spec!r}")

    start = max(start, 0)
    end = min(end, total_length - 1)

    if end < start:
        raise UnsatisfiableRange(f"{spec} not satisfiable for {total_length} bytes")

    return ByteRange(start, end)
