from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple


class InvariantViolation(RuntimeError):
    """Fatal input error: a malformed region or a missing identifier."""


# Strand of a genomic region as in Ensembl: 1 forward, -1 reverse
STRANDS = (1, -1)


@dataclass(frozen=True, order=True)
class Interval:
    start: int  # 1-based inclusive
    end: int    # 1-based inclusive

    def __post_init__(self):
        if self.start > self.end:
            raise InvariantViolation(f"Interval {self.start}-{self.end} malformed")

    def __len__(self) -> int:
        return self.end - self.start + 1

    def overlaps(self, other: Interval) -> bool:
        return self.start <= other.end and self.end >= other.start

    def clip(self, bound: Interval) -> Optional[Interval]:
        """Portion of this interval inside bound, or None if there is none."""
        if not self.overlaps(bound):
            return None
        return Interval(max(self.start, bound.start), min(self.end, bound.end))

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"


@dataclass(frozen=True)
class Region:
    start: int  # 1-based inclusive
    end: int    # 1-based inclusive
    strand: int

    def __post_init__(self):
        if self.start > self.end:
            raise InvariantViolation(
                f"Region {self.start}-{self.end}:{self.strand} malformed"
            )
        if self.strand not in STRANDS:
            raise InvariantViolation(f"Region strand must be 1 or -1, got {self.strand!r}")

    @property
    def interval(self) -> Interval:
        return Interval(self.start, self.end)

    def __len__(self) -> int:
        return self.end - self.start + 1


@dataclass(frozen=True)
class RepeatAnnotation:
    interval: Interval
    name: str


@dataclass(frozen=True)
class CollapsedRepeat:
    interval: Interval
    names: Tuple[str, ...]  # sorted, distinct

    @property
    def label(self) -> str:
        return ";".join(self.names)


# A more memory efficient way of storing just the alignment fields the counter needs
@dataclass
class AlignmentData:
    """Minimal alignment data to reduce memory footprint."""
    __slots__ = ('name', 'start_1b', 'end_1b', 'strand', 'mapq',
                 'is_duplicate', 'mate_unmapped', 'n_cigar_ops')
    name: str
    start_1b: int
    end_1b: int
    strand: int
    mapq: int
    is_duplicate: bool
    mate_unmapped: bool
    n_cigar_ops: int


@dataclass(frozen=True)
class FragmentCount:
    count: int
    rate: Optional[float] = None


# Gene models
@dataclass
class Exon:
    id: str
    start: int
    end: int


@dataclass
class Intron:
    start: int
    end: int
    strand: int
    prev_exon: Exon
    next_exon: Exon

    @property
    def region(self) -> Region:
        return Region(self.start, self.end, self.strand)


@dataclass
class Transcript:
    id: str
    biotype: str
    chr: str
    strand: int
    start: int
    end: int
    exons: List[Exon] = field(default_factory=list)  # transcript order

    @property
    def region(self) -> Region:
        return Region(self.start, self.end, self.strand)

    def introns(self) -> List[Intron]:
        """Introns between consecutive exons, in transcript order."""
        out: List[Intron] = []
        for prev, nxt in zip(self.exons, self.exons[1:]):
            if self.strand == 1:
                start, end = prev.end + 1, nxt.start - 1
            else:
                start, end = nxt.end + 1, prev.start - 1
            if start == end + 1:
                # abutting exons leave no intronic bases
                continue
            if start > end:
                raise InvariantViolation(
                    f"Exons {prev.id} and {nxt.id} of transcript {self.id} overlap"
                )
            out.append(Intron(start=start, end=end, strand=self.strand, prev_exon=prev, next_exon=nxt))
        return out


@dataclass
class Gene:
    id: str
    biotype: str
    chr: str
    strand: int
    start: int
    end: int
    transcripts: List[Transcript] = field(default_factory=list)

    @property
    def region(self) -> Region:
        return Region(self.start, self.end, self.strand)
