from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Protocol, Sequence, Set, Union
import logging
import os
import bamnostic as bn

from .intronpyClasses import AlignmentData, FragmentCount, InvariantViolation, Region

# Default minimum mapping quality
MAPQ_THRESHOLD = 10

# SAM flag bits
FLAG_UNMAPPED = 0x4
FLAG_MATE_UNMAPPED = 0x8
FLAG_REVERSE = 0x10
FLAG_DUPLICATE = 0x400

# CIGAR operations that consume reference bases: M, D, N, =, X
REF_CONSUMING_OPS = {0, 2, 3, 7, 8}

logger = logging.getLogger("intronpy.count")


class CountMode(Enum):
    OVERLAP = "overlap"
    ENCLOSED = "enclosed"

    def contains(self, region: Region, rec: AlignmentData) -> bool:
        # Records from a region query always intersect the region
        if self is CountMode.OVERLAP:
            return True
        return rec.start_1b >= region.start and rec.end_1b <= region.end


@dataclass(frozen=True)
class FragmentFilter:
    mapq_threshold: int = MAPQ_THRESHOLD
    perfect_matches: bool = False  # only count single-operation CIGARs

    def accepts(self, rec: AlignmentData, strand: int) -> bool:
        if rec.is_duplicate:
            return False
        if rec.mapq < self.mapq_threshold:
            return False
        if rec.strand != strand:
            return False
        if self.perfect_matches and rec.n_cigar_ops > 1:
            return False
        return True


class AlignmentSource(Protocol):
    def query(self, chrom: str, region: Region) -> Iterator[AlignmentData]:
        ...


def _as_region_list(regions: Union[Region, Sequence[Region]]) -> List[Region]:
    if isinstance(regions, Region):
        return [regions]
    out = list(regions)
    strands = {r.strand for r in out}
    if len(strands) > 1:
        raise InvariantViolation(f"Regions must share one strand, got {sorted(strands)}")
    return out


def count_fragments(
    source: AlignmentSource,
    chrom: str,
    regions: Union[Region, Sequence[Region]],
    mode: CountMode = CountMode.OVERLAP,
    fragment_filter: FragmentFilter | None = None,
    dedup: Set[str] | None = None,
) -> int:
    """
    Count read pairs with a read overlapping (or enclosed by) a stranded region.

    A list of regions is counted as one unit: the set of counted fragment names
    is shared across all of them, so a pair whose mates fall in two of the
    regions contributes once.
    """
    fragment_filter = fragment_filter or FragmentFilter()
    seen: Set[str] = set() if dedup is None else dedup
    count = 0
    for region in _as_region_list(regions):
        for rec in source.query(chrom, region):
            if not mode.contains(region, rec):
                continue
            if not fragment_filter.accepts(rec, region.strand):
                continue
            # Ignore mate of counted read
            if rec.name in seen:
                continue
            if not rec.mate_unmapped:
                seen.add(rec.name)
            count += 1
    return count


def fpkm(count: int, total_count: int | None, length: int) -> Optional[float]:
    """Fragments per kilobase per million counted fragments; None without a total."""
    if not total_count:
        return None
    if length <= 0:
        raise InvariantViolation(f"Length must be positive, got {length}")
    return count / (total_count / 1e6) / length * 1000


@dataclass(frozen=True)
class RateBasis:
    """Genome-wide fragment total used to normalise per-feature counts."""
    total_count: int

    def rate(self, count: int, length: int) -> Optional[float]:
        return fpkm(count, self.total_count, length)


def measure(
    source: AlignmentSource,
    chrom: str,
    regions: Union[Region, Sequence[Region]],
    mode: CountMode,
    basis: RateBasis | None,
    fragment_filter: FragmentFilter | None = None,
    length: int | None = None,
) -> FragmentCount:
    """Count fragments and, given a basis, their rate over the summed region length."""
    region_list = _as_region_list(regions)
    count = count_fragments(source, chrom, region_list, mode, fragment_filter)
    if basis is None:
        return FragmentCount(count)
    if length is None:
        length = sum(len(r) for r in region_list)
    return FragmentCount(count, basis.rate(count, length))


def _get_read_name(aln) -> str:
    for attr in ("query_name", "qname", "read_name"):
        v = getattr(aln, attr, None)
        if v:
            return v
    return ""


def _get_cigar(aln) -> list:
    for attr in ("cigartuples", "cigar"):
        v = getattr(aln, attr, None)
        if isinstance(v, (list, tuple)):
            return list(v)
    return []


def to_alignment_data(aln) -> Optional[AlignmentData]:
    """Extract the fields used for counting from a bamnostic alignment."""
    flag = getattr(aln, "flag", 0) or 0
    if flag & FLAG_UNMAPPED:
        return None
    cigar = _get_cigar(aln)
    # bamnostic uses 'pos' (0-based) instead of 'reference_start'
    start_1b = (getattr(aln, "pos", 0) or 0) + 1
    end_1b = getattr(aln, "reference_end", None)
    if end_1b is None:
        ref_len = sum(length for op, length in cigar if op in REF_CONSUMING_OPS)
        end_1b = start_1b + max(ref_len, 1) - 1
    return AlignmentData(
        name=_get_read_name(aln),
        start_1b=start_1b,
        end_1b=end_1b,
        strand=-1 if flag & FLAG_REVERSE else 1,
        mapq=getattr(aln, "mapq", 0) or 0,
        is_duplicate=bool(flag & FLAG_DUPLICATE),
        mate_unmapped=bool(flag & FLAG_MATE_UNMAPPED),
        n_cigar_ops=len(cigar),
    )


class BamAlignmentSource:
    """Region queries over an indexed BAM file."""

    def __init__(self, bam_path: str | Path):
        bam_path = str(bam_path)
        bai_candidates = [bam_path + ".bai", os.path.splitext(bam_path)[0] + ".bai"]
        if not any(os.path.exists(p) for p in bai_candidates):
            raise RuntimeError(f"Region queries require an index (.bai). Not found next to {bam_path}.")
        try:
            self._bam = bn.AlignmentFile(bam_path, "rb")
        except Exception as e:
            raise RuntimeError(f"Could not open BAM: {bam_path}: {e}") from e
        self.path = bam_path

    def _on_contig(self, aln, chrom: str) -> bool:
        name = getattr(aln, "reference_name", None)
        if name is not None:
            return name == chrom
        ref_id = getattr(aln, "refID", getattr(aln, "reference_id", None))
        refs = list(getattr(self._bam, "references", []) or [])
        if ref_id is None or chrom not in refs:
            return True
        return ref_id == refs.index(chrom)

    def query(self, chrom: str, region: Region) -> Iterator[AlignmentData]:
        """
        Records whose reference span (CIGAR-based, so spliced reads included)
        intersects region. The index only seeks to the region; reading then
        runs on until the contig ends or records start past the region.
        """
        try:
            it = self._bam.fetch(contig=chrom, start=region.start - 1, stop=region.end, until_eof=True)
        except KeyError:
            # Contig not in the BAM header: no reads
            logger.debug(f"{chrom} not in {self.path}; no alignments")
            return
        except ValueError as e:
            # Region beyond the contig end, e.g. annotation from another assembly
            logger.debug(f"{chrom}:{region.start}-{region.end} not queryable in {self.path} ({e}); no alignments")
            return
        for aln in it:
            if (getattr(aln, "pos", 0) or 0) < 0 or not self._on_contig(aln, chrom):
                break
            rec = to_alignment_data(aln)
            if rec is None:
                continue
            if rec.start_1b > region.end:
                break
            if rec.end_1b < region.start:
                continue
            yield rec

    def close(self) -> None:
        self._bam.close()

    def __enter__(self) -> BamAlignmentSource:
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class ListAlignmentSource:
    """In-memory alignment source over already extracted records."""

    def __init__(self, records: Iterable[tuple]):
        # records: (chrom, AlignmentData)
        self._by_chr: dict = {}
        for chrom, rec in records:
            self._by_chr.setdefault(chrom, []).append(rec)
        for recs in self._by_chr.values():
            recs.sort(key=lambda r: (r.start_1b, r.end_1b))

    def query(self, chrom: str, region: Region) -> Iterator[AlignmentData]:
        for rec in self._by_chr.get(chrom, []):
            if rec.start_1b > region.end:
                break
            if rec.end_1b >= region.start:
                yield rec
