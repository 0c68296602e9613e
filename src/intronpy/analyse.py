from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, TextIO, Tuple
import logging
import os
import re
import sys
import psutil

from .count import (
    AlignmentSource,
    BamAlignmentSource,
    CountMode,
    FragmentFilter,
    MAPQ_THRESHOLD,
    RateBasis,
    count_fragments,
    measure,
)
from .gtftools import load_gene_models, natural_key
from .intervals import collapse_repeats, overlapping_repeats, segment_interval
from .intronpyClasses import (
    CollapsedRepeat,
    FragmentCount,
    Gene,
    Interval,
    Intron,
    InvariantViolation,
    Region,
    RepeatAnnotation,
    Transcript,
)
from .repeats import RepeatCache, load_repeats, repeats_for

# Downstream tools index these columns by position
REPORT_COLUMNS = [
    "Gene ID", "Gene Biotype", "Gene Overlap Count",
    "Transcript ID", "Transcript Biotype", "Transcript Overlap Count",
    "Chr", "Strand", "Intron Start", "Intron End",
    "Intron Enclosed Count", "Intron Enclosed FPKM",
    "Prev Exon ID", "Prev Exon Start", "Prev Exon End",
    "Prev Exon Overlap Count", "Prev Exon Overlap FPKM",
    "Next Exon ID", "Next Exon Start", "Next Exon End",
    "Next Exon Overlap Count", "Next Exon Overlap FPKM",
    "Repeat Names", "Repeat Coords",
    "Repeat Overlap Counts", "Repeat Overlap FPKMs",
    "Repeat Overlap Total Count", "Repeat Overlap Total FPKM",
    "Intron Segment Coords", "Intron Segment Enclosed Counts",
    "Intron Segment Enclosed FPKMs", "Intron Segment Enclosed Total Count",
    "Intron Segment Enclosed Total FPKM",
]

MISSING = "-"


def _make_logger(level: str) -> logging.Logger:
    lvl = getattr(logging, level.upper(), logging.INFO)
    logger = logging.getLogger("intronpy.analyse")
    # Configure once
    if not logger.handlers:
        handler = logging.StreamHandler()
        fmt = logging.Formatter("[%(levelname)s] %(message)s")
        handler.setFormatter(fmt)
        logger.addHandler(handler)
    logger.setLevel(lvl)
    return logger


def _get_memory_usage() -> float:
    process = psutil.Process(os.getpid())
    return process.memory_info().rss / 1024 / 1024  # MB


def _fmt(v) -> str:
    if v is None:
        return MISSING
    if isinstance(v, float):
        return f"{v:.15g}"
    return str(v)


def _join(values: Sequence) -> str:
    return ",".join(_fmt(v) for v in values) if values else MISSING


@dataclass
class IntronMeasurements:
    intron: FragmentCount
    prev_exon: FragmentCount
    next_exon: FragmentCount
    repeats: List[CollapsedRepeat] = field(default_factory=list)
    repeat_counts: List[FragmentCount] = field(default_factory=list)
    repeat_total: Optional[FragmentCount] = None
    segments: List[Interval] = field(default_factory=list)
    segment_counts: List[FragmentCount] = field(default_factory=list)
    segment_total: Optional[FragmentCount] = None


def compute_rate_basis(
    source: AlignmentSource,
    genes_by_chr: Dict[str, List[Gene]],
    fragment_filter: FragmentFilter,
    logger: logging.Logger | None = None,
) -> Tuple[RateBasis, Dict[str, int]]:
    """
    Phase A: count overlapping fragments once for every gene on every chromosome.
    Returns the genome-wide basis and the per-gene counts.
    """
    gene_counts: Dict[str, int] = {}
    total = 0
    for chr_ in sorted(genes_by_chr, key=natural_key):
        if logger:
            logger.debug(f"Slice: {chr_}")
        for gene in genes_by_chr[chr_]:
            n = count_fragments(source, chr_, gene.region, CountMode.OVERLAP, fragment_filter)
            gene_counts[gene.id] = n
            total += n
    if logger:
        logger.info(f"Total count: {total}")
    return RateBasis(total), gene_counts


def measure_intron(
    source: AlignmentSource,
    chrom: str,
    intron: Intron,
    repeats: Sequence[RepeatAnnotation],
    basis: RateBasis,
    fragment_filter: FragmentFilter,
    logger: logging.Logger | None = None,
) -> IntronMeasurements:
    """Phase B for one intron: intron, flanking exons, collapsed repeats and segments."""
    strand = intron.strand
    bound = Interval(intron.start, intron.end)

    def _measure(regions, mode):
        return measure(source, chrom, regions, mode, basis, fragment_filter)

    m = IntronMeasurements(
        intron=_measure(intron.region, CountMode.ENCLOSED),
        prev_exon=_measure(Region(intron.prev_exon.start, intron.prev_exon.end, strand), CountMode.OVERLAP),
        next_exon=_measure(Region(intron.next_exon.start, intron.next_exon.end, strand), CountMode.OVERLAP),
    )

    hits = overlapping_repeats(repeats, bound)
    if logger and logger.isEnabledFor(logging.DEBUG):
        for r in hits:
            logger.debug(f"Uncollapsed Repeat: {chrom}:{r.interval}:{strand}")
    m.repeats = collapse_repeats(hits, bound)
    m.segments = segment_interval(bound, m.repeats)

    repeat_regions = [Region(r.interval.start, r.interval.end, strand) for r in m.repeats]
    for r in repeat_regions:
        if logger:
            logger.debug(f"Collapsed Repeat: {chrom}:{r.start}-{r.end}:{strand}")
        m.repeat_counts.append(_measure(r, CountMode.OVERLAP))
    if repeat_regions:
        m.repeat_total = _measure(repeat_regions, CountMode.OVERLAP)

    segment_regions = [Region(s.start, s.end, strand) for s in m.segments]
    for s in segment_regions:
        m.segment_counts.append(_measure(s, CountMode.ENCLOSED))
    if segment_regions:
        m.segment_total = _measure(segment_regions, CountMode.ENCLOSED)

    return m


def format_intron_row(
    gene: Gene,
    gene_count: int,
    tx: Transcript,
    tx_count: int,
    chrom: str,
    intron: Intron,
    m: IntronMeasurements,
) -> List[str]:
    row = [
        gene.id, gene.biotype, gene_count,
        tx.id, tx.biotype, tx_count,
        chrom, intron.strand, intron.start, intron.end,
        m.intron.count, m.intron.rate,
        intron.prev_exon.id, intron.prev_exon.start, intron.prev_exon.end,
        m.prev_exon.count, m.prev_exon.rate,
        intron.next_exon.id, intron.next_exon.start, intron.next_exon.end,
        m.next_exon.count, m.next_exon.rate,
    ]
    out = [_fmt(v) for v in row]
    out += [
        _join([r.label for r in m.repeats]),
        _join([str(r.interval) for r in m.repeats]),
        _join([c.count for c in m.repeat_counts]),
        _join([c.rate for c in m.repeat_counts]),
        _fmt(m.repeat_total.count) if m.repeat_total else MISSING,
        _fmt(m.repeat_total.rate) if m.repeat_total else MISSING,
        _join([str(s) for s in m.segments]),
        _join([c.count for c in m.segment_counts]),
        _join([c.rate for c in m.segment_counts]),
        _fmt(m.segment_total.count) if m.segment_total else MISSING,
        _fmt(m.segment_total.rate) if m.segment_total else MISSING,
    ]
    return out


def write_report(
    fh: TextIO,
    source: AlignmentSource,
    genes_by_chr: Dict[str, List[Gene]],
    repeat_cache: RepeatCache,
    *,
    fragment_filter: FragmentFilter | None = None,
    slice_regexp: str | None = None,
    logger: logging.Logger | None = None,
) -> int:
    """
    Write the intronic expression report. Returns the number of intron rows.

    Phase A always covers every chromosome; slice_regexp only limits the
    chromosomes reported in Phase B.
    """
    fragment_filter = fragment_filter or FragmentFilter()
    basis, gene_counts = compute_rate_basis(source, genes_by_chr, fragment_filter, logger=logger)

    fh.write("\t".join(REPORT_COLUMNS) + "\n")
    pattern = re.compile(slice_regexp) if slice_regexp else None
    n_rows = 0

    for chr_ in sorted(genes_by_chr, key=natural_key):
        if pattern is not None and not pattern.search(chr_):
            continue
        if logger:
            logger.info(f"Slice: {chr_} ({len(genes_by_chr[chr_])} genes)")
        for gene in genes_by_chr[chr_]:
            if logger:
                logger.debug(f"Gene: {gene.id} {chr_}:{gene.start}-{gene.end}:{gene.strand}")
            gene_count = gene_counts[gene.id]
            gene_fields = [gene.id, gene.biotype, str(gene_count)]
            fh.write("# " + "\t".join(gene_fields) + "\n")

            for tx in gene.transcripts:
                if logger:
                    logger.debug(f"Transcript: {tx.id} {chr_}:{tx.start}-{tx.end}:{tx.strand}")
                tx_count = count_fragments(source, chr_, tx.region, CountMode.OVERLAP, fragment_filter)
                tx_fields = gene_fields + [tx.id, tx.biotype, str(tx_count)]
                fh.write("## " + "\t".join(tx_fields) + "\n")

                introns = tx.introns()
                if not introns:
                    fh.write("### " + "\t".join(tx_fields) + "\tno-introns\n")
                    continue
                for intron in introns:
                    if logger:
                        logger.debug(f"Intron: {chr_}:{intron.start}-{intron.end}:{intron.strand}")
                    m = measure_intron(
                        source, chr_, intron, repeats_for(repeat_cache, chr_, intron.strand),
                        basis, fragment_filter, logger=logger,
                    )
                    row = format_intron_row(gene, gene_count, tx, tx_count, chr_, intron, m)
                    fh.write("\t".join(row) + "\n")
                    n_rows += 1

        if logger and logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"Memory after {chr_}: {_get_memory_usage():.1f} MB")

    return n_rows


def analyse_intronic_expression(
    bam_path: str | Path,
    gtf_path: str | Path,
    repeats_path: str | Path,
    out_path: str | Path | None = None,
    *,
    perfect_matches: bool = False,
    mapq_threshold: int = MAPQ_THRESHOLD,
    slice_regexp: str | None = None,
    log_level: str = "INFO",
) -> int:
    """
    Count fragments over every intron, its flanking exons, its repeats and its
    repeat-free segments, and write the tab-delimited report to out_path
    (stdout if None). Returns 0 on success, 1 on failure.
    """
    logger = _make_logger(log_level)
    fragment_filter = FragmentFilter(mapq_threshold=mapq_threshold, perfect_matches=perfect_matches)
    logger.info(f"mapq_threshold={mapq_threshold}, perfect_matches={perfect_matches}")

    try:
        genes_by_chr = load_gene_models(gtf_path, logger=logger)
        repeat_cache = load_repeats(repeats_path, chroms=set(genes_by_chr), logger=logger)
        with BamAlignmentSource(bam_path) as source:
            if out_path is None:
                n = write_report(sys.stdout, source, genes_by_chr, repeat_cache,
                                 fragment_filter=fragment_filter, slice_regexp=slice_regexp, logger=logger)
            else:
                outp = Path(out_path)
                outp.parent.mkdir(parents=True, exist_ok=True)
                with open(outp, "w", encoding="utf-8") as fh:
                    n = write_report(fh, source, genes_by_chr, repeat_cache,
                                     fragment_filter=fragment_filter, slice_regexp=slice_regexp, logger=logger)
    except (InvariantViolation, RuntimeError, OSError) as e:
        logger.error(f"{e}")
        return 1

    logger.info(f"Wrote {n} intron rows to {out_path or 'stdout'}")
    return 0
