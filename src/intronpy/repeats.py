from __future__ import annotations

from pathlib import Path
from typing import Collection, Dict, Optional
import gzip
import logging

from .intervals import RepeatTrack
from .intronpyClasses import Interval, RepeatAnnotation

# chrom -> strand -> repeats sorted by (start, end)
RepeatCache = Dict[str, Dict[int, RepeatTrack]]

# RepeatMasker .out files start with a two-line header and a blank line
HEADER_LINES = 3

_STRANDS = {"+": 1, "C": -1, "-": -1}


def _open_text_auto(path: str | Path):
    p = Path(path)
    if p.suffix.lower() == ".gz":
        return gzip.open(p, "rt", encoding="utf-8", errors="replace")
    return open(p, "rt", encoding="utf-8", errors="replace")


def load_repeats(
    path: str | Path,
    chroms: Optional[Collection[str]] = None,
    logger: logging.Logger | None = None,
) -> RepeatCache:
    """
    Load repeats from a RepeatMasker .out file into a per-chromosome, per-strand cache.

    Columns used (1-based): 5 query sequence, 6 begin, 7 end, 9 strand (+ or C),
    10 repeat name, 11 class/family. Names are stored as "name:class/family".
    If chroms is given, other chromosomes are skipped.
    """
    cache: RepeatCache = {}
    wanted = set(chroms) if chroms is not None else None
    n = 0

    with _open_text_auto(path) as fh:
        for i, line in enumerate(fh):
            if i < HEADER_LINES:
                continue
            fields = line.split()
            if len(fields) < 11:
                continue
            chrom = fields[4]
            if wanted is not None and chrom not in wanted:
                continue
            strand = _STRANDS.get(fields[8])
            if strand is None:
                continue
            try:
                start = int(fields[5]); end = int(fields[6])
            except ValueError:
                continue
            rep = RepeatAnnotation(Interval(start, end), f"{fields[9]}:{fields[10]}")
            cache.setdefault(chrom, {}).setdefault(strand, []).append(rep)
            n += 1

    for strands in cache.values():
        for strand, reps in strands.items():
            strands[strand] = RepeatTrack(reps)

    if logger:
        logger.info(f"Repeats loaded: {n} on {len(cache)} chromosomes from {path}")

    return cache


def repeats_for(cache: RepeatCache, chrom: str, strand: int) -> RepeatTrack:
    """Repeats of one chromosome strand; an unknown chromosome has none."""
    return cache.get(chrom, {}).get(strand, RepeatTrack())
