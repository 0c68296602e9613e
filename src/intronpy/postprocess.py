"""
Post-processing of the intronic expression report.

Each step reads a report (or the output of another step), passes comment rows
(# gene, ## transcript, ### no-introns) through unchanged, and appends columns
to the header and to every intron row. Columns are looked up by position.
"""
from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, TextIO
import gzip
import sys

# Zero-based report columns
COL_GENE_ID = 0
COL_TRANSCRIPT_ID = 3
COL_INTRON_COUNT = 10
COL_PREV_EXON_COUNT = 15
COL_NEXT_EXON_COUNT = 20
COL_REPEAT_COORDS = 23
COL_REPEAT_TOTAL_COUNT = 26
COL_SEGMENT_TOTAL_COUNT = 31

COUNT_THRESHOLD = 10
FPKM_THRESHOLD = 1

MISSING = "-"


@contextmanager
def _open_in(path: str | Path) -> Iterator[TextIO]:
    if str(path) == "-":
        yield sys.stdin
        return
    p = Path(path)
    opener = gzip.open if p.suffix.lower() == ".gz" else open
    with opener(p, "rt", encoding="utf-8", errors="replace") as fh:
        yield fh


@contextmanager
def _open_out(path: str | Path) -> Iterator[TextIO]:
    if str(path) == "-":
        yield sys.stdout
        return
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, "w", encoding="utf-8") as fh:
        yield fh


def _fmt(v) -> str:
    if isinstance(v, float):
        return f"{v:.15g}"
    return str(v)


def _above(value: str, threshold: float) -> bool:
    # Missing values never pass a threshold
    if value in (MISSING, ""):
        return False
    return float(value) > threshold


def _flag(value: str, threshold: float) -> str:
    if value == MISSING:
        return MISSING
    return "y" if _above(value, threshold) else "n"


def categorise(intron: str, exons: str, repeats: str) -> str:
    """Decision tree over the y/n/- flags for intron segments, flanking exons and repeats."""
    if intron == MISSING:
        return "intron-entirely-repeat"
    if intron == "y" and exons == "y":
        return "novel-exon-or-intron-retention"
    if repeats == "y":
        return "repeats-expressed-independently"
    if intron == "y":
        return "novel-exon"
    if exons == "y":
        return "only-exons-expressed"
    return "transcriptionally-silent"


def classify_report(in_path: str | Path, out_path: str | Path, *, fpkm: bool = False) -> int:
    """
    Flag whether intron segments, flanking exons and repeats are expressed
    above a threshold (count > 10, or FPKM > 1) and assign a category.
    Returns the number of intron rows written.
    """
    threshold = FPKM_THRESHOLD if fpkm else COUNT_THRESHOLD
    name = "FPKM" if fpkm else "Count"
    shift = 1 if fpkm else 0
    n = 0

    with _open_in(in_path) as fin, _open_out(out_path) as fout:
        header = fin.readline().rstrip("\n")
        fout.write("\t".join([
            header,
            f"Intron Segment Enclosed Total {name} > {threshold}",
            f"Prev Exon Overlap {name} & Next Exon Overlap {name} > {threshold}",
            f"Repeat Overlap Total {name} > {threshold}",
            "Category",
        ]) + "\n")
        for raw in fin:
            line = raw.rstrip("\n")
            if line.startswith("#"):
                fout.write(line + "\n")
                continue
            cols = line.split("\t")
            intron = _flag(cols[COL_SEGMENT_TOTAL_COUNT + shift], threshold)
            # The next exon is always held to the count threshold
            exons = "y" if (
                _above(cols[COL_PREV_EXON_COUNT + shift], threshold)
                and _above(cols[COL_NEXT_EXON_COUNT + shift], COUNT_THRESHOLD)
            ) else "n"
            repeats = _flag(cols[COL_REPEAT_TOTAL_COUNT + shift], threshold)
            fout.write("\t".join([line, intron, exons, repeats, categorise(intron, exons, repeats)]) + "\n")
            n += 1
    return n


def _n_repeats(value: str) -> int:
    return 0 if value == MISSING else len(value.split(","))


def add_repeat_distribution(in_path: str | Path, out_path: str | Path) -> int:
    """
    Append intron and repeat totals per transcript and gene, and the share of
    those repeats that fall in each intron. Reads the input twice, so it
    cannot come from stdin.
    """
    if str(in_path) == "-":
        raise ValueError("Repeat distribution needs a file input (it is read twice)")

    gene_introns: Dict[str, int] = {}
    tx_introns: Dict[str, int] = {}
    gene_repeats: Dict[str, int] = {}
    tx_repeats: Dict[str, int] = {}

    with _open_in(in_path) as fin:
        fin.readline()
        for raw in fin:
            if raw.startswith("#"):
                continue
            cols = raw.rstrip("\n").split("\t")
            gene, tx = cols[COL_GENE_ID], cols[COL_TRANSCRIPT_ID]
            k = _n_repeats(cols[COL_REPEAT_COORDS])
            gene_introns[gene] = gene_introns.get(gene, 0) + 1
            tx_introns[tx] = tx_introns.get(tx, 0) + 1
            gene_repeats[gene] = gene_repeats.get(gene, 0) + k
            tx_repeats[tx] = tx_repeats.get(tx, 0) + k

    n = 0
    with _open_in(in_path) as fin, _open_out(out_path) as fout:
        header = fin.readline().rstrip("\n")
        fout.write("\t".join([
            header,
            "Introns In Transcript",
            "Introns In Gene",
            "Repeats In Intron",
            "Repeats In Transcript",
            "Repeats In Gene",
            "Repeats In Intron / Transcript",
            "Repeats In Intron / Gene",
        ]) + "\n")
        for raw in fin:
            line = raw.rstrip("\n")
            if line.startswith("#"):
                fout.write(line + "\n")
                continue
            cols = line.split("\t")
            gene, tx = cols[COL_GENE_ID], cols[COL_TRANSCRIPT_ID]
            k = _n_repeats(cols[COL_REPEAT_COORDS])
            in_tx, in_gene = tx_repeats[tx], gene_repeats[gene]
            tx_ratio = k / in_tx if in_tx else MISSING
            gene_ratio = k / in_gene if in_gene else MISSING
            values: List = [tx_introns[tx], gene_introns[gene], k, in_tx, in_gene, tx_ratio, gene_ratio]
            fout.write("\t".join([line] + [_fmt(v) for v in values]) + "\n")
            n += 1
    return n


def normalise_report(in_path: str | Path, out_path: str | Path, *, size_factor: float) -> int:
    """Append intron, repeat total and segment total counts divided by a library size factor."""
    if not size_factor:
        raise ValueError("size_factor must be non-zero")

    def _norm(value: str) -> str:
        return MISSING if value == MISSING else _fmt(float(value) / size_factor)

    n = 0
    with _open_in(in_path) as fin, _open_out(out_path) as fout:
        header = fin.readline().rstrip("\n")
        fout.write("\t".join([
            header,
            "Intron Enclosed Normalised Count",
            "Repeat Overlap Normalised Total Count",
            "Intron Segment Enclosed Normalised Total Count",
        ]) + "\n")
        for raw in fin:
            line = raw.rstrip("\n")
            if line.startswith("#"):
                fout.write(line + "\n")
                continue
            cols = line.split("\t")
            fout.write("\t".join([
                line,
                _norm(cols[COL_INTRON_COUNT]),
                _norm(cols[COL_REPEAT_TOTAL_COUNT]),
                _norm(cols[COL_SEGMENT_TOTAL_COUNT]),
            ]) + "\n")
            n += 1
    return n
