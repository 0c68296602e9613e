from __future__ import annotations
from pathlib import Path
import gzip
import logging
import re
from typing import Dict, List, TextIO, Tuple

from .intronpyClasses import Exon, Gene, InvariantViolation, Transcript

_STRANDS = {"+": 1, "-": -1}
_ATTR_RE = re.compile(r'\s*([^\s;]+)\s+"?([^";]*)"?')


def _open_text_auto(path: str | Path, mode: str = "rt") -> TextIO:
    p = Path(path)
    if p.suffix.lower() == ".gz":
        return gzip.open(p, mode, encoding="utf-8", errors="replace")
    return open(p, mode, encoding="utf-8", errors="replace")


def _parse_attrs(attr_field: str) -> Dict[str, str]:
    """GTF attributes: key "value"; key "value"; ... (first occurrence of a key wins)."""
    out: Dict[str, str] = {}
    for kv in attr_field.strip().split(";"):
        m = _ATTR_RE.match(kv)
        if m and m.group(1) not in out:
            out[m.group(1)] = m.group(2)
    return out


def natural_key(name: str) -> Tuple:
    """Sort key putting chr2 before chr10."""
    return tuple(int(p) if p.isdigit() else p for p in re.split(r"(\d+)", name))


def _require(attrs: Dict[str, str], key: str, line_no: int) -> str:
    v = attrs.get(key)
    if not v:
        raise InvariantViolation(f"GTF line {line_no}: missing {key}")
    return v


def load_gene_models(
    gtf_path: str | Path,
    logger: logging.Logger | None = None,
) -> Dict[str, List[Gene]]:
    """
    Load an Ensembl-style GTF into genes per chromosome.

    Genes are sorted by (start, end, id), their transcripts by (start, end),
    and exons are kept in transcript order (descending coordinates on the
    reverse strand). Gene and transcript lines are optional; missing ones are
    built from the exons below them.
    """
    genes: Dict[str, Gene] = {}
    transcripts: Dict[str, Transcript] = {}
    tx_gene: Dict[str, str] = {}

    with _open_text_auto(gtf_path) as fh:
        for line_no, line in enumerate(fh, start=1):
            if not line.strip() or line.startswith("#"):
                continue
            cols = line.rstrip("\n").split("\t")
            if len(cols) < 9:
                continue
            chrom, _src, feature, start_s, end_s, _score, strand_s, _phase, attrs = cols[:9]
            if feature not in ("gene", "transcript", "exon"):
                continue
            A = _parse_attrs(attrs)
            try:
                start = int(start_s); end = int(end_s)
            except ValueError:
                continue
            strand = _STRANDS.get(strand_s)
            if strand is None:
                raise InvariantViolation(f"GTF line {line_no}: unstranded {feature} ({strand_s!r})")

            gene_id = _require(A, "gene_id", line_no)
            gene_biotype = A.get("gene_biotype") or A.get("gene_type") or "-"
            if gene_id not in genes:
                genes[gene_id] = Gene(
                    id=gene_id, biotype=gene_biotype, chr=chrom, strand=strand, start=start, end=end
                )
            gene = genes[gene_id]
            if feature == "gene":
                gene.biotype, gene.start, gene.end = gene_biotype, start, end
                continue

            tx_id = _require(A, "transcript_id", line_no)
            tx_biotype = A.get("transcript_biotype") or A.get("transcript_type") or "-"
            if tx_id not in transcripts:
                transcripts[tx_id] = Transcript(
                    id=tx_id, biotype=tx_biotype, chr=chrom, strand=strand, start=start, end=end
                )
                tx_gene[tx_id] = gene_id
            tx = transcripts[tx_id]
            if feature == "transcript":
                tx.biotype, tx.start, tx.end = tx_biotype, start, end
                continue

            tx.exons.append(Exon(id=A.get("exon_id", "-"), start=start, end=end))

    for tx_id, tx in transcripts.items():
        if tx.exons:
            tx.exons.sort(key=lambda e: e.start, reverse=(tx.strand == -1))
            tx.start = min(tx.start, min(e.start for e in tx.exons))
            tx.end = max(tx.end, max(e.end for e in tx.exons))
        genes[tx_gene[tx_id]].transcripts.append(tx)

    by_chr: Dict[str, List[Gene]] = {}
    for gene in genes.values():
        if gene.transcripts:
            gene.start = min(gene.start, min(t.start for t in gene.transcripts))
            gene.end = max(gene.end, max(t.end for t in gene.transcripts))
        gene.transcripts.sort(key=lambda t: (t.start, t.end))
        by_chr.setdefault(gene.chr, []).append(gene)
    for chr_ in by_chr:
        by_chr[chr_].sort(key=lambda g: (g.start, g.end, g.id))

    if logger:
        logger.info(
            f"GTF loaded: {len(genes)} genes; {len(transcripts)} transcripts on {len(by_chr)} chromosomes"
        )
        if logger.isEnabledFor(logging.DEBUG):
            for g in list(genes.values())[:5]:
                logger.debug(f"  Example gene: {g.id} {g.chr}:{g.start}-{g.end}({g.strand}) biotype={g.biotype}")

    return by_chr
