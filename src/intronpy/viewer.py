from __future__ import annotations
import os
import bamnostic as bn
import glob

from .count import to_alignment_data


def _expand_bam_patterns(bams: list[str]) -> list[str]:
    """Expand glob patterns (sample*.bam) cross-platform; keep order; de-dupe."""
    seen = set()
    out: list[str] = []
    for pat in bams:
        # If pattern contains wildcards, expand; otherwise treat as literal path
        matches = glob.glob(pat) if any(ch in pat for ch in "*?[]") else ([pat] if os.path.exists(pat) else [])
        if not matches:
            print(f"[WARNING] No BAMs matched: {pat}")
        for m in sorted(matches):
            if m not in seen:
                seen.add(m)
                out.append(m)
    return out


def _parse_region(region: str) -> tuple[str, int | None, int | None]:
    """'chr1:1000-2000' -> ('chr1', 999, 2000) as 0-based half-open; 'chr1' -> whole contig."""
    if ":" not in region:
        return region, None, None
    contig, span = region.rsplit(":", 1)
    start_s, _, end_s = span.replace(",", "").partition("-")
    start = int(start_s) - 1
    end = int(end_s) if end_s else None
    return contig, start, end


def view_bam_head(bams: list[str], n: int = 10, region: str | None = None) -> int:
    """
    Print the first N mapped reads from each BAM file using bamnostic, with the
    fields fragment counting looks at.

    If --region is given, a BAM index (.bai) must be present; otherwise we stream
    through the file sequentially (no index required).
    Output is TSV: read_name, locus(strand), MAPQ, duplicate, mate unmapped, CIGAR ops
    """
    bam_paths = _expand_bam_patterns(bams)
    if not bam_paths:
        print("[ERROR] No BAM files found.")
        return 1

    for bam in bam_paths:
        try:
            bf = bn.AlignmentFile(bam, "rb")
        except Exception as e:
            print(f"[ERROR] Could not open {bam}: {e}")
            return 1

        print(f"== {bam} ==")

        try:
            if region:
                bai_candidates = [bam + ".bai", os.path.splitext(bam)[0] + ".bai"]
                has_index = any(os.path.exists(p) for p in bai_candidates)
                if not has_index:
                    print(f"[ERROR] Region queries require an index (.bai). Not found next to {bam}.")
                    return 2
                try:
                    contig, start, stop = _parse_region(region)
                    it = bf.fetch(contig=contig, start=start, stop=stop)
                except ValueError as ve:
                    print(f"[ERROR] Could not parse region '{region}': {ve}")
                    return 2
                except KeyError as ke:
                    print(f"[ERROR] Could not resolve region '{region}' in header ({ke}). "
                          f"Check contig names via bf.references.")
                    return 2
            else:
                it = iter(bf)

            printed = 0
            for aln in it:
                rec = to_alignment_data(aln)
                if rec is None:
                    continue

                rname = getattr(aln, "reference_name", "")
                strand = "-" if rec.strand == -1 else "+"
                print(
                    f"{rec.name}\t{rname}:{rec.start_1b}-{rec.end_1b}({strand})\tMAPQ={rec.mapq}"
                    f"\tDUP={int(rec.is_duplicate)}\tMATE_UNMAPPED={int(rec.mate_unmapped)}"
                    f"\tCIGAR_OPS={rec.n_cigar_ops}"
                )

                printed += 1
                if printed >= n:
                    break

            if printed == 0:
                if region:
                    print("[info] No mapped reads found in region (or region outside data).")
                else:
                    print("[info] No mapped reads found.")
        finally:
            bf.close()

    return 0
