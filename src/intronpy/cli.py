import argparse

from .viewer import view_bam_head
from .downloader import DEFAULT_SPECIES, download_ensembl_gtf
from .analyse import analyse_intronic_expression
from .count import MAPQ_THRESHOLD
from .postprocess import add_repeat_distribution, classify_report, normalise_report


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Test by taking the top-view (head) of BAM files
    if args.cmd in ["view", "head"]:
        return view_bam_head(args.bams, n=args.num, region=args.region)

    # Download Ensembl GTF gene models
    elif args.cmd == "download":
        try:
            out_path = download_ensembl_gtf(
                args.dest,
                species=args.species,
                release=args.release,
                assembly=args.assembly,
                force=args.force,
                url=args.url,
            )
            print(f"Downloaded Ensembl GTF to: {out_path}")
            return 0
        except (FileExistsError, ValueError) as e:
            print(f"[ERROR] {e}")
            return 2
        except RuntimeError as e:
            print(f"[ERROR] {e}")
            return 1

    # Count fragments over introns, exons, repeats and segments
    elif args.cmd == "analyse":
        return analyse_intronic_expression(
            bam_path=args.bam,
            gtf_path=args.gtf,
            repeats_path=args.repeats,
            out_path=args.out,
            perfect_matches=args.perfect_matches,
            mapq_threshold=args.mapq,
            slice_regexp=args.slice_regexp,
            log_level=args.log_level,
        )

    # Report post-processing
    elif args.cmd in ["classify", "repeat-distribution", "normalise"]:
        try:
            if args.cmd == "classify":
                n = classify_report(args.in_path, args.out_path, fpkm=args.fpkm)
            elif args.cmd == "repeat-distribution":
                n = add_repeat_distribution(args.in_path, args.out_path)
            else:
                n = normalise_report(args.in_path, args.out_path, size_factor=args.size_factor)
        except ValueError as e:
            print(f"[ERROR] {e}")
            return 2
        except (OSError, IndexError) as e:
            print(f"[ERROR] {args.in_path}: {e}")
            return 1
        if args.out_path != "-":
            print(f"Wrote {n} intron rows to {args.out_path}")
        return 0
    else:
        parser.error("Unknown command")

    return 2


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="intronpy",
        description="Stranded intronic expression analysis with bamnostic."
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    # Sanity checking of BAM files
    t = sub.add_parser(
        "view",
        help="Print first N reads from each BAM file with the fields used for counting."
    )
    t.add_argument(
        "bams",
        nargs="+",
        help="One or more BAM files to test."
    )
    t.add_argument(
        "-n", "--num",
        type=int,
        default=10,
        help="Number of reads per BAM."
    )
    t.add_argument(
        "-r", "--region",
        help="Optional region like 'chr1:1000-2000'."
    )

    # Support for downloading Ensembl gene models
    d = sub.add_parser("download", help="Download an Ensembl GTF to a path.")
    d.add_argument(
        "dest",
        help="Destination file path, e.g. data/Mus_musculus.GRCm38.88.gtf.",
    )
    d.add_argument(
        "--species",
        default=DEFAULT_SPECIES,
        help=f"Species (default: {DEFAULT_SPECIES}).",
    )
    d.add_argument(
        "--release",
        type=int,
        help="Ensembl release, e.g. 88.",
    )
    d.add_argument(
        "--assembly",
        help="Assembly name used in the file name, e.g. GRCm38.",
    )
    d.add_argument(
        "--url",
        default=None,
        help="Optional explicit URL (overrides species/release/assembly).",
    )
    d.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing destination file.",
    )

    # Intronic expression report
    a = sub.add_parser(
        "analyse",
        help="Count stranded read pairs over introns, flanking exons, repeats and repeat-free intron segments."
    )
    a.add_argument(
        "--bam",
        required=True,
        help="Coordinate-sorted, indexed BAM file to analyse."
    )
    a.add_argument(
        "--gtf",
        required=True,
        help="Ensembl-style GTF with gene, transcript and exon features (.gtf or .gtf.gz). See also command 'download'."
    )
    a.add_argument(
        "--repeats",
        required=True,
        help="RepeatMasker .out file (.out or .out.gz)."
    )
    a.add_argument(
        "--out",
        default=None,
        help="Output TSV report path (default: stdout)."
    )
    a.add_argument(
        "--perfect-matches",
        dest="perfect_matches",
        action="store_true",
        help="Only count reads aligned as a single CIGAR operation."
    )
    a.add_argument(
        "--mapq",
        type=int,
        default=MAPQ_THRESHOLD,
        help=f"Skip reads with mapping quality below this (default {MAPQ_THRESHOLD})."
    )
    a.add_argument(
        "--slice-regexp",
        dest="slice_regexp",
        default=None,
        help="Regular expression limiting the chromosomes reported. The FPKM total always uses every chromosome."
    )
    # Debugging assistance
    a.add_argument(
        "--log-level",
        default="INFO",
        choices=["ERROR", "WARNING", "INFO", "DEBUG"],
        help="Logging verbosity (default: INFO)."
    )

    def _io_args(sp: argparse.ArgumentParser) -> None:
        sp.add_argument(
            "--in",
            dest="in_path",
            required=True,
            help="Input report ('-' for stdin)."
        )
        sp.add_argument(
            "--out",
            dest="out_path",
            default="-",
            help="Output report (default: '-' for stdout)."
        )

    c = sub.add_parser(
        "classify",
        help="Categorise introns by expression of segments, flanking exons and repeats."
    )
    _io_args(c)
    c.add_argument(
        "--fpkm",
        action="store_true",
        help="Threshold FPKMs (> 1) instead of counts (> 10)."
    )

    r = sub.add_parser(
        "repeat-distribution",
        help="Add intron and repeat totals per transcript and gene."
    )
    _io_args(r)

    n = sub.add_parser(
        "normalise",
        help="Add counts divided by a library size factor."
    )
    _io_args(n)
    n.add_argument(
        "--size-factor",
        dest="size_factor",
        type=float,
        required=True,
        help="Library size factor, e.g. from DESeq2."
    )
    return p

if __name__ == "__main__":
    raise SystemExit(main())
