import gzip

import pytest
from intronpy.gtftools import load_gene_models, natural_key
from intronpy.intervals import RepeatTrack
from intronpy.intronpyClasses import Interval, InvariantViolation
from intronpy.repeats import load_repeats, repeats_for

RMSK = """\
   SW  perc perc perc  query      position in query           matching       repeat              position in  repeat
score  div. del. ins.  sequence    begin     end    (left)    repeat         class/family         begin  end (left)   ID

  463   1.3  0.6  1.7  1          3000100  3000250 (192470937) +  L1_Mur2        LINE/L1                4    152  (6122)      1
 1234  10.1  2.0  0.5  1          3000200  3000300 (192470800) C  B2_Mm1a        SINE/B2             (10)    180     1      2
   33  20.0  0.0  0.0  1          2999000  2999050 (192471000) +  (TG)n          Simple_repeat            1     51    (0)      3
  500   5.0  0.0  0.0  2          100      200     (1000)      +  AluY           SINE/Alu                 1    101    (0)      4
"""


def _gtf_line(chrom, feature, start, end, strand, attrs):
    attr_s = " ".join(f'{k} "{v}";' for k, v in attrs.items())
    return "\t".join([chrom, "ensembl", feature, str(start), str(end), ".", strand, ".", attr_s]) + "\n"


def _write_gtf(path, lines):
    path.write_text("#!genome-build GRCz11\n" + "".join(lines))
    return path


def test_load_repeats_by_chromosome_and_strand(tmp_path):
    p = tmp_path / "rmsk.out"
    p.write_text(RMSK)
    cache = load_repeats(p)
    plus = repeats_for(cache, "1", 1)
    assert [(r.interval.start, r.interval.end) for r in plus] == [(2999000, 2999050), (3000100, 3000250)]
    assert plus[1].name == "L1_Mur2:LINE/L1"
    minus = repeats_for(cache, "1", -1)
    assert minus[0].name == "B2_Mm1a:SINE/B2"
    assert minus[0].interval == Interval(3000200, 3000300)
    assert isinstance(plus, RepeatTrack)
    assert plus.starts == [2999000, 3000100]
    assert repeats_for(cache, "X", 1) == []


def test_load_repeats_gzip_and_chrom_filter(tmp_path):
    p = tmp_path / "rmsk.out.gz"
    with gzip.open(p, "wt") as fh:
        fh.write(RMSK)
    cache = load_repeats(p, chroms={"2"})
    assert set(cache) == {"2"}
    assert repeats_for(cache, "2", 1)[0].name == "AluY:SINE/Alu"


def test_natural_key_order():
    assert sorted(["10", "2", "MT", "1", "X"], key=natural_key) == ["1", "2", "10", "MT", "X"]
    assert sorted(["chr10", "chr2"], key=natural_key) == ["chr2", "chr10"]


def test_load_gene_models_forward_strand(tmp_path):
    g = {"gene_id": "G1", "gene_biotype": "protein_coding"}
    t = dict(g, transcript_id="T1", transcript_biotype="protein_coding")
    gtf = _write_gtf(tmp_path / "a.gtf", [
        _gtf_line("1", "gene", 100, 900, "+", g),
        _gtf_line("1", "transcript", 100, 600, "+", t),
        _gtf_line("1", "exon", 501, 600, "+", dict(t, exon_id="E2")),
        _gtf_line("1", "exon", 100, 200, "+", dict(t, exon_id="E1")),
        _gtf_line("1", "CDS", 150, 200, "+", t),
    ])
    genes = load_gene_models(gtf)
    gene = genes["1"][0]
    assert (gene.id, gene.biotype, gene.start, gene.end, gene.strand) == ("G1", "protein_coding", 100, 900, 1)
    tx = gene.transcripts[0]
    assert [e.id for e in tx.exons] == ["E1", "E2"]
    (intron,) = tx.introns()
    assert (intron.start, intron.end) == (201, 500)
    assert intron.prev_exon.id == "E1" and intron.next_exon.id == "E2"


def test_reverse_strand_introns_in_transcript_order(tmp_path):
    t = {"gene_id": "G2", "gene_biotype": "lincRNA", "transcript_id": "T2", "transcript_biotype": "lincRNA"}
    gtf = _write_gtf(tmp_path / "b.gtf", [
        _gtf_line("1", "exon", 100, 200, "-", dict(t, exon_id="E3")),
        _gtf_line("1", "exon", 301, 400, "-", dict(t, exon_id="E2")),
        _gtf_line("1", "exon", 501, 600, "-", dict(t, exon_id="E1")),
    ])
    gene = load_gene_models(gtf)["1"][0]
    assert (gene.start, gene.end, gene.strand) == (100, 600, -1)
    introns = gene.transcripts[0].introns()
    assert [(i.start, i.end) for i in introns] == [(401, 500), (201, 300)]
    assert (introns[0].prev_exon.id, introns[0].next_exon.id) == ("E1", "E2")


def test_abutting_exons_have_no_intron(tmp_path):
    t = {"gene_id": "G", "transcript_id": "T"}
    gtf = _write_gtf(tmp_path / "c.gtf", [
        _gtf_line("1", "exon", 100, 200, "+", t),
        _gtf_line("1", "exon", 201, 300, "+", t),
    ])
    tx = load_gene_models(gtf)["1"][0].transcripts[0]
    assert tx.introns() == []
    assert tx.biotype == "-"


def test_overlapping_exons_are_fatal(tmp_path):
    t = {"gene_id": "G", "transcript_id": "T"}
    gtf = _write_gtf(tmp_path / "d.gtf", [
        _gtf_line("1", "exon", 100, 200, "+", t),
        _gtf_line("1", "exon", 150, 300, "+", t),
    ])
    tx = load_gene_models(gtf)["1"][0].transcripts[0]
    with pytest.raises(InvariantViolation):
        tx.introns()


def test_missing_transcript_id_is_fatal(tmp_path):
    gtf = _write_gtf(tmp_path / "e.gtf", [_gtf_line("1", "exon", 100, 200, "+", {"gene_id": "G"})])
    with pytest.raises(InvariantViolation, match="transcript_id"):
        load_gene_models(gtf)


def test_missing_gene_id_is_fatal(tmp_path):
    gtf = _write_gtf(tmp_path / "f.gtf", [_gtf_line("1", "gene", 100, 200, "+", {"gene_name": "x"})])
    with pytest.raises(InvariantViolation, match="gene_id"):
        load_gene_models(gtf)
