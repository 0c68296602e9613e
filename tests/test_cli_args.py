import pytest
from intronpy import cli


def test_cli_analyse_argument_parsing(monkeypatch):
    called = {}

    def fake_analyse(**kwargs):
        called.update(kwargs)
        return 0
    monkeypatch.setattr(cli, "analyse_intronic_expression", fake_analyse)

    # Example fake command line input (as if typed into terminal)
    argv = [
        "analyse",
        "--bam", "alignments/sample.bam",
        "--gtf", "data/Danio_rerio.GRCz11.gtf.gz",
        "--repeats", "data/danRer11.fa.out",
        "--out", "results/introns.tsv",
        "--perfect-matches",
        "--slice-regexp", "^1$",
    ]

    result = cli.main(argv)

    assert result == 0
    assert called["bam_path"] == "alignments/sample.bam"
    assert called["repeats_path"] == "data/danRer11.fa.out"
    assert called["perfect_matches"] is True
    assert called["mapq_threshold"] == 10
    assert called["slice_regexp"] == "^1$"
    assert called["log_level"] == "INFO"


def test_cli_requires_subcommand():
    with pytest.raises(SystemExit):
        cli.main([])


def test_cli_normalise_bad_size_factor(tmp_path, capsys):
    rc = cli.main(["normalise", "--in", str(tmp_path / "in.tsv"), "--size-factor", "0"])
    assert rc == 2
    assert "[ERROR]" in capsys.readouterr().out


def test_cli_classify_missing_input(tmp_path, capsys):
    rc = cli.main(["classify", "--in", str(tmp_path / "missing.tsv"), "--out", str(tmp_path / "o.tsv")])
    assert rc == 1
    assert "[ERROR]" in capsys.readouterr().out


def test_cli_download_needs_release(tmp_path, capsys):
    rc = cli.main(["download", str(tmp_path / "genes.gtf")])
    assert rc == 2
