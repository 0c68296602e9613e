import pytest
from intronpy.count import (
    CountMode,
    FragmentFilter,
    ListAlignmentSource,
    RateBasis,
    count_fragments,
    fpkm,
    measure,
)
from intronpy.intronpyClasses import AlignmentData, InvariantViolation, Region


def rec(name, start, end, strand=1, mapq=30, dup=False, mate_unmapped=False, ops=1):
    return AlignmentData(name, start, end, strand, mapq, dup, mate_unmapped, ops)


def source(*records, chrom="1"):
    return ListAlignmentSource((chrom, r) for r in records)


REGION = Region(100, 200, 1)


class TestFragmentFilter:

    def test_accepts_good_record(self):
        assert FragmentFilter().accepts(rec("a", 1, 10), 1)

    def test_rejects_duplicate(self):
        assert not FragmentFilter().accepts(rec("a", 1, 10, dup=True), 1)

    def test_mapq_threshold_is_inclusive(self):
        f = FragmentFilter()
        assert f.accepts(rec("a", 1, 10, mapq=10), 1)
        assert not f.accepts(rec("a", 1, 10, mapq=9), 1)

    def test_rejects_other_strand(self):
        assert not FragmentFilter().accepts(rec("a", 1, 10, strand=-1), 1)

    def test_perfect_matches(self):
        spliced = rec("a", 1, 10, ops=3)
        assert FragmentFilter().accepts(spliced, 1)
        assert not FragmentFilter(perfect_matches=True).accepts(spliced, 1)
        assert FragmentFilter(perfect_matches=True).accepts(rec("b", 1, 10, ops=1), 1)


def test_enclosed_rejects_partially_outside_record():
    src = source(rec("a", 99, 150))
    assert count_fragments(src, "1", REGION, CountMode.OVERLAP) == 1
    assert count_fragments(src, "1", REGION, CountMode.ENCLOSED) == 0


def test_enclosed_accepts_record_on_region_edges():
    assert count_fragments(source(rec("a", 100, 200)), "1", REGION, CountMode.ENCLOSED) == 1


def test_pair_with_both_mates_in_region_counted_once():
    src = source(rec("pair", 110, 140), rec("pair", 160, 190))
    assert count_fragments(src, "1", REGION, CountMode.OVERLAP) == 1
    assert count_fragments(src, "1", REGION, CountMode.ENCLOSED) == 1


def test_mate_unmapped_reads_are_not_remembered():
    # Same name, but neither record marks its mate as mapped
    src = source(rec("r", 110, 140, mate_unmapped=True), rec("r", 160, 190, mate_unmapped=True))
    assert count_fragments(src, "1", REGION) == 2


def test_multi_region_shares_dedup():
    src = source(rec("pair", 110, 140), rec("pair", 310, 340), rec("solo", 320, 330))
    regions = [Region(100, 200, 1), Region(300, 400, 1)]
    assert count_fragments(src, "1", regions, CountMode.OVERLAP) == 2
    assert count_fragments(src, "1", regions, CountMode.ENCLOSED) == 2
    # separately each region sees the pair
    assert count_fragments(src, "1", regions[0]) == 1
    assert count_fragments(src, "1", regions[1]) == 2


def test_dedup_is_scoped_to_one_call():
    src = source(rec("pair", 110, 140))
    assert count_fragments(src, "1", REGION) == 1
    assert count_fragments(src, "1", REGION) == 1


def test_explicit_dedup_scope():
    src = source(rec("pair", 110, 140))
    seen = {"pair"}
    assert count_fragments(src, "1", REGION, dedup=seen) == 0


def test_filtered_records_not_counted():
    src = source(
        rec("dup", 110, 120, dup=True),
        rec("lowq", 110, 120, mapq=3),
        rec("minus", 110, 120, strand=-1),
        rec("ok", 110, 120),
    )
    assert count_fragments(src, "1", REGION) == 1
    assert count_fragments(src, "1", Region(100, 200, -1)) == 1


def test_unknown_chromosome_counts_zero():
    assert count_fragments(source(rec("a", 110, 120)), "2", REGION) == 0


def test_enclosed_never_exceeds_overlap():
    src = source(
        rec("a", 90, 110), rec("b", 120, 130), rec("b", 195, 230),
        rec("c", 150, 160, mate_unmapped=True), rec("d", 199, 201), rec("e", 100, 200),
    )
    for region in (Region(100, 200, 1), Region(120, 130, 1), Region(195, 201, 1)):
        assert count_fragments(src, "1", region, CountMode.ENCLOSED) <= count_fragments(
            src, "1", region, CountMode.OVERLAP
        )


def test_mixed_strands_rejected():
    with pytest.raises(InvariantViolation):
        count_fragments(source(), "1", [Region(1, 10, 1), Region(20, 30, -1)])


def test_malformed_region_rejected():
    with pytest.raises(InvariantViolation):
        Region(200, 100, 1)
    with pytest.raises(InvariantViolation):
        Region(100, 200, 0)


def test_fpkm_scenario():
    assert fpkm(10, 1_000_000, 100) == pytest.approx(100.0)


def test_fpkm_without_total():
    assert fpkm(10, 0, 100) is None
    assert fpkm(10, None, 100) is None


def test_fpkm_rejects_non_positive_length():
    with pytest.raises(InvariantViolation):
        fpkm(1, 10, 0)


def test_measure_without_basis_has_no_rate():
    m = measure(source(rec("a", 110, 120)), "1", REGION, CountMode.OVERLAP, None)
    assert m.count == 1
    assert m.rate is None


def test_measure_zero_total_basis_has_no_rate():
    m = measure(source(rec("a", 110, 120)), "1", REGION, CountMode.OVERLAP, RateBasis(0))
    assert m.rate is None


def test_measure_single_region_length():
    m = measure(source(rec("a", 110, 120)), "1", REGION, CountMode.OVERLAP, RateBasis(1_000_000))
    assert m.count == 1
    assert m.rate == pytest.approx(1 / 1 / 101 * 1000)


def test_measure_multi_region_sums_lengths():
    regions = [Region(100, 199, 1), Region(300, 399, 1)]
    m = measure(source(rec("a", 110, 120), rec("b", 310, 320)), "1", regions,
                CountMode.ENCLOSED, RateBasis(2_000_000))
    assert m.count == 2
    assert m.rate == pytest.approx(2 / 2 / 200 * 1000)


def test_measure_length_override():
    m = measure(source(rec("a", 110, 120)), "1", REGION, CountMode.OVERLAP, RateBasis(1_000_000), length=50)
    assert m.rate == pytest.approx(20.0)
