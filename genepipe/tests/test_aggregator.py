#!/usr/bin/env python3
"""
Tests for hint aggregation
"""
import pytest

from genepipe.exceptions import EmptyResultError, ValidationError
from genepipe.hints.aggregator import (
    aggregate, aggregate_files, merge_duplicates, normalize, read_hints, sort,
)
from genepipe.models.interval import parse_hint_line
from .helpers import hint_line, write_lines


@pytest.fixture
def protein_hints(tmp_path):
    """50 intron and 10 exon hints over two scaffolds, listed out of order"""
    lines = []
    for i in range(25):
        for seqname in ("scaffold_2", "scaffold_1"):
            start = 1000 - i * 30
            lines.append(hint_line(seqname, "intron", start, start + 20, src="P"))
    for i in range(10):
        lines.append(hint_line("scaffold_1", "exon", 2000 + i * 100, 2050 + i * 100, src="P"))
    return write_lines(tmp_path / "prot.gff", lines)


class TestAggregateFiles:
    """Canonical hints file from evidence sources"""

    def test_single_protein_source(self, tmp_path, protein_hints):
        output = str(tmp_path / "hintsfile.gff")
        result = aggregate_files([protein_hints], output)

        records = read_hints(output)
        assert len(records) == 60
        assert result.records_written == 60
        assert all(r.src == "P" for r in records)
        assert [r.sort_key() for r in records] == sorted(r.sort_key() for r in records)
        assert result.has_protein_evidence
        assert not result.has_rna_evidence
        assert result.merged_records == 0

    def test_duplicates_across_sources_merge(self, tmp_path):
        a = write_lines(tmp_path / "a.gff", [
            hint_line("chr1", "intron", 100, 200, src="E", mult=3),
            hint_line("chr1", "intron", 300, 400, src="E"),
        ])
        b = write_lines(tmp_path / "b.gff", [
            hint_line("chr1", "intron", 100, 200, src="E", mult=2),
            hint_line("chr1", "intron", 100, 200, src="P"),
        ])
        output = str(tmp_path / "hints.gff")
        result = aggregate_files([a, b], output)

        records = read_hints(output)
        assert len(records) == 3
        merged = [r for r in records if r.start == 100 and r.src == "E"]
        assert len(merged) == 1
        assert merged[0].multiplicity == 5
        assert result.merged_records == 1
        assert result.sources_found == {"E", "P"}

    def test_empty_sources_are_fatal(self, tmp_path):
        empty = write_lines(tmp_path / "empty.gff", ["# nothing here"])
        with pytest.raises(EmptyResultError):
            aggregate_files([empty], str(tmp_path / "out.gff"))

    def test_malformed_line_names_file_and_line(self, tmp_path):
        bad = write_lines(tmp_path / "bad.gff", [
            hint_line("chr1", "intron", 100, 200),
            "chr1\tx\tintron\t500\t100\t.\t+\t.\tsrc=P;",
        ])
        with pytest.raises(ValidationError) as exc_info:
            aggregate_files([bad], str(tmp_path / "out.gff"))
        assert "bad.gff:2" in exc_info.value.message


class TestMergeRules:
    """Merge multiplicity and protected records"""

    def test_multiplicity_is_summed(self):
        records = [parse_hint_line(hint_line("c", "exon", 10, 20, src="W", mult=m)) for m in (1, 4, 2)]
        merged = merge_duplicates(sort(records))
        assert len(merged) == 1
        assert merged[0].multiplicity == 7

    def test_different_strand_or_source_not_merged(self):
        records = [
            parse_hint_line(hint_line("c", "exon", 10, 20, strand="+", src="P")),
            parse_hint_line(hint_line("c", "exon", 10, 20, strand="-", src="P")),
            parse_hint_line(hint_line("c", "exon", 10, 20, strand="+", src="E")),
        ]
        assert len(merge_duplicates(sort(records))) == 3

    def test_protected_records_pass_through(self):
        records = [
            parse_hint_line(hint_line("c", "CDSpart", 50, 80, src="M", grp="g1")),
            parse_hint_line(hint_line("c", "CDSpart", 50, 80, src="M", grp="g1")),
            parse_hint_line(hint_line("c", "intron", 10, 20, src="P")),
            parse_hint_line(hint_line("c", "intron", 10, 20, src="P")),
        ]
        result = aggregate(records)
        assert len(result) == 3
        # merged block first, then the protected block
        assert result[0].src == "P" and result[0].multiplicity == 2
        assert [r.src for r in result[1:]] == ["M", "M"]

    def test_manual_records_without_group_merge(self):
        records = [parse_hint_line(hint_line("c", "exon", 5, 9, src="M")) for _ in range(2)]
        assert len(aggregate(records)) == 1


class TestNormalizeAndSort:
    """Feature type normalization and sort stability"""

    def test_type_case_is_folded(self):
        records = normalize([parse_hint_line(hint_line("c", "Intron", 1, 5)),
                             parse_hint_line(hint_line("c", "cdspart", 1, 5))])
        assert [r.feature for r in records] == ["intron", "CDSpart"]

    def test_unknown_types_are_dropped(self):
        records = normalize([parse_hint_line(hint_line("c", "repeat", 1, 5))])
        assert records == []

    def test_sort_is_idempotent_and_stable(self):
        records = [
            parse_hint_line(hint_line("c2", "exon", 5, 9, src="E")),
            parse_hint_line(hint_line("c1", "exon", 5, 9, src="P")),
            parse_hint_line(hint_line("c1", "intron", 5, 9, src="P")),
            parse_hint_line(hint_line("c1", "exon", 1, 9, src="P")),
        ]
        once = sort(records)
        assert sort(once) == once
        assert [(r.seqname, r.start, r.feature) for r in once] == [
            ("c1", 1, "exon"), ("c1", 5, "exon"), ("c1", 5, "intron"), ("c2", 5, "exon"),
        ]
