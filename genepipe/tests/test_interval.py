#!/usr/bin/env python3
"""
Tests for genomic interval parsing and serialization
"""
import pytest

from genepipe.exceptions import ValidationError
from genepipe.models.interval import GenomicInterval, parse_hint_line, parse_gtf_line


class TestHintLines:
    """Hints-format records"""

    def test_parse_attributes(self):
        record = parse_hint_line("chr1\tProtHint\tintron\t100\t200\t.\t+\t.\tsrc=P;mult=3;pri=4;")
        assert record.seqname == "chr1"
        assert record.feature == "intron"
        assert (record.start, record.end) == (100, 200)
        assert record.src == "P"
        assert record.multiplicity == 3
        assert record.priority == 4
        assert record.group is None

    def test_missing_multiplicity_counts_once(self):
        record = parse_hint_line("chr1\tx\texon\t1\t50\t.\t-\t.\tsrc=E;")
        assert record.multiplicity == 1

    def test_round_trip_keeps_attributes(self):
        line = "chr1\tmanual\tCDSpart\t10\t90\t.\t+\t.\tsrc=M;grp=g7;pri=6;"
        assert parse_hint_line(line).to_hint_line() == line

    def test_protected_needs_manual_source_and_group(self):
        assert parse_hint_line("c\tx\texon\t1\t5\t.\t+\t.\tsrc=M;grp=a;").is_protected
        assert not parse_hint_line("c\tx\texon\t1\t5\t.\t+\t.\tsrc=M;").is_protected
        assert not parse_hint_line("c\tx\texon\t1\t5\t.\t+\t.\tsrc=P;grp=a;").is_protected

    def test_with_multiplicity_returns_copy(self):
        record = parse_hint_line("c\tx\texon\t1\t5\t.\t+\t.\tsrc=P;")
        updated = record.with_multiplicity(4)
        assert updated.multiplicity == 4
        assert record.multiplicity == 1


class TestValidation:
    """Malformed records are rejected"""

    def test_start_after_end(self):
        with pytest.raises(ValidationError):
            parse_hint_line("c\tx\texon\t50\t10\t.\t+\t.\tsrc=P;")

    def test_too_few_columns(self):
        with pytest.raises(ValidationError):
            parse_hint_line("c\tx\texon\t1\t10")

    def test_non_integer_coordinates(self):
        with pytest.raises(ValidationError):
            parse_hint_line("c\tx\texon\tone\t10\t.\t+\t.\tsrc=P;")

    def test_invalid_strand(self):
        with pytest.raises(ValidationError):
            GenomicInterval("c", "x", "exon", 1, 10, strand="*")

    def test_zero_based_start(self):
        with pytest.raises(ValidationError):
            GenomicInterval("c", "x", "exon", 0, 10)


class TestGtfLines:
    """GTF records, including bare identifiers on gene and transcript lines"""

    def test_bare_transcript_id(self):
        record = parse_gtf_line("chr1\tAUGUSTUS\ttranscript\t100\t900\t0.5\t+\t.\tg1.t1")
        assert record.transcript_id == "g1.t1"

    def test_bare_gene_id(self):
        record = parse_gtf_line("chr1\tAUGUSTUS\tgene\t100\t900\t0.5\t+\t.\tg1")
        assert record.gene_id == "g1"

    def test_quoted_attributes(self):
        record = parse_gtf_line('chr1\tAUGUSTUS\tCDS\t100\t200\t.\t-\t0\ttranscript_id "g1.t1"; gene_id "g1";')
        assert record.transcript_id == "g1.t1"
        assert record.gene_id == "g1"
        assert record.frame == "0"

    def test_gtf_line_orders_ids_first(self):
        record = GenomicInterval("chr1", "src", "CDS", 5, 10, strand="+",
                                 attributes={"note": "x", "gene_id": "g", "transcript_id": "g.t1"})
        assert record.to_gtf_line().endswith('transcript_id "g.t1"; gene_id "g"; note "x";')

    def test_overlaps(self):
        record = GenomicInterval("chr1", "src", "exon", 100, 200)
        assert record.overlaps(200, 300)
        assert record.overlaps(1, 100)
        assert not record.overlaps(201, 300)
