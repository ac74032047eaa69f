#!/usr/bin/env python3
"""
Tests for transcripts and gene sets
"""
import pytest

from genepipe.exceptions import ValidationError
from genepipe.models.gene import GeneSet
from .helpers import gtf_transcript, make_transcript


class TestEvidenceBlock:
    """Evidence comment blocks become transcript support"""

    def test_support_sources(self):
        gene_set = GeneSet.from_lines(
            gtf_transcript("g1.t1", "g1", "chr1", [(100, 200), (300, 400)], support=["P", "E"]))
        assert gene_set.get("g1.t1").support == {"P", "E"}

    def test_incompatible_groups_are_not_support(self):
        lines = gtf_transcript("g1.t1", "g1", "chr1", [(100, 200)], support=["P"])
        lines += ["# incompatible hint groups: 2", "#      E:   2"]
        transcript = GeneSet.from_lines(lines).get("g1.t1")
        assert transcript.support == {"P"}

    def test_zero_count_is_not_support(self):
        lines = gtf_transcript("g1.t1", "g1", "chr1", [(100, 200)])
        lines += ["# Evidence for and against this transcript:", "#      P:   0"]
        assert GeneSet.from_lines(lines).get("g1.t1").support == set()

    def test_support_survives_write(self, tmp_path):
        gene_set = GeneSet.from_lines(
            gtf_transcript("g1.t1", "g1", "chr1", [(100, 200)], support=["W"]))
        path = str(tmp_path / "set.gtf")
        gene_set.write_gtf(path)
        assert GeneSet.read_gtf(path).get("g1.t1").support == {"W"}


class TestTranscriptStructure:
    """Coordinates, introns and fingerprints"""

    def test_introns_between_cds(self):
        transcript = make_transcript("g1.t1", "chr1", [(100, 200), (301, 400), (501, 600)])
        assert transcript.introns() == [(201, 300), (401, 500)]
        assert transcript.coding_length() == 101 + 100 + 100

    def test_touching_segments_form_one_block(self):
        transcript = make_transcript("g1.t1", "chr1", [(100, 200), (201, 300)])
        assert transcript.exonic_blocks() == [(100, 300)]
        assert transcript.introns() == []

    def test_fingerprint_ignores_ids(self):
        a = make_transcript("a.t1", "chr1", [(100, 200), (300, 400)])
        b = make_transcript("b.t1", "chr1", [(100, 200), (300, 400)])
        c = make_transcript("c.t1", "chr1", [(100, 200), (300, 400)], strand="-")
        assert a.fingerprint() == b.fingerprint()
        assert a.fingerprint() != c.fingerprint()

    def test_renamed_updates_every_feature(self):
        transcript = make_transcript("g1.t1", "chr1", [(100, 200), (300, 400)])
        renamed = transcript.renamed("x_g1.t1", "x_g1")
        assert all(f.transcript_id == "x_g1.t1" for f in renamed.features)
        assert renamed.transcript_line.transcript_id == "x_g1.t1"
        assert transcript.transcript_id == "g1.t1"


class TestGeneSet:
    """Ordered collections of transcripts"""

    def test_duplicate_id_rejected(self):
        transcript = make_transcript("g1.t1", "chr1", [(100, 200)])
        gene_set = GeneSet([transcript])
        with pytest.raises(ValidationError):
            gene_set.add(transcript)

    def test_transcript_on_two_sequences_rejected(self):
        lines = gtf_transcript("g1.t1", "g1", "chr1", [(100, 200)])
        lines.append('chr2\tAUGUSTUS\tCDS\t5\t50\t.\t+\t0\ttranscript_id "g1.t1"; gene_id "g1";')
        with pytest.raises(ValidationError):
            GeneSet.from_lines(lines)

    def test_gene_grouping_and_prefix(self):
        lines = gtf_transcript("g1.t1", "g1", "chr1", [(100, 200)])
        lines += gtf_transcript("g1.t2", "g1", "chr1", [(100, 250)])
        lines += gtf_transcript("g2.t1", "g2", "chr2", [(10, 90)])
        gene_set = GeneSet.from_lines(lines)
        assert list(gene_set.genes().keys()) == ["g1", "g2"]
        assert gene_set.sequences() == ["chr1", "chr2"]

        prefixed = gene_set.with_prefix("rna_")
        assert prefixed.transcript_ids == ["rna_g1.t1", "rna_g1.t2", "rna_g2.t1"]
        assert list(prefixed.genes().keys()) == ["rna_g1", "rna_g2"]

    def test_written_file_has_gene_lines(self, tmp_path):
        lines = gtf_transcript("g1.t1", "g1", "chr1", [(100, 200)])
        lines += gtf_transcript("g1.t2", "g1", "chr1", [(150, 400)])
        path = str(tmp_path / "genes.gtf")
        assert GeneSet.from_lines(lines).write_gtf(path) == 2

        with open(path) as f:
            first = f.readline().rstrip("\n").split("\t")
        assert first[2] == "gene"
        assert (first[3], first[4], first[8]) == ("100", "400", "g1")

        reread = GeneSet.read_gtf(path)
        assert reread.transcript_ids == ["g1.t1", "g1.t2"]
        assert reread.get("g1.t2").gene_id == "g1"

    def test_filter_and_count_supported(self):
        lines = gtf_transcript("a.t1", "a", "chr1", [(1, 90)], support=["P"])
        lines += gtf_transcript("b.t1", "b", "chr1", [(200, 290)], support=["E"])
        lines += gtf_transcript("c.t1", "c", "chr1", [(400, 490)])
        gene_set = GeneSet.from_lines(lines)
        assert gene_set.count_supported("P") == 1
        supported = gene_set.filter(lambda t: bool(t.support))
        assert supported.transcript_ids == ["a.t1", "b.t1"]
