#!/usr/bin/env python3
"""
Tests for single-set and dual-set prediction joining
"""
import os

import pytest

from genepipe.exceptions import PipelineError
from genepipe.joining.joiner import (
    IntronIndex, PredictionJoiner, append_unique, count_supported, find_missed_genes,
)
from genepipe.models.gene import GeneSet
from genepipe.models.job import JobDescriptor, SequenceSlice
from .helpers import FakeRunner, argument_value, gtf_transcript, make_transcript, write_lines


def copy_stdin(cmd):
    with open(cmd.stdin) as f:
        return f.read()


def union_by_fingerprint(cmd):
    """joingenes stand-in: the basis set plus overlay transcripts of new structure"""
    basis_path, overlay_path = argument_value(cmd, "--genesets").split(",")
    merged = GeneSet.read_gtf(basis_path)
    fingerprints = merged.fingerprints()
    for transcript in GeneSet.read_gtf(overlay_path):
        if transcript.fingerprint() not in fingerprints:
            fingerprints.add(transcript.fingerprint())
            merged.add(transcript)
    merged.write_gtf(argument_value(cmd, "--output"))


def basis_only(cmd):
    """joingenes stand-in that keeps the basis set and drops everything else"""
    basis_path = argument_value(cmd, "--genesets").split(",")[0]
    GeneSet.read_gtf(basis_path).write_gtf(argument_value(cmd, "--output"))


def structure(i, offset=0):
    base = offset + i * 1000
    return [(base + 1, base + 300), (base + 401, base + 600)]


def gene_set_from(specs, name=""):
    """specs: (transcript id, cds, support)"""
    lines = []
    for transcript_id, cds, support in specs:
        lines += gtf_transcript(transcript_id, transcript_id.rsplit(".t", 1)[0], "chr1", cds,
                                support=support)
    return GeneSet.from_lines(lines, name=name)


@pytest.fixture
def joiner():
    runner = FakeRunner({"joingenes": union_by_fingerprint, "join_aug_pred": copy_stdin})
    return PredictionJoiner(runner=runner)


class TestDualJoin:
    """Protein and RNA weighted sets"""

    def test_more_supported_set_is_basis(self, tmp_path, joiner):
        protein_set = gene_set_from(
            [(f"g{i}.t1", structure(i), ["P"] if i < 80 else []) for i in range(100)])
        # 20 supported duplicates of protein structures, 20 supported new ones, 60 unsupported
        rna_specs = [(f"g{i}.t1", structure(i), ["E"]) for i in range(20)]
        rna_specs += [(f"g{i}.t1", structure(i, offset=500000), ["E"]) for i in range(20, 40)]
        rna_specs += [(f"g{i}.t1", structure(i, offset=900000), []) for i in range(40, 100)]
        rna_set = gene_set_from(rna_specs)

        output = str(tmp_path / "final.gtf")
        result = joiner.join_dual(protein_set, rna_set, output, work_dir=str(tmp_path / "join"))

        assert result.basis_label == "protein"
        assert (result.basis_supported, result.overlay_supported) == (80, 40)
        overlay = GeneSet.read_gtf(str(tmp_path / "join" / "join_overlay.rna.gtf"))
        assert len(overlay) == 40
        assert all(t.transcript_id.startswith("rna_") for t in overlay)

        final = GeneSet.read_gtf(output)
        assert len(final) == result.total_count == 120
        assert max(result.merged_count, 80) <= len(final) <= 80 + 40
        # unsupported rna transcripts never reach the output
        assert not any(t.start > 900000 for t in final)

    def test_tie_goes_to_protein(self, tmp_path, joiner):
        protein_set = gene_set_from([(f"p{i}.t1", structure(i), ["P"]) for i in range(5)])
        rna_set = gene_set_from([(f"r{i}.t1", structure(i, offset=100000), ["E"]) for i in range(5)])
        result = joiner.join_dual(protein_set, rna_set, str(tmp_path / "final.gtf"))
        assert result.basis_label == "protein"
        assert result.overlay_label == "rna"

    def test_rna_basis_filters_protein_overlay(self, tmp_path, joiner):
        protein_set = gene_set_from([(f"p{i}.t1", structure(i), ["P"] if i < 2 else [])
                                     for i in range(6)])
        rna_set = gene_set_from([(f"r{i}.t1", structure(i, offset=100000), ["W"]) for i in range(4)])
        result = joiner.join_dual(protein_set, rna_set, str(tmp_path / "final.gtf"))

        assert result.basis_label == "rna"
        assert result.total_count == 4 + 2
        priorities = argument_value(joiner.runner.calls("joingenes")[0], "--priorities")
        assert priorities == "2,1"

    def test_nested_gene_is_recovered(self, tmp_path):
        joiner = PredictionJoiner(runner=FakeRunner({"joingenes": basis_only}))
        protein_set = gene_set_from([("g1.t1", [(1, 200), (10001, 10200)], ["P"])])
        rna_set = gene_set_from([("g1.t1", [(5001, 5300)], ["E"])])

        result = joiner.join_dual(protein_set, rna_set, str(tmp_path / "final.gtf"))
        final = GeneSet.read_gtf(str(tmp_path / "final.gtf"))
        assert result.missed_count == 1
        assert final.transcript_ids == ["protein_g1.t1", "rna_g1.t1"]


class TestMissedGenes:
    """Recovery of genes lying inside introns"""

    def test_intron_index(self):
        gene_set = GeneSet([make_transcript("g1.t1", "chr1", [(1, 100), (1001, 1100)])])
        index = IntronIndex(gene_set)
        assert index.contains("chr1", 200, 900)
        assert index.contains("chr1", 101, 1000)
        assert not index.contains("chr1", 50, 900)
        assert not index.contains("chr1", 200, 1001)
        assert not index.contains("chr2", 200, 900)

    def test_outer_intron_contains_range_after_inner_intron(self):
        gene_set = GeneSet([
            make_transcript("a.t1", "chr1", [(1, 100), (5001, 5100)]),
            make_transcript("b.t1", "chr1", [(200, 300), (401, 500)]),
        ])
        assert IntronIndex(gene_set).contains("chr1", 1000, 2000)

    def test_only_nested_and_unique_structures(self):
        merged = GeneSet([make_transcript("m.t1", "chr1", [(1, 100), (5001, 5100)])])
        candidates = [
            make_transcript("m.t1", "chr1", [(1, 100), (5001, 5100)]),
            make_transcript("x.t1", "chr1", [(1000, 1200)]),
            make_transcript("y.t1", "chr1", [(1000, 1200)]),
            make_transcript("z.t1", "chr1", [(4000, 6000)]),
        ]
        assert [t.transcript_id for t in find_missed_genes(candidates, merged)] == ["x.t1"]

    def test_append_unique_suffixes_collisions(self):
        merged = GeneSet([make_transcript("g1.t1", "chr1", [(1, 100)])])
        extra = [make_transcript("g1.t1", "chr1", [(500, 600)])]
        result = append_unique(merged, extra)
        assert result.transcript_ids == ["g1.t1", "g1.t1.1"]
        assert result.get("g1.t1.1").gene_id == "g1.1"
        assert len(merged) == 1

    def test_count_supported(self):
        gene_set = gene_set_from([("a.t1", structure(0), ["E"]), ("b.t1", structure(1), ["W"]),
                                  ("c.t1", structure(2), ["P"])])
        assert count_supported(gene_set, ("E", "W")) == 2


class TestJoinPartitions:
    """Single-set join of per-job outputs"""

    def _descriptor(self, tmp_path, index, seqname, start, end, core_start, core_end, content):
        output = write_lines(tmp_path / f"job{index}.gtf", [content])
        return JobDescriptor(chunk_index=index, fasta_path="", hints_path="", output_path=output,
                             slices=(SequenceSlice(seqname, start, end, core_start, core_end),))

    def test_outputs_joined_in_genome_order(self, tmp_path, joiner):
        first = self._descriptor(tmp_path, 1, "s1", 1, 1000, 1, 900, "# s1 first")
        second = self._descriptor(tmp_path, 2, "s1", 801, 1800, 901, 1800, "# s1 second")
        other = self._descriptor(tmp_path, 3, "s2", 1, 500, 1, 500, "# s2")

        output = str(tmp_path / "pred" / "joined.gtf")
        joiner.join_partitions([second, other, first], output, sequence_order=["s1", "s2"])

        with open(output) as f:
            assert f.read().splitlines() == ["# s1 first", "# s1 second", "# s2"]
        assert not os.path.exists(f"{output}.unjoined")
        assert joiner.runner.calls("join_aug_pred")[0].stdout == f"{output}.partial"

    def test_missing_output_fails(self, tmp_path, joiner):
        present = self._descriptor(tmp_path, 1, "s1", 1, 100, 1, 100, "# ok")
        missing = JobDescriptor(chunk_index=2, fasta_path="", hints_path="",
                                output_path=str(tmp_path / "absent.gtf"),
                                slices=(SequenceSlice("s2", 1, 100, 1, 100),))
        with pytest.raises(PipelineError):
            joiner.join_partitions([present, missing], str(tmp_path / "joined.gtf"))
        assert joiner.runner.commands == []
