#!/usr/bin/env python3
"""
Tests for the training and evaluation loop
"""
import os

import pytest
import yaml
from Bio import SeqIO

from genepipe.exceptions import EmptyResultError
from genepipe.training.codons import get_parameter
from genepipe.training.trainer import ModelStage, TrainingLoop, TrainingState, kfold_for
from .helpers import (
    FakeRunner, accuracy_table, gtf_transcript, synthetic_sequence, write_fasta, write_lines,
)

STOP_CODON_USAGE = "tag:   21 (0.226)\ntaa:   41 (0.441)\ntga:   31 (0.333)\n"

TEST_SCORES = {
    "baseline": (0.80, 0.80, 0.70, 0.70, 0.50, 0.50),
    "optimized": (0.90, 0.85, 0.80, 0.75, 0.60, 0.55),
    "crf": (0.70, 0.70, 0.60, 0.60, 0.40, 0.40),
}


def log_name(cmd):
    return os.path.basename(cmd.stdout or "")


class FakeTrainingTools:
    """Trainer, optimizer and engine test mode acting on a species directory"""

    def __init__(self, context, scores=None, complaints=0):
        self.context = context
        self.scores = dict(TEST_SCORES, **(scores or {}))
        self.complaints = complaints

    @property
    def exon_probs(self):
        return os.path.join(self.context.species_dir, f"{self.context.species}_exon_probs.pbl")

    def new_species(self, cmd):
        os.makedirs(self.context.species_dir)
        with open(self.context.parameters_file, "w") as f:
            f.write("/Constant/amberprob 0.33\n/Constant/ochreprob 0.33\n/Constant/opalprob 0.34\n")
        with open(self.exon_probs, "w") as f:
            f.write("baseline")

    def etraining(self, cmd):
        name = log_name(cmd)
        if name.startswith("etraining.validate"):
            return "Error in sequence tx5: gene structure is inconsistent\n"
        if "--CRF=1" in cmd.args:
            with open(self.exon_probs, "w") as f:
                f.write("crf")
            return ""
        if name.startswith("etraining.baseline.") and self.complaints:
            return "".join(f"gene tx{i}: exon doesn't end in stop codon\n" for i in range(self.complaints))
        return STOP_CODON_USAGE

    def blastp(self, cmd):
        out = cmd.args[cmd.args.index("--out") + 1]
        with open(out, "w") as f:
            f.write("tx2\ttx2\t100.0\ntx3\ttx2\t95.0\n")

    def test_mode(self, cmd):
        label = log_name(cmd).split(".")[1]
        return accuracy_table(*self.scores[label])

    def runner(self):
        return FakeRunner({
            "new_species": self.new_species,
            "etraining": self.etraining,
            "diamond blastp": self.blastp,
            "augustus": self.test_mode,
        })


@pytest.fixture
def training_inputs(tmp_path):
    genome = write_fasta(tmp_path / "genome.fa", {"chr1": synthetic_sequence(4000, seed=3)})
    lines = []
    for i in range(12):
        base = i * 300
        lines += gtf_transcript(f"tx{i}", f"gene{i}", "chr1",
                                [(base + 1, base + 45), (base + 101, base + 145)])
    genes = write_lines(tmp_path / "training.gtf", lines)
    return {'genome': genome, 'training_genes': genes}


@pytest.fixture
def training_context(make_context, training_inputs):
    def factory(**training):
        settings = {'min_kfold': 3, 'rounds': 1}
        settings.update(training)
        return make_context(input=training_inputs, training=settings)
    return factory


class TestTrainingLoop:
    """Full loop with fake external tools"""

    def test_full_run_without_crf(self, training_context):
        context = training_context()
        tools = FakeTrainingTools(context)
        runner = tools.runner()
        outcome = TrainingLoop(context, runner).run()

        assert outcome.state == TrainingState.FINALIZED
        assert outcome.model_stage == ModelStage.OPTIMIZED
        assert outcome.counts['raw'] == 12
        assert outcome.counts['valid'] == 11
        assert outcome.counts['rejected'] == 1
        assert outcome.counts['nonredundant'] == 10
        assert (outcome.counts['train'], outcome.counts['validation'], outcome.counts['test']) == (4, 3, 3)
        assert outcome.scores['optimized'] > outcome.scores['baseline']
        assert outcome.transitions[0] == "raw"
        assert outcome.transitions[-1] == "finalized"

        optimize = runner.calls("optimize_augustus")[0]
        assert "--kfold=3" in optimize.args
        assert "--rounds=1" in optimize.args
        assert get_parameter(context.parameters_file, "/Constant/ochreprob") == "0.4410"

        with open(context.training_state_file) as f:
            state = yaml.safe_load(f)
        assert state['state'] == "finalized"
        assert state['model_stage'] == "optimized"

    def test_split_files_are_disjoint(self, training_context):
        context = training_context()
        TrainingLoop(context, FakeTrainingTools(context).runner()).run()

        ids = {}
        for name in ("train", "validation", "test"):
            path = os.path.join(context.training_dir, f"genes.{name}.gb")
            ids[name] = {record.name for record in SeqIO.parse(path, "genbank")}
        assert not ids["train"] & ids["validation"]
        assert not ids["train"] & ids["test"]
        assert not ids["validation"] & ids["test"]
        assert "tx5" not in set().union(*ids.values())
        assert "tx3" not in set().union(*ids.values())

    def test_rerun_is_skipped(self, training_context):
        context = training_context()
        runner = FakeTrainingTools(context).runner()
        TrainingLoop(context, runner).run()
        issued = len(runner.commands)

        outcome = TrainingLoop(context, runner).run()
        assert outcome.skipped
        assert outcome.state == TrainingState.FINALIZED
        assert len(runner.commands) == issued

    def test_newer_training_genes_retrain(self, training_context, training_inputs):
        context = training_context()
        TrainingLoop(context, FakeTrainingTools(context).runner()).run()
        later = os.path.getmtime(context.training_state_file) + 10
        os.utime(training_inputs['training_genes'], (later, later))
        assert not TrainingLoop(context).is_fresh()

    def test_weaker_crf_is_discarded_but_retained(self, training_context):
        context = training_context(crf=True)
        tools = FakeTrainingTools(context)
        outcome = TrainingLoop(context, tools.runner()).run()

        assert not outcome.crf_kept
        assert outcome.model_stage == ModelStage.OPTIMIZED
        assert "tested_crf" in outcome.transitions
        with open(tools.exon_probs) as f:
            assert f.read() == "baseline"
        with open(f"{tools.exon_probs}.CRF") as f:
            assert f.read() == "crf"
        assert not os.path.exists(os.path.join(context.training_dir, "species_backup"))

    def test_better_crf_is_kept(self, training_context):
        context = training_context(crf=True)
        tools = FakeTrainingTools(context, scores={"crf": (0.95, 0.9, 0.9, 0.85, 0.7, 0.65)})
        outcome = TrainingLoop(context, tools.runner()).run()

        assert outcome.crf_kept
        assert outcome.model_stage == ModelStage.CRF_TRAINED
        with open(tools.exon_probs) as f:
            assert f.read() == "crf"

    def test_keep_crf_overrides_score(self, training_context):
        context = training_context(crf=True, keep_crf=True)
        outcome = TrainingLoop(context, FakeTrainingTools(context).runner()).run()
        assert outcome.crf_kept
        assert outcome.model_stage == ModelStage.CRF_TRAINED

    def test_stop_codon_convention_flip(self, training_context):
        context = training_context()
        runner = FakeTrainingTools(context, complaints=4).runner()
        outcome = TrainingLoop(context, runner).run()

        assert outcome.stop_codon_excluded
        assert get_parameter(context.parameters_file, "/Constant/stopCodonExcludedFromCDS") == "true"
        logs = [os.path.basename(c.stdout) for c in runner.calls("etraining")]
        assert "etraining.baseline_retrain.stdout" in logs

    def test_every_candidate_rejected(self, training_context):
        context = training_context()
        tools = FakeTrainingTools(context)
        runner = tools.runner()
        runner.handlers["etraining"] = lambda cmd: "".join(
            f"Error in sequence tx{i}: bad\n" for i in range(12))
        with pytest.raises(EmptyResultError):
            TrainingLoop(context, runner).run()

    def test_existing_species_is_reused(self, training_context, species_parameters):
        context = training_context()
        runner = FakeTrainingTools(context).runner()
        TrainingLoop(context, runner).run()
        assert runner.calls("new_species") == []


class TestKfold:
    """Cross-validation fold count"""

    def test_bounds(self):
        assert kfold_for(cpus=1, validation_size=200) == 8
        assert kfold_for(cpus=16, validation_size=200) == 16
        assert kfold_for(cpus=16, validation_size=5) == 5
        assert kfold_for(cpus=1, validation_size=0) == 1
