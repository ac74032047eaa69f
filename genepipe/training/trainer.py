#!/usr/bin/env python3
"""
Training and evaluation loop for the species gene model.

The loop walks a fixed sequence of states, from the raw candidate gene set
to a finalized parameter set, and records every transition in
``training/training_state.yaml``. Candidate filtering happens in Python;
parameter estimation, meta-parameter optimization and accuracy testing are
delegated to the external trainer, optimizer and prediction engine.
"""
import os
import shutil
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Any, List, Optional

import numpy as np
import yaml

from genepipe.core.command_utils import Command, CommandResult, run_command, read_stream_file
from genepipe.core.context import PipelineContext
from genepipe.core.freshness import FreshnessTracker
from genepipe.exceptions import EmptyResultError, PipelineError
from genepipe.models.gene import GeneSet
from genepipe.models.metrics import AccuracyMetrics
from genepipe.utils.file import atomic_write, copy_tree, ensure_dir, remove_tree
from .candidates import (
    LOW_GENE_COUNT, TrainingSplit, first_transcript_per_gene, flanking_length,
    split_training_set, subsample,
)
from .codons import set_parameter, write_stop_codon_probabilities
from .genbank import translate_transcripts, write_training_genbank
from .redundancy import RedundancyFilter
from .reports import TrainerReport, parse_trainer_report

logger = logging.getLogger("genepipe.training.trainer")

Runner = Callable[[Command], CommandResult]

STOP_CODON_COMPLAINT_FRACTION = 0.5
CRF_PARAMETER_FILES = ("exon_probs.pbl", "igenic_probs.pbl", "intron_probs.pbl")


class TrainingState(Enum):
    """States of the training loop in execution order"""
    RAW = "raw"
    DEDUPLICATED_TRANSCRIPT_VARIANTS = "deduplicated_transcript_variants"
    CONVERTED_TO_TRAINER_FORMAT = "converted_to_trainer_format"
    FILTERED_VALID = "filtered_valid"
    SIZE_CAPPED = "size_capped"
    REDUNDANCY_FILTERED = "redundancy_filtered"
    SPLIT = "split"
    BASELINE_TRAINED = "baseline_trained"
    TESTED_BASELINE = "tested_baseline"
    OPTIMIZED = "optimized"
    TESTED_OPTIMIZED = "tested_optimized"
    CRF_TRAINED = "crf_trained"
    TESTED_CRF = "tested_crf"
    FINALIZED = "finalized"


class ModelStage(Enum):
    """Lifecycle of the species parameter set"""
    NEW = "new"
    ETRAINED = "etrained"
    OPTIMIZED = "optimized"
    CRF_TRAINED = "crf_trained"


@dataclass
class ValidationOutcome:
    """Result of the trainer's validation pass over the candidate records"""
    kept_ids: List[str] = field(default_factory=list)
    rejected_ids: List[str] = field(default_factory=list)


@dataclass
class TrainingOutcome:
    """Everything the loop reports, also persisted as the state file"""
    state: TrainingState = TrainingState.RAW
    model_stage: ModelStage = ModelStage.NEW
    transitions: List[str] = field(default_factory=list)
    counts: Dict[str, int] = field(default_factory=dict)
    metrics: Dict[str, AccuracyMetrics] = field(default_factory=dict)
    stop_codon_excluded: bool = False
    crf_kept: bool = False
    skipped: bool = False
    updated_at: Optional[str] = None

    @property
    def scores(self) -> Dict[str, float]:
        return {name: metrics.score for name, metrics in self.metrics.items()}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'model_stage': self.model_stage.value,
            'transitions': list(self.transitions),
            'counts': dict(self.counts),
            'metrics': {name: m.to_dict() for name, m in self.metrics.items()},
            'stop_codon_excluded': self.stop_codon_excluded,
            'crf_kept': self.crf_kept,
            'updated_at': self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TrainingOutcome':
        return cls(
            state=TrainingState(data.get('state', TrainingState.RAW.value)),
            model_stage=ModelStage(data.get('model_stage', ModelStage.NEW.value)),
            transitions=list(data.get('transitions', [])),
            counts=dict(data.get('counts', {})),
            metrics={name: AccuracyMetrics.from_dict(values)
                     for name, values in (data.get('metrics') or {}).items()},
            stop_codon_excluded=bool(data.get('stop_codon_excluded', False)),
            crf_kept=bool(data.get('crf_kept', False)),
            updated_at=data.get('updated_at'),
        )


def kfold_for(cpus: int, validation_size: int, min_kfold: int = 8) -> int:
    """Cross-validation folds: at least min_kfold, more with more cpus, at most one per gene"""
    return max(1, min(max(min_kfold, cpus), validation_size))


class TrainingLoop:
    """Train, optimize and test the species gene model"""

    def __init__(self, context: PipelineContext, runner: Optional[Runner] = None):
        self.context = context
        self.runner = runner or run_command
        self.logger = logging.getLogger("genepipe.training.trainer")
        self.work_dir = context.training_dir
        self.state_file = context.training_state_file
        self.rng = np.random.default_rng(int(context.setting('training.seed', 42)))
        self.translation_table = int(context.setting('training.translation_table', 1))
        self.outcome = TrainingOutcome()

    # State handling

    def _path(self, name: str) -> str:
        return os.path.join(self.work_dir, name)

    def _advance(self, state: TrainingState) -> None:
        self.outcome.state = state
        self.outcome.transitions.append(state.value)
        self.logger.info(f"Training state: {state.value}")
        self.save_state()

    def save_state(self) -> None:
        self.outcome.updated_at = datetime.now().isoformat(timespec='seconds')
        ensure_dir(self.work_dir)
        with atomic_write(self.state_file, 'w') as f:
            yaml.safe_dump(self.outcome.to_dict(), f, default_flow_style=False, sort_keys=False)

    def load_state(self) -> Optional[TrainingOutcome]:
        if not os.path.exists(self.state_file):
            return None
        with open(self.state_file, 'r') as f:
            data = yaml.safe_load(f) or {}
        return TrainingOutcome.from_dict(data)

    def is_fresh(self) -> bool:
        """Trained parameters and state are newer than the training inputs"""
        tracker = FreshnessTracker(self.context.force)
        inputs = [self.context.training_genes, self.context.genome]
        outputs = [self.context.parameters_file, self.state_file]
        if tracker.is_stale(inputs, outputs, label="training"):
            return False
        previous = self.load_state()
        return previous is not None and previous.state == TrainingState.FINALIZED

    # Tool invocation

    def _species_args(self) -> List[str]:
        return [f"--species={self.context.species}",
                f"--AUGUSTUS_CONFIG_PATH={self.context.augustus_config_path}"]

    def _run_logged(self, tool: str, args: List[str], log_name: str) -> str:
        """Run a tool with stdout/stderr in the training directory, return both"""
        stdout = self._path(f"{log_name}.stdout")
        stderr = self._path(f"{log_name}.stderr")
        self.runner(Command.build(self.context.tool(tool), *args, stdout=stdout, stderr=stderr,
                                  name=tool))
        return "\n".join(part for part in (read_stream_file(stdout), read_stream_file(stderr)) if part)

    def _etraining(self, genbank: str, log_name: str, *extra: str) -> TrainerReport:
        text = self._run_logged('etraining', [*self._species_args(), *extra, genbank], log_name)
        return parse_trainer_report(text)

    def _test(self, genbank: str, label: str) -> AccuracyMetrics:
        text = self._run_logged('augustus', [*self._species_args(), genbank], f"test.{label}")
        report = parse_trainer_report(text)
        if report.metrics is None:
            raise PipelineError(f"No accuracy table in {label} test output",
                                {"log": self._path(f"test.{label}.stdout")})
        self.outcome.metrics[label] = report.metrics
        self.logger.info(f"Accuracy ({label}): {report.metrics}")
        return report.metrics

    # Steps

    def ensure_species(self) -> None:
        """Create the species parameter set when it does not exist yet"""
        if os.path.isdir(self.context.species_dir):
            self.logger.info(f"Using existing species parameters in {self.context.species_dir}")
            return
        self.logger.info(f"Creating new species {self.context.species}")
        self.runner(Command.build(self.context.tool('new_species'), *self._species_args(),
                                  name="new_species"))
        self.outcome.model_stage = ModelStage.NEW

    def validate_records(self, genbank: str, ids: List[str]) -> ValidationOutcome:
        """Run the trainer over the candidates and collect the examples it rejects

        Raises:
            EmptyResultError: If no candidate survives
        """
        report = self._etraining(genbank, "etraining.validate")
        rejected = set(report.rejected_ids)
        candidates = set(ids)
        outcome = ValidationOutcome(
            kept_ids=[i for i in ids if i not in rejected],
            rejected_ids=[i for i in report.rejected_ids if i in candidates],
        )
        if outcome.rejected_ids:
            self.logger.info(f"Trainer rejected {len(outcome.rejected_ids)} training genes")
        if not outcome.kept_ids:
            raise EmptyResultError("No training genes passed the trainer's validation",
                                   {"rejected": len(outcome.rejected_ids)})
        return outcome

    def train_baseline(self, train_gb: str, train_count: int) -> TrainerReport:
        """First etraining pass, flipping the stop codon convention when the data demand it"""
        report = self._etraining(train_gb, "etraining.baseline")
        if train_count and report.stop_codon_complaints >= STOP_CODON_COMPLAINT_FRACTION * train_count:
            self.logger.warning(
                f"{report.stop_codon_complaints} of {train_count} training genes do not end in a stop "
                f"codon; setting stopCodonExcludedFromCDS to true and retraining"
            )
            set_parameter(self.context.parameters_file, "/Constant/stopCodonExcludedFromCDS", "true")
            self.outcome.stop_codon_excluded = True
            report = self._etraining(train_gb, "etraining.baseline_retrain")

        if report.has_stop_codon_frequencies:
            write_stop_codon_probabilities(self.context.parameters_file,
                                           report.stop_codon_frequencies, self.translation_table)
        else:
            self.logger.warning("Trainer reported no stop codon usage; keeping probabilities")
        return report

    def optimize(self, train_gb: str, validation_gb: str, validation_size: int) -> None:
        rounds = int(self.context.setting('training.rounds', 5))
        kfold = kfold_for(self.context.cpus, validation_size,
                          int(self.context.setting('training.min_kfold', 8)))
        self._run_logged('optimize_augustus', [
            *self._species_args(),
            f"--rounds={rounds}",
            f"--kfold={kfold}",
            f"--cpus={self.context.cpus}",
            f"--onlytrain={train_gb}",
            validation_gb,
        ], "optimize_augustus")
        self._etraining(train_gb, "etraining.optimized")

    def train_crf(self, train_gb: str, test_gb: str) -> bool:
        """CRF training; keep it only when it scores better or keep_crf is set

        Returns:
            True if the CRF parameters were kept
        """
        backup = self._path("species_backup")
        copy_tree(self.context.species_dir, backup)

        self._etraining(train_gb, "etraining.crf", "--CRF=1")
        crf_copies = self._retain_crf_files()
        self._advance(TrainingState.CRF_TRAINED)

        crf_metrics = self._test(test_gb, "crf")
        self._advance(TrainingState.TESTED_CRF)

        optimized_score = self.outcome.metrics["optimized"].score
        keep = crf_metrics.score > optimized_score or self.context.keep_crf
        if keep:
            self.logger.info(f"Keeping CRF parameters (score {crf_metrics.score:.2f} vs "
                             f"{optimized_score:.2f}{', forced' if self.context.keep_crf else ''})")
            self.outcome.model_stage = ModelStage.CRF_TRAINED
        else:
            self.logger.info(f"CRF score {crf_metrics.score:.2f} does not beat {optimized_score:.2f}; "
                             f"restoring previous parameters")
            copy_tree(backup, self.context.species_dir)
            for name, content_path in crf_copies.items():
                shutil.copyfile(content_path, os.path.join(self.context.species_dir, name))
        remove_tree(backup)
        self.outcome.crf_kept = keep
        return keep

    def _retain_crf_files(self) -> Dict[str, str]:
        """Copy CRF-trained probability files to a .CRF suffix"""
        copies = {}
        for suffix in CRF_PARAMETER_FILES:
            name = f"{self.context.species}_{suffix}"
            source = os.path.join(self.context.species_dir, name)
            if not os.path.exists(source):
                continue
            target_name = f"{name}.CRF"
            stash = self._path(target_name)
            shutil.copyfile(source, stash)
            shutil.copyfile(source, os.path.join(self.context.species_dir, target_name))
            copies[target_name] = stash
        return copies

    # Main loop

    def run(self) -> TrainingOutcome:
        """Run the whole loop, or report the previous run when it is still fresh

        Raises:
            EmptyResultError: When filtering leaves nothing to train on
            ToolExecutionError: When a training tool fails
        """
        if self.is_fresh():
            previous = self.load_state()
            previous.skipped = True
            self.logger.info("Species parameters are up to date; skipping training")
            return previous

        ensure_dir(self.work_dir)
        self.outcome = TrainingOutcome()
        self.ensure_species()

        genes = GeneSet.read_gtf(self.context.training_genes, name="training genes")
        self.outcome.counts['raw'] = len(genes)
        self._advance(TrainingState.RAW)
        if not genes:
            raise EmptyResultError(f"No training genes in {self.context.training_genes}")

        genes = first_transcript_per_gene(genes)
        self.outcome.counts['deduplicated'] = len(genes)
        self._advance(TrainingState.DEDUPLICATED_TRANSCRIPT_VARIANTS)

        flank = flanking_length(genes, int(self.context.setting('training.max_flanking', 10000)))
        raw_gb = self._path("genes.raw.gb")
        ids = write_training_genbank(genes, self.context.genome, raw_gb, flank)
        self._advance(TrainingState.CONVERTED_TO_TRAINER_FORMAT)

        validation = self.validate_records(raw_gb, ids)
        ids = validation.kept_ids
        self.outcome.counts['valid'] = len(ids)
        self.outcome.counts['rejected'] = len(validation.rejected_ids)
        self._advance(TrainingState.FILTERED_VALID)

        ids = subsample(ids, int(self.context.setting('training.max_genes', 8000)), self.rng)
        self.outcome.counts['capped'] = len(ids)
        self._advance(TrainingState.SIZE_CAPPED)

        ids = self.remove_redundant(genes, ids)
        self.outcome.counts['nonredundant'] = len(ids)
        self._advance(TrainingState.REDUNDANCY_FILTERED)

        split = split_training_set(ids, self.rng)
        train_gb, validation_gb, test_gb = self.write_split(genes, split, flank)
        self.outcome.counts.update(train=len(split.train), validation=len(split.validation),
                                   test=len(split.test))
        self._advance(TrainingState.SPLIT)

        self.train_baseline(train_gb, len(split.train))
        self.outcome.model_stage = ModelStage.ETRAINED
        self._advance(TrainingState.BASELINE_TRAINED)
        self._test(test_gb, "baseline")
        self._advance(TrainingState.TESTED_BASELINE)

        self.optimize(train_gb, validation_gb, len(split.validation))
        self.outcome.model_stage = ModelStage.OPTIMIZED
        self._advance(TrainingState.OPTIMIZED)
        self._test(test_gb, "optimized")
        self._advance(TrainingState.TESTED_OPTIMIZED)

        if self.context.crf:
            self.train_crf(train_gb, test_gb)

        self._advance(TrainingState.FINALIZED)
        self.logger.info(f"Training finished: model stage {self.outcome.model_stage.value}, "
                         f"scores {', '.join(f'{k}={v:.2f}' for k, v in self.outcome.scores.items())}")
        return self.outcome

    def remove_redundant(self, genes: GeneSet, ids: List[str]) -> List[str]:
        """Keep one representative per cluster of similar proteins

        Raises:
            EmptyResultError: If nothing survives
        """
        wanted = set(ids)
        selected = genes.filter(lambda t: t.transcript_id in wanted)
        proteins = translate_transcripts(selected, self.context.genome, self.translation_table)
        redundancy = RedundancyFilter(
            work_dir=self._path("redundancy"),
            diamond=self.context.tool('diamond'),
            identity=float(self.context.setting('training.redundancy_identity', 80.0)),
            cpus=self.context.cpus,
            runner=self.runner,
        )
        kept = redundancy.filter({i: proteins[i] for i in ids})
        if not kept:
            raise EmptyResultError(
                f"No training genes left after redundancy removal; fewer than {LOW_GENE_COUNT} "
                f"genes is low but usable, zero genes cannot train a model",
                {"before": len(ids)}
            )
        if len(kept) < LOW_GENE_COUNT:
            self.logger.warning(f"Only {len(kept)} non-redundant training genes "
                                f"(fewer than {LOW_GENE_COUNT}); model accuracy may be low")
        return kept

    def write_split(self, genes: GeneSet, split: TrainingSplit, flank: int):
        paths = []
        for name, ids in (("train", split.train), ("validation", split.validation), ("test", split.test)):
            path = self._path(f"genes.{name}.gb")
            write_training_genbank(genes, self.context.genome, path, flank, ids=ids)
            paths.append(path)
        return tuple(paths)
