#!/usr/bin/env python3
"""
Pipeline Orchestration Service

Runs the stages of a gene prediction run in order. Stages whose declared
outputs are newer than their inputs are skipped, so re-running after a
failure resumes at the first stale stage.
"""
import os
import logging
from datetime import datetime
from typing import Dict, Any, List, Optional

import pandas as pd
import yaml

from genepipe.core.command_utils import Command, check_tool_requirements, run_command
from genepipe.core.context import PipelineContext
from genepipe.core.freshness import FreshnessTracker
from genepipe.error_handlers import log_exception
from genepipe.evaluation.accuracy import evaluate_against_reference, write_accuracy_table
from genepipe.exceptions import ConfigurationError, GenePipeError, PipelineError
from genepipe.hints.aggregator import (
    PROTEIN_SOURCES, RNA_SOURCES, AggregationResult, aggregate_files, read_hints,
)
from genepipe.jobs.base import JobManager
from genepipe.jobs.factory import create_job_manager
from genepipe.joining.joiner import DualJoinResult, PredictionJoiner, Runner
from genepipe.models.gene import GeneSet
from genepipe.partition.partitioner import GenomePartitioner
from genepipe.pipelines.prediction import DUAL_LABELS, PredictionPipeline, prediction_labels
from genepipe.training.codons import stop_codons
from genepipe.training.trainer import TrainingLoop, TrainingOutcome
from genepipe.utils.file import atomic_write, check_writable_dir, concatenate_files, ensure_dir, remove_tree
from .models import PipelineStage, StageResult, PipelineRun
from .stage_manager import StageManager


class PipelineOrchestrationService:
    """Drives one pipeline run from setup to completion"""

    def __init__(self, context: PipelineContext, runner: Optional[Runner] = None,
                 job_manager: Optional[JobManager] = None):
        """Initialize orchestration service

        Args:
            context: Run context built from configuration
            runner: Executes single external commands, run_command by default
            job_manager: Runs prediction jobs in parallel, created in SETUP by default
        """
        self.context = context
        self.runner = runner or run_command
        self.job_manager = job_manager
        self.logger = logging.getLogger("genepipe.pipelines.orchestration.service")
        self.stage_manager = StageManager()
        self.tracker = FreshnessTracker(context.force)

        # Results of the last run
        self.aggregation: Optional[AggregationResult] = None
        self.training_outcome: Optional[TrainingOutcome] = None
        self.dual_join: Optional[DualJoinResult] = None
        self.accuracy: Optional[pd.DataFrame] = None
        self.current_run: Optional[PipelineRun] = None

        self._handlers = {
            PipelineStage.SETUP: self._setup,
            PipelineStage.HINTS: self._aggregate_hints,
            PipelineStage.TRAINING: self._train,
            PipelineStage.PREDICTION: self._predict,
            PipelineStage.PREDICTION_UTR: self._predict,
            PipelineStage.JOIN_DUAL: self._join_dual,
            PipelineStage.FORMAT_CONVERSION: self._convert_format,
            PipelineStage.EVALUATION: self._evaluate,
            PipelineStage.CLEANUP: self._cleanup,
            PipelineStage.COMPLETE: self._complete,
        }
        self._skip_hooks = {
            PipelineStage.HINTS: self._discover_evidence,
            PipelineStage.TRAINING: self._load_training_outcome,
        }

    def run_pipeline(self) -> PipelineRun:
        """Run every selected stage in order

        Returns:
            PipelineRun with one StageResult per stage

        Raises:
            GenePipeError: The first fatal error, after it has been logged
        """
        run_id = f"{self.context.species}_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
        run = PipelineRun(run_id=run_id, species=self.context.species,
                          working_dir=self.context.working_dir)
        self.current_run = run

        self.logger.info(f"Starting pipeline run {run_id} for species {self.context.species} "
                         f"in {self.context.working_dir}")

        try:
            stage: Optional[PipelineStage] = PipelineStage.SETUP
            while stage is not None:
                result = self._execute_stage(stage)
                run.add_stage_result(result)
                stage = self._next_stage(stage)
        finally:
            run.finalize()
            summary = run.get_summary()
            self.logger.info(
                f"Pipeline run {run_id} {'completed' if run.success else 'failed'}: "
                f"{summary['stages_completed']} stages run, {summary['stages_skipped']} skipped, "
                f"{summary['stages_failed']} failed in {run.duration:.1f}s"
            )

        return run

    def _next_stage(self, current: PipelineStage) -> Optional[PipelineStage]:
        for stage in self.stage_manager.get_stages(self.context):
            if stage.position > current.position:
                return stage
        return None

    def _execute_stage(self, stage: PipelineStage) -> StageResult:
        """Execute a single pipeline stage, or skip it when it is fresh"""
        result = StageResult(stage=stage, success=False, start_time=datetime.now())

        try:
            self._check_dependencies(stage)

            if self.stage_manager.is_fresh(stage, self.context, self.tracker):
                hook = self._skip_hooks.get(stage)
                if hook:
                    hook(result)
                result.skipped = True
                result.finalize(True)
                self.logger.info(f"Stage {stage.value} is up to date, skipping")
                return result

            if stage in StageManager.CONSUMES_ARTIFACTS:
                self.tracker.require_inputs(self.stage_manager.stage_inputs(stage, self.context),
                                            stage.value)

            self.logger.info(f"Executing stage: {stage.value}")
            self._handlers[stage](result)
        except GenePipeError as e:
            result.finalize(False, str(e))
            log_exception(self.logger, e, context={"stage": stage.value})
            if self.current_run is not None:
                self.current_run.add_stage_result(result)
            raise

        result.finalize(True)
        self.logger.info(f"Stage {stage.value} finished in {result.duration:.1f}s")
        return result

    def _check_dependencies(self, stage: PipelineStage) -> None:
        """Raise PipelineError when a selected predecessor of the stage has not completed"""
        completed = [r.stage for r in self.current_run.stages if r.success] if self.current_run else []
        selected = self.stage_manager.get_stages(self.context)
        if not self.stage_manager.can_execute_stage(stage, completed, selected):
            pending = [dep.value for dep in StageManager.STAGE_DEPENDENCIES.get(stage, [])
                       if dep in selected and dep not in completed]
            raise PipelineError(f"Stage {stage.value} cannot run before {', '.join(pending)}",
                                {"stage": stage.value, "pending": pending})

    # Stages

    def required_tools(self) -> Dict[str, str]:
        """Configured executable per tool the selected stages call"""
        names = ['augustus', 'join_aug_pred']
        if not self.context.skip_training:
            names += ['etraining', 'new_species', 'optimize_augustus', 'diamond']
        if self.context.protein_hints and self.context.rna_hints:
            names.append('joingenes')
        if self.context.gff3:
            names.append('gtf2gff')
        return {name: self.context.tool(name) for name in names}

    def _setup(self, result: StageResult) -> None:
        """Validate configuration and prerequisites before anything runs

        Raises:
            ConfigurationError: For the first invalid setting found
        """
        context = self.context

        if not context.genome:
            raise ConfigurationError("No genome configured", {"config_key": "input.genome"})
        if not os.path.exists(context.genome):
            raise ConfigurationError(f"Genome file not found: {context.genome}",
                                     {"config_key": "input.genome"})
        if not context.augustus_config_path:
            raise ConfigurationError(
                "No prediction engine configuration directory; set paths.augustus_config_path "
                "or AUGUSTUS_CONFIG_PATH",
                {"config_key": "paths.augustus_config_path"}
            )
        for path in context.evidence_sources:
            if not os.path.exists(path):
                raise ConfigurationError(f"Hints file not found: {path}", {"config_key": "evidence"})

        if context.keep_crf and not context.crf:
            raise ConfigurationError("training.keep_crf requires training.crf",
                                     {"config_key": "training.keep_crf"})

        if context.skip_training:
            if not os.path.exists(context.parameters_file):
                raise ConfigurationError(
                    f"Training is skipped but species {context.species} has no parameters at "
                    f"{context.parameters_file}",
                    {"config_key": "training.skip"}
                )
        else:
            if not context.training_genes:
                raise ConfigurationError(
                    "Training requested but no training genes are configured; set "
                    "input.training_genes or training.skip",
                    {"config_key": "input.training_genes"}
                )
            if not os.path.exists(context.training_genes):
                raise ConfigurationError(f"Training genes file not found: {context.training_genes}",
                                         {"config_key": "input.training_genes"})
            stop_codons(int(context.setting('training.translation_table', 1)))

        # Raises ConfigurationError for overlap >= chunk size
        GenomePartitioner.from_context(context)

        tools = self.required_tools()
        all_available, missing = check_tool_requirements(list(tools.values()))
        if not all_available:
            names = [name for name, path in tools.items() if path in missing]
            raise ConfigurationError(
                "Required tools not found: " + "; ".join(
                    f"{name} ({tools[name]}), set tools.{name}_path" for name in names),
                {"missing_tools": names, "config_keys": [f"tools.{name}_path" for name in names]}
            )

        check_writable_dir(context.working_dir)
        ensure_dir(context.log_dir)
        self._record_run_options()

        if self.job_manager is None:
            self.job_manager = create_job_manager(context)

        result.details = {'tools': tools, 'cpus': context.cpus}

    def _record_run_options(self) -> None:
        """Rewrite the run options file only when the options changed

        Prediction stages list the file as an input, so a changed option
        makes their outputs stale.
        """
        options = self.context.prediction_options()
        path = self.context.run_options_file
        if os.path.exists(path):
            with open(path, 'r') as f:
                if (yaml.safe_load(f) or {}) == options:
                    return
            self.logger.info(f"Run options changed since the last run, recorded in {path}")
        with atomic_write(path, 'w') as f:
            yaml.safe_dump(options, f, default_flow_style=False, sort_keys=False)

    def _record_evidence(self, sources) -> None:
        protein = bool(set(sources) & set(PROTEIN_SOURCES))
        rna = bool(set(sources) & set(RNA_SOURCES))
        self.context = self.context.with_evidence(protein, rna)
        self.logger.info(f"Evidence found: protein {'yes' if protein else 'no'}, "
                         f"RNA {'yes' if rna else 'no'}"
                         f"{' (dual evidence mode)' if self.context.dual_evidence else ''}")

    def _aggregate_hints(self, result: StageResult) -> None:
        self.aggregation = aggregate_files(self.context.evidence_sources, self.context.hints_file)
        self._record_evidence(self.aggregation.sources_found)
        result.items_processed = self.aggregation.records_written
        result.details = {
            'records_read': dict(self.aggregation.records_read),
            'merged_records': self.aggregation.merged_records,
            'protected_records': self.aggregation.protected_records,
            'sources': sorted(self.aggregation.sources_found),
        }

    def _discover_evidence(self, result: StageResult) -> None:
        """Evidence classes from an existing hints file"""
        sources = {record.src for record in read_hints(self.context.hints_file) if record.src}
        self._record_evidence(sources)
        result.details = {'sources': sorted(sources)}

    def _train(self, result: StageResult) -> None:
        loop = TrainingLoop(self.context, self.runner)
        self.training_outcome = loop.run()
        result.items_processed = self.training_outcome.counts.get('train', 0)
        result.details = {
            'model_stage': self.training_outcome.model_stage.value,
            'counts': dict(self.training_outcome.counts),
            'scores': self.training_outcome.scores,
        }

    def _load_training_outcome(self, result: StageResult) -> None:
        self.training_outcome = TrainingLoop(self.context).load_state()
        if self.training_outcome is not None:
            self.training_outcome.skipped = True
            result.details = {'model_stage': self.training_outcome.model_stage.value,
                              'scores': self.training_outcome.scores}

    def _predict(self, result: StageResult) -> None:
        utr = result.stage == PipelineStage.PREDICTION_UTR
        pipeline = PredictionPipeline(self.context, self.job_manager, self.runner)
        outputs = [pipeline.predict(label, utr=utr)
                   for label in prediction_labels(self.context, utr=utr)]

        if self.stage_manager.publishes_final(result.stage, self.context):
            concatenate_files([outputs[0]], self.context.final_gtf)
            self.logger.info(f"Final gene set: {self.context.final_gtf}")

        result.items_processed = len(outputs)
        result.details = {'outputs': outputs}

    def _join_dual(self, result: StageResult) -> None:
        protein_label, rna_label = self.stage_manager.final_labels(self.context)
        protein_set = GeneSet.read_gtf(self.context.prediction_file(protein_label), name=protein_label)
        rna_set = GeneSet.read_gtf(self.context.prediction_file(rna_label), name=rna_label)

        joiner = PredictionJoiner.from_context(self.context, self.runner)
        self.dual_join = joiner.join_dual(
            protein_set, rna_set, self.context.final_gtf,
            work_dir=os.path.join(self.context.working_dir, "join"),
            labels=DUAL_LABELS,
        )
        result.items_processed = self.dual_join.total_count
        result.details = {
            'basis': self.dual_join.basis_label,
            'merged': self.dual_join.merged_count,
            'missed_genes_recovered': self.dual_join.missed_count,
        }

    def _convert_format(self, result: StageResult) -> None:
        partial = f"{self.context.final_gff3}.partial"
        self.runner(Command.build(self.context.tool('gtf2gff'), "--gff3", f"--out={partial}",
                                  stdin=self.context.final_gtf, name="gtf2gff"))
        os.replace(partial, self.context.final_gff3)
        result.details = {'output': self.context.final_gff3}

    def _evaluate(self, result: StageResult) -> None:
        predictions = {label: self.context.prediction_file(label)
                       for label in self.stage_manager.evaluated_labels(self.context)}
        predictions['final'] = self.context.final_gtf
        self.accuracy = evaluate_against_reference(self.context.reference, predictions)
        write_accuracy_table(self.accuracy, self.context.accuracy_file)
        result.items_processed = len(predictions)
        result.details = {'output': self.context.accuracy_file}

    def _cleanup(self, result: StageResult) -> None:
        removed = remove_tree(self.context.job_dir)
        result.details = {'removed': self.context.job_dir if removed else None}

    def _complete(self, result: StageResult) -> None:
        result.details = {'completed_at': datetime.now().isoformat(), 'final_gtf': self.context.final_gtf}

    # Status

    def get_status(self) -> Dict[str, Any]:
        """Freshness of every stage the configuration selects

        Evidence classes are taken from the canonical hints file when it exists.
        """
        if os.path.exists(self.context.hints_file) and self.context.evidence_sources:
            sources = {record.src for record in read_hints(self.context.hints_file) if record.src}
            self.context = self.context.with_evidence(bool(sources & set(PROTEIN_SOURCES)),
                                                      bool(sources & set(RNA_SOURCES)))

        stages: List[Dict[str, Any]] = []
        for stage in self.stage_manager.get_stages(self.context):
            if stage in StageManager.ALWAYS_RUN:
                continue
            stages.append(self.stage_manager.get_stage_status(stage, self.context))

        training = TrainingLoop(self.context).load_state()
        return {
            'species': self.context.species,
            'working_dir': self.context.working_dir,
            'stages': stages,
            'training': training.to_dict() if training else None,
        }
