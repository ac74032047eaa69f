#!/usr/bin/env python3
"""
Genome-wide prediction passes.

A pass partitions the genome, runs the prediction engine once per job
descriptor through the job manager, and joins the per-job outputs into
``predictions/<label>.gtf``.
"""
import os
import logging
from typing import List, Optional, Sequence

from genepipe.core.command_utils import Command, CommandResult, run_command
from genepipe.core.context import PipelineContext
from genepipe.jobs.base import JobManager
from genepipe.jobs.factory import create_job_manager
from genepipe.joining.joiner import PredictionJoiner, Runner
from genepipe.models.gene import GeneSet
from genepipe.models.job import JobDescriptor
from genepipe.partition.partitioner import GenomePartitioner

logger = logging.getLogger("genepipe.pipelines.prediction")

DUAL_LABELS = ("protein", "rna")
HINTS_LABEL = "hints"
AB_INITIO_LABEL = "ab_initio"
UTR_SUFFIX = "_utr"


def prediction_labels(context: PipelineContext, utr: bool = False) -> List[str]:
    """Labels of the prediction passes the run needs"""
    if context.dual_evidence:
        labels = list(DUAL_LABELS)
    elif context.evidence_sources:
        labels = [HINTS_LABEL]
    else:
        labels = [AB_INITIO_LABEL]
    if utr:
        labels = [f"{label}{UTR_SUFFIX}" for label in labels]
    return labels


def extrinsic_config(context: PipelineContext, label: str) -> str:
    """Evidence weighting file for a pass; the general one when no specific one is set"""
    general = context.setting('prediction.extrinsic_cfg', '') or ''
    base = label[:-len(UTR_SUFFIX)] if label.endswith(UTR_SUFFIX) else label
    if base in DUAL_LABELS:
        return context.setting(f'prediction.{base}_extrinsic_cfg', '') or general
    if base == HINTS_LABEL:
        return general
    return ""


class PredictionPipeline:
    """Partition, predict in parallel and join one prediction pass"""

    def __init__(self, context: PipelineContext, job_manager: Optional[JobManager] = None,
                 runner: Optional[Runner] = None):
        self.context = context
        self.job_manager = job_manager or create_job_manager(context)
        self.runner = runner or run_command
        self.partitioner = GenomePartitioner.from_context(context)
        self.joiner = PredictionJoiner.from_context(context, self.runner)
        self.logger = logging.getLogger("genepipe.pipelines.prediction")

    @property
    def uses_hints(self) -> bool:
        return bool(self.context.evidence_sources)

    def build_command(self, descriptor: JobDescriptor, extrinsic_cfg: str = "",
                      utr: bool = False) -> Command:
        """Prediction engine invocation for one job, stdout to the job's output"""
        args = [
            f"--species={self.context.species}",
            f"--AUGUSTUS_CONFIG_PATH={self.context.augustus_config_path}",
        ]
        if descriptor.hints_path:
            if extrinsic_cfg:
                args.append(f"--extrinsicCfgFile={extrinsic_cfg}")
            args.append(f"--hintsfile={descriptor.hints_path}")
        if utr:
            args.append("--UTR=on")
        if descriptor.is_partial:
            args.extend([f"--predictionStart={descriptor.start}",
                         f"--predictionEnd={descriptor.end}"])
        args.extend(["--gff3=off", descriptor.fasta_path])

        stem = os.path.splitext(descriptor.output_path)[0]
        return Command.build(self.context.tool('augustus'), *args,
                             stdout=descriptor.output_path, stderr=f"{stem}.err",
                             name=f"augustus chunk {descriptor.chunk_index}")

    def run_jobs(self, commands: Sequence[Command]) -> List[Optional[CommandResult]]:
        return self.job_manager.run_all(commands, self.context.cpus)

    def predict(self, label: str, extrinsic_cfg: Optional[str] = None, utr: bool = False) -> str:
        """Run one prediction pass

        Args:
            label: Pass name, used for the job directory and the output file
            extrinsic_cfg: Evidence weighting file, defaults by label
            utr: Predict untranslated regions

        Returns:
            Path of the joined prediction file

        Raises:
            JobExecutionError: If a prediction job fails
            PipelineError: If job outputs are missing at join time
        """
        if extrinsic_cfg is None:
            extrinsic_cfg = extrinsic_config(self.context, label)

        job_dir = os.path.join(self.context.job_dir, label)
        hints = self.context.hints_file if self.uses_hints else None
        descriptors = self.partitioner.partition(self.context.genome, hints, job_dir)

        commands = [self.build_command(d, extrinsic_cfg, utr) for d in descriptors]
        self.logger.info(f"Running {len(commands)} prediction jobs for pass {label} "
                         f"(UTR {'on' if utr else 'off'}, hints {'on' if hints else 'off'})")
        self.run_jobs(commands)

        output = self.context.prediction_file(label)
        self.joiner.join_partitions(descriptors, output)
        transcripts = len(GeneSet.read_gtf(output, name=label))
        self.logger.info(f"Pass {label} predicted {transcripts} transcripts")
        return output
