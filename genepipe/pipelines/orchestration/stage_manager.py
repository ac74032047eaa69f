#!/usr/bin/env python3
"""
Pipeline stage management
"""
import os
import logging
from typing import Dict, Any, List, Optional

from genepipe.core.context import PipelineContext
from genepipe.core.freshness import FreshnessTracker
from genepipe.pipelines.prediction import extrinsic_config, prediction_labels
from genepipe.training.trainer import TrainingLoop
from .models import PipelineStage


class StageManager:
    """Selects the stages of a run and decides which of them are fresh"""

    # Stage dependencies
    STAGE_DEPENDENCIES = {
        PipelineStage.HINTS: [PipelineStage.SETUP],
        PipelineStage.TRAINING: [PipelineStage.SETUP],
        PipelineStage.PREDICTION: [PipelineStage.SETUP, PipelineStage.HINTS, PipelineStage.TRAINING],
        PipelineStage.PREDICTION_UTR: [PipelineStage.PREDICTION],
        PipelineStage.JOIN_DUAL: [PipelineStage.PREDICTION, PipelineStage.PREDICTION_UTR],
        PipelineStage.FORMAT_CONVERSION: [PipelineStage.PREDICTION, PipelineStage.PREDICTION_UTR,
                                          PipelineStage.JOIN_DUAL],
        PipelineStage.EVALUATION: [PipelineStage.PREDICTION, PipelineStage.PREDICTION_UTR,
                                   PipelineStage.JOIN_DUAL],
        PipelineStage.CLEANUP: [PipelineStage.PREDICTION, PipelineStage.PREDICTION_UTR],
    }

    # Stages that run every time
    ALWAYS_RUN = (PipelineStage.SETUP, PipelineStage.COMPLETE)

    # Stages that read artifacts of earlier stages and cannot run without them
    CONSUMES_ARTIFACTS = (
        PipelineStage.PREDICTION_UTR, PipelineStage.JOIN_DUAL,
        PipelineStage.FORMAT_CONVERSION, PipelineStage.EVALUATION,
    )

    def __init__(self):
        self.logger = logging.getLogger("genepipe.pipelines.orchestration.stage_manager")

    def get_stages(self, context: PipelineContext) -> List[PipelineStage]:
        """Stages to execute for the run, in execution order

        Evidence discovery in the HINTS stage changes the selection, so the
        driver asks again after every stage.
        """
        stages = [PipelineStage.SETUP]
        if context.evidence_sources:
            stages.append(PipelineStage.HINTS)
        if not context.skip_training:
            stages.append(PipelineStage.TRAINING)
        stages.append(PipelineStage.PREDICTION)
        if context.utr:
            stages.append(PipelineStage.PREDICTION_UTR)
        if context.dual_evidence:
            stages.append(PipelineStage.JOIN_DUAL)
        if context.gff3:
            stages.append(PipelineStage.FORMAT_CONVERSION)
        if context.reference:
            stages.append(PipelineStage.EVALUATION)
        if context.cleanup:
            stages.append(PipelineStage.CLEANUP)
        stages.append(PipelineStage.COMPLETE)
        return stages

    def can_execute_stage(self, stage: PipelineStage,
                          completed_stages: List[PipelineStage],
                          selected_stages: Optional[List[PipelineStage]] = None) -> bool:
        """Check if a stage can be executed based on dependencies

        Dependencies outside selected_stages, when given, are not required.
        """
        dependencies = self.STAGE_DEPENDENCIES.get(stage, [])
        if selected_stages is not None:
            dependencies = [dep for dep in dependencies if dep in selected_stages]
        return all(dep in completed_stages for dep in dependencies)

    @staticmethod
    def final_labels(context: PipelineContext) -> List[str]:
        """Labels of the prediction passes the final gene set is made from"""
        return prediction_labels(context, utr=context.utr)

    def publishes_final(self, stage: PipelineStage, context: PipelineContext) -> bool:
        """True for the prediction stage whose single pass becomes the final gene set"""
        if context.dual_evidence:
            return False
        last = PipelineStage.PREDICTION_UTR if context.utr else PipelineStage.PREDICTION
        return stage == last

    def _prediction_inputs(self, context: PipelineContext, labels: List[str]) -> List[str]:
        inputs = [context.genome, context.parameters_file, context.run_options_file]
        if context.evidence_sources:
            inputs.append(context.hints_file)
        for label in labels:
            cfg = extrinsic_config(context, label)
            if cfg and cfg not in inputs:
                inputs.append(cfg)
        return inputs

    def stage_inputs(self, stage: PipelineStage, context: PipelineContext) -> List[str]:
        """Files a stage reads"""
        if stage == PipelineStage.HINTS:
            return list(context.evidence_sources)
        if stage == PipelineStage.TRAINING:
            return [context.training_genes, context.genome]
        if stage == PipelineStage.PREDICTION:
            return self._prediction_inputs(context, prediction_labels(context))
        if stage == PipelineStage.PREDICTION_UTR:
            return self._prediction_inputs(context, prediction_labels(context, utr=True))
        if stage == PipelineStage.JOIN_DUAL:
            return [context.prediction_file(label) for label in self.final_labels(context)]
        if stage == PipelineStage.FORMAT_CONVERSION:
            return [context.final_gtf]
        if stage == PipelineStage.EVALUATION:
            return [context.reference, context.final_gtf] + \
                [context.prediction_file(label) for label in self.evaluated_labels(context)]
        return []

    def stage_outputs(self, stage: PipelineStage, context: PipelineContext) -> List[str]:
        """Files a stage writes"""
        if stage == PipelineStage.HINTS:
            return [context.hints_file]
        if stage == PipelineStage.TRAINING:
            return [context.parameters_file, context.training_state_file]
        if stage in (PipelineStage.PREDICTION, PipelineStage.PREDICTION_UTR):
            labels = prediction_labels(context, utr=stage == PipelineStage.PREDICTION_UTR)
            outputs = [context.prediction_file(label) for label in labels]
            if self.publishes_final(stage, context):
                outputs.append(context.final_gtf)
            return outputs
        if stage == PipelineStage.JOIN_DUAL:
            return [context.final_gtf]
        if stage == PipelineStage.FORMAT_CONVERSION:
            return [context.final_gff3]
        if stage == PipelineStage.EVALUATION:
            return [context.accuracy_file]
        return []

    @staticmethod
    def evaluated_labels(context: PipelineContext) -> List[str]:
        """Prediction passes compared with the reference, besides the final set"""
        labels = prediction_labels(context)
        if context.utr:
            labels += prediction_labels(context, utr=True)
        return labels

    def is_fresh(self, stage: PipelineStage, context: PipelineContext,
                 tracker: Optional[FreshnessTracker] = None) -> bool:
        """Whether a stage's outputs are up to date and the stage can be skipped"""
        tracker = tracker or FreshnessTracker(context.force)
        if stage in self.ALWAYS_RUN:
            return False
        if stage == PipelineStage.TRAINING:
            return TrainingLoop(context).is_fresh()
        if stage == PipelineStage.CLEANUP:
            return not os.path.exists(context.job_dir)
        return not tracker.is_stale(self.stage_inputs(stage, context),
                                    self.stage_outputs(stage, context), label=stage.value)

    def get_stage_status(self, stage: PipelineStage, context: PipelineContext) -> Dict[str, Any]:
        """Declared files and freshness of a stage"""
        inputs = self.stage_inputs(stage, context)
        outputs = self.stage_outputs(stage, context)
        return {
            'stage': stage.value,
            'inputs': inputs,
            'outputs': outputs,
            'missing_outputs': [p for p in outputs if not os.path.exists(p)],
            'fresh': self.is_fresh(stage, context),
        }
