#!/usr/bin/env python3
"""
Models for pipeline orchestration
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any


class PipelineStage(Enum):
    """Pipeline stages in execution order"""
    SETUP = "setup"
    HINTS = "hints"
    TRAINING = "training"
    PREDICTION = "prediction"
    PREDICTION_UTR = "prediction_utr"
    JOIN_DUAL = "join_dual"
    FORMAT_CONVERSION = "format_conversion"
    EVALUATION = "evaluation"
    CLEANUP = "cleanup"
    COMPLETE = "complete"

    @property
    def position(self) -> int:
        return list(PipelineStage).index(self)


@dataclass
class StageResult:
    """Result from executing a pipeline stage"""
    stage: PipelineStage
    success: bool
    start_time: datetime
    end_time: Optional[datetime] = None
    skipped: bool = False
    items_processed: int = 0
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration(self) -> float:
        if not self.end_time:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    def finalize(self, success: bool = True, error: Optional[str] = None):
        """Mark stage as complete"""
        self.end_time = datetime.now()
        self.success = success
        if error:
            self.error = error


@dataclass
class PipelineRun:
    """Represents a complete pipeline execution"""
    run_id: str
    species: str
    working_dir: str
    start_time: datetime = field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    stages: List[StageResult] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return self.end_time is not None

    @property
    def duration(self) -> float:
        if not self.end_time:
            return (datetime.now() - self.start_time).total_seconds()
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        return bool(self.stages) and all(stage.success for stage in self.stages) and \
            self.stages[-1].stage == PipelineStage.COMPLETE

    @property
    def current_stage(self) -> Optional[PipelineStage]:
        """Get the currently executing stage"""
        for stage in self.stages:
            if not stage.end_time:
                return stage.stage
        return None

    @property
    def skipped_stages(self) -> List[PipelineStage]:
        return [s.stage for s in self.stages if s.skipped]

    @property
    def executed_stages(self) -> List[PipelineStage]:
        return [s.stage for s in self.stages if not s.skipped]

    def get_stage_result(self, stage: PipelineStage) -> Optional[StageResult]:
        for result in self.stages:
            if result.stage == stage:
                return result
        return None

    def add_stage_result(self, result: StageResult):
        """Add a stage result"""
        self.stages.append(result)

    def finalize(self):
        """Mark pipeline run as complete"""
        self.end_time = datetime.now()

    def get_summary(self) -> Dict[str, Any]:
        """Get run summary"""
        return {
            'run_id': self.run_id,
            'species': self.species,
            'working_dir': self.working_dir,
            'duration': self.duration,
            'success': self.success,
            'stages_completed': len([s for s in self.stages if s.success and not s.skipped]),
            'stages_skipped': len(self.skipped_stages),
            'stages_failed': len([s for s in self.stages if not s.success]),
            'current_stage': self.current_stage.value if self.current_stage else None,
            'is_complete': self.is_complete
        }
