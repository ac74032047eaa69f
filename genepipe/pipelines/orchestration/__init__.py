"""
Pipeline orchestration: stages, stage selection and the run driver
"""
from .models import PipelineStage, StageResult, PipelineRun
from .stage_manager import StageManager
from .service import PipelineOrchestrationService

__all__ = [
    'PipelineStage', 'StageResult', 'PipelineRun',
    'StageManager',
    'PipelineOrchestrationService',
]
