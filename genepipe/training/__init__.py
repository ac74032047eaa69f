"""
Gene model training and evaluation
"""
from .reports import TrainerReport, parse_trainer_report
from .trainer import TrainingLoop, TrainingOutcome, TrainingState, ModelStage, ValidationOutcome

__all__ = [
    'TrainerReport', 'parse_trainer_report',
    'TrainingLoop', 'TrainingOutcome', 'TrainingState', 'ModelStage', 'ValidationOutcome',
]
