#!/usr/bin/env python3
"""
Accuracy metrics reported by the trainer's test mode.
"""
from dataclasses import dataclass, asdict
from typing import Dict, Any

# Weights of the six sub-metrics in the ranking score
SCORE_WEIGHTS = {
    'nucleotide_sensitivity': 3,
    'nucleotide_specificity': 2,
    'exon_sensitivity': 4,
    'exon_specificity': 3,
    'gene_sensitivity': 2,
    'gene_specificity': 1,
}


@dataclass(frozen=True)
class AccuracyMetrics:
    """Sensitivity/specificity at nucleotide, exon and gene level, in percent"""
    nucleotide_sensitivity: float = 0.0
    nucleotide_specificity: float = 0.0
    exon_sensitivity: float = 0.0
    exon_specificity: float = 0.0
    gene_sensitivity: float = 0.0
    gene_specificity: float = 0.0

    @property
    def score(self) -> float:
        """Weighted accuracy used to rank parameter sets

        (3*nuc_sn + 2*nuc_sp + 4*exon_sn + 3*exon_sp + 2*gene_sn + gene_sp) / 15
        """
        total = sum(weight * getattr(self, name) for name, weight in SCORE_WEIGHTS.items())
        return total / sum(SCORE_WEIGHTS.values())

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result['score'] = self.score
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AccuracyMetrics':
        return cls(**{name: float(data.get(name, 0.0)) for name in SCORE_WEIGHTS})

    def __str__(self) -> str:
        return (f"nucleotide {self.nucleotide_sensitivity:.1f}/{self.nucleotide_specificity:.1f}, "
                f"exon {self.exon_sensitivity:.1f}/{self.exon_specificity:.1f}, "
                f"gene {self.gene_sensitivity:.1f}/{self.gene_specificity:.1f}, "
                f"score {self.score:.2f}")
