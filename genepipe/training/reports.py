#!/usr/bin/env python3
"""
Parsing of trainer and test-mode output.

This is the only module that reads the text the training tools print.
Recognized lines (everything else is ignored):

Accuracy table printed by the prediction engine in test mode; values are
fractions and are reported here in percent::

    nucleotide level |       0.944 |       0.811 |
    exon level |    380 |    355 |  302 | ------------------ | ------------------ |       0.851 |       0.795 |
    gene level |    89 |    76 |   34 |   55 |   42 |       0.447 |       0.382 |

The last two numbers of each line are sensitivity and specificity.

Stop codon usage printed by the trainer::

    tag:   21 (0.226)
    taa:   41 (0.441)
    tga:   31 (0.333)

Training examples the trainer rejects::

    ... in sequence <id>: ...

Complaints about the stop codon boundary convention::

    ... exon doesn't end in stop codon ...
"""
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from genepipe.models.metrics import AccuracyMetrics

_NUMBER = r"([0-9]*\.?[0-9]+(?:[eE][-+]?[0-9]+)?)"
_LEVEL_LINE = re.compile(r"^\s*(nucleotide|exon|gene) level\s*\|(.*)$")
_STOP_CODON_LINE = re.compile(r"^\s*(tag|taa|tga):\s*\d+\s*\(\s*" + _NUMBER + r"\s*\)", re.IGNORECASE)
_REJECTED_SEQUENCE = re.compile(r"in sequence (\S+?):")
_STOP_CODON_COMPLAINT = re.compile(r"exon doesn'?t end in stop codon", re.IGNORECASE)


@dataclass
class TrainerReport:
    """Structured content of one trainer or test-mode output"""
    metrics: Optional[AccuracyMetrics] = None
    stop_codon_frequencies: Dict[str, float] = field(default_factory=dict)
    rejected_ids: List[str] = field(default_factory=list)
    stop_codon_complaints: int = 0

    @property
    def has_stop_codon_frequencies(self) -> bool:
        return len(self.stop_codon_frequencies) == 3


def _last_two_numbers(text: str) -> Optional[List[float]]:
    numbers = re.findall(_NUMBER, text)
    if len(numbers) < 2:
        return None
    return [round(float(numbers[-2]) * 100.0, 4), round(float(numbers[-1]) * 100.0, 4)]


def parse_trainer_report(text: str) -> TrainerReport:
    """Parse trainer or test-mode output

    Args:
        text: Combined stdout and stderr of the tool

    Returns:
        TrainerReport; ``metrics`` is None unless all three accuracy levels were found
    """
    report = TrainerReport()
    levels: Dict[str, List[float]] = {}
    rejected_seen = set()

    for line in text.splitlines():
        level_match = _LEVEL_LINE.match(line)
        if level_match:
            values = _last_two_numbers(level_match.group(2))
            if values is not None:
                levels[level_match.group(1)] = values
            continue

        codon_match = _STOP_CODON_LINE.match(line)
        if codon_match:
            report.stop_codon_frequencies[codon_match.group(1).upper()] = float(codon_match.group(2))
            continue

        for match in _REJECTED_SEQUENCE.finditer(line):
            sequence_id = match.group(1)
            if sequence_id not in rejected_seen:
                rejected_seen.add(sequence_id)
                report.rejected_ids.append(sequence_id)

        if _STOP_CODON_COMPLAINT.search(line):
            report.stop_codon_complaints += 1

    if all(level in levels for level in ("nucleotide", "exon", "gene")):
        report.metrics = AccuracyMetrics(
            nucleotide_sensitivity=levels["nucleotide"][0],
            nucleotide_specificity=levels["nucleotide"][1],
            exon_sensitivity=levels["exon"][0],
            exon_specificity=levels["exon"][1],
            gene_sensitivity=levels["gene"][0],
            gene_specificity=levels["gene"][1],
        )
    return report
