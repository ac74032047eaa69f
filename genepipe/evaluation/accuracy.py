#!/usr/bin/env python3
"""
Accuracy of prediction sets against a reference annotation.

Matching is exact on coding structure:

* exon: identical CDS segment (sequence, start, end, strand)
* transcript: identical chain of CDS segments
* gene: at least one transcript with a matching chain

Sensitivity is the share of reference items found, specificity the share
of predicted items that are in the reference; both in percent.
"""
import logging
from typing import Dict, List, Mapping, Set, Tuple, Union

import pandas as pd

from genepipe.models.gene import GeneSet, Transcript
from genepipe.utils.file import write_text_file

logger = logging.getLogger("genepipe.evaluation.accuracy")

LEVELS = ("gene", "transcript", "exon")

Segment = Tuple[str, int, int, str]
Chain = Tuple[Segment, ...]


def _cds_chain(transcript: Transcript) -> Chain:
    return tuple((s.seqname, s.start, s.end, s.strand) for s in transcript.cds_segments)


def _exons(gene_set: GeneSet) -> Set[Segment]:
    return {segment for t in gene_set for segment in _cds_chain(t)}


def _chains(gene_set: GeneSet) -> Set[Chain]:
    return {chain for chain in (_cds_chain(t) for t in gene_set) if chain}


def _gene_chains(gene_set: GeneSet) -> List[Set[Chain]]:
    return [{_cds_chain(t) for t in transcripts if t.cds_segments}
            for transcripts in gene_set.genes().values()]


def _ratio(numerator: int, denominator: int) -> float:
    return 100.0 * numerator / denominator if denominator else 0.0


def _f1(sensitivity: float, specificity: float) -> float:
    total = sensitivity + specificity
    return 2 * sensitivity * specificity / total if total else 0.0


def compare_gene_sets(reference: GeneSet, prediction: GeneSet) -> Dict[str, float]:
    """Sensitivity, specificity and F1 at gene, transcript and exon level"""
    ref_exons, pred_exons = _exons(reference), _exons(prediction)
    ref_chains, pred_chains = _chains(reference), _chains(prediction)
    ref_genes, pred_genes = _gene_chains(reference), _gene_chains(prediction)

    found_exons = len(ref_exons & pred_exons)
    found_chains = len(ref_chains & pred_chains)

    values = {
        'gene_Sn': _ratio(sum(1 for chains in ref_genes if chains & pred_chains), len(ref_genes)),
        'gene_Sp': _ratio(sum(1 for chains in pred_genes if chains & ref_chains), len(pred_genes)),
        'transcript_Sn': _ratio(found_chains, len(ref_chains)),
        'transcript_Sp': _ratio(found_chains, len(pred_chains)),
        'exon_Sn': _ratio(found_exons, len(ref_exons)),
        'exon_Sp': _ratio(found_exons, len(pred_exons)),
    }
    for level in LEVELS:
        values[f'{level}_F1'] = _f1(values[f'{level}_Sn'], values[f'{level}_Sp'])
    return values


def evaluate_against_reference(reference_gtf: str,
                               predictions: Mapping[str, Union[str, GeneSet]]) -> pd.DataFrame:
    """Accuracy table, one row per metric and one column per prediction set

    Args:
        reference_gtf: Reference annotation in GTF
        predictions: Column name to GTF path or loaded GeneSet

    Returns:
        DataFrame indexed by metric (Sn/Sp per level, then F1 per level)
    """
    reference = GeneSet.read_gtf(reference_gtf, name="reference")
    columns = {}
    for name, prediction in predictions.items():
        gene_set = prediction if isinstance(prediction, GeneSet) else GeneSet.read_gtf(prediction, name=name)
        columns[name] = compare_gene_sets(reference, gene_set)
        logger.info(f"Evaluated {name}: gene F1 {columns[name]['gene_F1']:.2f}, "
                    f"exon F1 {columns[name]['exon_F1']:.2f}")

    order = [f'{level}_{kind}' for level in LEVELS for kind in ('Sn', 'Sp')]
    order += [f'{level}_F1' for level in LEVELS]
    df = pd.DataFrame(columns, index=order)
    df.index.name = 'metric'
    return df


def write_accuracy_table(df: pd.DataFrame, path: str) -> None:
    """Write the accuracy table as aligned plain text"""
    write_text_file(path, df.to_string(float_format=lambda v: f"{v:.2f}") + "\n")
    logger.info(f"Wrote accuracy table to {path}")
