#!/usr/bin/env python3
"""
Prediction result joining.

Single-set join gathers the per-job prediction files of one pass into one
genome-wide set. Dual-set join reconciles a protein-weighted and an
RNA-weighted prediction set: the set with more evidence-supported
transcripts is the basis, the other set contributes only its supported
transcripts, an external structural merge resolves overlaps, and genes
the merge dropped because they sit inside an intron of a kept transcript
are recovered afterwards.
"""
import os
import bisect
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from genepipe.core.command_utils import Command, CommandResult, run_command
from genepipe.exceptions import PipelineError
from genepipe.hints.aggregator import PROTEIN_SOURCES, RNA_SOURCES
from genepipe.models.gene import GeneSet, Transcript
from genepipe.models.job import JobDescriptor
from genepipe.utils.file import concatenate_files, ensure_dir

logger = logging.getLogger("genepipe.joining.joiner")

Runner = Callable[[Command], CommandResult]

BASIS_PRIORITY = 2
OVERLAY_PRIORITY = 1


@dataclass
class DualJoinResult:
    """Summary of a dual-set join"""
    output_path: str
    basis_label: str
    overlay_label: str
    basis_supported: int
    overlay_supported: int
    merged_count: int
    missed_count: int
    total_count: int


def count_supported(gene_set: GeneSet, sources: Iterable[str]) -> int:
    """Number of transcripts supported by any of the given evidence sources"""
    wanted = set(sources)
    return sum(1 for t in gene_set if t.support & wanted)


class IntronIndex:
    """Answers whether a range lies entirely inside some intron"""

    def __init__(self, gene_set: GeneSet):
        introns: Dict[str, List[Tuple[int, int]]] = defaultdict(list)
        for transcript in gene_set:
            introns[transcript.seqname].extend(transcript.introns())

        self._starts: Dict[str, List[int]] = {}
        self._max_ends: Dict[str, List[int]] = {}
        for seqname, ranges in introns.items():
            ranges.sort()
            max_ends, running = [], 0
            for _, end in ranges:
                running = max(running, end)
                max_ends.append(running)
            self._starts[seqname] = [start for start, _ in ranges]
            self._max_ends[seqname] = max_ends

    def contains(self, seqname: str, start: int, end: int) -> bool:
        starts = self._starts.get(seqname)
        if not starts:
            return False
        index = bisect.bisect_right(starts, start) - 1
        return index >= 0 and self._max_ends[seqname][index] >= end


def find_missed_genes(candidates: Iterable[Transcript], merged: GeneSet) -> List[Transcript]:
    """Transcripts absent from the merged set that lie inside one of its introns

    Duplicates by structural fingerprint are dropped, first occurrence wins.
    """
    merged_fingerprints = merged.fingerprints()
    introns = IntronIndex(merged)
    missed: List[Transcript] = []
    seen: Set = set()

    for transcript in candidates:
        fingerprint = transcript.fingerprint()
        if fingerprint in merged_fingerprints or fingerprint in seen:
            continue
        if introns.contains(transcript.seqname, transcript.start, transcript.end):
            seen.add(fingerprint)
            missed.append(transcript)
    return missed


def append_unique(merged: GeneSet, extra: Sequence[Transcript]) -> GeneSet:
    """Merged set followed by extra transcripts, suffixing colliding ids"""
    result = GeneSet(merged, name=merged.name)
    used_genes = set(merged.genes().keys())
    used_transcripts = set(merged.transcript_ids)
    gene_renames: Dict[str, str] = {}

    for transcript in extra:
        gene_id = gene_renames.get(transcript.gene_id)
        if gene_id is None:
            gene_id = _unique_id(transcript.gene_id, used_genes)
            used_genes.add(gene_id)
            gene_renames[transcript.gene_id] = gene_id

        transcript_id = _unique_id(transcript.transcript_id, used_transcripts)
        used_transcripts.add(transcript_id)
        if transcript_id != transcript.transcript_id or gene_id != transcript.gene_id:
            transcript = transcript.renamed(transcript_id, gene_id)
        result.add(transcript)
    return result


def _unique_id(identifier: str, used: Set[str]) -> str:
    if identifier not in used:
        return identifier
    suffix = 1
    while f"{identifier}.{suffix}" in used:
        suffix += 1
    return f"{identifier}.{suffix}"


class PredictionJoiner:
    """Fan-in of prediction outputs"""

    def __init__(self, join_aug_pred: str = "join_aug_pred.pl", joingenes: str = "joingenes",
                 runner: Optional[Runner] = None):
        self.join_aug_pred = join_aug_pred
        self.joingenes = joingenes
        self.runner = runner or run_command
        self.logger = logging.getLogger("genepipe.joining.joiner")

    @classmethod
    def from_context(cls, context, runner: Optional[Runner] = None) -> 'PredictionJoiner':
        return cls(join_aug_pred=context.tool('join_aug_pred'),
                   joingenes=context.tool('joingenes'), runner=runner)

    def join_partitions(self, descriptors: Sequence[JobDescriptor], output: str,
                        sequence_order: Optional[Sequence[str]] = None) -> str:
        """Join per-job outputs of one prediction pass

        Args:
            descriptors: Job descriptors of the pass
            output: Joined prediction file
            sequence_order: Genome sequence order, defaults to descriptor order

        Returns:
            Path of the joined file

        Raises:
            PipelineError: If any expected job output is missing
        """
        missing = [d.output_path for d in descriptors if not os.path.exists(d.output_path)]
        if missing:
            raise PipelineError(
                f"{len(missing)} of {len(descriptors)} prediction job outputs are missing",
                {"missing": missing[:10]}
            )
        if not descriptors:
            raise PipelineError("No prediction job outputs to join")

        if sequence_order is None:
            sequence_order = list(dict.fromkeys(d.seqname for d in descriptors))
        rank = {name: i for i, name in enumerate(sequence_order)}
        ordered = sorted(descriptors, key=lambda d: (rank.get(d.seqname, len(rank)), d.core_start))

        ensure_dir(os.path.dirname(os.path.abspath(output)))
        concatenated = f"{output}.unjoined"
        partial = f"{output}.partial"
        concatenate_files([d.output_path for d in ordered], concatenated)

        self.runner(Command.build(self.join_aug_pred, stdin=concatenated, stdout=partial,
                                  name="join_aug_pred"))
        os.replace(partial, output)
        os.remove(concatenated)
        self.logger.info(f"Joined {len(ordered)} job outputs into {output}")
        return output

    def join_dual(self, protein_set: GeneSet, rna_set: GeneSet, output: str,
                  work_dir: Optional[str] = None,
                  labels: Tuple[str, str] = ("protein", "rna")) -> DualJoinResult:
        """Reconcile a protein-weighted and an RNA-weighted prediction set

        Args:
            protein_set: Predictions made with protein-weighted evidence
            rna_set: Predictions made with RNA-weighted evidence
            output: Final joined GTF
            work_dir: Directory for intermediate files, defaults to output's directory
            labels: Id prefixes for the protein and RNA sets

        Returns:
            DualJoinResult
        """
        work_dir = work_dir or os.path.dirname(os.path.abspath(output))
        ensure_dir(work_dir)

        protein_supported = count_supported(protein_set, PROTEIN_SOURCES)
        rna_supported = count_supported(rna_set, RNA_SOURCES)
        self.logger.info(f"Supported transcripts: {protein_supported} protein ({labels[0]}), "
                         f"{rna_supported} RNA ({labels[1]})")

        # Ties go to the protein set
        if protein_supported >= rna_supported:
            basis, basis_label, basis_supported = protein_set, labels[0], protein_supported
            overlay, overlay_label, overlay_sources = rna_set, labels[1], RNA_SOURCES
            overlay_supported = rna_supported
        else:
            basis, basis_label, basis_supported = rna_set, labels[1], rna_supported
            overlay, overlay_label, overlay_sources = protein_set, labels[0], PROTEIN_SOURCES
            overlay_supported = protein_supported

        wanted = set(overlay_sources)
        basis = basis.with_prefix(f"{basis_label}_")
        overlay = overlay.filter(lambda t: bool(t.support & wanted)).with_prefix(f"{overlay_label}_")
        self.logger.info(f"Join basis: {basis_label} ({len(basis)} transcripts); overlay: "
                         f"{overlay_label} ({len(overlay)} supported transcripts)")

        basis_path = os.path.join(work_dir, f"join_basis.{basis_label}.gtf")
        overlay_path = os.path.join(work_dir, f"join_overlay.{overlay_label}.gtf")
        merged_path = os.path.join(work_dir, "joingenes.gtf")
        basis.write_gtf(basis_path)
        overlay.write_gtf(overlay_path)

        self.runner(Command.build(
            self.joingenes,
            f"--genesets={basis_path},{overlay_path}",
            f"--priorities={BASIS_PRIORITY},{OVERLAY_PRIORITY}",
            f"--output={merged_path}",
            name="joingenes"
        ))
        merged = GeneSet.read_gtf(merged_path, name="merged")

        missed = find_missed_genes(list(basis) + list(overlay), merged)
        if missed:
            self.logger.info(f"Recovered {len(missed)} genes nested in introns of merged transcripts")

        final = append_unique(merged, missed)
        final.write_gtf(output)

        result = DualJoinResult(
            output_path=output,
            basis_label=basis_label,
            overlay_label=overlay_label,
            basis_supported=basis_supported,
            overlay_supported=overlay_supported,
            merged_count=len(merged),
            missed_count=len(missed),
            total_count=len(final),
        )
        self.logger.info(f"Dual join wrote {result.total_count} transcripts to {output}")
        return result
