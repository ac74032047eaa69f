#!/usr/bin/env python3
"""
Genome partitioning for parallel prediction.

Whole sequences are packed, in genome order, into chunks of at most
``chunk_size`` bases. A sequence longer than ``chunk_size`` gets a chunk of
its own and is cut into slices of ``chunk_size`` bases that advance by
``chunk_size - overlap``. Each slice owns a core range; the core boundary
between two neighbouring slices sits in the middle of their overlap, so the
core ranges of a sequence tile it exactly once.
"""
import os
import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from Bio import SeqIO

from genepipe.exceptions import ConfigurationError, PipelineError, ValidationError
from genepipe.models.interval import GenomicInterval
from genepipe.models.job import ChunkPlan, JobDescriptor, SequenceSlice
from genepipe.hints.aggregator import read_hints, write_hints
from genepipe.utils.file import ensure_dir

logger = logging.getLogger("genepipe.partition.partitioner")


def read_sequence_lengths(genome_fasta: str) -> List[Tuple[str, int]]:
    """(id, length) of every FASTA record, in file order

    Raises:
        ValidationError: If a sequence id occurs twice
    """
    lengths = []
    seen = set()
    for record in SeqIO.parse(genome_fasta, "fasta"):
        if record.id in seen:
            raise ValidationError(f"Duplicate sequence id {record.id} in {genome_fasta}",
                                  {"genome": genome_fasta, "seqname": record.id})
        seen.add(record.id)
        lengths.append((record.id, len(record.seq)))
    return lengths


class GenomePartitioner:
    """Split a genome into chunk FASTA files and prediction job descriptors"""

    def __init__(self, chunk_size: int, overlap: int, scaffold_warning_threshold: int = 30000):
        """Initialize partitioner

        Args:
            chunk_size: Maximum bases per chunk
            overlap: Bases shared by consecutive slices of one long sequence
            scaffold_warning_threshold: Sequence count above which a warning is logged

        Raises:
            ConfigurationError: If overlap is not smaller than chunk_size
        """
        if chunk_size <= 0 or overlap < 0:
            raise ConfigurationError(
                f"Invalid partition sizes: chunk_size={chunk_size}, overlap={overlap}",
                {"chunk_size": chunk_size, "overlap": overlap}
            )
        if overlap >= chunk_size:
            raise ConfigurationError(
                f"Overlap ({overlap}) must be smaller than chunk size ({chunk_size})",
                {"chunk_size": chunk_size, "overlap": overlap}
            )
        self.chunk_size = chunk_size
        self.overlap = overlap
        self.scaffold_warning_threshold = scaffold_warning_threshold
        self.logger = logging.getLogger("genepipe.partition.partitioner")

    @classmethod
    def from_context(cls, context) -> 'GenomePartitioner':
        return cls(
            chunk_size=int(context.setting('prediction.chunk_size', 2500000)),
            overlap=int(context.setting('prediction.overlap', 500000)),
            scaffold_warning_threshold=int(context.setting('prediction.scaffold_warning_threshold', 30000)),
        )

    def slice_sequence(self, seqname: str, length: int) -> List[SequenceSlice]:
        """Cut one sequence into overlapping slices with tiling core ranges"""
        if length <= self.chunk_size:
            return [SequenceSlice(seqname, 1, length, 1, length)]

        step = self.chunk_size - self.overlap
        ranges = []
        start = 1
        while True:
            end = min(start + self.chunk_size - 1, length)
            ranges.append((start, end))
            if end == length:
                break
            start += step

        slices = []
        core_start = 1
        for i, (start, end) in enumerate(ranges):
            if i + 1 < len(ranges):
                next_start = ranges[i + 1][0]
                core_end = next_start + (end - next_start + 1) // 2 - 1
            else:
                core_end = length
            slices.append(SequenceSlice(seqname, start, end, core_start, core_end))
            core_start = core_end + 1
        return slices

    def plan(self, sequence_lengths: Sequence[Tuple[str, int]]) -> List[ChunkPlan]:
        """Group sequences into chunks

        Args:
            sequence_lengths: (sequence id, length) in genome order

        Returns:
            Chunk plans in genome order
        """
        if len(sequence_lengths) > self.scaffold_warning_threshold:
            self.logger.warning(
                f"Genome has {len(sequence_lengths)} sequences (more than "
                f"{self.scaffold_warning_threshold}); a fragmented assembly makes for many small "
                f"jobs and weak gene predictions"
            )

        plans: List[ChunkPlan] = []
        current: Optional[ChunkPlan] = None

        for seqname, length in sequence_lengths:
            if length == 0:
                self.logger.warning(f"Skipping empty sequence {seqname}")
                continue

            if length > self.chunk_size:
                current = None
                plans.append(ChunkPlan(chunk_index=len(plans) + 1,
                                       slices=self.slice_sequence(seqname, length)))
                continue

            if current is None or current.total_length + length > self.chunk_size:
                current = ChunkPlan(chunk_index=len(plans) + 1)
                plans.append(current)
            current.slices.append(SequenceSlice(seqname, 1, length, 1, length))

        self.logger.debug(f"Planned {len(plans)} chunks for {len(sequence_lengths)} sequences")
        return plans

    def _write_chunk_fastas(self, genome_fasta: str, plans: List[ChunkPlan],
                            job_dir: str) -> Dict[int, str]:
        chunk_of = {}
        for plan in plans:
            for seqname in plan.seqnames:
                chunk_of[seqname] = plan.chunk_index

        paths = {plan.chunk_index: os.path.join(job_dir, f"chunk{plan.chunk_index:05d}.fa")
                 for plan in plans}

        pending = []
        pending_chunk = None
        for record in SeqIO.parse(genome_fasta, "fasta"):
            chunk_index = chunk_of.get(record.id)
            if chunk_index is None:
                continue
            if pending_chunk is not None and chunk_index != pending_chunk:
                SeqIO.write(pending, paths[pending_chunk], "fasta")
                pending = []
            pending.append(record)
            pending_chunk = chunk_index
        if pending:
            SeqIO.write(pending, paths[pending_chunk], "fasta")

        return paths

    def partition(self, genome_fasta: str, hints_file: Optional[str],
                  job_dir: str) -> List[JobDescriptor]:
        """Write chunk files and return the prediction job descriptors

        A chunk of packed whole sequences is one job; a long sequence that was
        cut into slices gives one job per slice.

        Args:
            genome_fasta: Genome FASTA
            hints_file: Canonical hints file, or None to predict without evidence
            job_dir: Directory for chunk FASTAs, hints subsets and job outputs

        Returns:
            Job descriptors in genome order

        Raises:
            PipelineError: If two descriptors would share an output path
        """
        ensure_dir(job_dir)
        lengths = read_sequence_lengths(genome_fasta)
        plans = self.plan(lengths)
        fasta_paths = self._write_chunk_fastas(genome_fasta, plans, job_dir)

        hints_by_sequence: Dict[str, List[GenomicInterval]] = defaultdict(list)
        if hints_file:
            for record in read_hints(hints_file):
                hints_by_sequence[record.seqname].append(record)

        descriptors = []
        for plan in plans:
            if plan.is_split:
                groups = [(os.path.join(job_dir, f"chunk{plan.chunk_index:05d}.{n:04d}"), [s])
                          for n, s in enumerate(plan.slices, 1)]
            else:
                groups = [(os.path.join(job_dir, f"chunk{plan.chunk_index:05d}"), plan.slices)]

            for stem, slices in groups:
                hints_path = ""
                if hints_file:
                    hints_path = f"{stem}.hints.gff"
                    subset = [r for s in slices for r in hints_by_sequence.get(s.seqname, [])
                              if r.overlaps(s.start, s.end)]
                    write_hints(subset, hints_path)
                descriptors.append(JobDescriptor(
                    chunk_index=plan.chunk_index,
                    fasta_path=fasta_paths[plan.chunk_index],
                    hints_path=hints_path,
                    output_path=f"{stem}.gtf",
                    slices=tuple(slices),
                ))

        check_disjoint_outputs(descriptors)
        self.logger.info(f"Partitioned {len(lengths)} sequences into {len(plans)} chunks "
                         f"and {len(descriptors)} jobs")
        return descriptors


def check_disjoint_outputs(descriptors: Iterable[JobDescriptor]) -> None:
    """Raise PipelineError if two jobs would write the same file"""
    seen: Dict[str, JobDescriptor] = {}
    for descriptor in descriptors:
        for path in (descriptor.output_path, descriptor.hints_path):
            if not path:
                continue
            if path in seen:
                raise PipelineError(f"Two jobs claim the same output path {path}",
                                    {"path": path})
            seen[path] = descriptor
