#!/usr/bin/env python3
"""
Partitioning and job models for the genepipe pipeline.
"""
from dataclasses import dataclass, field
from typing import List, Dict, Any, Tuple


@dataclass(frozen=True)
class SequenceSlice:
    """A range of one sequence assigned to a chunk

    start/end is the range the job sees, core_start/core_end the part of it
    the job owns once overlaps with neighbouring slices are discounted.
    """
    seqname: str
    start: int
    end: int
    core_start: int
    core_end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @property
    def is_whole(self) -> bool:
        return self.start == 1 and self.core_start == 1 and self.core_end == self.end


@dataclass
class ChunkPlan:
    """One unit of the genome partition: a FASTA chunk and its slices"""
    chunk_index: int
    slices: List[SequenceSlice] = field(default_factory=list)

    @property
    def total_length(self) -> int:
        return sum(s.length for s in self.slices)

    @property
    def seqnames(self) -> List[str]:
        return [s.seqname for s in self.slices]

    @property
    def is_split(self) -> bool:
        """The chunk holds slices of one long sequence"""
        return any(not s.is_whole for s in self.slices)


@dataclass(frozen=True)
class JobDescriptor:
    """Independent unit of prediction work

    A job covers either the whole sequences packed into one chunk, or one
    slice of a sequence that was cut into overlapping slices. Slices are in
    genome order.
    """
    chunk_index: int
    fasta_path: str
    hints_path: str
    output_path: str
    slices: Tuple[SequenceSlice, ...]

    @property
    def seqname(self) -> str:
        return self.slices[0].seqname

    @property
    def seqnames(self) -> List[str]:
        return [s.seqname for s in self.slices]

    @property
    def start(self) -> int:
        return self.slices[0].start

    @property
    def end(self) -> int:
        return self.slices[0].end

    @property
    def core_start(self) -> int:
        return self.slices[0].core_start

    @property
    def core_end(self) -> int:
        return self.slices[0].core_end

    @property
    def is_partial(self) -> bool:
        """True for a slice of a longer sequence, which needs a prediction range"""
        return len(self.slices) == 1 and not self.slices[0].is_whole

    @property
    def range(self) -> Tuple[int, int]:
        return (self.start, self.end)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            'chunk_index': self.chunk_index,
            'fasta_path': self.fasta_path,
            'hints_path': self.hints_path,
            'output_path': self.output_path,
            'slices': [
                {'seqname': s.seqname, 'start': s.start, 'end': s.end,
                 'core_start': s.core_start, 'core_end': s.core_end}
                for s in self.slices
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'JobDescriptor':
        """Create instance from dictionary"""
        return cls(
            chunk_index=int(data['chunk_index']),
            fasta_path=data['fasta_path'],
            hints_path=data['hints_path'],
            output_path=data['output_path'],
            slices=tuple(
                SequenceSlice(s['seqname'], int(s['start']), int(s['end']),
                              int(s['core_start']), int(s['core_end']))
                for s in data['slices']
            ),
        )
