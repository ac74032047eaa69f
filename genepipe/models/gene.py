#!/usr/bin/env python3
"""
Gene structure models: transcripts grouped into genes, and ordered gene sets.

Gene sets are read from and written to GTF. The prediction engine follows
every transcript with a comment block listing the evidence that supports
it; that block is parsed into ``Transcript.support`` and written back in the
same grammar so support survives a round trip through disk::

    # Evidence for and against this transcript:
    # % of transcript supported by hints (any source): 100
    # CDS exons: 2/2
    #      P:   2
    # incompatible hint groups: 1
    #      E:   1          <- evidence against, not support
"""
import re
import logging
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from genepipe.exceptions import ValidationError
from genepipe.utils.file import atomic_write, safe_open
from .interval import (
    GenomicInterval, parse_gtf_line,
    CODING_SEGMENT_TYPES, UTR_SEGMENT_TYPES,
)

logger = logging.getLogger("genepipe.models.gene")

EVIDENCE_HEADER = "# Evidence for and against this transcript:"
_EVIDENCE_SOURCE = re.compile(r"^#\s+([A-Za-z0-9_]+):\s+(\d+)\s*$")
_INCOMPATIBLE = re.compile(r"^#\s*incompatible hint groups")
_END_GENE = re.compile(r"^#\s*end gene")

Fingerprint = Tuple[Tuple[str, int, int, str], ...]


@dataclass
class Transcript:
    """One transcript and its structural features"""
    transcript_id: str
    gene_id: str
    seqname: str
    strand: str
    features: List[GenomicInterval] = field(default_factory=list)
    transcript_line: Optional[GenomicInterval] = None
    support: Set[str] = field(default_factory=set)

    @property
    def start(self) -> int:
        if self.transcript_line is not None:
            return self.transcript_line.start
        return min(f.start for f in self.features)

    @property
    def end(self) -> int:
        if self.transcript_line is not None:
            return self.transcript_line.end
        return max(f.end for f in self.features)

    @property
    def source(self) -> str:
        if self.transcript_line is not None:
            return self.transcript_line.source
        return self.features[0].source if self.features else "genepipe"

    def segments(self, types: Iterable[str]) -> List[GenomicInterval]:
        wanted = set(types)
        return sorted((f for f in self.features if f.feature in wanted), key=lambda f: (f.start, f.end))

    @property
    def cds_segments(self) -> List[GenomicInterval]:
        return self.segments(CODING_SEGMENT_TYPES)

    def exonic_blocks(self) -> List[Tuple[int, int]]:
        """Exon coordinates, merging touching CDS/UTR pieces when no exon lines exist"""
        pieces = [(f.start, f.end) for f in self.segments(("exon",))]
        if not pieces:
            pieces = [(f.start, f.end) for f in self.segments(CODING_SEGMENT_TYPES + UTR_SEGMENT_TYPES)]
        blocks: List[Tuple[int, int]] = []
        for start, end in sorted(pieces):
            if blocks and start <= blocks[-1][1] + 1:
                blocks[-1] = (blocks[-1][0], max(blocks[-1][1], end))
            else:
                blocks.append((start, end))
        return blocks

    def introns(self) -> List[Tuple[int, int]]:
        blocks = self.exonic_blocks()
        return [(blocks[i][1] + 1, blocks[i + 1][0] - 1) for i in range(len(blocks) - 1)]

    def fingerprint(self) -> Fingerprint:
        """Structure identity: every CDS/UTR segment, in coordinate order"""
        segments = self.segments(CODING_SEGMENT_TYPES + UTR_SEGMENT_TYPES)
        if not segments:
            segments = self.segments(("exon",))
        return tuple((s.seqname, s.start, s.end, s.strand) for s in segments)

    def coding_length(self) -> int:
        return sum(s.length for s in self.cds_segments)

    def renamed(self, transcript_id: str, gene_id: str) -> 'Transcript':
        def rename(feature: GenomicInterval) -> GenomicInterval:
            attributes = dict(feature.attributes)
            if feature.feature != "gene":
                attributes["transcript_id"] = transcript_id
            attributes["gene_id"] = gene_id
            return replace(feature, attributes=attributes)

        return replace(
            self,
            transcript_id=transcript_id,
            gene_id=gene_id,
            features=[rename(f) for f in self.features],
            transcript_line=rename(self.transcript_line) if self.transcript_line is not None else None,
            support=set(self.support),
        )

    def to_gtf_lines(self) -> List[str]:
        lines = []
        if self.transcript_line is not None:
            lines.append(self.transcript_line.to_gtf_line())
        lines.extend(f.to_gtf_line() for f in sorted(self.features, key=lambda f: (f.start, f.end)))
        if self.support:
            lines.append(EVIDENCE_HEADER)
            for source in sorted(self.support):
                lines.append(f"#      {source}:   1")
        return lines


class GeneSet:
    """Ordered collection of transcripts with unique transcript ids"""

    def __init__(self, transcripts: Optional[Iterable[Transcript]] = None, name: str = ""):
        self.name = name
        self._transcripts: "OrderedDict[str, Transcript]" = OrderedDict()
        for transcript in transcripts or []:
            self.add(transcript)

    def add(self, transcript: Transcript) -> None:
        """Add a transcript

        Raises:
            ValidationError: If the transcript id is already present
        """
        if transcript.transcript_id in self._transcripts:
            raise ValidationError(
                f"Duplicate transcript id {transcript.transcript_id} in gene set {self.name or '<unnamed>'}",
                {"transcript_id": transcript.transcript_id}
            )
        self._transcripts[transcript.transcript_id] = transcript

    def __len__(self) -> int:
        return len(self._transcripts)

    def __iter__(self) -> Iterator[Transcript]:
        return iter(self._transcripts.values())

    def __contains__(self, transcript_id: object) -> bool:
        return transcript_id in self._transcripts

    def get(self, transcript_id: str) -> Optional[Transcript]:
        return self._transcripts.get(transcript_id)

    @property
    def transcript_ids(self) -> List[str]:
        return list(self._transcripts.keys())

    def genes(self) -> "OrderedDict[str, List[Transcript]]":
        genes: "OrderedDict[str, List[Transcript]]" = OrderedDict()
        for transcript in self:
            genes.setdefault(transcript.gene_id, []).append(transcript)
        return genes

    def filter(self, predicate: Callable[[Transcript], bool], name: Optional[str] = None) -> 'GeneSet':
        return GeneSet((t for t in self if predicate(t)), name=name if name is not None else self.name)

    def with_prefix(self, prefix: str) -> 'GeneSet':
        """Copy with every gene and transcript id prefixed"""
        return GeneSet(
            (t.renamed(f"{prefix}{t.transcript_id}", f"{prefix}{t.gene_id}") for t in self),
            name=self.name
        )

    def fingerprints(self) -> Set[Fingerprint]:
        return {t.fingerprint() for t in self}

    def count_supported(self, source: str) -> int:
        return sum(1 for t in self if source in t.support)

    def sequences(self) -> List[str]:
        seen: "OrderedDict[str, None]" = OrderedDict()
        for transcript in self:
            seen.setdefault(transcript.seqname, None)
        return list(seen.keys())

    # IO

    @classmethod
    def from_lines(cls, lines: Iterable[str], name: str = "") -> 'GeneSet':
        """Parse GTF lines including prediction-engine evidence blocks

        Raises:
            ValidationError: On malformed lines or duplicate transcript ids
        """
        transcripts: "OrderedDict[str, Transcript]" = OrderedDict()
        current_gene: Optional[str] = None
        last_transcript: Optional[Transcript] = None
        in_evidence = False
        against = False

        for line in lines:
            stripped = line.strip()
            if not stripped:
                continue

            if stripped.startswith("#"):
                if stripped.startswith(EVIDENCE_HEADER):
                    in_evidence, against = True, False
                elif in_evidence and _INCOMPATIBLE.match(stripped):
                    against = True
                elif in_evidence and _END_GENE.match(stripped):
                    in_evidence = False
                elif in_evidence and last_transcript is not None and not against:
                    match = _EVIDENCE_SOURCE.match(stripped)
                    if match and int(match.group(2)) > 0:
                        last_transcript.support.add(match.group(1))
                continue

            in_evidence = False
            record = parse_gtf_line(line)

            if record.feature == "gene":
                current_gene = record.gene_id
                continue

            transcript_id = record.transcript_id
            if not transcript_id:
                logger.debug(f"Skipping {record.feature} line without transcript id at "
                             f"{record.seqname}:{record.start}")
                continue

            transcript = transcripts.get(transcript_id)
            if transcript is None:
                gene_id = record.gene_id or current_gene or transcript_id.rsplit(".t", 1)[0]
                transcript = Transcript(transcript_id=transcript_id, gene_id=gene_id,
                                        seqname=record.seqname, strand=record.strand)
                transcripts[transcript_id] = transcript
            elif transcript.seqname != record.seqname:
                raise ValidationError(
                    f"Transcript {transcript_id} spans sequences {transcript.seqname} and {record.seqname}",
                    {"transcript_id": transcript_id}
                )

            if record.feature == "transcript":
                if record.gene_id is None:
                    attributes = dict(record.attributes)
                    attributes["gene_id"] = transcript.gene_id
                    record = replace(record, attributes=attributes)
                transcript.transcript_line = record
            else:
                transcript.features.append(record)
            last_transcript = transcript

        return cls(transcripts.values(), name=name)

    @classmethod
    def read_gtf(cls, path: str, name: str = "") -> 'GeneSet':
        with safe_open(path, 'r') as f:
            gene_set = cls.from_lines(f, name=name or path)
        logger.debug(f"Read {len(gene_set)} transcripts from {path}")
        return gene_set

    def to_gtf_lines(self) -> Iterator[str]:
        for gene_id, transcripts in self.genes().items():
            first = transcripts[0]
            gene_line = GenomicInterval(
                seqname=first.seqname, source=first.source, feature="gene",
                start=min(t.start for t in transcripts), end=max(t.end for t in transcripts),
                strand=first.strand, attributes={"gene_id": gene_id}
            )
            yield gene_line.to_gtf_line()
            for transcript in transcripts:
                yield from transcript.to_gtf_lines()

    def write_gtf(self, path: str) -> int:
        """Write the set as GTF

        Returns:
            Number of transcripts written
        """
        with atomic_write(path, 'w') as f:
            for line in self.to_gtf_lines():
                f.write(f"{line}\n")
        logger.debug(f"Wrote {len(self)} transcripts to {path}")
        return len(self)
