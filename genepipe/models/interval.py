#!/usr/bin/env python3
"""
Genomic interval records in the 9-column tab-separated format.

Two attribute grammars share the same columns:

* hints:  ``src=P;mult=3;pri=4;grp=g1;``
* GTF:    ``transcript_id "g1.t1"; gene_id "g1";`` and, on the prediction
  engine's gene/transcript lines, a bare identifier (``g1`` / ``g1.t1``).
"""
import re
from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Tuple, List

from genepipe.exceptions import ValidationError

HINT_TYPES = (
    "intron", "start", "stop", "ass", "dss", "exonpart", "exon",
    "CDSpart", "UTRpart", "nonexonpart", "ep", "gene", "CDS", "transcript",
)

STRUCTURE_TYPES = (
    "gene", "transcript", "exon", "CDS", "intron", "start_codon", "stop_codon",
    "tss", "tts", "5'-UTR", "3'-UTR", "UTR", "five_prime_UTR", "three_prime_UTR",
)

# Segment types making up a transcript's structural fingerprint
CODING_SEGMENT_TYPES = ("CDS",)
UTR_SEGMENT_TYPES = ("5'-UTR", "3'-UTR", "UTR", "five_prime_UTR", "three_prime_UTR")

CANONICAL_HINT_TYPES = {name.lower(): name for name in HINT_TYPES}

VALID_STRANDS = ("+", "-", ".")

_GTF_ATTRIBUTE = re.compile(r'\s*([^\s";]+)\s+"([^"]*)"\s*;?')

# Manually curated evidence class; grouped records of this class are never merged
MANUAL_SOURCE = "M"


@dataclass
class GenomicInterval:
    """One line of a hints or gene structure file (1-based, inclusive)"""
    seqname: str
    source: str
    feature: str
    start: int
    end: int
    score: str = "."
    strand: str = "."
    frame: str = "."
    attributes: Dict[str, Optional[str]] = field(default_factory=dict)

    def __post_init__(self):
        if self.start > self.end:
            raise ValidationError(
                f"Interval start {self.start} is after end {self.end} on {self.seqname}",
                {"seqname": self.seqname, "start": self.start, "end": self.end}
            )
        if self.start < 1:
            raise ValidationError(f"Interval start {self.start} is not 1-based on {self.seqname}")
        if self.strand not in VALID_STRANDS:
            raise ValidationError(f"Invalid strand '{self.strand}' on {self.seqname}:{self.start}-{self.end}")

    # Hint attributes

    @property
    def src(self) -> str:
        return self.attributes.get("src") or ""

    @property
    def group(self) -> Optional[str]:
        return self.attributes.get("grp") or self.attributes.get("group")

    @property
    def multiplicity(self) -> int:
        value = self.attributes.get("mult")
        try:
            return int(value) if value is not None else 1
        except ValueError:
            return 1

    @property
    def priority(self) -> Optional[int]:
        value = self.attributes.get("pri")
        return int(value) if value is not None and value.lstrip("-").isdigit() else None

    @property
    def is_protected(self) -> bool:
        """Manually curated hints with a group id keep their own identity"""
        return self.src == MANUAL_SOURCE and self.group is not None

    def merge_key(self) -> Tuple[str, int, int, str, str, str]:
        return (self.seqname, self.start, self.end, self.strand, self.feature, self.src)

    def sort_key(self) -> Tuple[str, int, int]:
        return (self.seqname, self.start, self.end)

    def with_multiplicity(self, multiplicity: int) -> 'GenomicInterval':
        attributes = dict(self.attributes)
        attributes["mult"] = str(multiplicity)
        return replace(self, attributes=attributes)

    # GTF attributes

    @property
    def gene_id(self) -> Optional[str]:
        return self.attributes.get("gene_id")

    @property
    def transcript_id(self) -> Optional[str]:
        return self.attributes.get("transcript_id")

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def overlaps(self, start: int, end: int) -> bool:
        return self.start <= end and start <= self.end

    # Serialization

    def _columns(self) -> List[str]:
        return [self.seqname, self.source, self.feature, str(self.start), str(self.end),
                self.score, self.strand, self.frame]

    def to_hint_line(self) -> str:
        parts = []
        for key, value in self.attributes.items():
            parts.append(key if value is None else f"{key}={value}")
        attribute_text = ";".join(parts) + (";" if parts else "")
        return "\t".join(self._columns() + [attribute_text])

    def to_gtf_line(self) -> str:
        if self.feature == "gene" and self.gene_id:
            attribute_text = self.gene_id
        elif self.feature == "transcript" and self.transcript_id:
            attribute_text = self.transcript_id
        else:
            ordered = []
            for key in ("transcript_id", "gene_id"):
                if self.attributes.get(key) is not None:
                    ordered.append(f'{key} "{self.attributes[key]}";')
            for key, value in self.attributes.items():
                if key in ("transcript_id", "gene_id"):
                    continue
                ordered.append(key if value is None else f'{key} "{value}";')
            attribute_text = " ".join(ordered)
        return "\t".join(self._columns() + [attribute_text])


def _split_columns(line: str) -> List[str]:
    columns = line.rstrip("\n\r").split("\t")
    if len(columns) < 8:
        raise ValidationError(f"Expected 9 tab-separated columns, got {len(columns)}: {line.strip()[:80]}")
    if len(columns) == 8:
        columns.append("")
    return columns


def _coordinates(columns: List[str]) -> Tuple[int, int]:
    try:
        return int(columns[3]), int(columns[4])
    except ValueError as e:
        raise ValidationError(f"Non-integer coordinates in line: {chr(9).join(columns)[:80]}") from e


def parse_hint_attributes(text: str) -> Dict[str, Optional[str]]:
    attributes: Dict[str, Optional[str]] = {}
    for part in text.strip().split(";"):
        part = part.strip()
        if not part:
            continue
        if "=" in part:
            key, value = part.split("=", 1)
            attributes[key.strip()] = value.strip()
        else:
            attributes[part] = None
    return attributes


def parse_gtf_attributes(text: str) -> Dict[str, Optional[str]]:
    text = text.strip()
    attributes: Dict[str, Optional[str]] = {}
    if not text:
        return attributes
    matches = list(_GTF_ATTRIBUTE.finditer(text))
    if not matches:
        # Bare identifier on gene/transcript lines, e.g. "g1" or "g1.t1"
        attributes["id"] = text
        return attributes
    for match in matches:
        attributes[match.group(1)] = match.group(2)
    return attributes


def parse_hint_line(line: str) -> GenomicInterval:
    """Parse one hints-format line

    Raises:
        ValidationError: On malformed lines
    """
    columns = _split_columns(line)
    start, end = _coordinates(columns)
    return GenomicInterval(
        seqname=columns[0], source=columns[1], feature=columns[2],
        start=start, end=end, score=columns[5], strand=columns[6], frame=columns[7],
        attributes=parse_hint_attributes(columns[8])
    )


def parse_gtf_line(line: str) -> GenomicInterval:
    """Parse one GTF line, resolving bare gene/transcript identifiers

    Raises:
        ValidationError: On malformed lines
    """
    columns = _split_columns(line)
    start, end = _coordinates(columns)
    attributes = parse_gtf_attributes(columns[8])
    bare_id = attributes.pop("id", None)
    if bare_id is not None:
        if columns[2] == "gene":
            attributes["gene_id"] = bare_id
        elif columns[2] == "transcript":
            attributes["transcript_id"] = bare_id
    return GenomicInterval(
        seqname=columns[0], source=columns[1], feature=columns[2],
        start=start, end=end, score=columns[5], strand=columns[6], frame=columns[7],
        attributes=attributes
    )


def is_data_line(line: str) -> bool:
    stripped = line.strip()
    return bool(stripped) and not stripped.startswith("#")
