#!/usr/bin/env python3
"""
Hint aggregation: normalize, sort and merge evidence records from several
sources into the single canonical hints file the prediction engine reads.

Records that agree in (sequence, start, end, strand, type, source) are
collapsed into one record whose ``mult`` is the sum of the collapsed
multiplicities. Manually curated records (``src=M``) carrying a group id
are protected and always pass through unmerged.
"""
import logging
from collections import OrderedDict, Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Set, Tuple

from genepipe.exceptions import EmptyResultError, ValidationError
from genepipe.models.interval import (
    GenomicInterval, CANONICAL_HINT_TYPES, parse_hint_line, is_data_line,
)
from genepipe.utils.file import safe_open, write_lines

logger = logging.getLogger("genepipe.hints.aggregator")

PROTEIN_SOURCES = ("P",)
RNA_SOURCES = ("E", "W")


@dataclass
class AggregationResult:
    """Outcome of building the canonical hints file"""
    output_path: str
    records_read: Dict[str, int] = field(default_factory=dict)
    records_written: int = 0
    merged_records: int = 0
    protected_records: int = 0
    dropped_records: int = 0
    sources_found: Set[str] = field(default_factory=set)

    @property
    def has_protein_evidence(self) -> bool:
        return any(src in self.sources_found for src in PROTEIN_SOURCES)

    @property
    def has_rna_evidence(self) -> bool:
        return any(src in self.sources_found for src in RNA_SOURCES)


def normalize(records: Iterable[GenomicInterval]) -> List[GenomicInterval]:
    """Fold feature types to their canonical spelling, dropping non-hint types"""
    normalized = []
    dropped: Counter = Counter()
    for record in records:
        canonical = CANONICAL_HINT_TYPES.get(record.feature.lower())
        if canonical is None:
            dropped[record.feature] += 1
            continue
        if canonical != record.feature:
            record = GenomicInterval(
                seqname=record.seqname, source=record.source, feature=canonical,
                start=record.start, end=record.end, score=record.score,
                strand=record.strand, frame=record.frame, attributes=dict(record.attributes)
            )
        normalized.append(record)

    for feature, count in dropped.items():
        logger.warning(f"Dropped {count} records with unsupported hint type '{feature}'")
    return normalized


def partition_by_mergeability(
        records: Iterable[GenomicInterval]) -> Tuple[List[GenomicInterval], List[GenomicInterval]]:
    """Split records into (mergeable, protected)"""
    mergeable, protected = [], []
    for record in records:
        (protected if record.is_protected else mergeable).append(record)
    return mergeable, protected


def sort(records: Iterable[GenomicInterval]) -> List[GenomicInterval]:
    """Stable sort by (sequence, start, end)"""
    return sorted(records, key=GenomicInterval.sort_key)


def merge_duplicates(sorted_records: Iterable[GenomicInterval]) -> List[GenomicInterval]:
    """Collapse records sharing a merge key, summing their multiplicities

    The first record of each key is kept; output order follows the first
    occurrence of each key, so sorted input gives sorted output.
    """
    groups: "OrderedDict[tuple, List[GenomicInterval]]" = OrderedDict()
    for record in sorted_records:
        groups.setdefault(record.merge_key(), []).append(record)

    merged = []
    for records in groups.values():
        if len(records) == 1:
            merged.append(records[0])
        else:
            merged.append(records[0].with_multiplicity(sum(r.multiplicity for r in records)))
    return merged


def concatenate(merged: Iterable[GenomicInterval],
                protected: Iterable[GenomicInterval]) -> List[GenomicInterval]:
    """Merged records first, then protected records, each block sorted"""
    return sort(merged) + sort(protected)


def aggregate(records: Iterable[GenomicInterval]) -> List[GenomicInterval]:
    """Run the full chain on in-memory records"""
    mergeable, protected = partition_by_mergeability(normalize(records))
    return concatenate(merge_duplicates(sort(mergeable)), protected)


def read_hints(path: str) -> List[GenomicInterval]:
    """Read a hints file

    Raises:
        ValidationError: On a malformed line, naming file and line number
    """
    records = []
    with safe_open(path, 'r') as f:
        for line_number, line in enumerate(f, 1):
            if not is_data_line(line):
                continue
            try:
                records.append(parse_hint_line(line))
            except ValidationError as e:
                raise ValidationError(f"{path}:{line_number}: {e.message}",
                                      {"file": path, "line": line_number}) from e
    return records


def write_hints(records: Iterable[GenomicInterval], path: str) -> int:
    return write_lines(path, (r.to_hint_line() for r in records))


def aggregate_files(sources: Iterable[str], output: str) -> AggregationResult:
    """Build the canonical hints file from every evidence source

    Args:
        sources: Hints files in the 9-column format
        output: Path of the canonical hints file

    Returns:
        AggregationResult with counts and the evidence classes found

    Raises:
        EmptyResultError: If the sources hold no records at all
    """
    result = AggregationResult(output_path=output)
    records: List[GenomicInterval] = []

    for source in sources:
        source_records = read_hints(source)
        result.records_read[source] = len(source_records)
        logger.info(f"Read {len(source_records)} hint records from {source}")
        records.extend(source_records)

    if not records:
        raise EmptyResultError(
            "No evidence records found in any hints source",
            {"sources": list(result.records_read.keys())}
        )

    normalized = normalize(records)
    result.dropped_records = len(records) - len(normalized)
    mergeable, protected = partition_by_mergeability(normalized)
    merged = merge_duplicates(sort(mergeable))
    final = concatenate(merged, protected)

    if not final:
        raise EmptyResultError("No usable evidence records left after normalization",
                               {"sources": list(result.records_read.keys())})

    result.merged_records = len(mergeable) - len(merged)
    result.protected_records = len(protected)
    result.sources_found = {r.src for r in final if r.src}
    result.records_written = write_hints(final, output)

    logger.info(f"Wrote {result.records_written} hints to {output} "
                f"({result.merged_records} duplicates merged, {result.protected_records} protected, "
                f"sources: {', '.join(sorted(result.sources_found)) or 'none'})")
    return result
