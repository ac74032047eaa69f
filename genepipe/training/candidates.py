#!/usr/bin/env python3
"""
Selection of training gene candidates: variant deduplication, size
capping and the train/validation/test split.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

import numpy as np

from genepipe.exceptions import EmptyResultError
from genepipe.models.gene import GeneSet

logger = logging.getLogger("genepipe.training.candidates")

LOW_GENE_COUNT = 600
MEDIUM_GENE_COUNT = 1000


@dataclass
class TrainingSplit:
    """Disjoint train, validation and test id lists"""
    train: List[str] = field(default_factory=list)
    validation: List[str] = field(default_factory=list)
    test: List[str] = field(default_factory=list)

    @property
    def sizes(self) -> Tuple[int, int, int]:
        return len(self.train), len(self.validation), len(self.test)


def first_transcript_per_gene(gene_set: GeneSet) -> GeneSet:
    """Keep only the first-seen transcript of every gene on every sequence"""
    seen = set()
    kept = []
    for transcript in gene_set:
        key = (transcript.seqname, transcript.gene_id)
        if key in seen:
            continue
        seen.add(key)
        kept.append(transcript)
    removed = len(gene_set) - len(kept)
    if removed:
        logger.info(f"Dropped {removed} alternative transcripts, {len(kept)} remain")
    return GeneSet(kept, name=gene_set.name)


def flanking_length(gene_set: GeneSet, max_flanking: int = 10000) -> int:
    """Flanking DNA for training records: half the mean gene length, capped"""
    if len(gene_set) == 0:
        return 0
    mean_length = sum(t.end - t.start + 1 for t in gene_set) / len(gene_set)
    return max(0, min(int(mean_length / 2), max_flanking))


def subsample(ids: Sequence[str], max_count: int, rng: np.random.Generator) -> List[str]:
    """Uniform random subset of at most max_count ids, in input order"""
    if len(ids) <= max_count:
        return list(ids)
    chosen = np.sort(rng.choice(len(ids), size=max_count, replace=False))
    logger.info(f"Subsampled {max_count} of {len(ids)} training genes")
    return [ids[i] for i in chosen]


def split_sizes(count: int) -> Tuple[int, int]:
    """(validation, test) sizes for a candidate count

    Fewer than 600 genes are split in thirds, 600 to 1000 hold out 200 each,
    more than 1000 hold out 300 each.
    """
    if count < LOW_GENE_COUNT:
        third = count // 3
        return third, third
    if count <= MEDIUM_GENE_COUNT:
        return 200, 200
    return 300, 300


def split_training_set(ids: Sequence[str], rng: np.random.Generator) -> TrainingSplit:
    """Randomly split candidate ids into train, validation and test sets

    Raises:
        EmptyResultError: If any of the three sets would be empty
    """
    count = len(ids)
    validation_size, test_size = split_sizes(count)
    if count < LOW_GENE_COUNT:
        logger.warning(f"Only {count} training genes; splitting in thirds. Fewer than "
                       f"{LOW_GENE_COUNT} genes gives a low but usable model")

    order = rng.permutation(count)
    shuffled = [ids[i] for i in order]
    split = TrainingSplit(
        validation=shuffled[:validation_size],
        test=shuffled[validation_size:validation_size + test_size],
        train=shuffled[validation_size + test_size:],
    )

    empty = [name for name, size in zip(("train", "validation", "test"), split.sizes) if size == 0]
    if empty:
        raise EmptyResultError(
            f"Cannot split {count} training genes: empty {', '.join(empty)} set",
            {"count": count, "sizes": split.sizes}
        )

    logger.info(f"Training split: {len(split.train)} train, {len(split.validation)} validation, "
                f"{len(split.test)} test")
    return split
