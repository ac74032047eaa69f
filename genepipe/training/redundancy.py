#!/usr/bin/env python3
"""
Redundancy filtering of training genes by all-against-all protein search.

Proteins linked by a hit at or above the identity threshold fall into one
cluster; the first member of each cluster in input order is kept.
"""
import os
import logging
from typing import Callable, Dict, List, Optional, Sequence

import pandas as pd
from Bio import SeqIO
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord

from genepipe.core.command_utils import Command, CommandResult, run_command
from genepipe.utils.file import ensure_dir

logger = logging.getLogger("genepipe.training.redundancy")

Runner = Callable[[Command], CommandResult]

HIT_COLUMNS = ["qseqid", "sseqid", "pident"]


class _UnionFind:
    def __init__(self, items: Sequence[str]):
        self.parent = {item: item for item in items}

    def find(self, item: str) -> str:
        root = item
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[item] != root:
            self.parent[item], item = root, self.parent[item]
        return root

    def union(self, a: str, b: str) -> None:
        root_a, root_b = self.find(a), self.find(b)
        if root_a != root_b:
            self.parent[root_b] = root_a


def cluster_representatives(ids: Sequence[str], hits: pd.DataFrame, identity: float) -> List[str]:
    """First id of every cluster formed by hits with pident >= identity"""
    clusters = _UnionFind(ids)
    known = set(ids)
    linked = hits[(hits["pident"] >= identity) & (hits["qseqid"] != hits["sseqid"])]
    for query, subject in zip(linked["qseqid"], linked["sseqid"]):
        if query in known and subject in known:
            clusters.union(query, subject)

    representatives = []
    seen_roots = set()
    for item in ids:
        root = clusters.find(item)
        if root not in seen_roots:
            seen_roots.add(root)
            representatives.append(item)
    return representatives


def read_hits(path: str) -> pd.DataFrame:
    if not os.path.exists(path) or os.path.getsize(path) == 0:
        return pd.DataFrame(columns=HIT_COLUMNS)
    return pd.read_csv(path, sep="\t", header=None, names=HIT_COLUMNS,
                       dtype={"qseqid": str, "sseqid": str, "pident": float})


class RedundancyFilter:
    """Drop near-identical training proteins using diamond"""

    def __init__(self, work_dir: str, diamond: str = "diamond", identity: float = 80.0,
                 cpus: int = 1, runner: Optional[Runner] = None):
        self.work_dir = work_dir
        self.diamond = diamond
        self.identity = identity
        self.cpus = cpus
        self.runner = runner or run_command

    def filter(self, proteins: Dict[str, str]) -> List[str]:
        """Return non-redundant ids in input order"""
        ids = list(proteins.keys())
        if len(ids) < 2:
            return ids

        ensure_dir(self.work_dir)
        fasta = os.path.join(self.work_dir, "training_proteins.faa")
        database = os.path.join(self.work_dir, "training_proteins")
        hits_path = os.path.join(self.work_dir, "training_proteins.hits.tsv")

        SeqIO.write((SeqRecord(Seq(sequence), id=identifier, description="")
                     for identifier, sequence in proteins.items()), fasta, "fasta")

        self.runner(Command.build(self.diamond, "makedb", "--in", fasta, "--db", database,
                                  name="diamond makedb"))
        self.runner(Command.build(
            self.diamond, "blastp", "--query", fasta, "--db", database,
            "--outfmt", "6", *HIT_COLUMNS, "--out", hits_path,
            "--threads", self.cpus, "--max-target-seqs", 0,
            name="diamond blastp"
        ))

        kept = cluster_representatives(ids, read_hits(hits_path), self.identity)
        logger.info(f"Redundancy filter kept {len(kept)} of {len(ids)} training genes "
                    f"(identity threshold {self.identity}%)")
        return kept
