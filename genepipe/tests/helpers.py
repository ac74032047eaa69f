#!/usr/bin/env python3
"""
Builders for test inputs and a fake external tool runner.
"""
import os
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from genepipe.core.command_utils import Command, CommandResult
from genepipe.jobs.base import JobManager
from genepipe.models.gene import GeneSet, Transcript

Handler = Callable[[Command], Optional[str]]


def gtf_transcript(transcript_id: str, gene_id: str, seqname: str,
                   cds: Sequence[Tuple[int, int]], strand: str = "+",
                   support: Iterable[str] = (), source: str = "AUGUSTUS") -> List[str]:
    """Prediction-engine style GTF lines for one transcript"""
    start = min(s for s, _ in cds)
    end = max(e for _, e in cds)
    lines = [f"{seqname}\t{source}\ttranscript\t{start}\t{end}\t.\t{strand}\t.\t{transcript_id}"]
    for s, e in cds:
        lines.append(f'{seqname}\t{source}\tCDS\t{s}\t{e}\t.\t{strand}\t0\t'
                     f'transcript_id "{transcript_id}"; gene_id "{gene_id}";')
    support = list(support)
    if support:
        lines.append("# Evidence for and against this transcript:")
        lines.append("# % of transcript supported by hints (any source): 100")
        lines.append(f"# CDS exons: {len(cds)}/{len(cds)}")
        for source_tag in support:
            lines.append(f"#      {source_tag}:   {len(cds)}")
    return lines


def make_transcript(transcript_id: str, seqname: str, cds: Sequence[Tuple[int, int]],
                    strand: str = "+", support: Iterable[str] = (),
                    gene_id: Optional[str] = None) -> Transcript:
    gene_id = gene_id or transcript_id.rsplit(".t", 1)[0]
    gene_set = GeneSet.from_lines(gtf_transcript(transcript_id, gene_id, seqname, cds, strand, support))
    return gene_set.get(transcript_id)


def write_lines(path, lines: Iterable[str]) -> str:
    path = str(path)
    with open(path, "w") as f:
        for line in lines:
            f.write(f"{line}\n")
    return path


def hint_line(seqname: str, feature: str, start: int, end: int, strand: str = "+",
              src: str = "P", source: str = "ProtHint", **extra) -> str:
    attributes = [f"src={src}"] + [f"{key}={value}" for key, value in extra.items()]
    return f"{seqname}\t{source}\t{feature}\t{start}\t{end}\t.\t{strand}\t.\t{';'.join(attributes)};"


def write_fasta(path, sequences: Dict[str, str], width: int = 60) -> str:
    path = str(path)
    with open(path, "w") as f:
        for name, sequence in sequences.items():
            f.write(f">{name}\n")
            for i in range(0, len(sequence), width):
                f.write(sequence[i:i + width] + "\n")
    return path


def synthetic_sequence(length: int, seed: int = 0) -> str:
    """Deterministic ACGT sequence without stop codons in frame 0"""
    codons = ["GCT", "GAA", "CTG", "AAA", "GGC", "TCT", "ACC", "GTG", "CCA", "ATC", "CAG", "TTC"]
    out = []
    i = seed
    while len(out) * 3 < length:
        out.append(codons[(i * 7 + len(out)) % len(codons)])
        i += 1
    return "".join(out)[:length]


def argument_value(cmd: Command, flag: str) -> Optional[str]:
    """Value of --flag=value or --flag value in a command"""
    args = list(cmd.args)
    for index, arg in enumerate(args):
        if arg.startswith(f"{flag}="):
            return arg.split("=", 1)[1]
        if arg == flag and index + 1 < len(args):
            return args[index + 1]
    return None


class FakeRunner:
    """Stands in for run_command, dispatching on the command label

    A handler receives the command and returns the text the tool would
    print. When the command redirects stdout to a file the text is written
    there, otherwise it is returned as captured stdout. The handler whose
    key is the longest prefix of the label wins.
    """

    def __init__(self, handlers: Optional[Dict[str, Handler]] = None):
        self.handlers: Dict[str, Handler] = dict(handlers or {})
        self.commands: List[Command] = []

    def _handler(self, label: str) -> Optional[Handler]:
        matches = [key for key in self.handlers if label == key or label.startswith(key + " ")]
        return self.handlers[max(matches, key=len)] if matches else None

    def __call__(self, cmd: Command) -> CommandResult:
        self.commands.append(cmd)
        handler = self._handler(cmd.label)
        text = handler(cmd) if handler else None
        text = text or ""
        if cmd.stdout:
            with open(cmd.stdout, "w") as f:
                f.write(text)
            text = ""
        if cmd.stderr and not os.path.exists(cmd.stderr):
            open(cmd.stderr, "w").close()
        return CommandResult(command=cmd, returncode=0, stdout=text)

    def calls(self, label: str) -> List[Command]:
        return [c for c in self.commands if c.label == label or c.label.startswith(label + " ")]


class FakeJobManager(JobManager):
    """Runs every command sequentially through a runner"""

    def __init__(self, runner: FakeRunner):
        self.runner = runner
        self.batches: List[int] = []

    def run_all(self, commands, concurrency):
        commands = list(commands)
        self.batches.append(len(commands))
        return [self.runner(cmd) for cmd in commands]

    def cancel_all(self) -> int:
        return 0


def accuracy_table(nuc_sn: float, nuc_sp: float, exon_sn: float, exon_sp: float,
                   gene_sn: float, gene_sp: float) -> str:
    """Test-mode accuracy report with values given as fractions"""
    return "\n".join([
        "*******      Evaluation of gene prediction     *******",
        "",
        "---------------------------------------------\\",
        "                 | sensitivity | specificity |",
        "---------------------------------------------|",
        f"nucleotide level |       {nuc_sn:.3f} |       {nuc_sp:.3f} |",
        "---------------------------------------------/",
        "",
        "           |        |        |      |                 89 |                 75 |             |             |",
        f"exon level |    380 |    366 |  291 | ------------------ | ------------------ |       {exon_sn:.3f} |       {exon_sp:.3f} |",
        "           |    380 |    366 |      |   36 |    4 |   49 |   36 |    5 |   34 |             |             |",
        "",
        "transcript | #pred | #anno |   TP |   FP |   FN | sensitivity | specificity |",
        f"gene level |   100 |   100 |   43 |   57 |   57 |       {gene_sn:.3f} |       {gene_sp:.3f} |",
        "",
    ])
