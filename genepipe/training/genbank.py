#!/usr/bin/env python3
"""
Conversion of training gene structures to the trainer's GenBank input, and
translation of their coding sequences.
"""
import logging
from typing import Dict, List, Optional, Sequence

from Bio import SeqIO
from Bio.Seq import Seq
from Bio.SeqFeature import SeqFeature, FeatureLocation, CompoundLocation
from Bio.SeqRecord import SeqRecord

from genepipe.exceptions import EmptyResultError, ValidationError
from genepipe.models.gene import GeneSet, Transcript

logger = logging.getLogger("genepipe.training.genbank")


def _strand_value(strand: str) -> int:
    return -1 if strand == "-" else 1


def transcript_to_record(transcript: Transcript, sequence: Seq, flank: int) -> SeqRecord:
    """GenBank record for one transcript with flanking DNA

    Args:
        transcript: Training transcript with CDS segments
        sequence: Full sequence the transcript lies on
        flank: Bases of flanking DNA on each side

    Raises:
        ValidationError: If the transcript has no CDS or runs off the sequence
    """
    cds = transcript.cds_segments
    if not cds:
        raise ValidationError(f"Transcript {transcript.transcript_id} has no CDS",
                              {"transcript_id": transcript.transcript_id})
    if transcript.end > len(sequence):
        raise ValidationError(
            f"Transcript {transcript.transcript_id} ends at {transcript.end} beyond "
            f"{transcript.seqname} length {len(sequence)}",
            {"transcript_id": transcript.transcript_id}
        )

    region_start = max(1, transcript.start - flank)
    region_end = min(len(sequence), transcript.end + flank)
    offset = region_start - 1
    strand = _strand_value(transcript.strand)

    parts = [FeatureLocation(s.start - 1 - offset, s.end - offset, strand=strand) for s in cds]
    if strand == -1:
        parts.reverse()
    location = parts[0] if len(parts) == 1 else CompoundLocation(parts)

    record = SeqRecord(
        sequence[region_start - 1:region_end],
        id=transcript.transcript_id,
        name=transcript.transcript_id,
        description=f"{transcript.seqname}:{region_start}-{region_end}",
    )
    record.annotations["molecule_type"] = "DNA"
    record.features.append(SeqFeature(
        FeatureLocation(0, region_end - offset, strand=1), type="source",
        qualifiers={"source": [transcript.seqname]}
    ))
    record.features.append(SeqFeature(location, type="CDS",
                                      qualifiers={"gene": [transcript.transcript_id]}))
    return record


def write_training_genbank(gene_set: GeneSet, genome_fasta: str, output: str, flank: int,
                           ids: Optional[Sequence[str]] = None) -> List[str]:
    """Write one GenBank record per transcript, locus name = transcript id

    Transcripts that cannot be converted are logged and left out.

    Args:
        gene_set: Training transcripts
        genome_fasta: Genome the transcripts lie on
        output: GenBank file
        flank: Flanking bases on each side
        ids: Transcript ids to write, in this order; all when None

    Returns:
        Transcript ids written

    Raises:
        EmptyResultError: If transcripts were given but none could be converted
    """
    transcripts = list(gene_set) if ids is None else [gene_set.get(i) for i in ids]
    genome = SeqIO.index(genome_fasta, "fasta")
    try:
        records = []
        for transcript in transcripts:
            try:
                if transcript.seqname not in genome:
                    raise ValidationError(
                        f"Training gene {transcript.transcript_id} lies on {transcript.seqname}, "
                        f"which is not in {genome_fasta}",
                        {"transcript_id": transcript.transcript_id}
                    )
                records.append(transcript_to_record(transcript, genome[transcript.seqname].seq, flank))
            except ValidationError as e:
                logger.warning(f"Skipping training gene: {e.message}")
    finally:
        genome.close()

    if transcripts and not records:
        raise EmptyResultError(f"None of {len(transcripts)} training genes could be converted "
                               f"to GenBank records", {"output": output})
    skipped = len(transcripts) - len(records)
    if skipped:
        logger.warning(f"Skipped {skipped} of {len(transcripts)} training genes")

    SeqIO.write(records, output, "genbank")
    logger.info(f"Wrote {len(records)} training records with {flank} bp flanks to {output}")
    return [record.id for record in records]


def coding_sequence(transcript: Transcript, sequence: Seq) -> Seq:
    """Spliced CDS in transcript orientation"""
    spliced = Seq("".join(str(sequence[s.start - 1:s.end]) for s in transcript.cds_segments))
    return spliced.reverse_complement() if transcript.strand == "-" else spliced


def translate_transcripts(gene_set: GeneSet, genome_fasta: str, table_id: int = 1) -> Dict[str, str]:
    """Protein sequence of every transcript, without the terminal stop"""
    proteins: Dict[str, str] = {}
    genome = SeqIO.index(genome_fasta, "fasta")
    try:
        for transcript in gene_set:
            cds = coding_sequence(transcript, genome[transcript.seqname].seq)
            usable = len(cds) - len(cds) % 3
            proteins[transcript.transcript_id] = str(cds[:usable].translate(table=table_id)).rstrip("*")
    finally:
        genome.close()
    return proteins
