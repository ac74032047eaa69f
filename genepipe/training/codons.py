#!/usr/bin/env python3
"""
Stop codon probabilities and parameter file editing.

The species parameter file is a whitespace-separated key/value list, e.g.::

    /Constant/amberprob          0.33   # Prob(stop codon = tag)
    /Constant/ochreprob          0.33   # Prob(stop codon = taa)
    /Constant/opalprob           0.34   # Prob(stop codon = tga)
"""
import re
import logging
from typing import Dict, Optional

from Bio.Data import CodonTable

from genepipe.exceptions import ConfigurationError, FileOperationError
from genepipe.utils.file import read_text_file, write_text_file

logger = logging.getLogger("genepipe.training.codons")

STOP_CODON_PARAMETERS = {
    "TAG": "/Constant/amberprob",
    "TAA": "/Constant/ochreprob",
    "TGA": "/Constant/opalprob",
}

# Genetic codes the prediction engine can be trained for
SUPPORTED_TRANSLATION_TABLES = (1, 6, 10, 12, 25, 26, 27, 28, 29, 30, 31)


def stop_codons(table_id: int) -> set:
    """Stop codons among TAG/TAA/TGA under a genetic code

    Raises:
        ConfigurationError: For a code the engine does not support
    """
    if table_id not in SUPPORTED_TRANSLATION_TABLES:
        raise ConfigurationError(
            f"Unsupported translation table {table_id}; supported: "
            f"{', '.join(str(t) for t in SUPPORTED_TRANSLATION_TABLES)}",
            {"config_key": "training.translation_table"}
        )
    table = CodonTable.unambiguous_dna_by_id[table_id]
    return {codon for codon in STOP_CODON_PARAMETERS if codon in table.stop_codons}


def adjust_stop_probabilities(frequencies: Dict[str, float], table_id: int = 1) -> Dict[str, float]:
    """Restrict stop codon probabilities to the stops of a genetic code

    Mass of codons that do not stop translation under the code is moved to
    the remaining stop codons in proportion to their frequencies, or split
    evenly when the remaining stops were never observed.

    Args:
        frequencies: Observed frequency per codon (TAG, TAA, TGA)
        table_id: NCBI genetic code

    Returns:
        Probability per codon, summing to the input total
    """
    stops = stop_codons(table_id)
    adjusted = {codon: float(frequencies.get(codon, 0.0)) for codon in STOP_CODON_PARAMETERS}

    removed = sum(value for codon, value in adjusted.items() if codon not in stops)
    if removed == 0:
        return adjusted

    remaining = sum(adjusted[codon] for codon in stops)
    for codon in STOP_CODON_PARAMETERS:
        if codon not in stops:
            adjusted[codon] = 0.0
        elif remaining > 0:
            adjusted[codon] += removed * adjusted[codon] / remaining
        else:
            adjusted[codon] = removed / len(stops)
    return adjusted


def _parameter_pattern(key: str):
    return re.compile(r"^(\s*" + re.escape(key) + r"\s+)(\S+)", re.MULTILINE)


def get_parameter(cfg_path: str, key: str) -> Optional[str]:
    match = _parameter_pattern(key).search(read_text_file(cfg_path))
    return match.group(2) if match else None


def set_parameter(cfg_path: str, key: str, value) -> None:
    """Set one key in a parameter file, appending it if absent"""
    content = read_text_file(cfg_path)
    pattern = _parameter_pattern(key)
    if pattern.search(content):
        content = pattern.sub(lambda m: f"{m.group(1)}{value}", content, count=1)
    else:
        if content and not content.endswith("\n"):
            content += "\n"
        content += f"{key} {value}\n"
    write_text_file(cfg_path, content)
    logger.debug(f"Set {key} = {value} in {cfg_path}")


def write_stop_codon_probabilities(cfg_path: str, frequencies: Dict[str, float],
                                   table_id: int = 1) -> Dict[str, float]:
    """Write adjusted stop codon probabilities into the parameter file

    Raises:
        FileOperationError: If the parameter file cannot be read or written
    """
    if set(frequencies) != set(STOP_CODON_PARAMETERS):
        raise FileOperationError(f"Incomplete stop codon frequencies for {cfg_path}: {frequencies}",
                                 {"cfg": cfg_path})
    probabilities = adjust_stop_probabilities(frequencies, table_id)
    for codon, key in STOP_CODON_PARAMETERS.items():
        set_parameter(cfg_path, key, f"{probabilities[codon]:.4f}")
    logger.info("Stop codon probabilities: " +
                ", ".join(f"{codon}={value:.4f}" for codon, value in probabilities.items()))
    return probabilities
