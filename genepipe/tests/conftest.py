#!/usr/bin/env python3
"""
Shared fixtures for genepipe tests
"""
import os

import pytest

from genepipe.config import ConfigManager
from genepipe.core.context import PipelineContext
from .helpers import synthetic_sequence, write_fasta


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep user environment variables out of the configuration"""
    for key in list(os.environ):
        if key.startswith(ConfigManager.ENV_PREFIX):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv('AUGUSTUS_CONFIG_PATH', raising=False)


@pytest.fixture
def augustus_config(tmp_path):
    """Prediction engine configuration directory"""
    path = tmp_path / "augustus_config"
    (path / "species").mkdir(parents=True)
    return str(path)


@pytest.fixture
def genome_fasta(tmp_path):
    """Two scaffolds: one short, one longer than the test chunk size"""
    return write_fasta(tmp_path / "genome.fa", {
        "scaffold_1": synthetic_sequence(600, seed=1),
        "scaffold_2": synthetic_sequence(2500, seed=2),
    })


@pytest.fixture
def make_context(tmp_path, augustus_config):
    """Factory for a context over a temporary working directory"""
    def factory(**sections) -> PipelineContext:
        overrides = {
            'species': 'testspecies',
            'paths': {
                'working_dir': str(tmp_path / "work"),
                'augustus_config_path': augustus_config,
            },
            'prediction': {'chunk_size': 1000, 'overlap': 200},
        }
        for key, value in sections.items():
            if isinstance(value, dict) and isinstance(overrides.get(key), dict):
                overrides[key].update(value)
            else:
                overrides[key] = value
        return PipelineContext.from_config(ConfigManager(None, overrides))
    return factory


@pytest.fixture
def species_parameters(augustus_config):
    """An existing trained parameter set for testspecies"""
    species_dir = os.path.join(augustus_config, "species", "testspecies")
    os.makedirs(species_dir, exist_ok=True)
    path = os.path.join(species_dir, "testspecies_parameters.cfg")
    with open(path, "w") as f:
        f.write("/Constant/amberprob 0.33\n/Constant/ochreprob 0.33\n/Constant/opalprob 0.34\n")
    return path
