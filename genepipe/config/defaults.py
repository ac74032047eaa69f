#!/usr/bin/env python3
"""
Default configuration values for the genepipe pipeline
"""

DEFAULT_CONFIG = {
    'species': 'genepipe_species',
    'paths': {
        'working_dir': './genepipe_out',
        'augustus_config_path': '',
    },
    'input': {
        'genome': '',
        'training_genes': '',
    },
    'evidence': {
        'protein_hints': [],
        'rna_hints': [],
        'manual_hints': [],
    },
    'tools': {
        'augustus_path': 'augustus',
        'etraining_path': 'etraining',
        'new_species_path': 'new_species.pl',
        'optimize_augustus_path': 'optimize_augustus.pl',
        'join_aug_pred_path': 'join_aug_pred.pl',
        'joingenes_path': 'joingenes',
        'diamond_path': 'diamond',
        'gtf2gff_path': 'gtf2gff.pl',
    },
    'training': {
        'skip': False,
        'max_genes': 8000,
        'rounds': 5,
        'min_kfold': 8,
        'crf': False,
        'keep_crf': False,
        'max_flanking': 10000,
        'translation_table': 1,
        'redundancy_identity': 80.0,
        'seed': 42,
    },
    'prediction': {
        'chunk_size': 2500000,
        'overlap': 500000,
        'utr': False,
        'extrinsic_cfg': '',
        'protein_extrinsic_cfg': '',
        'rna_extrinsic_cfg': '',
        'job_timeout': 0,
        'scaffold_warning_threshold': 30000,
    },
    'output': {
        'gff3': False,
    },
    'evaluation': {
        'reference': '',
    },
    'logging': {
        'level': 'INFO',
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    },
    'pipeline': {
        'cpus': 1,
        'force_overwrite': False,
        'cleanup': True,
        'job_manager': 'local',
    }
}
