#!/usr/bin/env python3
"""
Configuration schema definition for validation
"""
from typing import Dict, Any, List


class ConfigSchema:
    """Configuration schema for validation"""

    SCHEMA = {
        'paths': {
            'working_dir': {'type': str, 'required': True},
            'augustus_config_path': {'type': str, 'required': False},
        },
        'input': {
            'genome': {'type': str, 'required': False},
            'training_genes': {'type': str, 'required': False},
        },
        'evidence': {
            'protein_hints': {'type': list, 'required': False},
            'rna_hints': {'type': list, 'required': False},
            'manual_hints': {'type': list, 'required': False},
        },
        'tools': {
            'augustus_path': {'type': str, 'required': False},
            'etraining_path': {'type': str, 'required': False},
            'new_species_path': {'type': str, 'required': False},
            'optimize_augustus_path': {'type': str, 'required': False},
            'join_aug_pred_path': {'type': str, 'required': False},
            'joingenes_path': {'type': str, 'required': False},
            'diamond_path': {'type': str, 'required': False},
            'gtf2gff_path': {'type': str, 'required': False},
        },
        'training': {
            'skip': {'type': bool, 'required': False},
            'max_genes': {'type': int, 'required': False},
            'rounds': {'type': int, 'required': False},
            'min_kfold': {'type': int, 'required': False},
            'crf': {'type': bool, 'required': False},
            'keep_crf': {'type': bool, 'required': False},
            'max_flanking': {'type': int, 'required': False},
            'translation_table': {'type': int, 'required': False},
            'redundancy_identity': {'type': (int, float), 'required': False},
            'seed': {'type': int, 'required': False},
        },
        'prediction': {
            'chunk_size': {'type': int, 'required': True},
            'overlap': {'type': int, 'required': True},
            'utr': {'type': bool, 'required': False},
            'extrinsic_cfg': {'type': str, 'required': False},
            'protein_extrinsic_cfg': {'type': str, 'required': False},
            'rna_extrinsic_cfg': {'type': str, 'required': False},
            'job_timeout': {'type': (int, float), 'required': False},
            'scaffold_warning_threshold': {'type': int, 'required': False},
        },
        'output': {
            'gff3': {'type': bool, 'required': False},
        },
        'evaluation': {
            'reference': {'type': str, 'required': False},
        },
        'logging': {
            'level': {'type': str, 'required': False},
            'format': {'type': str, 'required': False},
            'log_dir': {'type': str, 'required': False},
        },
        'pipeline': {
            'cpus': {'type': int, 'required': False},
            'force_overwrite': {'type': bool, 'required': False},
            'cleanup': {'type': bool, 'required': False},
            'job_manager': {'type': str, 'required': False},
        }
    }

    @classmethod
    def validate(cls, config: Dict[str, Any]) -> List[str]:
        """Validate configuration against schema

        Args:
            config: Configuration to validate

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        # Check required fields
        for section, fields in cls.SCHEMA.items():
            if any(props.get('required', False) for _, props in fields.items()):
                if section not in config:
                    errors.append(f"Missing required configuration section: {section}")
                    continue

            if section not in config:
                continue

            section_config = config[section]
            if not isinstance(section_config, dict):
                errors.append(f"Configuration section {section} must be a mapping")
                continue

            for field, props in fields.items():
                if props.get('required', False) and field not in section_config:
                    errors.append(f"Missing required configuration field: {section}.{field}")

        # Validate field types
        for section, fields in cls.SCHEMA.items():
            section_config = config.get(section)
            if not isinstance(section_config, dict):
                continue

            for field, props in fields.items():
                if field in section_config and 'type' in props:
                    expected_type = props['type']
                    value = section_config[field]
                    # bool is an int subclass; keep the two apart
                    if isinstance(value, bool) and expected_type is not bool:
                        valid = False
                    else:
                        valid = isinstance(value, expected_type)
                    if not valid:
                        expected_name = (
                            "/".join(t.__name__ for t in expected_type)
                            if isinstance(expected_type, tuple) else expected_type.__name__
                        )
                        errors.append(
                            f"Invalid type for {section}.{field}: expected {expected_name}, "
                            f"got {type(value).__name__}"
                        )

        return errors
