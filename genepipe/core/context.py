"""
context.py -- Run context for genepipe

The context is an immutable record built once from configuration and
threaded through every component. Facts discovered during the run (which
evidence classes were actually found) produce a new context via
dataclasses.replace rather than mutating shared state.
"""
import os
import copy
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Any, Tuple

from genepipe.config import ConfigManager

logger = logging.getLogger("genepipe.context")


def detected_cpus() -> int:
    """Number of cores usable by this process"""
    try:
        return len(os.sched_getaffinity(0))
    except AttributeError:
        return os.cpu_count() or 1


@dataclass(frozen=True)
class PipelineContext:
    """Immutable settings and layout of one pipeline run"""
    working_dir: str
    species: str
    augustus_config_path: str = ""
    genome: str = ""
    training_genes: str = ""
    protein_hints: Tuple[str, ...] = ()
    rna_hints: Tuple[str, ...] = ()
    manual_hints: Tuple[str, ...] = ()
    cpus: int = 1
    force: bool = False
    skip_training: bool = False
    utr: bool = False
    crf: bool = False
    keep_crf: bool = False
    gff3: bool = False
    reference: str = ""
    cleanup: bool = True
    has_protein_evidence: bool = False
    has_rna_evidence: bool = False
    config: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_config(cls, config_manager: ConfigManager) -> 'PipelineContext':
        """Build the context from a loaded configuration"""
        get = config_manager.get
        requested_cpus = int(get('pipeline.cpus', 1) or 1)
        available = detected_cpus()
        cpus = max(1, min(requested_cpus, available))
        if requested_cpus > available:
            logger.warning(f"Requested {requested_cpus} cpus but only {available} are available; using {cpus}")

        config_path = get('paths.augustus_config_path') or os.environ.get('AUGUSTUS_CONFIG_PATH', '')

        return cls(
            working_dir=os.path.abspath(get('paths.working_dir', './genepipe_out')),
            species=str(get('species', 'genepipe_species')),
            augustus_config_path=config_path,
            genome=get('input.genome', '') or '',
            training_genes=get('input.training_genes', '') or '',
            protein_hints=tuple(get('evidence.protein_hints', []) or []),
            rna_hints=tuple(get('evidence.rna_hints', []) or []),
            manual_hints=tuple(get('evidence.manual_hints', []) or []),
            cpus=cpus,
            force=bool(get('pipeline.force_overwrite', False)),
            skip_training=bool(get('training.skip', False)),
            utr=bool(get('prediction.utr', False)),
            crf=bool(get('training.crf', False)),
            keep_crf=bool(get('training.keep_crf', False)),
            gff3=bool(get('output.gff3', False)),
            reference=get('evaluation.reference', '') or '',
            cleanup=bool(get('pipeline.cleanup', True)),
            config=copy.deepcopy(config_manager.config),
        )

    def with_evidence(self, protein: bool, rna: bool) -> 'PipelineContext':
        """Return a copy recording which evidence classes were found"""
        return replace(self, has_protein_evidence=protein, has_rna_evidence=rna)

    @property
    def dual_evidence(self) -> bool:
        return self.has_protein_evidence and self.has_rna_evidence

    @property
    def evidence_sources(self) -> Tuple[str, ...]:
        """Every configured hints file, protein first"""
        return self.protein_hints + self.rna_hints + self.manual_hints

    def setting(self, key: str, default: Any = None) -> Any:
        """Dot-notation lookup into the configuration snapshot"""
        current: Any = self.config
        for part in key.split('.'):
            if not isinstance(current, dict) or part not in current:
                return default
            current = current[part]
        return current

    def tool(self, name: str) -> str:
        """Executable configured for a tool, e.g. tool('augustus')"""
        return self.setting(f"tools.{name}_path", name) or name

    def prediction_options(self) -> Dict[str, Any]:
        """Options that change the prediction outputs without touching an input file"""
        return {
            'species': self.species,
            'utr': self.utr,
            'evidence': list(self.evidence_sources),
            'chunk_size': self.setting('prediction.chunk_size'),
            'overlap': self.setting('prediction.overlap'),
            'extrinsic_cfg': {label: self.setting(f'prediction.{label}', '') or ''
                              for label in ('extrinsic_cfg', 'protein_extrinsic_cfg',
                                            'rna_extrinsic_cfg')},
        }

    # Working directory layout

    @property
    def hints_file(self) -> str:
        return os.path.join(self.working_dir, "hintsfile.gff")

    @property
    def run_options_file(self) -> str:
        return os.path.join(self.working_dir, "run_options.yaml")

    @property
    def job_dir(self) -> str:
        return os.path.join(self.working_dir, "jobs")

    @property
    def training_dir(self) -> str:
        return os.path.join(self.working_dir, "training")

    @property
    def training_state_file(self) -> str:
        return os.path.join(self.training_dir, "training_state.yaml")

    @property
    def predictions_dir(self) -> str:
        return os.path.join(self.working_dir, "predictions")

    @property
    def final_gtf(self) -> str:
        return os.path.join(self.working_dir, "genepipe.gtf")

    @property
    def final_gff3(self) -> str:
        return os.path.join(self.working_dir, "genepipe.gff3")

    @property
    def accuracy_file(self) -> str:
        return os.path.join(self.working_dir, "accuracy.txt")

    @property
    def log_dir(self) -> str:
        return os.path.join(self.working_dir, "logs")

    @property
    def species_dir(self) -> str:
        return os.path.join(self.augustus_config_path, "species", self.species)

    @property
    def parameters_file(self) -> str:
        return os.path.join(self.species_dir, f"{self.species}_parameters.cfg")

    def prediction_file(self, label: str) -> str:
        return os.path.join(self.predictions_dir, f"{label}.gtf")
