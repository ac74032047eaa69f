# genepipe/cli/main.py
import argparse
import json
import os
import sys
import logging
from typing import Any, Dict, List, Optional

from genepipe.config import ConfigManager
from genepipe.core.context import PipelineContext
from genepipe.core.logging_config import LoggingManager
from genepipe.error_handlers import cli_error_handler
from genepipe.evaluation.accuracy import evaluate_against_reference, write_accuracy_table
from genepipe.exceptions import ValidationError
from genepipe.hints.aggregator import aggregate_files
from genepipe.joining.joiner import PredictionJoiner
from genepipe.models.gene import GeneSet
from genepipe.models.job import JobDescriptor
from genepipe.partition.partitioner import GenomePartitioner
from genepipe.pipelines.orchestration.service import PipelineOrchestrationService
from genepipe.training.trainer import TrainingLoop
from genepipe.utils.file import atomic_write

logger = logging.getLogger("genepipe.cli")

DESCRIPTOR_FILE = "jobs.json"


def build_parser() -> argparse.ArgumentParser:
    # Create the top-level parser
    parser = argparse.ArgumentParser(prog='genepipe',
                                     description='Evidence-driven gene prediction pipeline')

    # Global options
    parser.add_argument('--config', type=str, help='Path to configuration file')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')
    parser.add_argument('--log-file', type=str, help='Log to file in addition to stderr')
    parser.add_argument('--log-dir', type=str, help='Directory for log files')
    parser.add_argument('--json', action='store_true', help='Output results as JSON')

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # Full pipeline
    run_parser = subparsers.add_parser('run', help='Run the whole pipeline')
    run_parser.add_argument('--genome', type=str, help='Genome FASTA')
    run_parser.add_argument('--species', type=str, help='Species name of the parameter set')
    run_parser.add_argument('--working-dir', type=str, help='Working directory')
    run_parser.add_argument('--training-genes', type=str, help='Training gene structures (GTF)')
    run_parser.add_argument('--protein-hints', type=str, nargs='+', help='Protein hints files')
    run_parser.add_argument('--rna-hints', type=str, nargs='+', help='RNA hints files')
    run_parser.add_argument('--manual-hints', type=str, nargs='+', help='Manually curated hints files')
    run_parser.add_argument('--cpus', type=int, help='Cores to use')
    run_parser.add_argument('--force', action='store_true', help='Regenerate every artifact')
    run_parser.add_argument('--skip-training', action='store_true', help='Use existing parameters')
    run_parser.add_argument('--utr', action='store_true', help='Add a UTR prediction pass')
    run_parser.add_argument('--crf', action='store_true', help='Try CRF training')
    run_parser.add_argument('--keep-crf', action='store_true', help='Keep CRF parameters regardless of score')
    run_parser.add_argument('--gff3', action='store_true', help='Also write the final set as GFF3')
    run_parser.add_argument('--reference', type=str, help='Reference annotation to evaluate against')
    run_parser.add_argument('--no-cleanup', action='store_true', help='Keep per-job files')

    # Hints aggregation
    hints_parser = subparsers.add_parser('hints', help='Build a canonical hints file')
    hints_parser.add_argument('sources', nargs='+', help='Hints files')
    hints_parser.add_argument('-o', '--output', required=True, help='Output hints file')

    # Partition
    partition_parser = subparsers.add_parser('partition', help='Split a genome into prediction jobs')
    partition_parser.add_argument('--genome', required=True, help='Genome FASTA')
    partition_parser.add_argument('--hints', help='Canonical hints file')
    partition_parser.add_argument('--job-dir', required=True, help='Directory for chunk files')
    partition_parser.add_argument('--chunk-size', type=int, help='Maximum bases per chunk')
    partition_parser.add_argument('--overlap', type=int, help='Overlap of consecutive slices')

    # Training
    train_parser = subparsers.add_parser('train', help='Train the species parameters')
    train_parser.add_argument('--genome', type=str, help='Genome FASTA')
    train_parser.add_argument('--training-genes', type=str, help='Training gene structures (GTF)')
    train_parser.add_argument('--species', type=str, help='Species name of the parameter set')
    train_parser.add_argument('--working-dir', type=str, help='Working directory')
    train_parser.add_argument('--force', action='store_true', help='Retrain even if fresh')

    # Joining
    join_parser = subparsers.add_parser('join', help='Join prediction outputs')
    join_parser.add_argument('-o', '--output', required=True, help='Joined GTF')
    join_parser.add_argument('--jobs', help=f'{DESCRIPTOR_FILE} written by the partition command')
    join_parser.add_argument('--protein', help='Protein-weighted prediction set')
    join_parser.add_argument('--rna', help='RNA-weighted prediction set')

    # Evaluation
    evaluate_parser = subparsers.add_parser('evaluate', help='Compare prediction sets with a reference')
    evaluate_parser.add_argument('--reference', required=True, help='Reference annotation (GTF)')
    evaluate_parser.add_argument('predictions', nargs='+', help='NAME=PATH prediction sets')
    evaluate_parser.add_argument('-o', '--output', help='Write the table to this file')

    # Status
    subparsers.add_parser('status', help='Show which stages are up to date')

    return parser


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Configuration overrides from command line options"""
    overrides: Dict[str, Any] = {}

    def put(key: str, value: Any) -> None:
        if value is None or value is False:
            return
        current = overrides
        parts = key.split('.')
        for part in parts[:-1]:
            current = current.setdefault(part, {})
        current[parts[-1]] = value

    def get(name: str) -> Any:
        return getattr(args, name, None)

    put('input.genome', get('genome'))
    put('species', get('species'))
    put('paths.working_dir', get('working_dir'))
    put('input.training_genes', get('training_genes'))
    put('evidence.protein_hints', get('protein_hints'))
    put('evidence.rna_hints', get('rna_hints'))
    put('evidence.manual_hints', get('manual_hints'))
    put('pipeline.cpus', get('cpus'))
    put('pipeline.force_overwrite', get('force'))
    put('training.skip', get('skip_training'))
    put('prediction.utr', get('utr'))
    put('training.crf', get('crf'))
    put('training.keep_crf', get('keep_crf'))
    put('output.gff3', get('gff3'))
    put('evaluation.reference', get('reference'))
    put('prediction.chunk_size', get('chunk_size'))
    put('prediction.overlap', get('overlap'))
    if get('no_cleanup'):
        overrides.setdefault('pipeline', {})['cleanup'] = False
    return overrides


def _print(args: argparse.Namespace, data: Any, lines: List[str]) -> None:
    if args.json:
        print(json.dumps(data, indent=2, default=str))
    else:
        for line in lines:
            print(line)


def cmd_run(args: argparse.Namespace, context: PipelineContext) -> int:
    service = PipelineOrchestrationService(context)
    run = service.run_pipeline()
    summary = run.get_summary()
    lines = [f"Pipeline run {run.run_id}: {'completed' if run.success else 'failed'}"]
    for result in run.stages:
        state = 'skipped' if result.skipped else ('ok' if result.success else 'FAILED')
        lines.append(f"  {result.stage.value:<18} {state:<8} {result.duration:8.1f}s")
    lines.append(f"Final gene set: {service.context.final_gtf}")
    _print(args, summary, lines)
    return 0 if run.success else 1


def cmd_hints(args: argparse.Namespace, context: PipelineContext) -> int:
    result = aggregate_files(args.sources, args.output)
    data = {
        'output': result.output_path,
        'records_read': result.records_read,
        'records_written': result.records_written,
        'merged_records': result.merged_records,
        'protected_records': result.protected_records,
        'sources': sorted(result.sources_found),
    }
    _print(args, data, [
        f"Wrote {result.records_written} hints to {result.output_path}",
        f"Duplicates merged: {result.merged_records}, protected: {result.protected_records}",
        f"Sources: {', '.join(sorted(result.sources_found))}",
    ])
    return 0


def cmd_partition(args: argparse.Namespace, context: PipelineContext) -> int:
    partitioner = GenomePartitioner.from_context(context)
    descriptors = partitioner.partition(args.genome, args.hints, args.job_dir)
    descriptor_file = os.path.join(args.job_dir, DESCRIPTOR_FILE)
    with atomic_write(descriptor_file, 'w') as f:
        json.dump([d.to_dict() for d in descriptors], f, indent=2)
    _print(args, [d.to_dict() for d in descriptors], [
        f"{len(descriptors)} jobs written to {args.job_dir}",
        f"Descriptors: {descriptor_file}",
    ])
    return 0


def cmd_train(args: argparse.Namespace, context: PipelineContext) -> int:
    outcome = TrainingLoop(context).run()
    data = outcome.to_dict()
    data['skipped'] = outcome.skipped
    lines = [f"Training {'up to date' if outcome.skipped else 'finished'}: "
             f"model stage {outcome.model_stage.value}"]
    lines += [f"  {name:<10} score {score:.2f}" for name, score in outcome.scores.items()]
    _print(args, data, lines)
    return 0


def cmd_join(args: argparse.Namespace, context: PipelineContext) -> int:
    joiner = PredictionJoiner.from_context(context)
    if args.jobs:
        with open(args.jobs, 'r') as f:
            descriptors = [JobDescriptor.from_dict(d) for d in json.load(f)]
        joiner.join_partitions(descriptors, args.output)
        _print(args, {'output': args.output, 'jobs': len(descriptors)},
               [f"Joined {len(descriptors)} job outputs into {args.output}"])
        return 0

    if not (args.protein and args.rna):
        raise ValidationError("join needs either --jobs or both --protein and --rna")
    result = joiner.join_dual(GeneSet.read_gtf(args.protein, name="protein"),
                              GeneSet.read_gtf(args.rna, name="rna"), args.output)
    _print(args, vars(result), [
        f"Join basis: {result.basis_label} ({result.basis_supported} supported transcripts)",
        f"Overlay: {result.overlay_label} ({result.overlay_supported} supported transcripts)",
        f"Merged {result.merged_count}, recovered {result.missed_count}, total {result.total_count}",
    ])
    return 0


def _parse_prediction_args(values: List[str]) -> Dict[str, str]:
    predictions = {}
    for value in values:
        name, sep, path = value.partition('=')
        if not sep:
            name, path = os.path.splitext(os.path.basename(value))[0], value
        predictions[name] = path
    return predictions


def cmd_evaluate(args: argparse.Namespace, context: PipelineContext) -> int:
    df = evaluate_against_reference(args.reference, _parse_prediction_args(args.predictions))
    if args.output:
        write_accuracy_table(df, args.output)
    if args.json:
        print(df.to_json(orient='columns', indent=2))
    else:
        print(df.to_string(float_format=lambda v: f"{v:.2f}"))
    return 0


def cmd_status(args: argparse.Namespace, context: PipelineContext) -> int:
    status = PipelineOrchestrationService(context).get_status()
    lines = [f"Species {status['species']} in {status['working_dir']}"]
    for stage in status['stages']:
        lines.append(f"  {stage['stage']:<18} {'up to date' if stage['fresh'] else 'stale'}")
    training = status['training']
    if training:
        lines.append(f"Training state: {training['state']} (model stage {training['model_stage']})")
    _print(args, status, lines)
    return 0


COMMANDS = {
    'run': cmd_run,
    'hints': cmd_hints,
    'partition': cmd_partition,
    'train': cmd_train,
    'join': cmd_join,
    'evaluate': cmd_evaluate,
    'status': cmd_status,
}


@cli_error_handler
def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    config_manager = ConfigManager(args.config, _overrides(args))
    context = PipelineContext.from_config(config_manager)

    log_dir = args.log_dir or (context.log_dir if args.command == 'run' else None)
    LoggingManager.configure(
        verbose=args.verbose,
        log_file=args.log_file,
        log_dir=log_dir,
        component="genepipe",
        config=config_manager.config
    )
    logger.info(f"genepipe {args.command} starting")

    return COMMANDS[args.command](args, context)


if __name__ == "__main__":
    sys.exit(main())
