import asyncio
import argparse
import json
import logging
import signal
import sys
from pathlib import Path

from .benchmark.benchmark import ChunkingBenchmarker
from .config import AppConfig, ConfigError, create_remote_store, load_config
from .log import setup_logging
from .manifest.delta import calculate_upload_size, detect_delta
from .manifest.model import BuildType, ManifestError, load_manifest
from .packaging.pipeline import PackageOptions, PackagingError, generate_manifest
from .remote.client import RemoteStoreError
from .storage.chunk_store import ChunkStore
from .upload.orchestrator import PromotionError, UploadError, UploadMode, UploadOrchestrator
from .upload.progress import ProgressEvent

logger = logging.getLogger(__name__)

EXIT_FATAL = 1
EXIT_INCOMPLETE = 2


def log_progress(event: ProgressEvent):
    """Progress updates go to the log"""
    line = f"[{event.percentage:5.1f}%] {event.message}"
    if event.error:
        logger.warning(line)
    elif event.chunk_status:
        logger.debug(line)
    else:
        logger.info(line)


def require(args, *names):
    """Fail early on missing per-mode options"""
    missing = [f"--{n.replace('_', '-')}" for n in names if not getattr(args, n)]
    if missing:
        raise ConfigError(f"Mode '{args.mode}' requires {', '.join(missing)}")


def build_config(args) -> AppConfig:
    """Config file first, command line flags on top"""
    config = load_config(Path(args.config) if args.config else None)

    if args.min_size:
        config.chunking.min_size = args.min_size
    if args.avg_size:
        config.chunking.avg_size = args.avg_size
    if args.max_size:
        config.chunking.max_size = args.max_size
    config.chunking.validate()

    if args.include_pdb:
        config.filters.exclude_pdb = False
    if args.include_saved:
        config.filters.exclude_saved = False

    if args.backend:
        config.remote.backend = args.backend
    if args.bucket:
        config.remote.bucket = args.bucket
    if args.endpoint:
        config.remote.endpoint = args.endpoint
    if args.remote_root:
        config.remote.root = args.remote_root
    if args.chunks_dir:
        config.cache_dir = args.chunks_dir

    return config


def make_orchestrator(config: AppConfig, build_type: BuildType) -> UploadOrchestrator:
    remote = create_remote_store(config.remote, build_type.value)
    logger.info(f"Remote store: {remote.describe()}")
    return UploadOrchestrator(remote, ChunkStore(Path(config.cache_dir)), on_progress=log_progress)


async def run_package(args, config: AppConfig):
    """Chunk a build directory into a manifest"""
    require(args, 'source_dir', 'output_dir', 'version')
    logger.info("=== Preparing package ===")

    options = PackageOptions(
        source_dir=Path(args.source_dir),
        output_dir=Path(args.output_dir),
        version=args.version,
        build_type=BuildType.parse(args.build_type),
        chunking=config.chunking,
        filters=config.filters
    )
    result = await generate_manifest(options, on_progress=log_progress)

    stats = result.stats
    logger.info(f"Manifest: {result.manifest_path}")
    logger.info(f"Chunks: {result.chunks_dir}")
    logger.info(
        f"{stats.files_processed} files, {stats.total_chunks} chunks, "
        f"{stats.unique_chunks} unique (ratio {stats.deduplication_ratio})"
    )
    return 0


async def run_delta(args, config: AppConfig):
    """Report what a delta upload would transfer"""
    require(args, 'old_manifest', 'manifest')

    old = await load_manifest(Path(args.old_manifest))
    new = await load_manifest(Path(args.manifest))
    delta = detect_delta(old, new)

    report = {
        **delta.stats,
        'upload_bytes': calculate_upload_size(delta),
        'new_files': [f.filename for f in delta.new_files],
        'changed_files': [f.filename for f in delta.changed_files],
        'deleted_files': [f.filename for f in delta.deleted_files]
    }
    print(json.dumps(report, indent=2))
    return 0


def _install_session_signals(session):
    """SIGUSR1 pauses, SIGUSR2 resumes, SIGTERM cancels (POSIX only)"""
    if not hasattr(signal, 'SIGUSR1'):
        return

    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGUSR1, session.pause)
    loop.add_signal_handler(signal.SIGUSR2, session.resume)
    loop.add_signal_handler(signal.SIGTERM, session.cancel)


async def run_upload(args, config: AppConfig):
    """Upload chunks, manifest and version file"""
    require(args, 'manifest')
    logger.info("=== Uploading package ===")

    manifest = await load_manifest(Path(args.manifest))
    old = await load_manifest(Path(args.old_manifest)) if args.old_manifest else None

    if config.cache_dir == "./chunks" and not args.chunks_dir:
        # Packaging writes chunks beside the manifest
        config.cache_dir = str(Path(args.manifest).parent / 'chunks')

    orchestrator = make_orchestrator(config, manifest.build_type)
    plan = orchestrator.plan(manifest, old, UploadMode(args.upload_mode))
    logger.info(
        f"{plan.mode.value} upload of {manifest.build_type.value} {manifest.version}: "
        f"{len(plan.worklist)} chunks ({plan.upload_size / 1024 / 1024:.2f} MB)"
    )

    session = orchestrator.new_session(manifest, plan.worklist, plan.files_to_upload)
    _install_session_signals(session)
    stats = await session.run()

    logger.info(
        f"Uploaded {stats.uploaded_chunks}, skipped {stats.skipped_chunks}, "
        f"failed {stats.failed_chunks} of {stats.total_chunks} chunks"
    )
    if not stats.complete:
        for failure in stats.failed_details:
            logger.error(f"  {failure['hash']}: {failure['error']}")
        logger.error("Upload incomplete; re-run to retry failed chunks before promoting")
        return EXIT_INCOMPLETE
    return 0


async def run_verify(args, config: AppConfig):
    """Check every chunk of a manifest exists remotely"""
    require(args, 'manifest')

    manifest = await load_manifest(Path(args.manifest))
    result = await make_orchestrator(config, manifest.build_type).verify(manifest)

    logger.info(
        f"{len(result.existing_chunks)}/{result.total_chunks} chunks present, "
        f"{len(result.missing_chunks)} missing ({result.missing_size} bytes)"
    )
    return 0 if result.all_exist else EXIT_INCOMPLETE


async def run_promote(args, config: AppConfig):
    """Point the track's latest manifest at a verified version"""
    require(args, 'version')

    build_type = BuildType.parse(args.build_type)
    local = await load_manifest(Path(args.manifest)) if args.manifest else None
    result = await make_orchestrator(config, build_type).promote(
        args.version, build_type, local_manifest=local
    )
    logger.info(f"Promoted {result.version}: {result.latest_key}")
    return 0


async def run_versions(args, config: AppConfig):
    """List published versions of a track"""
    build_type = BuildType.parse(args.build_type)
    listing = await make_orchestrator(config, build_type).list_versions(build_type)

    for version in listing.versions:
        marker = " (current)" if version == listing.current_version else ""
        print(f"{version}{marker}")
    if not listing.versions:
        logger.info(f"No versions published for {args.build_type}")
    return 0


async def run_check(args, config: AppConfig):
    """Check the remote store is reachable and writable"""
    remote = create_remote_store(config.remote, args.build_type)
    test_connection = getattr(remote, 'test_connection', None)
    if test_connection is None:
        logger.info(f"{remote.describe()} needs no connection check")
        return 0

    result = await test_connection()
    if result['success']:
        logger.info(result['message'])
        return 0
    logger.error(result['message'])
    return EXIT_INCOMPLETE


async def run_benchmark(args, config: AppConfig):
    """Run chunking benchmarks"""
    logger.info("=== Starting chunking benchmark ===")

    benchmarker = ChunkingBenchmarker(output_dir=Path(args.output))
    await benchmarker.test_all_profiles(
        payload_size=args.payload_mb * 1024 * 1024,
        iterations=args.iterations
    )
    benchmarker.save_results()

    if not args.no_plot:
        benchmarker.generate_report()

    for r in benchmarker.results:
        logger.info(f"{r.profile}: {r.throughput_mb_s:.2f} MB/s, {r.chunk_count} chunks")
    return 0


MODES = {
    'package': run_package,
    'delta': run_delta,
    'upload': run_upload,
    'verify': run_verify,
    'promote': run_promote,
    'versions': run_versions,
    'check': run_check,
    'benchmark': run_benchmark,
}


def create_parser():
    """Create argument parser"""
    parser = argparse.ArgumentParser(
        description='chunkship - content-defined chunking and incremental package upload',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Chunk a build
  chunkship package --source-dir ./Build --output-dir ./out --version 1.4.0

  # Upload only what changed since 1.3.0
  chunkship upload --manifest ./out/manifest_production_1.4.0.json \\
      --old-manifest ./prev/manifest_production_1.3.0.json --config chunkship.yaml

  # Verify and release
  chunkship verify --manifest ./out/manifest_production_1.4.0.json --config chunkship.yaml
  chunkship promote --version 1.4.0 --config chunkship.yaml
        """
    )

    parser.add_argument(
        'mode',
        choices=list(MODES),
        help='Execution mode'
    )
    parser.add_argument(
        '--config',
        help='YAML configuration file'
    )

    # Packaging
    parser.add_argument('--source-dir', help='Build directory to package')
    parser.add_argument('--output-dir', help='Where manifest and chunks are written')
    parser.add_argument('--version', help='Package version')
    parser.add_argument(
        '--build-type',
        default='production',
        choices=[b.value for b in BuildType],
        help='Deployment track (default: production)'
    )
    parser.add_argument('--min-size', type=int, help='Minimum chunk size in bytes')
    parser.add_argument('--avg-size', type=int, help='Average chunk size in bytes')
    parser.add_argument('--max-size', type=int, help='Maximum chunk size in bytes')
    parser.add_argument('--include-pdb', action='store_true', help='Keep .pdb debug symbols')
    parser.add_argument('--include-saved', action='store_true', help='Keep Saved/ directories')

    # Manifests / upload
    parser.add_argument('--manifest', help='Manifest to upload, verify or promote')
    parser.add_argument('--old-manifest', help='Previous manifest for delta mode')
    parser.add_argument(
        '--mode',
        dest='upload_mode',
        default='delta',
        choices=[m.value for m in UploadMode],
        help='Upload mode (default: delta)'
    )
    parser.add_argument('--chunks-dir', help='Local chunk store directory')

    # Remote
    parser.add_argument('--backend', choices=['s3', 'local'], help='Remote store backend')
    parser.add_argument('--bucket', help='Bucket name (s3 backend)')
    parser.add_argument('--endpoint', help='S3-compatible endpoint URL')
    parser.add_argument('--remote-root', help='Directory for the local backend')

    # Benchmark
    parser.add_argument('--output', default='./benchmarks', help='Benchmark output directory')
    parser.add_argument('--iterations', type=int, default=3, help='Benchmark iterations (default: 3)')
    parser.add_argument('--payload-mb', type=int, default=32, help='Benchmark payload size in MB')
    parser.add_argument('--no-plot', action='store_true', help='Skip generating plots')

    # Logging
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    parser.add_argument('--quiet', action='store_true', help='Minimal output')

    return parser


async def main(argv=None) -> int:
    """Main entry point"""
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(debug=args.debug, quiet=args.quiet)

    try:
        config = build_config(args)
        return await MODES[args.mode](args, config)
    except PromotionError as e:
        logger.error(f"Promotion refused: {e}")
        return EXIT_FATAL
    except (ConfigError, ManifestError, PackagingError, UploadError, RemoteStoreError) as e:
        logger.error(f"{e}")
        return EXIT_FATAL
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return EXIT_FATAL


def run():
    """Console script entry point"""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user")
        sys.exit(130)


if __name__ == '__main__':
    run()
