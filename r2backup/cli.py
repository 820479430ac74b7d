"""Command line entry point for r2backup."""

import os
import signal
import sys
import logging

import click

from r2backup import __version__, configure_logging
from r2backup.config import ConfigError, load_config


logger = logging.getLogger(__name__)


def _terminate(signum, frame):
    # Turn SIGTERM into SystemExit so `finally` blocks clean up the working directory
    sys.exit(128 + signum)


def _load(ctx):
    """Load configuration and set up logging once per invocation."""
    try:
        config = load_config(env_file=ctx.obj['env_file'])
    except ConfigError as e:
        configure_logging(verbose=ctx.obj['verbose'])
        raise click.UsageError(f"Configuration error: {e}")

    configure_logging(config.log_file, verbose=ctx.obj['verbose'])
    return config


@click.group(invoke_without_command=True)
@click.option('--env-file', '-e', default=None, type=click.Path(dir_okay=False),
              help='Path to .env file (default: ./.env if present)')
@click.option('--verbose', '-v', is_flag=True, help='Show debug logging')
@click.version_option(version=__version__, prog_name='r2backup')
@click.pass_context
def cli(ctx, env_file, verbose):
    """Back up local paths to Cloudflare R2 with zstd compression and rotation.

    Without a command, runs a full backup: archive, upload, rotate.
    """
    ctx.ensure_object(dict)
    ctx.obj['env_file'] = env_file
    ctx.obj['verbose'] = verbose

    signal.signal(signal.SIGTERM, _terminate)

    if ctx.invoked_subcommand is None:
        ctx.invoke(run)


@cli.command()
@click.pass_context
def run(ctx):
    """Create an archive, upload it, and rotate old backups."""
    from r2backup.backup.executor import run_backup

    config = _load(ctx)
    result = run_backup(config)
    ctx.exit(result.exit_code)


@cli.command()
@click.option('--probe', is_flag=True, help='Also check that the bucket is reachable')
@click.pass_context
def check(ctx, probe):
    """Validate configuration and dependencies without backing up."""
    import boto3
    import zstandard

    config = _load(ctx)
    logger.info("Test mode - checking configuration")
    logger.info(f"boto3 {boto3.__version__}, zstandard {zstandard.__version__}")
    logger.info(f"Configuration: {config.describe()}")

    existing = [p for p in config.source_paths if os.path.lexists(p)]
    for path in config.source_paths:
        if path in existing:
            logger.info(f"Source path OK: {path}")
        else:
            logger.warning(f"Path does not exist: {path}")

    if not existing:
        logger.error("No valid paths to back up")
        ctx.exit(1)

    if probe:
        from r2backup.backup.storage import R2Storage, StorageError

        try:
            R2Storage.from_config(config).probe()
        except StorageError as e:
            logger.error(f"{e}")
            logger.error(
                "Check your R2_ENDPOINT, R2_ACCESS_KEY_ID, R2_SECRET_ACCESS_KEY, "
                "R2_BUCKET_NAME, R2_REGION settings"
            )
            ctx.exit(1)
        logger.info(f"Bucket is available: {config.bucket_name}")

    logger.info("Configuration is correct")


@cli.command()
@click.pass_context
def rotate(ctx):
    """Delete backups older than the retention period, nothing else."""
    from r2backup.backup.executor import run_rotation
    from r2backup.backup.storage import StorageError

    config = _load(ctx)
    logger.info("Running backup rotation only")

    try:
        run_rotation(config)
    except StorageError as e:
        logger.error(f"Backup rotation failed: {e}")
        ctx.exit(1)


@cli.command()
@click.pass_context
def schedule(ctx):
    """Run the backup every day at BACKUP_HOUR:BACKUP_MINUTE."""
    from r2backup.scheduler import start_scheduler

    config = _load(ctx)
    start_scheduler(config)


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
