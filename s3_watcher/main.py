"""
Main entry point for the S3 folder watcher.
"""
import json
import signal
import sys
from pathlib import Path
from typing import Optional

import click
from loguru import logger

from .clients.s3_manager import S3Manager
from .exceptions import ConfigurationError, S3WatcherError
from .models.config import WatchConfig
from .services.watch_session import WatchSession


def setup_logging(level: str = "INFO", log_dir: Optional[str] = "logs"):
    """Configure logging for the watcher."""
    # Remove default logger
    logger.remove()

    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level=level
    )

    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        logger.add(
            str(Path(log_dir) / "s3_watcher.log"),
            rotation="10 MB",
            retention="7 days",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
            level="DEBUG"
        )


def load_config(source=None, bucket=None, prefix=None, region=None,
                endpoint=None, threshold=None) -> WatchConfig:
    """
    Load configuration from the environment with command line overrides.

    Raises:
        ConfigurationError: If the resulting configuration is invalid
    """
    config = WatchConfig.from_env().with_overrides(
        source=source,
        bucket=bucket,
        prefix=prefix,
        region=region,
        endpoint=endpoint,
        threshold=threshold
    )
    problems = config.validate()
    if problems:
        for problem in problems:
            logger.error(problem)
        raise ConfigurationError(problems)
    return config


def run_watch(config: WatchConfig, drain_timeout: Optional[float] = None) -> None:
    """Run a watch session until interrupted."""
    session = WatchSession(config)

    def _request_stop(signum, frame):
        logger.info(f"Received signal {signum}, shutting down gracefully")
        session.stop()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    session.run(drain_timeout=drain_timeout)


def _fail(error: S3WatcherError):
    logger.error(f"Fatal {error.subsystem} error: {error}")
    sys.exit(1)


_config_options = [
    click.option("--source", help="The directory to upload to s3. Example: /path/to/source"),
    click.option("--bucket", help="The name of the bucket to upload the files to. Example: my-s3-bucket"),
    click.option("--prefix", help="Key prefix for uploaded objects. Example: my-prefix/"),
    click.option("--region", help="The AWS region to use. Example: us-west-2"),
    click.option("--endpoint", help="Custom S3 endpoint URL for S3-compatible stores"),
    click.option("--threshold", type=int, help="Size in bytes above which multipart upload is used"),
]


def config_options(func):
    for option in reversed(_config_options):
        func = option(func)
    return func


@click.group(invoke_without_command=True)
@click.option("--log-level", default="INFO", show_default=True, help="Console log level")
@click.option("--log-dir", default="logs", show_default=True, help="Directory for the rotating log file")
@click.pass_context
def cli(ctx, log_level, log_dir):
    """S3 Folder Watcher - upload files written to a directory to S3."""
    setup_logging(level=log_level.upper(), log_dir=log_dir or None)
    if ctx.invoked_subcommand is None:
        logger.info("No command specified - starting watch mode")
        ctx.invoke(watch)


@cli.command()
@config_options
@click.option("--drain-timeout", type=float, default=None,
              help="Seconds to wait for in-flight uploads on shutdown")
def watch(source=None, bucket=None, prefix=None, region=None, endpoint=None,
          threshold=None, drain_timeout=None):
    """Watch the directory and upload written files."""
    try:
        config = load_config(source, bucket, prefix, region, endpoint, threshold)
        logger.info("Starting S3 File Watcher")
        run_watch(config, drain_timeout=drain_timeout)
    except S3WatcherError as e:
        _fail(e)


@cli.command()
@config_options
def check(source=None, bucket=None, prefix=None, region=None, endpoint=None, threshold=None):
    """Validate configuration and test the bucket connection."""
    try:
        config = load_config(source, bucket, prefix, region, endpoint, threshold)
    except ConfigurationError as e:
        _fail(e)
    if not S3Manager(config.s3).test_connection():
        logger.error(f"Cannot reach bucket {config.bucket}")
        sys.exit(1)
    logger.info("Configuration and bucket connection OK")


@cli.command("show-config")
@config_options
def show_config(source=None, bucket=None, prefix=None, region=None, endpoint=None, threshold=None):
    """Show the effective configuration."""
    try:
        config = WatchConfig.from_env().with_overrides(source, bucket, prefix, region, endpoint, threshold)
    except ConfigurationError as e:
        _fail(e)
    click.echo(json.dumps({
        'watch_directory': config.watch_directory,
        'bucket': config.bucket,
        'key_prefix': config.key_prefix,
        'region': config.s3.region,
        'endpoint': config.s3.endpoint,
        'size_threshold': config.size_threshold,
        'part_size': config.part_size,
        'multipart_concurrency': config.multipart_concurrency,
        'confirm_timeout': config.confirm_timeout,
        'max_retries': config.max_retries,
        'allowed_operations': sorted(kind.value for kind in config.allowed_operations),
        'problems': config.validate()
    }, indent=2))


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
