#!/usr/bin/env python3

import sys
import os
import argparse
import asyncio
import logging

from rich.console import Console
from rich.table import Table

from .cache.digest_cache import DigestCache
from .config.manager import ConfigManager
from .config.repos import load_repo_list
from .errors import AuthError, ConfigError, RateLimitedError
from .registry.client import RegistryClient
from .registry.retry import RetryPolicy
from .sync.driver import BatchDriver, BatchResult
from .sync.planner import OutcomeStatus, SyncPlanner
from .systemd.service_generator import SystemdServiceGenerator
from .transfer.operation import ImageTransfer, is_retryable_transfer
from .transfer.strategies import build_strategies

def setup_logging(level: str = "INFO"):
    """Configure logging for the application"""
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Determine log file path
    if os.geteuid() == 0:
        log_file = "/var/log/hub-mirror.log"
    else:
        log_file = os.path.expanduser("~/.local/log/hub-mirror.log")
        # Ensure the log directory exists
        os.makedirs(os.path.dirname(log_file), exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=log_format,
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file)
        ]
    )

def create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser"""
    parser = argparse.ArgumentParser(
        description="Docker Hub Mirror",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s sync                               # Mirror every repository in the configured list
  %(prog)s sync ~/backup_repos.conf           # Mirror the repositories in a specific list
  %(prog)s cache --show                       # Show cached digests
  %(prog)s setup-systemd --user               # Create a daily systemd timer for the user
        """
    )

    parser.add_argument(
        "--config", "-c",
        help="Path to configuration file",
        default=None
    )

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Set logging level (defaults to log_level from the configuration)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Sync command
    sync_parser = subparsers.add_parser("sync", help="Mirror repositories from the repository list")
    sync_parser.add_argument(
        "repos_file",
        nargs="?",
        default=None,
        help="Repository list (defaults to repos_file from the configuration)"
    )
    sync_parser.add_argument(
        "--no-descriptions",
        action="store_true",
        help="Don't copy repository descriptions"
    )

    # Cache command
    cache_parser = subparsers.add_parser("cache", help="Inspect the digest cache")
    cache_parser.add_argument("--show", action="store_true", help="List every cached digest")
    cache_parser.add_argument("--path", action="store_true", help="Print the cache file path")

    # Setup systemd command
    systemd_parser = subparsers.add_parser("setup-systemd", help="Setup systemd service and timer")
    systemd_parser.add_argument(
        "--user", "-u",
        action="store_true",
        help="Create user-level systemd units"
    )
    systemd_parser.add_argument(
        "--no-timer",
        action="store_true",
        help="Don't create the timer unit"
    )
    systemd_parser.add_argument(
        "--schedule",
        default="daily",
        choices=["hourly", "daily", "weekly", "twice-daily", "every-6-hours"],
        help="Timer schedule"
    )
    systemd_parser.add_argument(
        "--environment-file",
        default=None,
        help="File providing DOCKER_USER and DOCKER_PASS to the service"
    )

    return parser

def build_driver(config_manager: ConfigManager, owner: str, metadata: RegistryClient,
                 transfer: ImageTransfer, sync_descriptions: bool = True) -> BatchDriver:
    config = config_manager.get_config()
    cache = DigestCache(config.cache_file)
    planner = SyncPlanner(
        metadata,
        transfer,
        cache,
        owner=owner,
        mutable_tags=config_manager.get_mutable_tags(),
        sync_descriptions=sync_descriptions and config.sync_descriptions,
        placeholder_description=config.placeholder_description
    )
    return BatchDriver(planner, cache, flag_file=config.flag_file, repository_delay=config.repository_delay)

def print_summary(batch: BatchResult):
    markers = {
        OutcomeStatus.COPIED: "✓",
        OutcomeStatus.COPIED_DIGEST_CHANGED: "✓",
        OutcomeStatus.UNCHANGED: "✓",
        OutcomeStatus.FAILED: "✗",
    }

    for result in batch.results:
        print(f"\n{result.repository} -> {result.target}:")
        if result.error:
            print(f"  ✗ skipped - {result.error}")
            continue

        skipped = result.count(OutcomeStatus.SKIPPED)
        if skipped:
            print(f"  · {skipped} tags already mirrored")

        for outcome in result.outcomes:
            if outcome.status == OutcomeStatus.SKIPPED:
                continue
            marker = markers[outcome.status]
            if outcome.status == OutcomeStatus.COPIED:
                print(f"  {marker} {outcome.tag} - copied ({outcome.new_digest or 'digest unknown'})")
            elif outcome.status == OutcomeStatus.COPIED_DIGEST_CHANGED:
                print(f"  {marker} {outcome.tag} - re-synced ({outcome.old_digest or 'not cached'} -> {outcome.new_digest})")
            elif outcome.status == OutcomeStatus.UNCHANGED:
                print(f"  {marker} {outcome.tag} - digest unchanged")
            else:
                print(f"  {marker} {outcome.tag} - failed: {outcome.reason}")

        if not result.any_new_copied:
            print("  ! no new tags, mutable tags not checked")

    failed = len(batch.failed_repositories)
    print(f"\n{len(batch.results)} repositories processed, {failed} skipped")
    print("Digest cache updated" if batch.cache_changed else "Digest cache unchanged")

async def cmd_sync(args, config_manager: ConfigManager):
    """Handle sync command"""
    config = config_manager.get_config()
    username, password = config_manager.get_credentials()
    repos_file = config_manager.resolve_repos_file(args.repos_file)
    entries = load_repo_list(repos_file, config.default_namespace)

    metadata = RegistryClient(config)
    metadata.login(username, password)

    transfer = ImageTransfer(
        build_strategies(config.transfer_tools),
        metadata,
        source_registry=config.source_registry,
        copy_delay=config.copy_delay,
        retry_policy=RetryPolicy(
            max_attempts=config.transfer_attempts,
            delay=config.retry_delay,
            is_retryable=is_retryable_transfer
        )
    )
    transfer.login(username, password)

    driver = build_driver(config_manager, username, metadata, transfer,
                          sync_descriptions=not args.no_descriptions)

    print(f"Mirroring {len(entries)} repositories into {username}...")
    batch = await driver.run(entries)
    print_summary(batch)
    return 0

def cmd_cache(args, config_manager: ConfigManager):
    """Handle cache command"""
    config = config_manager.get_config()
    cache_path = os.path.abspath(config.cache_file)

    if args.path:
        print(cache_path)
        return 0

    if not os.path.exists(cache_path):
        print(f"No digest cache at {cache_path}")
        return 0

    cache = DigestCache(cache_path).load()
    repositories = {key.rsplit(':', 1)[0] for key, _ in cache.items()}
    print(f"Digest cache: {len(cache)} tags across {len(repositories)} repositories")

    if args.show:
        table = Table(title=cache_path)
        table.add_column("Tag")
        table.add_column("Digest", no_wrap=True)
        for key, digest in cache.items():
            table.add_row(key, digest)
        Console().print(table)

    return 0

def cmd_setup_systemd(args, config_manager: ConfigManager):
    """Handle setup-systemd command"""
    service_gen = SystemdServiceGenerator(config_manager)

    try:
        created = service_gen.create_service_files(
            user_mode=args.user,
            enable_timer=not args.no_timer,
            schedule=args.schedule,
            environment_file=args.environment_file
        )
    except PermissionError as e:
        print(f"Error creating systemd units: {e}")
        return 1

    print(f"Created {created['service_file']}")
    if created['timer_file']:
        print(f"Created {created['timer_file']}")

    systemctl = "systemctl --user" if args.user else "sudo systemctl"
    print("\nTo enable the schedule, run:")
    print(f"  {systemctl} daemon-reload")
    if created['timer_file']:
        print(f"  {systemctl} enable --now {created['service_name']}.timer")

    return 0

async def main():
    """Main entry point"""
    parser = create_argument_parser()
    args = parser.parse_args()

    # Setup logging
    setup_logging(args.log_level or "INFO")
    logger = logging.getLogger(__name__)

    try:
        config_manager = ConfigManager(args.config)
        if args.log_level is None:
            logging.getLogger().setLevel(config_manager.get_config().log_level.upper())

        # Route to appropriate command handler
        if args.command == "sync":
            return await cmd_sync(args, config_manager)

        elif args.command == "cache":
            return cmd_cache(args, config_manager)

        elif args.command == "setup-systemd":
            return cmd_setup_systemd(args, config_manager)

        else:
            parser.print_help()
            return 1

    except ConfigError as e:
        print(f"✗ Configuration error: {e}")
        return 1

    except AuthError as e:
        print(f"✗ Authentication failed: {e}")
        return 1

    except RateLimitedError as e:
        print(f"✗ Docker Hub rate limit reached, stopping: {e}")
        return 1

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130

    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        if args.log_level == "DEBUG":
            import traceback
            traceback.print_exc()
        return 1

if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
