"""offlinecache - Offline caching layer for a static advocacy site."""

import argparse
import json
import logging
import signal
import sys
from dataclasses import dataclass
from threading import Event
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    import sqlite3

    from .config import Config
    from .network import HttpFetcher
    from .storage import CacheStorage
    from .submissions import SubmissionQueue
    from .worker import ServiceWorker

__version__ = "0.1.0"

# Global shutdown event for signal handlers
_shutdown_event: Optional[Event] = None

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


def _handle_shutdown(signum: int, frame: object) -> None:
    """Signal handler for graceful shutdown."""
    sig_name = signal.Signals(signum).name
    logger.info("Received %s, initiating shutdown...", sig_name)
    if _shutdown_event is not None:
        _shutdown_event.set()


@dataclass
class _Components:
    """Everything a command needs, built from one configuration."""

    worker: "ServiceWorker"
    fetcher: "HttpFetcher"
    storage: "CacheStorage"
    queue: "SubmissionQueue"
    db_conn: "sqlite3.Connection"

    def close(self) -> None:
        self.worker.close()
        self.fetcher.close()
        self.db_conn.close()


def _build_components(config: "Config") -> _Components:
    """Wire storage, network, queue and worker from configuration.

    Raises:
        DatabaseError: If the database cannot be opened.
    """
    from .database import init_db
    from .network import HttpFetcher
    from .storage import open_storage
    from .submissions import BackgroundSync, SubmissionQueue
    from .worker import ServiceWorker

    # The memory backend still keeps the submission queue in SQLite
    db_path = config.storage.path if config.storage.backend == "sqlite" else ":memory:"
    db_conn = init_db(db_path)
    storage = open_storage(config.storage.backend, db_conn)
    fetcher = HttpFetcher(timeout=config.network.timeout, user_agent=config.network.user_agent)
    queue = SubmissionQueue(db_conn)
    background_sync = BackgroundSync(
        queue,
        fetcher,
        config.site.origin,
        donation_endpoint=config.sync.donation_endpoint,
    )
    worker = ServiceWorker(
        storage,
        fetcher,
        origin=config.site.origin,
        generation=config.cache.generation,
        manifest=config.cache.manifest,
        offline_url=config.cache.offline_url,
        background_sync=background_sync,
    )
    return _Components(worker=worker, fetcher=fetcher, storage=storage, queue=queue, db_conn=db_conn)


def _load(args: argparse.Namespace):
    """Load configuration and build components, exiting on failure."""
    from .config import ConfigError, load_config
    from .database import DatabaseError

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}")
        sys.exit(1)

    try:
        return config, _build_components(config)
    except DatabaseError as e:
        print(f"Error: {e}")
        sys.exit(1)


def _cmd_run(args: argparse.Namespace) -> None:
    """Execute the run command - install, activate and serve the offline proxy."""
    global _shutdown_event

    _setup_logging(args.verbose)

    logger.info("offlinecache %s starting...", __version__)

    from .config import ConfigError, load_config
    from .database import DatabaseError
    from .proxy import ProxyError, ProxyServer
    from .worker import InstallError

    # 1. Load configuration
    try:
        config = load_config(args.config)
        logger.info("Configuration loaded from %s", args.config)
        logger.info("Cache generation %s with %d manifest entries", config.cache.generation, len(config.cache.manifest))
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(1)

    # 2. Open storage and build the worker
    try:
        components = _build_components(config)
    except DatabaseError as e:
        logger.error("Database error: %s", e)
        sys.exit(1)

    # 3. Lifecycle: install then activate
    try:
        components.worker.install()
    except InstallError as e:
        logger.error("%s", e)
        components.close()
        sys.exit(1)
    components.worker.activate()

    # 4. Setup shutdown handler
    _shutdown_event = Event()
    signal.signal(signal.SIGTERM, _handle_shutdown)
    signal.signal(signal.SIGINT, _handle_shutdown)

    proxy: Optional[ProxyServer] = None

    try:
        if config.proxy.enabled:
            try:
                proxy = ProxyServer(
                    config.proxy,
                    components.worker,
                    components.fetcher,
                    components.storage,
                    queue=components.queue,
                    sync_config=config.sync,
                )
                proxy.start()
            except ProxyError as e:
                logger.error("Failed to start proxy server: %s", e)
                logger.warning("Continuing without proxy server")
                proxy = None

        logger.info("All components started, waiting for shutdown signal...")

        _shutdown_event.wait()

    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    finally:
        logger.info("Shutting down components...")

        if proxy is not None:
            proxy.stop()

        components.close()
        logger.info("Shutdown complete")


def _cmd_install(args: argparse.Namespace) -> None:
    """Execute the install command - populate the current cache generation."""
    from .worker import InstallError

    config, components = _load(args)
    try:
        count = components.worker.install()
    except InstallError as e:
        print(f"Error: {e}")
        components.close()
        sys.exit(1)

    print(f"Cached {count} resources in {config.cache.generation}.")
    components.close()


def _cmd_purge(args: argparse.Namespace) -> None:
    """Execute the purge command - delete every cache store."""
    _, components = _load(args)
    deleted = components.worker.activate()
    print(f"Deleted {len(deleted)} cache store(s).")
    for name in deleted:
        print(f"  {name}")
    components.close()


def _cmd_status(args: argparse.Namespace) -> None:
    """Execute the status command - list cache stores and pending submissions."""
    from .database import DatabaseError
    from .models import SUBMISSION_KINDS
    from .storage import StorageError

    config, components = _load(args)
    try:
        names = components.storage.keys()
        print(f"Current generation: {config.cache.generation}")
        if not names:
            print("No cache stores.")
        for name in names:
            marker = "*" if name == config.cache.generation else " "
            print(f"{marker} {name}: {len(components.storage.open(name))} entries")
        for kind in SUBMISSION_KINDS:
            print(f"Pending {kind} submissions: {components.queue.count(kind)}")
    except (StorageError, DatabaseError) as e:
        print(f"Error: {e}")
        components.close()
        sys.exit(1)
    components.close()


def _cmd_sync(args: argparse.Namespace) -> None:
    """Execute the sync command - replay queued submissions for a tag."""
    from .submissions import SYNC_TAGS

    if args.tag not in SYNC_TAGS:
        print(f"Error: Unknown sync tag '{args.tag}'. Must be one of: {', '.join(SYNC_TAGS)}")
        sys.exit(1)

    _, components = _load(args)
    report = components.worker.sync(args.tag)
    print(f"{report.tag}: {report.replayed}/{report.attempted} replayed, {report.failed} still pending")
    components.close()

    if report.failed:
        sys.exit(1)


def _cmd_classify(args: argparse.Namespace) -> None:
    """Execute the classify command - show which strategy a request would use."""
    from .config import ConfigError, load_config
    from .models import Request
    from .router import classify

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}")
        sys.exit(1)

    headers = {"Accept": args.accept} if args.accept else {}
    strategy = classify(Request(args.url, method=args.method, headers=headers), config.site.origin)
    print(json.dumps({"url": args.url, "method": args.method.upper(), "strategy": strategy.value}))


def _add_config_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-c", "--config",
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)",
    )


def main() -> None:
    """Main entry point for the offlinecache package."""
    parser = argparse.ArgumentParser(
        description="offlinecache - Offline caching layer for a static advocacy site"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"offlinecache {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command")

    # Run subcommand (default behavior)
    run_parser = subparsers.add_parser(
        "run",
        help="Install, activate and serve the offline proxy (default)",
    )
    _add_config_argument(run_parser)
    run_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )
    run_parser.set_defaults(func=_cmd_run)

    install_parser = subparsers.add_parser(
        "install",
        help="Populate the current cache generation from the asset manifest",
    )
    _add_config_argument(install_parser)
    install_parser.set_defaults(func=_cmd_install)

    purge_parser = subparsers.add_parser(
        "purge",
        help="Delete every cache store (as activation does)",
    )
    _add_config_argument(purge_parser)
    purge_parser.set_defaults(func=_cmd_purge)

    status_parser = subparsers.add_parser(
        "status",
        help="Show cache stores and pending submissions",
    )
    _add_config_argument(status_parser)
    status_parser.set_defaults(func=_cmd_status)

    sync_parser = subparsers.add_parser(
        "sync",
        help="Replay queued submissions for a background sync tag",
    )
    _add_config_argument(sync_parser)
    sync_parser.add_argument(
        "tag",
        help="Sync tag: form-submission or donation-submission",
    )
    sync_parser.set_defaults(func=_cmd_sync)

    classify_parser = subparsers.add_parser(
        "classify",
        help="Show which caching strategy a request would use",
    )
    _add_config_argument(classify_parser)
    classify_parser.add_argument("url", help="Absolute request URL")
    classify_parser.add_argument(
        "--method",
        default="GET",
        help="Request method (default: GET)",
    )
    classify_parser.add_argument(
        "--accept",
        help="Accept header value, e.g. text/html",
    )
    classify_parser.set_defaults(func=_cmd_classify)

    args = parser.parse_args()

    # Default to 'run' if no command specified
    if args.command is None:
        args.config = "config.yaml"
        args.verbose = False
        args.func = _cmd_run

    if args.func is not _cmd_run:
        _setup_logging(verbose=False)

    args.func(args)
