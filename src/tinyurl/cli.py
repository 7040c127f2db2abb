"""
Command-line interface for the URL shortener.

This module provides the main CLI entry point with commands for:
- serve: Run the HTTP server
- submit: Shorten a URL locally or through a running server
- dump: Export every mapping as CSV
- config: Configuration management

Settings are read from a JSON file (--config, or the TINYURL_CONFIG
environment variable) and environment variables, optionally from a .env file.
"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Mapping, Optional

import requests
from dotenv import load_dotenv

from . import __version__
from .audit_logger import AuditLogger, parse_level
from .config import (
    DEFAULT_CHECK_FLAGS,
    CacheConfig,
    LoggingConfig,
    ServerConfig,
    StorageConfig,
    SurblConfig,
    SystemConfig,
    TimeoutConfig,
    WhitelistConfig,
    format_check_flags,
    parse_check_flags,
)
from .exceptions import TinyURLError
from .persistence import create_storage
from .service import build_service


DEFAULT_CONFIG_PATH = Path.home() / ".tinyurl" / "config.json"
CONFIG_ENV_VAR = "TINYURL_CONFIG"


def create_default_config(
    simulation_mode: bool = False,
    storage_dir: Optional[Path] = None,
) -> SystemConfig:
    """
    Create a default system configuration.

    Args:
        simulation_mode: Enable simulation mode (no real network requests)
        storage_dir: Storage directory (defaults to ~/.tinyurl/storage)

    Returns:
        SystemConfig with default settings
    """
    storage = StorageConfig(directory=storage_dir) if storage_dir else StorageConfig()
    return SystemConfig(
        checks=parse_check_flags(DEFAULT_CHECK_FLAGS),
        storage=storage,
        logging=LoggingConfig(level="info", output_format="text"),
        simulation_mode=simulation_mode,
    )


def load_config_from_file(config_path: Path) -> Optional[SystemConfig]:
    """
    Load configuration from a JSON file.

    Args:
        config_path: Path to the configuration file

    Returns:
        SystemConfig if successful, None otherwise
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        unknown: list[str] = []
        checks = parse_check_flags(data.get("checks", DEFAULT_CHECK_FLAGS), unknown)
        if unknown:
            print(f"Ignoring unknown check flags: {', '.join(unknown)}", file=sys.stderr)

        timeouts_data = data.get("timeouts", {})
        timeouts = TimeoutConfig(
            connect_seconds=timeouts_data.get("connect_seconds", 10.0),
            read_seconds=timeouts_data.get("read_seconds", 30.0),
        )

        whitelist_data = data.get("whitelist", {})
        whitelist = WhitelistConfig(
            source=whitelist_data.get("source"),
            reload_interval_seconds=whitelist_data.get("reload_interval_seconds", 10.0),
        )

        surbl_defaults = SurblConfig()
        surbl_data = data.get("surbl", {})
        surbl = SurblConfig(
            zone=surbl_data.get("zone", surbl_defaults.zone),
            two_level_tlds_url=surbl_data.get("two_level_tlds_url", surbl_defaults.two_level_tlds_url),
            three_level_tlds_url=surbl_data.get("three_level_tlds_url", surbl_defaults.three_level_tlds_url),
            refresh_interval_seconds=surbl_data.get(
                "refresh_interval_seconds", surbl_defaults.refresh_interval_seconds
            ),
        )

        cache_data = data.get("cache", {})
        cache = CacheConfig(
            capacity=cache_data.get("capacity", 128),
            ttl_seconds=cache_data.get("ttl_seconds", 60.0),
        )

        storage_data = data.get("storage", {})
        storage = StorageConfig(
            backend=storage_data.get("backend", "sqlite"),
            dump_key=storage_data.get("dump_key"),
        )
        if storage_data.get("directory"):
            storage.directory = Path(storage_data["directory"])

        server_data = data.get("server", {})
        server = ServerConfig(
            host=server_data.get("host", "127.0.0.1"),
            port=server_data.get("port", 8080),
        )

        logging_data = data.get("logging", {})
        logging_config = LoggingConfig(
            level=logging_data.get("level", "info"),
            audit_mode=logging_data.get("audit_mode", False),
            audit_signing_key=logging_data.get("audit_signing_key"),
            output_format=logging_data.get("output_format", "text"),
        )

        return SystemConfig(
            checks=checks,
            timeouts=timeouts,
            whitelist=whitelist,
            surbl=surbl,
            cache=cache,
            storage=storage,
            server=server,
            logging=logging_config,
            simulation_mode=data.get("simulation_mode", False),
        )

    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return None
    except FileNotFoundError:
        return None


def save_config_to_file(config: SystemConfig, config_path: Path) -> bool:
    """
    Save configuration to a JSON file.

    Args:
        config: SystemConfig to save
        config_path: Path to save the configuration

    Returns:
        True if successful, False otherwise
    """
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "checks": format_check_flags(config.checks),
            "timeouts": {
                "connect_seconds": config.timeouts.connect_seconds,
                "read_seconds": config.timeouts.read_seconds,
            },
            "whitelist": {
                "source": config.whitelist.source,
                "reload_interval_seconds": config.whitelist.reload_interval_seconds,
            },
            "surbl": {
                "zone": config.surbl.zone,
                "two_level_tlds_url": config.surbl.two_level_tlds_url,
                "three_level_tlds_url": config.surbl.three_level_tlds_url,
                "refresh_interval_seconds": config.surbl.refresh_interval_seconds,
            },
            "cache": {
                "capacity": config.cache.capacity,
                "ttl_seconds": config.cache.ttl_seconds,
            },
            "storage": {
                "directory": str(config.storage.directory),
                "backend": config.storage.backend,
                "dump_key": config.storage.dump_key,
            },
            "server": {
                "host": config.server.host,
                "port": config.server.port,
            },
            "logging": {
                "level": config.logging.level,
                "audit_mode": config.logging.audit_mode,
                "audit_signing_key": config.logging.audit_signing_key,
                "output_format": config.logging.output_format,
            },
            "simulation_mode": config.simulation_mode,
        }

        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

        return True

    except (OSError, TypeError) as e:
        print(f"Error saving config: {e}", file=sys.stderr)
        return False


def apply_env_overrides(config: SystemConfig, environ: Mapping[str, str]) -> SystemConfig:
    """
    Apply TINYURL_* environment variables on top of a configuration.

    Recognized: TINYURL_CHECKS, TINYURL_STORAGE_DIR, TINYURL_STORAGE_BACKEND,
    TINYURL_DUMP_KEY, TINYURL_WHITELIST, TINYURL_LOG_LEVEL, TINYURL_SIMULATION.
    """
    if "TINYURL_CHECKS" in environ:
        config.checks = parse_check_flags(environ["TINYURL_CHECKS"])
    if environ.get("TINYURL_STORAGE_DIR"):
        config.storage.directory = Path(environ["TINYURL_STORAGE_DIR"])
    if environ.get("TINYURL_STORAGE_BACKEND"):
        config.storage.backend = environ["TINYURL_STORAGE_BACKEND"]
    if environ.get("TINYURL_DUMP_KEY"):
        config.storage.dump_key = environ["TINYURL_DUMP_KEY"]
    if environ.get("TINYURL_WHITELIST"):
        config.whitelist.source = environ["TINYURL_WHITELIST"]
    if environ.get("TINYURL_LOG_LEVEL"):
        config.logging.level = environ["TINYURL_LOG_LEVEL"]
    if environ.get("TINYURL_SIMULATION", "").strip().lower() in ("1", "true", "yes"):
        config.simulation_mode = True
    return config


def resolve_config(args: argparse.Namespace) -> Optional[SystemConfig]:
    """Load the configuration named on the command line or in the environment."""
    path = getattr(args, "config", None) or os.getenv(CONFIG_ENV_VAR)
    if path:
        config = load_config_from_file(Path(path))
        if config is None:
            print(f"Error: Could not load config from {path}", file=sys.stderr)
            return None
    else:
        config = create_default_config()

    config = apply_env_overrides(config, os.environ)
    if getattr(args, "dry_run", False):
        config.simulation_mode = True
    return config


def create_logger(config: SystemConfig) -> AuditLogger:
    logger = AuditLogger(
        output_format=config.logging.output_format,
        level=parse_level(config.logging.level),
    )
    if config.logging.audit_mode and config.logging.audit_signing_key:
        logger.enable_audit_mode(config.logging.audit_signing_key)
    return logger


def cmd_serve(args: argparse.Namespace) -> int:
    """Handle the 'serve' command."""
    import uvicorn

    from .web import create_app

    config = resolve_config(args)
    if config is None:
        return 1
    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port

    logger = create_logger(config)
    logger.info("TinyURL", "Starting server", {
        "host": config.server.host,
        "port": config.server.port,
        "checks": format_check_flags(config.checks),
        "storage": str(config.storage.directory),
        "simulation_mode": config.simulation_mode,
    })

    app = create_app(build_service(config, logger), logger=logger)
    uvicorn.run(app, host=config.server.host, port=config.server.port, log_level="warning")
    return 0


async def submit_local(url: str, config: SystemConfig, logger: AuditLogger) -> int:
    async with build_service(config, logger) as service:
        try:
            result = await service.submit(url)
        except TinyURLError as e:
            print(json.dumps({"error": e.to_dict()}, ensure_ascii=False), file=sys.stderr)
            return 1
    print(json.dumps(result.to_response()))
    return 0


def submit_remote(url: str, server: str, timeout: TimeoutConfig) -> int:
    """POST url to a running server."""
    try:
        response = requests.post(
            server.rstrip("/") + "/u",
            data={"url": url},
            timeout=(timeout.connect_seconds, timeout.read_seconds),
        )
    except requests.RequestException as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    if response.status_code != 200:
        print(response.text, file=sys.stderr)
        return 1
    print(json.dumps(response.json()))
    return 0


def cmd_submit(args: argparse.Namespace) -> int:
    """Handle the 'submit' command."""
    config = resolve_config(args)
    if config is None:
        return 1
    if args.server:
        return submit_remote(args.url, args.server, config.timeouts)
    return asyncio.run(submit_local(args.url, config, create_logger(config)))


def dump_local(config: SystemConfig, logger: AuditLogger, output: Optional[Path]) -> int:
    """Export the configured storage directly, without a dump key."""
    with create_storage(config.storage.backend, config.storage.directory, logger=logger) as store:
        if output:
            with open(output, "wb") as f:
                count = store.dump(f)
            print(f"{count} mappings written to: {output}")
        else:
            store.dump(sys.stdout.buffer)
    return 0


def cmd_dump(args: argparse.Namespace) -> int:
    """Handle the 'dump' command."""
    config = resolve_config(args)
    if config is None:
        return 1
    output = Path(args.output) if args.output else None
    try:
        return dump_local(config, create_logger(config), output)
    except (TinyURLError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_config(args: argparse.Namespace) -> int:
    """Handle the 'config' command."""
    config_path = Path(args.path) if args.path else Path(os.getenv(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH)

    if args.action == "show":
        config = load_config_from_file(config_path)
        if config is None:
            print(f"No configuration found at: {config_path}")
            print("Use 'config init' to create a default configuration.")
            return 1

        print(f"Configuration from: {config_path}")
        print(f"  Checks: {format_check_flags(config.checks) or '(none)'}")
        print(f"  Whitelist: {config.whitelist_source()}")
        print(f"  Storage: {config.storage.backend} in {config.storage.directory}")
        print(f"  Dump key: {'configured' if config.storage.dump_key else 'generated at startup'}")
        print(f"  Cache: {config.cache.capacity} hosts, {config.cache.ttl_seconds:g}s")
        print(f"  Server: {config.server.host}:{config.server.port}")
        print(f"  Simulation mode: {config.simulation_mode}")
        print(f"  Log level: {config.logging.level}")
        print(f"  Audit mode: {config.logging.audit_mode}")
        return 0

    elif args.action == "init":
        if config_path.exists() and not args.force:
            print(f"Configuration already exists at: {config_path}")
            print("Use --force to overwrite.")
            return 1

        config = create_default_config()
        if save_config_to_file(config, config_path):
            print(f"Configuration created at: {config_path}")
            return 0
        return 1

    elif args.action == "validate":
        config = load_config_from_file(config_path)
        if config is None:
            print(f"Error: Could not load config from {config_path}", file=sys.stderr)
            return 1

        print(f"Configuration at {config_path} is valid.")
        return 0

    return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="tinyurl",
        description="URL shortener with whitelist, SURBL and reachability checks",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # 'serve' command
    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the HTTP server",
    )
    serve_parser.add_argument("--host", help="Bind address (default from config)")
    serve_parser.add_argument("--port", type=int, help="Bind port (default from config)")
    serve_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Simulation mode - no real network requests",
    )
    serve_parser.add_argument(
        "--config", "-c",
        help="Path to configuration file",
    )
    serve_parser.set_defaults(func=cmd_serve)

    # 'submit' command
    submit_parser = subparsers.add_parser(
        "submit",
        help="Shorten a URL",
    )
    submit_parser.add_argument(
        "url",
        help="URL to shorten",
    )
    submit_parser.add_argument(
        "--server", "-s",
        help="Base URL of a running server (default: use the local storage)",
    )
    submit_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Simulation mode - no real network requests",
    )
    submit_parser.add_argument(
        "--config", "-c",
        help="Path to configuration file",
    )
    submit_parser.set_defaults(func=cmd_submit)

    # 'dump' command
    dump_parser = subparsers.add_parser(
        "dump",
        help="Export every mapping as CSV",
    )
    dump_parser.add_argument(
        "--output", "-o",
        help="Path to write the CSV export (default: stdout)",
    )
    dump_parser.add_argument(
        "--config", "-c",
        help="Path to configuration file",
    )
    dump_parser.set_defaults(func=cmd_dump)

    # 'config' command
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
    )
    config_parser.add_argument(
        "action",
        choices=["show", "init", "validate"],
        help="Configuration action",
    )
    config_parser.add_argument(
        "--path", "-p",
        help="Path to configuration file",
    )
    config_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Force overwrite existing configuration",
    )
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    load_dotenv()

    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
