"""
livebuild command line entry point.

Loads the project file, configures logging, then runs the build group
supervisor together with the optional reverse proxy and static file server
until SIGINT/SIGTERM.
"""

import argparse
import asyncio
import logging
import platform
import sys
from importlib import metadata
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from . import __version__
from .config import ConfigError, Settings
from .models import ProjectConfig
from .proxy import create_proxy_app, create_static_app
from .server import build_server, serve
from .supervisor import Supervisor

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(settings: Settings):
    """Configure the root logger with a console handler and an optional rotating file."""
    log_formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(log_formatter)
    handlers = [console_handler]

    if settings.log_file:
        settings.log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            settings.log_file,
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
        )
        file_handler.setFormatter(log_formatter)
        handlers.append(file_handler)

    logging.basicConfig(level=settings.level, handlers=handlers, force=True)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="livebuild",
        description="Build, run and restart projects when their files change.",
    )
    parser.add_argument("--config", type=Path, help="project file (default: $LIVEBUILD_CONFIG or livebuild.json)")
    parser.add_argument("--init", action="store_true", help="write a sample project file and exit")
    parser.add_argument("--force", action="store_true", help="overwrite an existing file with --init")
    parser.add_argument(
        "--build",
        dest="builds",
        action="append",
        default=[],
        metavar="NAME",
        help="only supervise this build group (repeatable)",
    )
    parser.add_argument("--no-proxy", action="store_true", help="do not start the reverse proxy")
    parser.add_argument("--no-static", action="store_true", help="do not start the static file server")
    parser.add_argument("--log-level", help="debug, info, warn or error")
    parser.add_argument("--version", action="store_true", help="log version information and exit")
    return parser.parse_args(argv)


def log_version():
    try:
        version = metadata.version("livebuild")
    except metadata.PackageNotFoundError:
        version = __version__
    logger.info(f"livebuild {version}")
    logger.info(f"python {platform.python_version()} ({platform.python_implementation()})")
    logger.info(f"platform {platform.platform()}")


def init_config(path: Path, force: bool = False) -> int:
    if path.exists() and not force:
        logger.error(f"{path} already exists, use --force to overwrite")
        return 1
    ProjectConfig.default().save(path)
    return 0


async def run(project: ProjectConfig, supervisor: Supervisor, proxy: bool = True, static: bool = True):
    """Run the supervisor and HTTP servers until the supervisor is stopped."""
    servers = {}
    if proxy and project.reverse_proxy:
        servers["reverse-proxy"] = build_server(
            create_proxy_app(project.reverse_proxy),
            project.bind_addr,
            project.tls_cert_file,
            project.tls_key_file,
            label="reverse-proxy",
        )

    if static and project.static_server:
        app = create_static_app(project.static_server)
        if app is not None:
            servers["static-server"] = build_server(
                app,
                project.static_server.bind_addr,
                project.tls_cert_file,
                project.tls_key_file,
                label="static-server",
            )

    supervisor.install_signal_handlers()
    jobs = [serve(server, supervisor.token, label=label) for label, server in servers.items()]
    await asyncio.gather(supervisor.run(), *jobs)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)

    try:
        settings = Settings.from_env()
    except ConfigError as e:
        setup_logging(Settings())
        logger.error(str(e))
        return 1

    if args.config:
        settings.config_file = args.config
    if args.log_level:
        settings.log_level = args.log_level
    settings.builds = args.builds
    setup_logging(settings)

    if args.version:
        log_version()
        return 0

    if args.init:
        return init_config(settings.config_file, force=args.force)

    try:
        project = ProjectConfig.load(settings.config_file)
        supervisor = Supervisor(project, settings, names=settings.builds)
        asyncio.run(run(project, supervisor, proxy=not args.no_proxy, static=not args.no_static))
    except ConfigError as e:
        logger.error(str(e))
        return 1

    logger.info("livebuild stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
