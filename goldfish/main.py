import argparse
import asyncio
import logging
import sys

from goldfish.core.app import GoldfishApp, setup_logging
from goldfish.core.config import Config


def setup_basic_logging():
    """Setup basic stdout logging before config is loaded"""
    root_logger = logging.getLogger()
    if not root_logger.handlers:  # Only add handler if none exists
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
        ))
        root_logger.addHandler(handler)
        root_logger.setLevel(logging.DEBUG)  # Set initial level to DEBUG
        logging.debug("Basic logging initialized")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Goldfish academic task aggregator')
    parser.add_argument('--config',
                        help='Path to config file (default: ~/.goldfish/config.yaml)')
    subparsers = parser.add_subparsers(dest='command')

    subparsers.add_parser('serve', help='Run the API server')

    sync_parser = subparsers.add_parser('sync', help='Sync tasks for one user and exit')
    sync_parser.add_argument('--user', required=True, help='User id to sync')
    sync_parser.add_argument('--source', action='append', dest='sources',
                             choices=['canvas', 'google-classroom', 'ustep'],
                             help='Limit to a source (repeatable)')
    sync_parser.add_argument('--interactive', action='store_true',
                             help='Wait for a credential when a source needs one')
    return parser


def serve(app: GoldfishApp) -> int:
    from goldfish.api.server import run_api_server

    if not app.config_data["canvas"].get("base_url"):
        logging.error("CANVAS_BASE_URL is required to start the server")
        return 1
    run_api_server(app)
    return 0


def sync(app: GoldfishApp, user_id: str, sources=None, interactive: bool = False) -> int:
    report = asyncio.run(app.orchestrator.sync(user_id, sources=sources, interactive=interactive))
    print(report.summary())
    return 0


def main(argv=None) -> int:
    setup_basic_logging()

    args = build_parser().parse_args(argv)

    # Long-running server picks up logging changes from the config file
    config = Config(config_path=args.config, watch=args.command != "sync")
    setup_logging(config.data)
    config.register_change_callback(setup_logging)
    app = GoldfishApp(config.data)

    try:
        if args.command == "sync":
            return sync(app, args.user, args.sources, args.interactive)
        return serve(app)
    finally:
        config.cleanup()


if __name__ == "__main__":
    sys.exit(main())
