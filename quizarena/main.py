"""
Main entry point for QuizArena.

Provides the command-line interface: run the API server, print contest
standings, finalize ratings for an ended contest and import a problem
library. Standings and rating commands work either on the local database
or, with ``--api``, against a running server.
"""

import argparse
import sys

from .client import ArenaApiError, ArenaClient
from .engine.errors import ArenaError
from .engine.leaderboard import LeaderboardAggregator
from .engine.rating import RatingEngine
from .engine.storage import DuckDBStorage
from .server.server import run_api
from .utils.config_manager import get_config
from .utils.logger_config import get_logger, setup_logging_from_config
from .utils.problem_loader import ProblemLibraryLoader


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='QuizArena - contest scoring and rating engine')

    parser.add_argument('--config', default='config/server_config.json',
                        help='Path to server configuration file')
    parser.add_argument('--log-level',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        help='Override log level')
    parser.add_argument('--log-dir', help='Override log directory')
    parser.add_argument('--db-path', help='Override database path')

    subparsers = parser.add_subparsers(dest='command', required=True)

    serve = subparsers.add_parser('serve', help='Run the HTTP API server')
    serve.add_argument('--host', help='Host to bind the API server')
    serve.add_argument('--port', type=int, help='Port to bind the API server')
    serve.add_argument('--debug', action='store_true', help='Enable debug mode')
    serve.add_argument('--rate-limit-interval', type=float,
                       help='Override rate limit interval (seconds)')

    standings = subparsers.add_parser('standings', help='Print contest standings')
    standings.add_argument('contest_id')
    standings.add_argument('--final-only', action='store_true',
                           help='Count final submissions only')
    standings.add_argument('--api', help='Query a running server at this base URL')

    finalize = subparsers.add_parser('finalize-ratings', help='Apply ratings for an ended contest')
    finalize.add_argument('contest_id')
    finalize.add_argument('--yes', action='store_true',
                          help='Commit the changes; without it only a preview is printed')
    finalize.add_argument('--api', help='Finalize through a running server at this base URL')

    importer = subparsers.add_parser('import-problems', help='Import a JSON problem library')
    importer.add_argument('--library', help='Override problem library path')
    importer.add_argument('--subject', help='Only import problems of this subject')

    return parser


def apply_overrides(config, args) -> None:
    """Override configuration with command line arguments"""
    if args.log_level:
        config.set("logging.level", args.log_level)
    if args.log_dir:
        config.set("logging.directory", args.log_dir)
    if args.db_path:
        config.set("database.path", args.db_path)
    if getattr(args, 'host', None):
        config.set("server.host", args.host)
    if getattr(args, 'port', None):
        config.set("server.port", args.port)
    if getattr(args, 'rate_limit_interval', None) is not None:
        config.set("rate_limiting.min_interval", args.rate_limit_interval)
    if getattr(args, 'library', None):
        config.set("data_sources.problem_library", args.library)
    if getattr(args, 'debug', False):
        config.set("logging.level", "DEBUG")


def print_standings(entries) -> None:
    if not entries:
        print("No submissions yet")
        return
    print(f"{'Rank':>4}  {'User':<24} {'Score':>6}  Last best submission")
    for entry in entries:
        name = entry.get("username") or entry["user_id"]
        print(f"{entry['rank']:>4}  {name:<24} {entry['total_score']:>6}  {entry['last_submission_time']}")


def print_rating_changes(changes) -> None:
    print(f"{'Rank':>4}  {'User':<36} {'Old':>5} {'New':>5} {'Delta':>6}  Title")
    for change in changes:
        print(f"{change['rank']:>4}  {change['user_id']:<36} {change['old_rating']:>5} "
              f"{change['new_rating']:>5} {change['delta']:>+6}  {change['new_title']}")


def cmd_serve(config, args, logger) -> int:
    host = config.get("server.host", "0.0.0.0")
    port = config.get("server.port", 5000)
    logger.info(f"Starting QuizArena API server on {host}:{port}")
    logger.info(f"Configuration loaded from: {config.config_path}")
    try:
        run_api(host=host, port=port, debug=args.debug, config=config)
    except KeyboardInterrupt:
        logger.info("Shutting down QuizArena API server...")
    return 0


def cmd_standings(config, args, logger) -> int:
    if args.api:
        client = ArenaClient(args.api, admin_token=config.get("auth.admin_token") or None)
        print_standings(client.get_standings(args.contest_id, final_only=args.final_only))
        return 0

    with DuckDBStorage(config.get("database.path")) as storage:
        standings = LeaderboardAggregator(storage).compute_standings(args.contest_id, final_only=args.final_only)
        print_standings([entry.to_dict() for entry in standings])
    return 0


def cmd_finalize_ratings(config, args, logger) -> int:
    if args.api:
        if not args.yes:
            logger.error("Finalizing through the API commits immediately; pass --yes to confirm")
            return 2
        client = ArenaClient(args.api, admin_token=config.get("auth.admin_token") or None)
        print_rating_changes(client.finalize_ratings(args.contest_id))
        return 0

    with DuckDBStorage(config.get("database.path")) as storage:
        engine = RatingEngine.from_config(storage, config)
        if not args.yes:
            changes = engine.preview(args.contest_id)
            print_rating_changes([change.to_dict() for change in changes])
            print("Preview only; rerun with --yes to commit")
            return 0
        changes = engine.finalize_ratings(args.contest_id)
        print_rating_changes([change.to_dict() for change in changes])
    return 0


def cmd_import_problems(config, args, logger) -> int:
    library_path = config.get("data_sources.problem_library")
    loader = ProblemLibraryLoader(library_path)
    if not loader.problems_dict:
        logger.error(f"No problems found in {library_path}")
        return 1

    with DuckDBStorage(config.get("database.path")) as storage:
        imported, skipped = loader.import_into(storage, subject=args.subject)
    print(f"Imported {len(imported)} problems, skipped {len(skipped)} already present")
    return 0


COMMANDS = {
    'serve': cmd_serve,
    'standings': cmd_standings,
    'finalize-ratings': cmd_finalize_ratings,
    'import-problems': cmd_import_problems,
}


def main(argv=None):
    """Main entry point for the QuizArena CLI"""
    args = build_parser().parse_args(argv)

    # Load configuration
    config = get_config(args.config)
    apply_overrides(config, args)

    # Setup logging
    setup_logging_from_config(config, prefix=args.command.replace('-', '_'))
    logger = get_logger("main")

    try:
        return COMMANDS[args.command](config, args, logger)
    except ArenaError as e:
        logger.error(f"{e.kind}: {e.message}")
        return 1
    except ArenaApiError as e:
        logger.error(f"API error ({e.kind or e.status_code}): {e.message}")
        return 1
    except Exception as e:
        logger.error(f"Error running {args.command}: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
