"""
Main CLI entry point for the tournament live auction server.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from . import config


def setup_logging(verbose: bool = False):
    """
    Configure logging for the application.

    Args:
        verbose: Enable verbose (DEBUG) logging
    """
    level = logging.DEBUG if verbose else getattr(logging, config.LOG_LEVEL)
    logging.basicConfig(
        level=level,
        format=config.LOG_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )


def parse_arguments(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description='Tournament Live Auction Server',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the API and WebSocket server
  python -m tournament_auction.main serve --port 8000

  # Rebuild an auction from its event log and export it
  python -m tournament_auction.main replay --auction-id cup-2026 --csv cup-2026.csv

  # Import players before the auction opens, merging duplicates
  python -m tournament_auction.main import-players --auction-id cup-2026 \\
      --file players.csv --on-duplicate merge
        """
    )

    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    serve = subparsers.add_parser('serve', help='Run the API and WebSocket server')
    serve.add_argument('--host', type=str, default=config.API_HOST, help='Bind address')
    serve.add_argument('--port', type=int, default=config.API_PORT, help='Bind port')

    replay = subparsers.add_parser('replay', help='Rebuild an auction from its event log')
    replay.add_argument('--auction-id', type=str, required=True, help='Auction to replay')
    replay.add_argument(
        '--events-dir',
        type=str,
        default=config.AUCTION_EVENTS_DIR,
        help=f'Event log directory (default: {config.AUCTION_EVENTS_DIR})'
    )
    replay.add_argument(
        '--csv',
        type=str,
        default=None,
        help='Also export the event log to this CSV file'
    )

    import_players = subparsers.add_parser(
        'import-players',
        help='Add players from a CSV file to an auction that has not opened'
    )
    import_players.add_argument('--auction-id', type=str, required=True, help='Target auction')
    import_players.add_argument('--file', type=str, required=True, help='Player CSV file')
    import_players.add_argument(
        '--on-duplicate',
        choices=['merge', 'skipExisting', 'createNew'],
        default=config.DUPLICATE_DEFAULT_DECISION,
        help=f'Decision for likely duplicates (default: {config.DUPLICATE_DEFAULT_DECISION})'
    )

    return parser.parse_args(argv)


def run_server(args):
    """Run the FastAPI app under uvicorn."""
    import uvicorn

    logger = logging.getLogger(__name__)
    logger.info(f"Serving on http://{args.host}:{args.port}")
    uvicorn.run(
        'tournament_auction.live.api_server:app',
        host=args.host,
        port=args.port,
        log_level='debug' if args.verbose else config.LOG_LEVEL.lower(),
    )


def run_replay(args):
    """Replay an event log from seq 1 and summarize the rebuilt auction."""
    from .live.auction_session import replay_events
    from .live.event_store import AuctionEventStore, create_event_filepath

    logger = logging.getLogger(__name__)

    event_store = AuctionEventStore(create_event_filepath(Path(args.events_dir), args.auction_id))
    events = event_store.load_all_events()
    if not events:
        logger.error(f"No events logged for auction {args.auction_id}")
        sys.exit(1)

    try:
        session = replay_events(events)
    except ValueError as e:
        logger.error(f"Cannot replay {args.auction_id}: {e}")
        sys.exit(1)

    logger.info("="*60)
    logger.info(f"Auction {args.auction_id}: {len(events)} events, last seq {session.last_seq}")
    logger.info(f"Status: {session.status}")
    logger.info("="*60)

    summary = session.ledger.summary()
    for row in summary.to_dict('records'):
        logger.info(
            f"{row['name']}: {row['players']} players, "
            f"spent {row['spent']:,}, remaining {row['remaining']:,}"
        )

    if args.csv:
        event_store.export_to_csv(Path(args.csv))


def run_import(args):
    """Import players from CSV into the stored auction."""
    from .live.errors import AuctionError
    from .live.session_manager import SessionManager
    from .live.session_store import create_session_store
    from .player_import import PlayerImporter, fixed_resolver, load_players_csv, records_to_players

    logger = logging.getLogger(__name__)

    try:
        incoming = records_to_players(load_players_csv(Path(args.file)))
    except (FileNotFoundError, ValueError) as e:
        logger.error(str(e))
        sys.exit(1)

    manager = SessionManager(create_session_store())
    importer = PlayerImporter(fixed_resolver(args.on_duplicate))
    try:
        report = asyncio.run(manager.import_players(args.auction_id, importer, incoming, 'excel'))
    except AuctionError as e:
        logger.error(f"Import failed: {e}")
        sys.exit(1)

    logger.info(
        f"Created {len(report.created)}, merged {len(report.merged)}, "
        f"skipped {len(report.skipped)}"
    )


def main(argv=None):
    """Main execution function with command branching."""
    # Parse arguments
    args = parse_arguments(argv)

    # Setup logging
    setup_logging(args.verbose)

    if args.command == 'serve':
        run_server(args)
    elif args.command == 'replay':
        run_replay(args)
    else:
        run_import(args)


if __name__ == '__main__':
    main()
