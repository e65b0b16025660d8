#!/usr/bin/env python3
"""
entagg-import - Load an entity file into a SQLite database.

Creates one table per model and the invocation log table. An existing
database is left alone unless --append is given.

Usage:
    entagg-import INPUT DATABASE [--append] [--progress] [-v]

Example:
    entagg-import data/entities.json data/db.sqlite --progress
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from entagg.entities import load_entities
from entagg.errors import EntaggError
from entagg.progress_display import ImportProgress
from entagg.store import EntityStore


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='entagg-import',
        description='Load a JSON/JSONL entity file into a SQLite database'
    )
    parser.add_argument('input', type=Path, help='Entity file (JSON array or JSONL)')
    parser.add_argument('database', type=Path, help='SQLite database file to create')
    parser.add_argument(
        '--append',
        action='store_true',
        help='Import into an existing database instead of skipping it'
    )
    parser.add_argument(
        '--progress',
        action='store_true',
        help='Show a live progress panel on stderr'
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose logging')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for entagg-import."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
    logging.getLogger('entagg').setLevel(logging.DEBUG if args.verbose else logging.INFO)

    if args.database.exists() and not args.append:
        logger.info(f"Database already exists: {args.database} (use --append to add entities)")
        return 0

    try:
        entities = load_entities(args.input)
        logger.info(f"Loaded {len(entities):,} entities from {args.input}")

        args.database.parent.mkdir(parents=True, exist_ok=True)
        with EntityStore(args.database) as store:
            if args.progress:
                with ImportProgress(f"Importing {args.input.name}", total=len(entities)) as progress:
                    inserted = store.import_entities(entities, on_row=progress.advance)
            else:
                inserted = store.import_entities(entities)
            store.create_log_table()
            models = store.models()
    except (EntaggError, OSError) as e:
        logger.error(str(e))
        return 1

    logger.info(f"Imported {inserted:,} entities into {args.database}")
    logger.info(f"  Models: {', '.join(models) if models else '(none)'}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
