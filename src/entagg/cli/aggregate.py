#!/usr/bin/env python3
"""
entagg - Filter entities and aggregate their property values.

Reads entities from a JSON/JSONL file (default) or a SQLite database built
by entagg-import, keeps those matching the model and property filters, and
prints a JSON object mapping each property to its values, most frequent
first.

Usage:
    entagg [-i FILE | -d DATABASE] [-m MODEL ...] [-p KEY:V1,V2 ...] [options]
"""

import argparse
import logging
import shlex
import sys
from pathlib import Path
from typing import List, Optional

import orjson

from entagg.aggregate import FormattedAggregation, aggregate_records, format_aggregation, run_pipeline
from entagg.audit import NullRecorder, current_user, record_safely
from entagg.config import QuerySpec, load_query_spec
from entagg.entities import load_entities
from entagg.errors import EntaggError, StoreError
from entagg.filters import parse_property_filters
from entagg.store import EntityStore


logger = logging.getLogger(__name__)

DEFAULT_INPUT = Path('entities.json')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='entagg',
        description='Filter entities by model and property values, then count property values',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Every property of every entity
  entagg -i entities.json

  # Brown-haired people
  entagg -m person -p hair_color:brown

  # Closed or referred cases (union within a key)
  entagg -m case -p "status:closed,referred to da"

  # Stolen Toyotas, read from SQLite (intersection across keys)
  entagg -d db.sqlite -m vehicle -p make:toyota stolen:true

  # Saved query
  entagg --spec stolen-toyotas.yaml --indent
        """
    )

    parser.add_argument(
        '-i', '--input',
        type=Path,
        help=f'Entity file to process, JSON or JSONL (default: {DEFAULT_INPUT})'
    )

    parser.add_argument(
        '-d', '--database',
        type=Path,
        help='SQLite database built by entagg-import (used instead of --input)'
    )

    parser.add_argument(
        '-m', '--models',
        nargs='*',
        default=[],
        metavar='MODEL',
        help='Model(s) to include; all models when omitted'
    )

    parser.add_argument(
        '-p', '--properties',
        nargs='*',
        default=[],
        metavar='KEY:V1,V2',
        help='Property filters. Keys combine as AND, comma-separated values as OR'
    )

    parser.add_argument(
        '-s', '--spec',
        type=Path,
        help='YAML or JSON query file; command-line flags override it'
    )

    parser.add_argument(
        '--indent',
        action='store_true',
        help='Pretty-print the JSON result'
    )

    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )

    return parser


def aggregate_from_database(database: Path, query: QuerySpec, command: str) -> FormattedAggregation:
    """Run the query against SQLite and log the invocation there."""
    if not database.exists():
        raise StoreError(f"Database not found: {database} (build it with entagg-import)")

    with EntityStore(database) as store:
        filter_map = parse_property_filters(query.properties)
        rows = store.query_rows(query.models, filter_map)
        logger.debug(f"Fetched {len(rows):,} matching rows from {database}")
        result = format_aggregation(aggregate_records(rows))
        record_safely(store, command, current_user())
    return result


def aggregate_from_file(input_path: Path, query: QuerySpec, command: str) -> FormattedAggregation:
    entities = load_entities(input_path)
    logger.debug(f"Loaded {len(entities):,} entities from {input_path}")
    result = run_pipeline(entities, query.models, query.properties)
    record_safely(NullRecorder(), command, current_user())
    return result


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
    logging.getLogger('entagg').setLevel(logging.DEBUG if args.verbose else logging.INFO)

    argv = sys.argv[1:] if argv is None else argv
    command = shlex.join(['entagg', *argv])

    try:
        query = load_query_spec(args.spec) if args.spec else QuerySpec()
        query = query.merged(
            models=args.models,
            properties=args.properties,
            input=args.input,
            database=args.database,
        )

        if query.database:
            result = aggregate_from_database(query.database, query, command)
        else:
            result = aggregate_from_file(query.input or DEFAULT_INPUT, query, command)
    except EntaggError as e:
        logger.error(str(e))
        return 1
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        logger.debug("Traceback:", exc_info=True)
        return 1

    logger.debug(f"Aggregated {len(result):,} properties")
    option = orjson.OPT_INDENT_2 if args.indent else 0
    print(orjson.dumps(result, option=option).decode('utf-8'))
    return 0


if __name__ == '__main__':
    sys.exit(main())
