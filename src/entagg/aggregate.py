"""
aggregate.py — Count property values and build per-property histograms.

Input records are either nested ``Entity`` objects (file source, or the
in-memory filter output) or flat ``{slug: value}`` rows as returned by the
SQLite store's pushed-down query.

The result maps each property slug to its values sorted by count,
most frequent first:

    {
      "make":   [["toyota", 3], ["honda", 1]],
      "stolen": [[true, 2], [false, 2]]
    }
"""

import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import orjson

from entagg.entities import Entity
from entagg.filters import filter_entities, parse_property_filters


logger = logging.getLogger(__name__)

Record = Union[Entity, Mapping[str, Any]]
Aggregation = Dict[str, Dict[str, int]]
FormattedAggregation = Dict[str, List[Tuple[Any, int]]]


def value_key(value: Any) -> str:
    """
    Canonical bucket key for a property value.

    The JSON encoding keeps types apart: the text "2008" becomes '"2008"'
    while the number 2008 becomes '2008'. Values JSON cannot encode are
    bucketed under their text form.
    """
    try:
        return orjson.dumps(value).decode('utf-8')
    except orjson.JSONEncodeError:
        logger.debug(f"Value {value!r} is not JSON encodable, bucketing as text")
        return orjson.dumps(str(value)).decode('utf-8')


def _record_items(record: Record) -> Iterator[Tuple[str, Any]]:
    if isinstance(record, Entity):
        for prop in record.properties:
            yield prop.slug, prop.value
    else:
        yield from record.items()


def aggregate_records(records: Iterable[Record]) -> Aggregation:
    """
    Count occurrences of each value per property slug.

    Null values are skipped, so a slug that is null everywhere never
    shows up.

    Returns:
        {slug: {value_key: count}}
    """
    aggregation: Aggregation = defaultdict(lambda: defaultdict(int))
    for record in records:
        for slug, value in _record_items(record):
            if value is None:
                continue
            aggregation[slug][value_key(value)] += 1
    return {slug: dict(counts) for slug, counts in aggregation.items()}


def format_aggregation(aggregation: Aggregation) -> FormattedAggregation:
    """
    Turn raw counts into per-slug lists sorted by count descending.

    Bucket keys are decoded back to their original values. Equal counts
    keep the order in which the values were first seen.
    """
    result: FormattedAggregation = {}
    for slug, counts in aggregation.items():
        pairs = [(orjson.loads(key), count) for key, count in counts.items()]
        pairs.sort(key=lambda pair: pair[1], reverse=True)
        result[slug] = pairs
    return result


def run_pipeline(
    entities: Iterable[Entity],
    models: Optional[Sequence[str]] = None,
    properties: Optional[Sequence[str]] = None
) -> FormattedAggregation:
    """
    Filter entities and aggregate the survivors.

    Args:
        entities: The entity collection
        models: Models to include; empty means all
        properties: Filter expressions, format ``key:value1,value2``

    Returns:
        A dictionary of property slugs to sorted (value, count) lists
    """
    filter_map = parse_property_filters(properties)
    filtered = filter_entities(entities, models, filter_map)
    logger.debug(f"Matched {len(filtered):,} entities")
    return format_aggregation(aggregate_records(filtered))
