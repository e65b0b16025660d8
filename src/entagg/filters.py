"""
filters.py — Property filter parsing and entity selection.

Filter expressions have the form ``key:value1,value2``:

    hair_color:brown                 one acceptable value
    status:closed,referred to da     several values (union within a key)

Several expressions combine as an intersection across keys, so
``make:toyota`` plus ``stolen:true`` keeps only stolen Toyotas.

Values go through best-effort JSON scalar inference, so ``year:2008`` is
the integer 2008 and ``stolen:true`` the boolean True. Quote a value to
force text: ``year:"2008"``.

Matching is type-aware: text never equals a number, a number never equals
a boolean. The one bridge is the relational boolean encoding: a boolean
property matches the filter integers 1 and 0.
"""

import logging
from typing import Callable, Dict, Iterable, List, Optional, Sequence

import orjson

from entagg.entities import Entity, Scalar


logger = logging.getLogger(__name__)

FilterMap = Dict[str, List[Scalar]]


def parse_value(text: str) -> Scalar:
    """Infer a scalar from filter text, keeping the text when it is not one."""
    try:
        value = orjson.loads(text)
    except orjson.JSONDecodeError:
        return text
    if isinstance(value, (list, dict)):
        return text
    return value


def parse_property_filters(raw_filters: Optional[Iterable[str]]) -> FilterMap:
    """
    Parse ``key:v1,v2`` expressions into a filter map.

    Malformed expressions (no ``:``, empty key or empty value list) are
    logged and skipped. A key given twice keeps its last expression.

    Args:
        raw_filters: Expressions as typed on the command line (may be None)

    Returns:
        Mapping of property slug to its acceptable values, e.g.
        {'status': ['closed', 'referred to da'], 'year': [2008]}
    """
    filter_map: FilterMap = {}
    for raw in raw_filters or ():
        key, sep, values = raw.partition(':')
        key = key.strip()
        if not sep or not key or not values:
            logger.warning(f"Invalid property filter format: {raw!r} (expected key:value1,value2)")
            continue
        filter_map[key] = [parse_value(v) for v in values.split(',')]
    return filter_map


def values_match(stored: Scalar, wanted: Scalar) -> bool:
    """Type-aware equality between a stored property value and a filter value."""
    if stored is None or wanted is None:
        return False

    # bool is checked before int: bool is an int subclass
    if isinstance(stored, bool):
        if isinstance(wanted, bool):
            return stored is wanted
        if type(wanted) is int and wanted in (0, 1):
            return stored is bool(wanted)
        return False
    if isinstance(wanted, bool):
        return False

    if isinstance(stored, (int, float)) and isinstance(wanted, (int, float)):
        return stored == wanted
    if isinstance(stored, str) and isinstance(wanted, str):
        return stored == wanted
    return type(stored) is type(wanted) and stored == wanted


def make_model_predicate(models: Optional[Sequence[str]] = None) -> Callable[[Entity], bool]:
    """
    Create an entity predicate for model filtering.

    Args:
        models: Allowed model names. None or empty allows every model.

    Returns:
        Function that returns True for entities of an allowed model
    """
    allowed = set(models or ())

    def predicate(entity: Entity) -> bool:
        return not allowed or entity.model in allowed
    return predicate


def make_property_predicate(filter_map: FilterMap) -> Callable[[Entity], bool]:
    """
    Create an entity predicate for property filtering.

    Every key in the filter map must be present on the entity with a
    non-null value equal to one of the key's acceptable values.

    Args:
        filter_map: Output of parse_property_filters()

    Returns:
        Function that returns True for entities satisfying all keys
    """
    def predicate(entity: Entity) -> bool:
        for slug, acceptable in filter_map.items():
            prop = entity.get(slug)
            if prop is None or prop.value is None:
                return False
            if not any(values_match(prop.value, wanted) for wanted in acceptable):
                return False
        return True
    return predicate


def filter_entities(
    entities: Iterable[Entity],
    models: Optional[Sequence[str]],
    filter_map: FilterMap
) -> List[Entity]:
    """
    Select entities matching the model allow-list and the property filters.

    Args:
        entities: Full entity collection
        models: Allowed models (union); None or empty means all models
        filter_map: Property filters (intersection of keys, union of values)

    Returns:
        Matching entities in their original order
    """
    model_ok = make_model_predicate(models)
    props_ok = make_property_predicate(filter_map)
    return [e for e in entities if model_ok(e) and props_ok(e)]
