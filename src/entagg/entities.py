"""
entities.py — Entity data model and file-based entity source.

An entity is a model name plus a bag of typed properties:

    {
      "model": "vehicle",
      "properties": [
        {"slug": "make",   "type": "string",  "value": "toyota"},
        {"slug": "stolen", "type": "boolean", "value": true},
        {"slug": "year",   "type": "integer", "value": 2008}
      ]
    }

Reads:
  - *.json: a JSON array of entity objects
  - *.jsonl: one entity object per line

Booleans are normalized at ingestion: a BOOLEAN property stored as 0/1
is loaded as False/True so the rest of the pipeline only ever sees bool.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import orjson

from entagg.errors import EntitySourceError


logger = logging.getLogger(__name__)

Scalar = Union[str, int, float, bool, None]


class PropertyType(str, Enum):
    """Declared storage type of a property."""

    STRING = 'string'
    INTEGER = 'integer'
    BOOLEAN = 'boolean'

    @classmethod
    def parse(cls, name: str) -> 'PropertyType':
        try:
            return cls(name.strip().lower())
        except ValueError:
            raise ValueError(f"unknown property type: {name!r}") from None

    @classmethod
    def infer(cls, value: Scalar) -> 'PropertyType':
        """Pick a type for a property that does not declare one."""
        # bool first: bool is a subclass of int
        if isinstance(value, bool):
            return cls.BOOLEAN
        # INTEGER is the only numeric type; floats are stored alongside ints
        if isinstance(value, (int, float)):
            return cls.INTEGER
        return cls.STRING


@dataclass(frozen=True)
class Property:
    slug: str
    type: PropertyType
    value: Scalar = None


@dataclass(frozen=True)
class Entity:
    model: str
    properties: Tuple[Property, ...] = ()

    def get(self, slug: str) -> Optional[Property]:
        """Return the property with this slug, or None."""
        for prop in self.properties:
            if prop.slug == slug:
                return prop
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'model': self.model,
            'properties': [
                {'slug': p.slug, 'type': p.type.value, 'value': p.value}
                for p in self.properties
            ],
        }


def normalize_value(prop_type: PropertyType, value: Any) -> Scalar:
    """Bring a raw value into the canonical in-memory representation."""
    if prop_type is PropertyType.BOOLEAN and not isinstance(value, bool):
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
    return value


def property_from_dict(data: Dict[str, Any]) -> Property:
    """Build a Property from its JSON object form."""
    if not isinstance(data, dict):
        raise ValueError("property must be an object")
    slug = data.get('slug')
    if not isinstance(slug, str) or not slug:
        raise ValueError("property is missing a 'slug'")

    value = data.get('value')
    raw_type = data.get('type')
    if raw_type is None:
        prop_type = PropertyType.infer(value)
    elif isinstance(raw_type, str):
        prop_type = PropertyType.parse(raw_type)
    else:
        raise ValueError(f"property {slug!r} has a non-string type")

    return Property(slug=slug, type=prop_type, value=normalize_value(prop_type, value))


def entity_from_dict(data: Dict[str, Any]) -> Entity:
    """Build an Entity from its JSON object form.

    Raises:
        ValueError: if the object does not have the entity shape.
    """
    if not isinstance(data, dict):
        raise ValueError("entity must be an object")
    model = data.get('model')
    if not isinstance(model, str) or not model:
        raise ValueError("entity is missing a 'model'")
    raw_props = data.get('properties', [])
    if not isinstance(raw_props, list):
        raise ValueError(f"entity of model {model!r} has non-list 'properties'")

    properties = []
    seen = set()
    for raw in raw_props:
        prop = property_from_dict(raw)
        if prop.slug in seen:
            raise ValueError(f"entity of model {model!r} repeats property {prop.slug!r}")
        seen.add(prop.slug)
        properties.append(prop)
    return Entity(model=model, properties=tuple(properties))


def entities_from_dicts(items: Iterable[Any], source: str = '<memory>') -> List[Entity]:
    """Convert a sequence of entity objects, reporting the failing position."""
    entities = []
    for index, item in enumerate(items):
        try:
            entities.append(entity_from_dict(item))
        except ValueError as e:
            raise EntitySourceError(f"{source}: entity #{index}: {e}") from e
    return entities


def _read_json_array(path: Path) -> List[Any]:
    payload = orjson.loads(path.read_bytes())
    if not isinstance(payload, list):
        raise EntitySourceError(f"{path}: expected a JSON array of entities")
    return payload


def _read_jsonl(path: Path) -> List[Any]:
    items = []
    with open(path, 'rb') as f:
        for line_num, line in enumerate(f, 1):
            if not line.strip():
                continue
            try:
                items.append(orjson.loads(line))
            except orjson.JSONDecodeError as e:
                raise EntitySourceError(f"{path}: line {line_num}: invalid JSON - {e}") from e
    return items


def load_entities(path: Union[str, Path]) -> List[Entity]:
    """Load entities from a JSON or JSONL file.

    Args:
        path: File to read. ``.jsonl`` is read line by line, anything else
            is parsed as a single JSON array.

    Returns:
        Entities in file order.

    Raises:
        EntitySourceError: if the file is unreadable or malformed.
    """
    path = Path(path)
    try:
        if path.suffix.lower() == '.jsonl':
            items = _read_jsonl(path)
        else:
            items = _read_json_array(path)
    except OSError as e:
        raise EntitySourceError(f"Cannot read entity file {path}: {e}") from e
    except orjson.JSONDecodeError as e:
        raise EntitySourceError(f"{path}: invalid JSON - {e}") from e

    entities = entities_from_dicts(items, source=str(path))
    logger.debug(f"Loaded {len(entities):,} entities from {path}")
    return entities
