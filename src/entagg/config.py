"""
config.py — Query specification files.

A query file saves a filter/aggregate invocation. YAML and JSON are both
accepted:

    # stolen-toyotas.yaml
    database: data/db.sqlite
    models: [vehicle]
    properties:
      make: toyota
      stolen: true
      year: [2007, 2008]

``properties`` is either a list of ``key:v1,v2`` expressions or a mapping
of key to a value or list of values. Mapping values are turned back into
expression text so they go through the same type inference as the command
line.
"""

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import orjson
import yaml

from entagg.errors import ConfigError
from entagg.filters import parse_value


logger = logging.getLogger(__name__)

SPEC_KEYS = {'models', 'properties', 'input', 'database'}


@dataclass(frozen=True)
class QuerySpec:
    models: List[str] = field(default_factory=list)
    properties: List[str] = field(default_factory=list)
    input: Optional[Path] = None
    database: Optional[Path] = None

    def merged(self, **overrides: Any) -> 'QuerySpec':
        """Return a copy where every override that is set wins."""
        changes = {k: v for k, v in overrides.items() if v}
        return replace(self, **changes)


def _expression_text(value: Any) -> str:
    if isinstance(value, str) and isinstance(parse_value(value), str):
        return value
    # JSON text for everything else: True -> true, "2008" -> "\"2008\""
    return orjson.dumps(value).decode('utf-8')


def _normalize_properties(raw: Any) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, list):
        if not all(isinstance(item, str) for item in raw):
            raise ConfigError("'properties' list entries must be 'key:value1,value2' strings")
        return list(raw)
    if isinstance(raw, dict):
        expressions = []
        for key, value in raw.items():
            values = value if isinstance(value, list) else [value]
            if not values:
                raise ConfigError(f"Property filter {key!r} has no values")
            expressions.append(f"{key}:{','.join(_expression_text(v) for v in values)}")
        return expressions
    raise ConfigError("'properties' must be a list or a mapping")


def _normalize_models(raw: Any) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        return [raw]
    if isinstance(raw, list) and all(isinstance(m, str) for m in raw):
        return list(raw)
    raise ConfigError("'models' must be a model name or a list of names")


def _read_spec(path: Path) -> Dict[str, Any]:
    suffix = path.suffix.lower()
    try:
        with open(path, 'rb') as f:
            if suffix in ('.yaml', '.yml'):
                spec = yaml.safe_load(f)
            else:
                spec = orjson.loads(f.read())
    except FileNotFoundError:
        raise ConfigError(f"Specification file not found: {path}") from None
    except OSError as e:
        raise ConfigError(f"Cannot read specification {path}: {e}") from e
    except (orjson.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Invalid specification {path}: {e}") from e

    if spec is None:
        return {}
    if not isinstance(spec, dict):
        raise ConfigError(f"Specification {path} must be a mapping")
    return spec


def load_query_spec(path: Union[str, Path]) -> QuerySpec:
    """
    Load a query specification from a YAML or JSON file.

    Relative ``input`` and ``database`` paths are taken as given (relative
    to the working directory, like the command-line flags).

    Raises:
        ConfigError: if the file is missing, unparsable, or has unknown keys
    """
    path = Path(path)
    spec = _read_spec(path)

    unknown = set(spec) - SPEC_KEYS
    if unknown:
        raise ConfigError(f"Unknown keys in {path}: {', '.join(sorted(unknown))}")

    input_path = spec.get('input')
    database = spec.get('database')
    query = QuerySpec(
        models=_normalize_models(spec.get('models')),
        properties=_normalize_properties(spec.get('properties')),
        input=Path(input_path) if input_path else None,
        database=Path(database) if database else None,
    )
    logger.debug(f"Loaded query spec {path}: {query}")
    return query
