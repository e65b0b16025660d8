"""Pytest configuration and shared fixtures."""
import json
import tempfile
from pathlib import Path

import pytest

from entagg.entities import entities_from_dicts


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_entity_dicts():
    """A small curated entity set in its JSON form.

    Covers every property type, nulls, a string "2008" next to integer 2008,
    and a model ("case") whose status values exercise union filters.
    """
    return [
        {"model": "person", "properties": [
            {"slug": "first_name", "type": "string", "value": "ada"},
            {"slug": "hair_color", "type": "string", "value": "brown"},
            {"slug": "eye_color", "type": "string", "value": "green"},
        ]},
        {"model": "person", "properties": [
            {"slug": "first_name", "type": "string", "value": "bob"},
            {"slug": "hair_color", "type": "string", "value": "blonde"},
            {"slug": "eye_color", "type": "string", "value": "brown"},
        ]},
        {"model": "person", "properties": [
            {"slug": "first_name", "type": "string", "value": "cy"},
            {"slug": "hair_color", "type": "string", "value": "brown"},
            {"slug": "eye_color", "type": "string", "value": None},
        ]},
        {"model": "vehicle", "properties": [
            {"slug": "make", "type": "string", "value": "toyota"},
            {"slug": "stolen", "type": "boolean", "value": True},
            {"slug": "impounded", "type": "boolean", "value": False},
            {"slug": "year", "type": "integer", "value": 2008},
        ]},
        {"model": "vehicle", "properties": [
            {"slug": "make", "type": "string", "value": "toyota"},
            {"slug": "stolen", "type": "boolean", "value": False},
            {"slug": "impounded", "type": "boolean", "value": True},
            {"slug": "year", "type": "integer", "value": 1999},
        ]},
        {"model": "vehicle", "properties": [
            {"slug": "make", "type": "string", "value": "chevrolet"},
            {"slug": "stolen", "type": "boolean", "value": True},
            {"slug": "impounded", "type": "boolean", "value": False},
            {"slug": "year", "type": "integer", "value": 1982},
        ]},
        {"model": "case", "properties": [
            {"slug": "status", "type": "string", "value": "closed"},
            {"slug": "year", "type": "integer", "value": 2008},
        ]},
        {"model": "case", "properties": [
            {"slug": "status", "type": "string", "value": "referred to da"},
            {"slug": "year", "type": "string", "value": "2008"},
        ]},
        {"model": "case", "properties": [
            {"slug": "status", "type": "string", "value": "open"},
            {"slug": "year", "type": "integer", "value": 2010},
        ]},
    ]


@pytest.fixture
def sample_entities(sample_entity_dicts):
    """The curated entity set as Entity objects."""
    return entities_from_dicts(sample_entity_dicts)


@pytest.fixture
def entities_file(sample_entity_dicts, temp_dir):
    """Write the curated entity set to a JSON array file."""
    path = temp_dir / "entities.json"
    path.write_text(json.dumps(sample_entity_dicts), encoding="utf-8")
    return path
