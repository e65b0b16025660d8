"""Tests for the SQLite entity store."""

import sqlite3

import pytest

from entagg.aggregate import aggregate_records, format_aggregation, run_pipeline
from entagg.entities import Entity, Property, PropertyType, entities_from_dicts
from entagg.errors import StoreError
from entagg.filters import parse_property_filters
from entagg.store import EntityStore, sanitize_identifier


@pytest.fixture
def store(temp_dir, sample_entities):
    """A store populated with the curated entity set."""
    with EntityStore(temp_dir / "db.sqlite") as s:
        s.import_entities(sample_entities)
        s.create_log_table()
        yield s


def _query(store, models, properties):
    rows = store.query_rows(models, parse_property_filters(properties))
    return format_aggregation(aggregate_records(rows))


def _as_sets(result):
    return {slug: set(pairs) for slug, pairs in result.items()}


def test_sanitize_identifier():
    assert sanitize_identifier("police case") == "policecase"
    assert sanitize_identifier('x"; DROP TABLE log; --') == "xDROPTABLElog"
    assert sanitize_identifier("hair_color") == "hair_color"


# =============================================================================
# Import
# =============================================================================

class TestImport:

    def test_one_table_per_model(self, store):
        assert store.models() == ["case", "person", "vehicle"]

    def test_log_table_is_not_a_model(self, store):
        assert "log" not in store.models()

    def test_schema_keeps_declared_types(self, store):
        assert store.schema("vehicle") == {
            "make": PropertyType.STRING,
            "stolen": PropertyType.BOOLEAN,
            "impounded": PropertyType.BOOLEAN,
            "year": PropertyType.INTEGER,
        }
        assert store.schema("spaceship") == {}

    def test_values_keep_their_storage_class(self, store):
        cur = store.conn.execute('SELECT status, typeof(year) FROM "case" ORDER BY status')
        assert cur.fetchall() == [
            ("closed", "integer"),
            ("open", "integer"),
            ("referred to da", "text"),
        ]

    def test_text_then_integer_in_one_column(self, temp_dir):
        entities = entities_from_dicts([
            {"model": "case", "properties": [{"slug": "year", "type": "string", "value": "2008"}]},
            {"model": "case", "properties": [{"slug": "year", "type": "integer", "value": 2008}]},
        ])
        with EntityStore(temp_dir / "order.sqlite") as s:
            s.import_entities(entities)
            assert _query(s, ["case"], ["year:2008"]) == {"year": [(2008, 1)]}
            assert _query(s, ["case"], ['year:"2008"']) == {"year": [("2008", 1)]}
            assert _as_sets(_query(s, ["case"], [])) == {"year": {("2008", 1), (2008, 1)}}

    def test_returns_row_count(self, temp_dir, sample_entities):
        with EntityStore(temp_dir / "count.sqlite") as s:
            assert s.import_entities(sample_entities) == len(sample_entities)

    def test_new_slug_adds_column(self, store):
        store.import_entities([
            Entity("person", (Property("nickname", PropertyType.STRING, "dot"),)),
        ])
        result = _query(store, ["person"], [])
        assert result["nickname"] == [("dot", 1)]
        assert sum(count for _, count in result["first_name"]) == 3

    def test_on_row_callback(self, temp_dir, sample_entities):
        seen = []
        with EntityStore(temp_dir / "cb.sqlite") as s:
            s.import_entities(sample_entities, on_row=seen.append)
        assert seen == list(range(1, len(sample_entities) + 1))

    @pytest.mark.parametrize("entity", [
        Entity("!!!", ()),
        Entity("log", ()),
        Entity("m", (Property("***", PropertyType.STRING, "x"),)),
        Entity("m", (Property("a-b", PropertyType.STRING, "x"), Property("ab", PropertyType.STRING, "y"))),
    ])
    def test_rejects_unusable_identifiers(self, temp_dir, entity):
        with EntityStore(temp_dir / "bad.sqlite") as s:
            with pytest.raises(StoreError):
                s.import_entities([entity])

    @pytest.mark.parametrize("first, second", [
        ("vehicle", "Vehicle"),
        ("police case", "policecase"),
        ("case", "CASE!"),
    ])
    def test_rejects_models_sharing_a_table(self, temp_dir, first, second):
        with EntityStore(temp_dir / "collide.sqlite") as s:
            s.import_entities([Entity(first, (Property("a", PropertyType.STRING, "x"),))])
            with pytest.raises(StoreError, match="collide"):
                s.import_entities([Entity(second, (Property("a", PropertyType.STRING, "y"),))])
            assert s.models() == [first]
            assert s.query_rows([first], {}) == [{"a": "x"}]

    def test_model_names_are_exact(self, temp_dir):
        with EntityStore(temp_dir / "exact.sqlite") as s:
            s.import_entities([Entity("police case", (Property("status", PropertyType.STRING, "open"),))])
            assert s.models() == ["police case"]
            assert s.query_rows(["police case"], {}) == [{"status": "open"}]
            assert s.query_rows(["policecase"], {}) == []
            assert s.query_rows(["Police Case"], {}) == []
            assert s.load_entities()[0].model == "police case"

    def test_rejects_boolean_conflict(self, temp_dir):
        with EntityStore(temp_dir / "conflict.sqlite") as s:
            with pytest.raises(StoreError, match="declared boolean"):
                s.import_entities([
                    Entity("vehicle", (Property("stolen", PropertyType.BOOLEAN, True),)),
                    Entity("vehicle", (Property("stolen", PropertyType.STRING, "yes"),)),
                ])

    def test_entity_without_properties(self, temp_dir):
        with EntityStore(temp_dir / "bare.sqlite") as s:
            s.import_entities([Entity("marker", ())])
            assert s.models() == ["marker"]
            assert s.query_rows(["marker"], {}) == [{}]
            assert s.load_entities() == [Entity("marker", ())]

    def test_failed_import_rolls_back(self, temp_dir, sample_entities):
        with EntityStore(temp_dir / "rollback.sqlite") as s:
            with pytest.raises(StoreError):
                s.import_entities(list(sample_entities) + [Entity("!!!", ())])
            assert s.models() == []
            tables = s.conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table' AND name IN ('case', 'person', 'vehicle')"
            ).fetchall()
            assert tables == []

    def test_failed_append_keeps_earlier_import(self, store):
        with pytest.raises(StoreError):
            store.import_entities([
                Entity("person", (Property("nickname", PropertyType.STRING, "dot"),)),
                Entity("Person", ()),
            ])
        assert "nickname" not in store.schema("person")
        assert len(store.query_rows(["person"], {})) == 3


# =============================================================================
# Queries
# =============================================================================

class TestQueryRows:

    def test_model_filter(self, store):
        result = _query(store, ["person"], [])
        assert set(result) == {"first_name", "hair_color", "eye_color"}

    def test_property_filter(self, store):
        assert _query(store, [], ["hair_color:brown"]) == {
            "first_name": [("ada", 1), ("cy", 1)],
            "hair_color": [("brown", 2)],
            "eye_color": [("green", 1)],
        }

    def test_booleans_come_back_as_bool(self, store):
        rows = store.query_rows(["vehicle"], {})
        assert {type(row["stolen"]) for row in rows} == {bool}

    def test_stolen_toyota_with_relational_encoding(self, store):
        result = _query(store, ["vehicle"], ["make:toyota", "stolen:1"])
        assert result["make"] == [("toyota", 1)]
        assert result["stolen"] == [(True, 1)]

    def test_stolen_true_and_one_agree(self, store):
        assert _query(store, ["vehicle"], ["stolen:true"]) == _query(store, ["vehicle"], ["stolen:1"])

    def test_union_within_key(self, store):
        result = _query(store, ["case"], ["status:closed,referred to da"])
        assert set(result["status"]) == {("closed", 1), ("referred to da", 1)}

    def test_text_filter_does_not_match_integer_column(self, store):
        assert _query(store, ["vehicle"], ['year:"2008"']) == {}

    def test_missing_column_excludes_table(self, store):
        result = _query(store, [], ["make:toyota"])
        assert set(result) == {"make", "stolen", "impounded", "year"}

    def test_unknown_model_is_empty(self, store):
        assert store.query_rows(["spaceship"], {}) == []

    def test_no_match_is_empty(self, store):
        assert _query(store, ["person"], ["eye_color:purple"]) == {}

    def test_matches_in_memory_pipeline(self, store, sample_entities):
        for models, properties in [
            (["person", "vehicle"], []),
            (["person"], ["hair_color:brown"]),
            (["vehicle"], ["make:toyota", "stolen:true"]),
            (["vehicle"], ["year:2008,1982"]),
            (["case"], ["year:2008"]),
            (["case"], ['year:"2008"']),
            (["case"], []),
        ]:
            expected = run_pipeline(sample_entities, models, properties)
            assert _as_sets(_query(store, models, properties)) == _as_sets(expected)


class TestLoadEntities:

    def test_rebuilds_entities(self, store):
        vehicles = store.load_entities(["vehicle"])
        assert len(vehicles) == 3
        first = vehicles[0]
        assert first.model == "vehicle"
        assert first.get("stolen") == Property("stolen", PropertyType.BOOLEAN, True)
        assert first.get("year") == Property("year", PropertyType.INTEGER, 2008)

    def test_nulls_are_omitted(self, store):
        persons = store.load_entities(["person"])
        assert persons[2].get("eye_color") is None

    def test_all_models(self, store, sample_entities):
        assert len(store.load_entities()) == len(sample_entities)

    def test_mixed_column_keeps_value_types(self, store):
        years = [entity.get("year") for entity in store.load_entities(["case"])]
        assert years == [
            Property("year", PropertyType.INTEGER, 2008),
            Property("year", PropertyType.STRING, "2008"),
            Property("year", PropertyType.INTEGER, 2010),
        ]


# =============================================================================
# Audit log
# =============================================================================

class TestInvocationLog:

    def test_record_and_read_back(self, store):
        store.record_invocation("entagg -m person", "alice")
        store.record_invocation("entagg -m vehicle", "bob")
        logged = store.recent_invocations()
        assert [(e["command"], e["username"]) for e in logged] == [
            ("entagg -m vehicle", "bob"),
            ("entagg -m person", "alice"),
        ]
        assert logged[0]["accessed_at"]

    def test_creates_log_table_on_demand(self, temp_dir):
        with EntityStore(temp_dir / "fresh.sqlite") as s:
            assert s.recent_invocations() == []
            s.record_invocation("entagg", "carol")
            assert len(s.recent_invocations()) == 1

    def test_closed_connection_raises_store_error(self, temp_dir):
        s = EntityStore(temp_dir / "closed.sqlite")
        s.close()
        with pytest.raises(StoreError):
            s.record_invocation("entagg", "dave")


def test_open_failure_raises_store_error(temp_dir):
    with pytest.raises(StoreError):
        EntityStore(temp_dir / "missing-dir" / "db.sqlite")
