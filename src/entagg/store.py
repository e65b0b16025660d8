"""
store.py — SQLite-backed entity store.

Layout:
  - one table per model, named after the model with everything outside
    [a-zA-Z0-9_] stripped
  - one column per property slug (sanitized the same way)
  - meta_models:  exact model name -> table
  - meta_columns: (table, exact slug) -> column and declared property type
  - a "log" table recording command invocations

Entity columns carry no declared SQL type, so SQLite stores every value
as given: the text "2008" and the integer 2008 stay apart. The declared
property type lives in meta_columns; booleans are stored as 0/1 and read
back as False/True.

Table and column names are case-insensitive in SQLite, so two models (or
two slugs of one model) whose sanitized names differ only in case, or not
at all, are rejected at import instead of being merged.
"""

import logging
import re
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from entagg.entities import Entity, Property, PropertyType, Scalar
from entagg.errors import StoreError
from entagg.filters import FilterMap


logger = logging.getLogger(__name__)

LOG_TABLE = 'log'
MODELS_TABLE = 'meta_models'
COLUMNS_TABLE = 'meta_columns'
RESERVED_TABLES = {LOG_TABLE, MODELS_TABLE, COLUMNS_TABLE}

# rowid alias, so a model without properties still gets a table
ID_COLUMN = '_entagg_id'

# slug -> (column, declared type)
Columns = Dict[str, Tuple[str, PropertyType]]


def sanitize_identifier(name: str) -> str:
    """Strip everything but letters, digits and underscores."""
    return re.sub(r'[^a-zA-Z0-9_]', '', name)


def _quote(identifier: str) -> str:
    return f'"{identifier}"'


def _bind_values(prop_type: PropertyType, values: Iterable[Scalar]) -> List[Scalar]:
    """Keep the filter values that can equal a stored value of this type."""
    bound: List[Scalar] = []
    for value in values:
        if value is None:
            continue
        if prop_type is PropertyType.BOOLEAN:
            if isinstance(value, bool):
                bound.append(int(value))
            elif type(value) is int and value in (0, 1):
                bound.append(value)
        elif isinstance(value, (str, int, float)) and not isinstance(value, bool):
            bound.append(value)
    return bound


def _read_value(prop_type: PropertyType, value: Any) -> Scalar:
    if prop_type is PropertyType.BOOLEAN and value in (0, 1) and not isinstance(value, bool):
        return bool(value)
    return value


def _loaded_type(declared: PropertyType, value: Scalar) -> PropertyType:
    # a column shared by text and numbers keeps the first declaration
    if declared is PropertyType.BOOLEAN:
        return declared
    return PropertyType.infer(value)


class EntityStore:
    """Entity persistence and querying on a SQLite database file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        try:
            # transactions are opened explicitly, DDL included
            self.conn = sqlite3.connect(str(self.path), isolation_level=None)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open database {self.path}: {e}") from e
        self._create_meta_tables()

    def __enter__(self) -> 'EntityStore':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def close(self) -> None:
        self.conn.close()

    @contextmanager
    def _errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as e:
            raise StoreError(f"Failed to {action} in {self.path}: {e}") from e

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        self.conn.execute("BEGIN")
        try:
            yield
        except Exception:
            if self.conn.in_transaction:
                self.conn.execute("ROLLBACK")
            raise
        self.conn.execute("COMMIT")

    # -------------------------------------------------------------------------
    # Schema
    # -------------------------------------------------------------------------

    def _create_meta_tables(self) -> None:
        with self._errors("create the metadata tables"):
            self.conn.execute(
                f"""CREATE TABLE IF NOT EXISTS {_quote(MODELS_TABLE)} (
                    model TEXT PRIMARY KEY,
                    table_name TEXT NOT NULL UNIQUE
                )"""
            )
            self.conn.execute(
                f"""CREATE TABLE IF NOT EXISTS {_quote(COLUMNS_TABLE)} (
                    table_name TEXT NOT NULL,
                    slug TEXT NOT NULL,
                    column_name TEXT NOT NULL,
                    type TEXT NOT NULL,
                    PRIMARY KEY (table_name, slug)
                )"""
            )

    def _model_tables(self) -> Dict[str, str]:
        """Exact model name -> table, ordered by model name."""
        cur = self.conn.execute(f"SELECT model, table_name FROM {_quote(MODELS_TABLE)} ORDER BY model")
        return {model: table for model, table in cur.fetchall()}

    def _columns(self, table: str) -> Columns:
        """Slug -> (column, declared type), in the order the slugs were added."""
        cur = self.conn.execute(
            f"SELECT slug, column_name, type FROM {_quote(COLUMNS_TABLE)} WHERE table_name = ? ORDER BY rowid",
            (table,),
        )
        return {slug: (column, PropertyType(type_name)) for slug, column, type_name in cur.fetchall()}

    def models(self) -> List[str]:
        """Names of the stored models, exactly as imported."""
        with self._errors("list models"):
            return list(self._model_tables())

    def schema(self, model: str) -> Dict[str, PropertyType]:
        """Declared property types of a model; empty for an unknown model."""
        with self._errors("read the schema"):
            table = self._model_tables().get(model)
            if table is None:
                return {}
            return {slug: prop_type for slug, (_, prop_type) in self._columns(table).items()}

    def create_log_table(self) -> None:
        with self._errors("create the log table"):
            self.conn.execute(
                f"""CREATE TABLE IF NOT EXISTS {_quote(LOG_TABLE)} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    command TEXT,
                    accessed_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    username TEXT
                )"""
            )

    # -------------------------------------------------------------------------
    # Import
    # -------------------------------------------------------------------------

    def _register_model(self, model: str, model_tables: Dict[str, str]) -> str:
        """Create the table of a model seen for the first time."""
        table = sanitize_identifier(model)
        if not table:
            raise StoreError(f"Model {model!r} has no usable table name")
        if table.lower() in RESERVED_TABLES:
            raise StoreError(f"Model {model!r} clashes with the {table.lower()} table")
        for other, other_table in model_tables.items():
            if other_table.lower() == table.lower():
                raise StoreError(f"Models {other!r} and {model!r} collide on table {other_table!r}")

        self.conn.execute(f"CREATE TABLE {_quote(table)} ({_quote(ID_COLUMN)} INTEGER PRIMARY KEY)")
        self.conn.execute(
            f"INSERT INTO {_quote(MODELS_TABLE)} (model, table_name) VALUES (?, ?)",
            (model, table),
        )
        model_tables[model] = table
        logger.debug(f"Created table {table} for model {model!r}")
        return table

    def _register_columns(self, entity: Entity, table: str, columns: Columns) -> List[str]:
        """Add columns for new slugs; return the entity's columns in property order."""
        taken = {column.lower(): slug for slug, (column, _) in columns.items()}
        names = []
        for prop in entity.properties:
            if prop.slug in columns:
                column, declared = columns[prop.slug]
                if (declared is PropertyType.BOOLEAN) != (prop.type is PropertyType.BOOLEAN):
                    raise StoreError(
                        f"Property {prop.slug!r} of model {entity.model!r} is declared "
                        f"{declared.value}, cannot store a {prop.type.value}"
                    )
                names.append(column)
                continue

            column = sanitize_identifier(prop.slug)
            if not column:
                raise StoreError(f"Property {prop.slug!r} of model {entity.model!r} has no usable column name")
            if column.lower() == ID_COLUMN:
                raise StoreError(f"Property {prop.slug!r} of model {entity.model!r} clashes with {ID_COLUMN}")
            if column.lower() in taken:
                raise StoreError(
                    f"Properties {taken[column.lower()]!r} and {prop.slug!r} of model "
                    f"{entity.model!r} collide on column {column!r}"
                )

            self.conn.execute(f"ALTER TABLE {_quote(table)} ADD COLUMN {_quote(column)}")
            self.conn.execute(
                f"INSERT INTO {_quote(COLUMNS_TABLE)} (table_name, slug, column_name, type) VALUES (?, ?, ?, ?)",
                (table, prop.slug, column, prop.type.value),
            )
            columns[prop.slug] = (column, prop.type)
            taken[column.lower()] = prop.slug
            names.append(column)
            logger.debug(f"Added column {table}.{column} ({prop.type.value})")
        return names

    def import_entities(self, entities: Iterable[Entity], on_row=None) -> int:
        """
        Insert entities, creating tables and columns as needed.

        Runs in one transaction: on any error nothing is kept.

        Args:
            entities: Entities to store
            on_row: Optional callback invoked with the running row count

        Returns:
            Number of rows inserted
        """
        inserted = 0
        with self._errors("import entities"):
            with self._transaction():
                model_tables = self._model_tables()
                table_columns: Dict[str, Columns] = {}
                for entity in entities:
                    table = model_tables.get(entity.model) or self._register_model(entity.model, model_tables)
                    if table not in table_columns:
                        table_columns[table] = self._columns(table)
                    names = self._register_columns(entity, table, table_columns[table])

                    if names:
                        placeholders = ', '.join('?' for _ in names)
                        self.conn.execute(
                            f"INSERT INTO {_quote(table)} ({', '.join(_quote(n) for n in names)}) "
                            f"VALUES ({placeholders})",
                            [prop.value for prop in entity.properties],
                        )
                    else:
                        self.conn.execute(f"INSERT INTO {_quote(table)} DEFAULT VALUES")

                    inserted += 1
                    if on_row is not None:
                        on_row(inserted)
        logger.debug(f"Inserted {inserted:,} rows into {self.path}")
        return inserted

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def _target_tables(self, models: Optional[Sequence[str]]) -> List[str]:
        model_tables = self._model_tables()
        if not models:
            return list(model_tables.values())
        wanted = []
        for model in models:
            table = model_tables.get(model)
            if table is None:
                logger.debug(f"No table for model {model!r}")
            elif table not in wanted:
                wanted.append(table)
        return wanted

    def _fetch(self, table: str, columns: Columns, where: str = '', params: Sequence[Any] = ()):
        select_list = ', '.join([_quote(ID_COLUMN)] + [_quote(column) for column, _ in columns.values()])
        cur = self.conn.execute(
            f"SELECT {select_list} FROM {_quote(table)}{where} ORDER BY {_quote(ID_COLUMN)}",
            list(params),
        )
        for row in cur.fetchall():
            yield {
                slug: _read_value(prop_type, value)
                for (slug, (_, prop_type)), value in zip(columns.items(), row[1:])
            }

    def query_rows(self, models: Optional[Sequence[str]], filter_map: FilterMap) -> List[Dict[str, Scalar]]:
        """
        Fetch flat rows matching the models and property filters.

        The model choice and the ``IN (...)`` conditions run in SQLite. A
        filter key that is not a property of a model, or whose values cannot
        equal anything of the property's type, excludes the model.

        Returns:
            Rows as {slug: value} dicts, all models concatenated
        """
        rows: List[Dict[str, Scalar]] = []
        with self._errors("query entities"):
            for table in self._target_tables(models):
                columns = self._columns(table)
                clauses = []
                params: List[Scalar] = []
                for slug, values in filter_map.items():
                    if slug not in columns:
                        break
                    column, prop_type = columns[slug]
                    bound = _bind_values(prop_type, values)
                    if not bound:
                        break
                    clauses.append(f"{_quote(column)} IN ({', '.join('?' for _ in bound)})")
                    params.extend(bound)
                else:
                    where = f" WHERE {' AND '.join(clauses)}" if clauses else ''
                    rows.extend(self._fetch(table, columns, where, params))
                    continue
                logger.debug(f"Table {table} cannot satisfy the property filters")
        return rows

    def load_entities(self, models: Optional[Sequence[str]] = None) -> List[Entity]:
        """Rebuild nested entities from the stored rows (nulls omitted)."""
        entities: List[Entity] = []
        with self._errors("load entities"):
            table_models = {table: model for model, table in self._model_tables().items()}
            for table in self._target_tables(models):
                columns = self._columns(table)
                for row in self._fetch(table, columns):
                    properties = tuple(
                        Property(slug=slug, type=_loaded_type(columns[slug][1], value), value=value)
                        for slug, value in row.items()
                        if value is not None
                    )
                    entities.append(Entity(model=table_models[table], properties=properties))
        return entities

    # -------------------------------------------------------------------------
    # Audit log
    # -------------------------------------------------------------------------

    def record_invocation(self, command: str, user: str) -> None:
        self.create_log_table()
        with self._errors("record the invocation"):
            self.conn.execute(
                f"INSERT INTO {_quote(LOG_TABLE)} (command, username) VALUES (?, ?)",
                (command, user),
            )

    def recent_invocations(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Logged invocations, newest first."""
        with self._errors("read the log"):
            exists = self.conn.execute(
                "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (LOG_TABLE,)
            ).fetchone()
            if not exists:
                return []
            cur = self.conn.execute(
                f"SELECT command, accessed_at, username FROM {_quote(LOG_TABLE)} ORDER BY id DESC LIMIT ?",
                (limit,),
            )
            return [
                {'command': command, 'accessed_at': accessed_at, 'username': username}
                for command, accessed_at, username in cur.fetchall()
            ]
