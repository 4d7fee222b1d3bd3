"""Validation of desired-schema documents."""

from typing import Any

import pydantic
from jsonschema import Draft7Validator

from schemashift.errors import InvalidDesiredSchema
from schemashift.schema.models import SchemaSnapshot

_NAME = {"type": "string", "minLength": 1}

SNAPSHOT_DOCUMENT_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["tables"],
    "properties": {
        "tables": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name"],
                "properties": {
                    "name": _NAME,
                    "engine": {"type": ["string", "null"]},
                    "rowCountEstimate": {"type": ["integer", "null"]},
                },
            },
        },
        "columns": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["tableName", "name", "dataType"],
                "properties": {
                    "tableName": _NAME,
                    "name": _NAME,
                    "dataType": _NAME,
                    "columnType": {"type": ["string", "null"]},
                    "maxLength": {"type": ["integer", "null"]},
                    "isNullable": {"type": ["boolean", "string"]},
                    "defaultValue": {"type": ["string", "number", "boolean", "null"]},
                    "identity": {"enum": ["ALWAYS", "BY DEFAULT", "always", "by default", None]},
                    "position": {"type": ["integer", "null"]},
                },
            },
        },
        "indexes": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["tableName", "name", "columns"],
                "properties": {
                    "tableName": _NAME,
                    "name": _NAME,
                    "columns": {"type": "array", "items": _NAME, "minItems": 1},
                    "unique": {"type": "boolean"},
                    "primary": {"type": "boolean"},
                },
            },
        },
        "foreignKeys": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name", "tableName", "column", "referencedTable", "referencedColumn"],
                "properties": {
                    "name": _NAME,
                    "tableName": _NAME,
                    "column": _NAME,
                    "referencedTable": _NAME,
                    "referencedColumn": _NAME,
                    "onDelete": {"type": ["string", "null"]},
                },
            },
        },
        "skippedTables": {"type": "array", "items": _NAME},
    },
}


def _problem(entity: str, key: str, problem: str) -> dict[str, str]:
    return {"entity": entity, "key": key, "problem": problem}


class SchemaDocumentValidator:
    """Validator for desired-schema documents.

    Checks run in three stages: document shape (JSON Schema), model parsing
    (types and duplicate keys), then referential consistency. Each stage
    reports every problem it finds, not just the first.
    """

    def __init__(self) -> None:
        self._validator = Draft7Validator(SNAPSHOT_DOCUMENT_SCHEMA)

    def validate_document(self, document: Any) -> None:
        """
        Validate the shape of a raw document.

        Raises:
            InvalidDesiredSchema: If the document does not match the snapshot shape
        """
        errors = sorted(self._validator.iter_errors(document), key=lambda e: list(e.absolute_path))
        if errors:
            raise InvalidDesiredSchema(
                [
                    _problem("document", "/".join(str(p) for p in e.absolute_path) or "$", e.message)
                    for e in errors
                ]
            )

    def parse(self, document: dict[str, Any]) -> SchemaSnapshot:
        """Validate a raw document and build a consistent snapshot from it."""
        self.validate_document(document)
        try:
            snapshot = SchemaSnapshot.model_validate(document)
        except pydantic.ValidationError as e:
            raise InvalidDesiredSchema(
                [
                    _problem("document", ".".join(str(p) for p in err["loc"]) or "$", err["msg"])
                    for err in e.errors()
                ]
            ) from e
        self.validate_consistency(snapshot)
        return snapshot

    def validate_consistency(self, snapshot: SchemaSnapshot) -> None:
        """
        Check that every column, index and foreign key refers to something
        that is itself present in the snapshot.

        Raises:
            InvalidDesiredSchema: If any reference dangles
        """
        problems = []
        tables = set(snapshot.table_map())
        columns = snapshot.column_map()

        for column in snapshot.columns:
            if column.table_name not in tables:
                problems.append(
                    _problem("column", f"{column.table_name}.{column.name}", "table not in schema")
                )

        for index in snapshot.indexes:
            key = f"{index.table_name}.{index.name}"
            if index.table_name not in tables:
                problems.append(_problem("index", key, "table not in schema"))
                continue
            for col in index.columns:
                if (index.table_name, col) not in columns:
                    problems.append(_problem("index", key, f"column {col} not in schema"))

        for fk in snapshot.foreign_keys:
            key = f"{fk.table_name}.{fk.name}"
            if (fk.table_name, fk.column) not in columns:
                problems.append(
                    _problem("foreignKey", key, f"column {fk.table_name}.{fk.column} not in schema")
                )
            if (fk.referenced_table, fk.referenced_column) not in columns:
                problems.append(
                    _problem(
                        "foreignKey",
                        key,
                        f"referenced column {fk.referenced_table}.{fk.referenced_column} not in schema",
                    )
                )
            elif fk.table_name == fk.referenced_table and fk.column == fk.referenced_column:
                problems.append(_problem("foreignKey", key, "column references itself"))

        if problems:
            raise InvalidDesiredSchema(problems)
