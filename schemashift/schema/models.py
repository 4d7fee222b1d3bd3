"""Pydantic models for schema snapshots."""

import re
from typing import Any, Optional
from pydantic import BaseModel, Field, field_validator, model_validator


class Table(BaseModel):
    """A table as seen in the structural catalog."""

    name: str
    engine: Optional[str] = None
    row_count_estimate: int = Field(default=0, alias="rowCountEstimate")

    class Config:
        populate_by_name = True
        frozen = True


class Column(BaseModel):
    """A column, identified by ``(table_name, name)``."""

    table_name: str = Field(alias="tableName")
    name: str
    data_type: str = Field(alias="dataType")
    column_type: Optional[str] = Field(default=None, alias="columnType")
    max_length: Optional[int] = Field(default=None, alias="maxLength")
    is_nullable: bool = Field(default=True, alias="isNullable")
    default_value: Optional[str] = Field(default=None, alias="defaultValue")
    identity: Optional[str] = None
    position: int = 0

    class Config:
        populate_by_name = True
        frozen = True

    @field_validator("is_nullable", mode="before")
    @classmethod
    def _parse_yes_no(cls, value: Any) -> Any:
        # information_schema reports YES/NO
        if isinstance(value, str):
            return value.strip().upper() in ("YES", "TRUE", "Y", "1")
        return value

    @field_validator("default_value", mode="before")
    @classmethod
    def _stringify_default(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    @field_validator("identity", mode="before")
    @classmethod
    def _normalize_identity(cls, value: Any) -> Any:
        # information_schema.columns.identity_generation: ALWAYS, BY DEFAULT or NULL
        if value is None:
            return None
        text = " ".join(str(value).upper().split())
        if not text:
            return None
        if text not in IDENTITY_KINDS:
            raise ValueError(f"identity must be one of {', '.join(IDENTITY_KINDS)}")
        return text

    @model_validator(mode="after")
    def _fill_column_type(self) -> "Column":
        if self.column_type is None:
            column_type = self.data_type
            if self.max_length:
                column_type = f"{self.data_type}({self.max_length})"
            object.__setattr__(self, "column_type", column_type)
        return self

    @property
    def key(self) -> tuple[str, str]:
        return (self.table_name, self.name)

    @property
    def owned_sequence(self) -> Optional[str]:
        """Sequence name when the default is the one ``serial`` creates.

        Only ``nextval('<table>_<column>_seq')`` counts; a default drawing
        from any other sequence is an ordinary expression.
        """
        sequence = sequence_of_default(self.default_value)
        if sequence == f"{self.table_name}_{self.name}_seq":
            return sequence
        return None

    @property
    def serial_type(self) -> Optional[str]:
        """``serial``/``bigserial``/``smallserial`` for a serial column, else None."""
        if self.owned_sequence is None:
            return None
        return _SERIAL_TYPES.get(normalize_type(self.column_type or self.data_type))

    def definition(self) -> tuple[str, bool, Optional[str]]:
        """The attributes that make two same-named columns differ.

        Generated values compare by kind, so a serial captured in one schema
        matches the same serial recreated in another.
        """
        if self.identity is not None:
            default = f"identity {self.identity.lower()}"
        elif self.serial_type is not None:
            default = "serial"
        else:
            default = normalize_default(self.default_value)
        return (
            normalize_type(self.column_type or self.data_type),
            self.is_nullable,
            default,
        )


class Index(BaseModel):
    """An index, identified by ``(table_name, name)``."""

    table_name: str = Field(alias="tableName")
    name: str
    columns: list[str]
    unique: bool = False
    primary: bool = False

    class Config:
        populate_by_name = True
        frozen = True

    @property
    def key(self) -> tuple[str, str]:
        return (self.table_name, self.name)


class ForeignKey(BaseModel):
    """A single-column foreign key constraint."""

    name: str
    table_name: str = Field(alias="tableName")
    column: str
    referenced_table: str = Field(alias="referencedTable")
    referenced_column: str = Field(alias="referencedColumn")
    on_delete: str = Field(default="NO ACTION", alias="onDelete")

    class Config:
        populate_by_name = True
        frozen = True

    @field_validator("on_delete", mode="before")
    @classmethod
    def _normalize_action(cls, value: Any) -> Any:
        if value is None:
            return "NO ACTION"
        if isinstance(value, str):
            return " ".join(value.upper().split())
        return value

    @property
    def key(self) -> tuple[str, str]:
        return (self.table_name, self.name)


class SchemaSnapshot(BaseModel):
    """A consistent view of a database's structure at one point in time."""

    tables: list[Table] = Field(default_factory=list)
    columns: list[Column] = Field(default_factory=list)
    indexes: list[Index] = Field(default_factory=list)
    foreign_keys: list[ForeignKey] = Field(default_factory=list, alias="foreignKeys")
    warnings: list[str] = Field(default_factory=list)
    skipped_tables: list[str] = Field(default_factory=list, alias="skippedTables")

    class Config:
        populate_by_name = True
        frozen = True

    @model_validator(mode="after")
    def _check_unique_keys(self) -> "SchemaSnapshot":
        for label, items in (
            ("table", [(t.name,) for t in self.tables]),
            ("column", [c.key for c in self.columns]),
            ("index", [i.key for i in self.indexes]),
            ("foreign key", [fk.key for fk in self.foreign_keys]),
        ):
            seen: set[tuple[str, ...]] = set()
            for key in items:
                if key in seen:
                    raise ValueError(f"duplicate {label} {'.'.join(key)}")
                seen.add(key)
        return self

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "SchemaSnapshot":
        return cls.model_validate(document)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")

    def table_map(self) -> dict[str, Table]:
        return {t.name: t for t in self.tables}

    def column_map(self) -> dict[tuple[str, str], Column]:
        return {c.key: c for c in self.columns}

    def index_map(self) -> dict[tuple[str, str], Index]:
        return {i.key: i for i in self.indexes}

    def foreign_key_map(self) -> dict[tuple[str, str], ForeignKey]:
        return {fk.key: fk for fk in self.foreign_keys}

    def columns_for(self, table_name: str) -> list[Column]:
        return sorted(
            (c for c in self.columns if c.table_name == table_name),
            key=lambda c: (c.position, c.name),
        )

    def indexes_for(self, table_name: str) -> list[Index]:
        return sorted((i for i in self.indexes if i.table_name == table_name), key=lambda i: i.name)

    def foreign_keys_for(self, table_name: str) -> list[ForeignKey]:
        return sorted(
            (fk for fk in self.foreign_keys if fk.table_name == table_name),
            key=lambda fk: fk.name,
        )

    def structurally_equal(self, other: "SchemaSnapshot") -> bool:
        """Compare structure only, ignoring row estimates, positions and warnings."""
        return (
            set(self.table_map()) == set(other.table_map())
            and {k: c.definition() for k, c in self.column_map().items()}
            == {k: c.definition() for k, c in other.column_map().items()}
            and {k: (tuple(i.columns), i.unique, i.primary) for k, i in self.index_map().items()}
            == {k: (tuple(i.columns), i.unique, i.primary) for k, i in other.index_map().items()}
            and self.foreign_key_map() == other.foreign_key_map()
        )


class TableSchema(BaseModel):
    """Structural detail for a single table."""

    table: Table
    columns: list[Column] = Field(default_factory=list)
    indexes: list[Index] = Field(default_factory=list)
    foreign_keys: list[ForeignKey] = Field(default_factory=list, alias="foreignKeys")

    class Config:
        populate_by_name = True


class DatabaseSize(BaseModel):
    """Aggregate storage statistics."""

    total_size: int = Field(default=0, alias="totalSize")
    data_size: int = Field(default=0, alias="dataSize")
    index_size: int = Field(default=0, alias="indexSize")
    table_count: int = Field(default=0, alias="tableCount")

    class Config:
        populate_by_name = True


_TYPE_ALIASES = {
    "int": "integer",
    "int4": "integer",
    "int2": "smallint",
    "int8": "bigint",
    "serial": "integer",
    "bigserial": "bigint",
    "smallserial": "smallint",
    "float4": "real",
    "float8": "double precision",
    "float": "double precision",
    "bool": "boolean",
    "decimal": "numeric",
    "varchar": "character varying",
    "char": "character",
    "bpchar": "character",
    "timestamp": "timestamp without time zone",
    "timestamptz": "timestamp with time zone",
    "time": "time without time zone",
    "timetz": "time with time zone",
}


def normalize_type(type_text: str) -> str:
    """Canonical lower-case spelling of a column type, keeping its modifiers."""
    text = " ".join(type_text.strip().lower().split())
    base, _, modifier = text.partition("(")
    base = base.strip()
    base = _TYPE_ALIASES.get(base, base)
    if modifier:
        return f"{base}({modifier.replace(' ', '')}"
    return base


IDENTITY_KINDS = ("ALWAYS", "BY DEFAULT")

_SERIAL_TYPES = {
    "integer": "serial",
    "bigint": "bigserial",
    "smallint": "smallserial",
}

# nextval('users_id_seq'::regclass), optionally schema-qualified or quoted
_NEXTVAL = re.compile(
    r"""^nextval\('(?:"?[^".']+"?\.)?"?([^".']+)"?'(?:::regclass)?\)$""", re.IGNORECASE
)


def sequence_of_default(default: Optional[str]) -> Optional[str]:
    """Unqualified sequence name of a ``nextval(...)`` default, else None."""
    if default is None:
        return None
    match = _NEXTVAL.match(default.strip())
    return match.group(1) if match else None


_TRAILING_CAST = re.compile(r"::[a-z_][a-z0-9_ ]*(\([0-9, ]*\))?(\[\])?$", re.IGNORECASE)


def normalize_default(default: Optional[str]) -> Optional[str]:
    """Strip the type casts postgres appends to reported defaults.

    ``'active'::character varying`` and ``'active'`` compare equal.
    """
    if default is None:
        return None
    text = default.strip()
    while True:
        stripped = _TRAILING_CAST.sub("", text).strip()
        if stripped.startswith("(") and stripped.endswith(")") and stripped.count("(") == 1:
            stripped = stripped[1:-1].strip()
        if stripped == text:
            return text
        text = stripped
