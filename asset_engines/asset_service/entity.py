"""Entity-layer interface consumed by the asset service.

The entity layer owns rows and column schemas; the asset service only needs to know
which store a column points at and what the column currently holds.
"""
from __future__ import annotations

import copy
import logging
import threading
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

from pydantic import BaseModel, ConfigDict, Field

from asset_engines.common.errors import ColumnNotFound, ConfigurationError, EntityNotFound

logger = logging.getLogger(__name__)

CLOUD_STORE_SOURCE = "cloud_store"


class ColumnBinding(BaseModel):
    """Where a file-typed column keeps its blobs."""
    model_config = ConfigDict(frozen=True)

    entity_name: str
    column_name: str
    store_name: str
    namespace: str = ""
    asset_kind: str = "file"
    allowed_extensions: Tuple[str, ...] = Field(default_factory=tuple)

    @classmethod
    def from_column_definition(cls, entity_name: str, definition: Dict[str, Any]) -> "ColumnBinding":
        """Build a binding from a schema column record.

        Expects ``ColumnName``, ``ColumnType`` like ``image.png|jpg|jpeg`` and
        ``ForeignKeyData`` of ``{DataSource: cloud_store, Namespace: <store>, KeyName: <sub-path>}``.
        """
        column_name = definition.get("ColumnName") or definition.get("column_name")
        if not column_name:
            raise ConfigurationError(f"column definition on {entity_name!r} has no ColumnName")
        column_type = str(definition.get("ColumnType") or definition.get("column_type") or "file")
        asset_kind, _, extension_list = column_type.partition(".")
        extensions = tuple(ext.strip().lower() for ext in extension_list.split("|") if ext.strip())

        fk = definition.get("ForeignKeyData") or definition.get("foreign_key_data") or {}
        source = fk.get("DataSource") or fk.get("data_source")
        store_name = fk.get("Namespace") or fk.get("namespace")
        if source != CLOUD_STORE_SOURCE or not store_name:
            raise ConfigurationError(
                f"column {entity_name}.{column_name} is not bound to a cloud store",
                details={"entity": entity_name, "column": column_name, "data_source": source},
            )
        return cls(
            entity_name=entity_name,
            column_name=column_name,
            store_name=store_name,
            namespace=fk.get("KeyName") or fk.get("key_name") or "",
            asset_kind=asset_kind or "file",
            allowed_extensions=extensions,
        )


class EntityStore(Protocol):
    """Row and schema access for file-typed columns."""

    def bindings(self) -> List[ColumnBinding]: ...
    def get_column_binding(self, entity_name: str, column_name: str) -> ColumnBinding: ...
    def get_column_value(
        self, entity_name: str, reference_id: str, column_name: str, caller_id: Optional[str] = None
    ) -> Any: ...
    def set_column_value(
        self, entity_name: str, reference_id: str, column_name: str, value: Any, caller_id: Optional[str] = None
    ) -> None: ...


class InMemoryEntityStore:
    """In-memory implementation for dev/tests."""

    def __init__(self) -> None:
        self._bindings: Dict[Tuple[str, str], ColumnBinding] = {}
        self._rows: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def add_binding(self, binding: ColumnBinding) -> ColumnBinding:
        self._bindings[(binding.entity_name, binding.column_name)] = binding
        self._rows.setdefault(binding.entity_name, {})
        return binding

    def add_column_definitions(self, entity_name: str, definitions: Iterable[Dict[str, Any]]) -> List[ColumnBinding]:
        return [
            self.add_binding(ColumnBinding.from_column_definition(entity_name, definition))
            for definition in definitions
        ]

    def bindings(self) -> List[ColumnBinding]:
        return list(self._bindings.values())

    def put_row(self, entity_name: str, reference_id: str, row: Dict[str, Any]) -> None:
        with self._lock:
            self._rows.setdefault(entity_name, {})[str(reference_id)] = copy.deepcopy(row)

    def get_row(self, entity_name: str, reference_id: str) -> Dict[str, Any]:
        rows = self._rows.get(entity_name)
        if rows is None:
            raise EntityNotFound(f"unknown entity {entity_name!r}", details={"entity": entity_name})
        row = rows.get(str(reference_id))
        if row is None:
            raise EntityNotFound(
                f"no {entity_name} row with id {reference_id!r}",
                details={"entity": entity_name, "reference_id": reference_id},
            )
        return row

    def get_column_binding(self, entity_name: str, column_name: str) -> ColumnBinding:
        binding = self._bindings.get((entity_name, column_name))
        if binding is not None:
            return binding
        if entity_name not in self._rows:
            raise EntityNotFound(f"unknown entity {entity_name!r}", details={"entity": entity_name})
        raise ColumnNotFound(
            f"{entity_name} has no file column {column_name!r}",
            details={"entity": entity_name, "column": column_name},
        )

    def get_column_value(
        self, entity_name: str, reference_id: str, column_name: str, caller_id: Optional[str] = None
    ) -> Any:
        self.get_column_binding(entity_name, column_name)
        with self._lock:
            return copy.deepcopy(self.get_row(entity_name, reference_id).get(column_name))

    def set_column_value(
        self, entity_name: str, reference_id: str, column_name: str, value: Any, caller_id: Optional[str] = None
    ) -> None:
        self.get_column_binding(entity_name, column_name)
        with self._lock:
            self.get_row(entity_name, reference_id)[column_name] = value
        logger.debug("Updated %s/%s.%s by %s", entity_name, reference_id, column_name, caller_id or "anonymous")
