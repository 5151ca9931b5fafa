"""Storage reference data models (Pydantic)."""
from __future__ import annotations

import json
import os
import re
from string import Template
from typing import Any, Dict, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from asset_engines.common.errors import ConfigurationError

StoreType = Literal["local", "cloud"]

_UNRESOLVED = re.compile(r"\$\{?([A-Za-z_][A-Za-z0-9_]*)\}?")


class StorageReference(BaseModel):
    """
    Named configuration binding a logical store to a physical backend.

    Persisted as ``{name, store_type, store_provider, root_path, store_parameters}``.
    Immutable after load; looked up by name, never duplicated.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., min_length=1)
    type: StoreType = Field(..., alias="store_type")
    provider: str = Field("local", alias="store_provider")
    root_path: str = Field("", description="Base directory (local) or bucket/prefix (cloud)")
    parameters: Dict[str, Any] = Field(default_factory=dict, alias="store_parameters")

    @field_validator("parameters", mode="before")
    @classmethod
    def _decode_parameters(cls, value: Any) -> Any:
        # Exported records carry store_parameters as a JSON-encoded string.
        if value is None or value == "":
            return {}
        if isinstance(value, str):
            return json.loads(value)
        return value

    @field_validator("provider", mode="before")
    @classmethod
    def _normalize_provider(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @classmethod
    def from_record(
        cls,
        record: Mapping[str, Any],
        variables: Optional[Mapping[str, str]] = None,
    ) -> "StorageReference":
        """Build a reference from a persisted record, expanding ``${var}`` placeholders once."""
        data = dict(record)
        name = data.get("name") or "<unnamed>"
        root_path = data.get("root_path") or ""
        data["root_path"] = expand_placeholders(root_path, variables, store_name=str(name))
        try:
            return cls.model_validate(data)
        except (ValidationError, json.JSONDecodeError) as exc:
            raise ConfigurationError(
                f"invalid storage reference {name!r}: {exc}",
                details={"store": name},
            ) from exc


def expand_placeholders(
    value: str,
    variables: Optional[Mapping[str, str]] = None,
    store_name: str = "",
) -> str:
    """Substitute ``${var}`` from explicit variables, then the process environment."""
    mapping: Dict[str, str] = dict(os.environ)
    if variables:
        mapping.update(variables)
    expanded = Template(value).safe_substitute(mapping)
    leftover = _UNRESOLVED.search(expanded)
    if leftover:
        raise ConfigurationError(
            f"unresolved placeholder {leftover.group(0)!r} in root_path of store {store_name!r}",
            details={"store": store_name, "placeholder": leftover.group(1)},
        )
    return expanded
