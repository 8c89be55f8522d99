"""Static, versioned schema for configuration documents.

The schema is declarative: each domain maps keys to a :class:`Field`. The
``modules`` domain is keyed by user-chosen module ids, so every entry below it
is validated against :data:`MODULE_FIELDS` instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

SCHEMA_VERSION = 1
SUPPORTED_VERSIONS = (1,)


@dataclass(frozen=True)
class Field:
    kind: Union[str, tuple[str, ...]]
    required: bool = False
    items: Optional[str] = None
    fields: Optional[Mapping[str, "Field"]] = None
    values: Optional[str] = None
    open: bool = False
    choices: Optional[tuple[str, ...]] = None


_STR_LIST = Field("list", items="str")

MODULE_FIELDS: dict[str, Field] = {
    "description": Field("str"),
    "depends_on": _STR_LIST,
    "steps": Field("table_list", required=True, fields={"type": Field("str", required=True)}, open=True),
}

SCHEMA: dict[str, dict[str, Field]] = {
    "network": {
        "dns": Field("list", required=True, items="str"),
        "service": Field("str"),
        "search_domains": _STR_LIST,
        "subnet_mask": Field("str"),
        "router": Field("str"),
    },
    "security": {
        "firewall": Field("bool", required=True),
        "stealth_mode": Field("bool"),
        "logging": Field("bool"),
        "allow_signed": Field("bool"),
        "gatekeeper": Field("bool"),
        "filevault": Field("bool"),
    },
    "time": {
        "timezone": Field("str", required=True),
        "ntp_server": Field("str"),
    },
    "packages": {
        "formulae": _STR_LIST,
        "casks": _STR_LIST,
        "brewfiles": _STR_LIST,
        "manager": Field("str", choices=("brew",)),
    },
    "fonts": {
        "casks": Field("list", required=True, items="str"),
    },
    "power": {
        "settings": Field("table", required=True, values="int"),
    },
    "preferences": {
        "defaults": Field(
            "table_list",
            required=True,
            fields={
                "domain": Field("str", required=True),
                "key": Field("str", required=True),
                "value": Field("scalar", required=True),
                "type": Field("str"),
                "privileged": Field("bool"),
            },
        ),
    },
    "remote_access": {
        "ssh": Field("bool", required=True),
    },
    "dotfiles": {
        "templates": Field(
            "table_list",
            required=True,
            fields={
                "source": Field("str", required=True),
                "destination": Field("str", required=True),
                "mode": Field(("str", "int")),
                "backup": Field("bool"),
            },
        ),
    },
}

DYNAMIC_DOMAINS: dict[str, dict[str, Field]] = {"modules": MODULE_FIELDS}


def validate(data: Mapping[str, Any]) -> list[str]:
    """Return every problem found in ``data``; an empty list means valid."""

    problems: list[str] = []
    version = data.get("schema_version")
    if version is None:
        problems.append("schema_version: required key missing")
    elif not _matches("int", version):
        problems.append("schema_version: expected an integer")
    elif version not in SUPPORTED_VERSIONS:
        supported = ", ".join(str(v) for v in SUPPORTED_VERSIONS)
        problems.append(f"schema_version: unsupported version {version} (supported: {supported})")

    for domain, payload in data.items():
        if domain == "schema_version":
            continue
        if domain in SCHEMA:
            if not isinstance(payload, Mapping):
                problems.append(f"{domain}: expected a table")
                continue
            problems.extend(_check_table(domain, payload, SCHEMA[domain], open_table=False))
        elif domain in DYNAMIC_DOMAINS:
            if not isinstance(payload, Mapping):
                problems.append(f"{domain}: expected a table")
                continue
            for entry_id, entry in payload.items():
                path = f"{domain}.{entry_id}"
                if not isinstance(entry, Mapping):
                    problems.append(f"{path}: expected a table")
                    continue
                problems.extend(_check_table(path, entry, DYNAMIC_DOMAINS[domain], open_table=False))
        else:
            problems.append(f"{domain}: unknown domain")
    return problems


def _check_table(path: str, table: Mapping[str, Any], fields: Mapping[str, Field], *, open_table: bool) -> list[str]:
    problems: list[str] = []
    for key, spec in fields.items():
        if key not in table:
            if spec.required:
                problems.append(f"{path}.{key}: required key missing")
            continue
        problems.extend(_check_value(f"{path}.{key}", table[key], spec))
    if not open_table:
        for key in table:
            if key not in fields:
                problems.append(f"{path}.{key}: unknown key")
    return problems


def _check_value(path: str, value: Any, spec: Field) -> list[str]:
    kinds = spec.kind if isinstance(spec.kind, tuple) else (spec.kind,)
    if not any(_matches(kind, value) for kind in kinds):
        return [f"{path}: expected {' or '.join(kinds)}"]
    if spec.choices and value not in spec.choices:
        return [f"{path}: expected one of {', '.join(spec.choices)}"]
    problems: list[str] = []
    if "list" in kinds and spec.items and isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            if not _matches(spec.items, item):
                problems.append(f"{path}[{index}]: expected {spec.items}")
    if "table" in kinds and isinstance(value, Mapping):
        if spec.values:
            for key, item in value.items():
                if not _matches(spec.values, item):
                    problems.append(f"{path}.{key}: expected {spec.values}")
        if spec.fields:
            problems.extend(_check_table(path, value, spec.fields, open_table=spec.open))
    if "table_list" in kinds:
        for index, item in enumerate(value):
            item_path = f"{path}[{index}]"
            if not isinstance(item, Mapping):
                problems.append(f"{item_path}: expected a table")
                continue
            problems.extend(_check_table(item_path, item, spec.fields or {}, open_table=spec.open))
    return problems


def _matches(kind: str, value: Any) -> bool:
    if kind == "str":
        return isinstance(value, str)
    if kind == "bool":
        return isinstance(value, bool)
    if kind == "int":
        return isinstance(value, int) and not isinstance(value, bool)
    if kind == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if kind == "scalar":
        return isinstance(value, (str, int, float, bool))
    if kind == "list":
        return isinstance(value, (list, tuple))
    if kind == "table":
        return isinstance(value, Mapping)
    if kind == "table_list":
        return isinstance(value, (list, tuple))
    raise ValueError(f"unknown schema kind '{kind}'")
