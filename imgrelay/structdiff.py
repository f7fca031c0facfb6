"""Field-by-field difference between two dataclass instances."""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Entry:
    """One differing field: its name and the value from the second object."""

    name: str
    value: Any


class Entries(list):
    """An ordered list of Entry items with text and JSON renderings."""

    def __str__(self) -> str:
        parts = []
        for entry in self:
            if isinstance(entry.value, Entries):
                rendered = "{" + str(entry.value) + "}"
            else:
                rendered = str(entry.value)
            parts.append(f"{entry.name}: {rendered}")
        return "; ".join(parts)

    def to_json(self) -> str:
        """Render as a compact JSON object keeping the entry order."""
        members = (
            f"{json.dumps(entry.name)}:{_to_json(entry.value)}" for entry in self
        )
        return "{" + ",".join(members) + "}"


def _to_json(value: Any) -> str:
    if isinstance(value, Entries):
        return value.to_json()
    return json.dumps(value, separators=(",", ":"))


def _is_instance(obj: Any) -> bool:
    return dataclasses.is_dataclass(obj) and not isinstance(obj, type)


def diff(a: Any, b: Any) -> Entries:
    """List the public fields whose values differ between ``a`` and ``b``.

    Nested dataclass fields are diffed recursively. Objects of different
    types yield no entries.
    """
    if not _is_instance(a) or not _is_instance(b):
        raise TypeError("diff expects dataclass instances")

    result = Entries()
    if type(a) is not type(b):
        return result

    for field in dataclasses.fields(a):
        if field.name.startswith("_"):
            continue

        value_a = getattr(a, field.name)
        value_b = getattr(b, field.name)

        if value_a == value_b:
            continue

        if _is_instance(value_a) and _is_instance(value_b):
            value = diff(value_a, value_b)
        else:
            value = value_b

        result.append(Entry(field.name, value))

    return result