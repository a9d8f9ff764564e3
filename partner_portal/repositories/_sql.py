from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Any


def validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


def row_to_dict(columns: Sequence[str], row: Sequence[Any] | None) -> dict[str, Any] | None:
    if row is None:
        return None
    return dict(zip(columns, row))
