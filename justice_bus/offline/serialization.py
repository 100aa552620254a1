# =============================================================================
# justice_bus/offline/serialization.py
# JSON coercion for records written to the local store
# =============================================================================

from __future__ import annotations
import json
from datetime import date, datetime
from typing import Any

import numpy as np
import pandas as pd

from justice_bus.errors import PayloadSerializationError


def to_json_safe(value: Any) -> Any:
    """
    Convert a value into plain JSON types.

    Datetimes become ISO strings, numpy scalars become Python scalars and
    pandas/numpy missing values and infinities become None. Anything else
    JSON cannot encode raises PayloadSerializationError.
    """
    if value is None or value is pd.NA or value is pd.NaT:
        return None
    if isinstance(value, (str, bool, int)):
        return value
    if isinstance(value, float):
        return value if np.isfinite(value) else None
    if isinstance(value, dict):
        return {str(k): to_json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_safe(v) for v in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        return float(value) if np.isfinite(value) else None
    if isinstance(value, np.ndarray):
        return [to_json_safe(v) for v in value.tolist()]

    raise PayloadSerializationError(
        f"Value of type {type(value).__name__} cannot be stored offline",
        value_type=type(value).__name__,
    )


def dumps(value: Any) -> str:
    """Serialize a record for storage."""
    return json.dumps(to_json_safe(value))


def loads(text: str) -> Any:
    return json.loads(text)
