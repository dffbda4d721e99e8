"""
Shared type definitions for schemas.

Centralizes the base models used by the event and state schemas.

Layering:
- This module provides FOUNDATION types (BaseStrictModel, PermissiveModel)
- events.py models producer input (permissive: the hook script may add fields)
- state.py models our own output (strict: we control every field)
"""

from __future__ import annotations

import pydantic

# ==============================================================================
# Base Strict Model (Foundation)
# ==============================================================================


class BaseStrictModel(pydantic.BaseModel):
    """
    Foundation strict model for data this package writes itself.

    Uses extra='forbid' to reject unknown fields - any field not modeled
    causes immediate validation failure (fail-fast).
    """

    model_config = pydantic.ConfigDict(
        extra='forbid',  # Reject unknown fields (fail-fast)
        strict=True,  # Strict type coercion
        frozen=True,  # Immutable after creation
    )


# ==============================================================================
# Permissive Model (Foundation)
# ==============================================================================


class PermissiveModel(pydantic.BaseModel):
    """
    Foundation permissive model for data written by external producers.

    Symmetry with BaseStrictModel:
    - BaseStrictModel: extra='forbid' (rejects unknown fields)
    - PermissiveModel: extra='ignore' (drops unknown fields)

    The hook script is versioned independently of the monitor, so a newer
    script adding a field must not make every line unparseable.
    """

    model_config = pydantic.ConfigDict(
        extra='ignore',  # Unknown producer fields are dropped
        frozen=True,  # Immutable after creation
        populate_by_name=True,  # Accept field names as well as aliases
    )
