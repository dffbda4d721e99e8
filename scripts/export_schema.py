#!/usr/bin/env -S uv run --no-project
# /// script
# dependencies = ["pydantic>=2.7"]
# ///

"""
Export JSON Schema from Pydantic models.

Generates the contracts shared with the other processes:
- hook-event-schema.json: one queue line, as written by the hook script
- runtime-state-schema.json: runtime_state.json and published snapshots
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

# Add repo root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from eocc.schemas.events import HookEvent
from eocc.schemas.state import StateSnapshot

SCHEMAS = {
    'hook-event-schema.json': (HookEvent, 'Hook Event', 'One line of the eocc events.jsonl queue file'),
    'runtime-state-schema.json': (StateSnapshot, 'Runtime State', 'Persisted and published monitor state'),
}


def export_schemas(output_dir: str = '.') -> dict[str, dict]:
    """Export JSON Schema for the queue line and the snapshot."""

    print('=' * 80)
    print('JSON Schema Export')
    print('=' * 80)
    print()

    exported = {}
    for filename, (model, title, description) in SCHEMAS.items():
        # Validation mode for input (aliases like "event"), serialization for output
        mode = 'validation' if model is HookEvent else 'serialization'
        schema = model.model_json_schema(by_alias=True, mode=mode)

        schema['$schema'] = 'https://json-schema.org/draft/2020-12/schema'
        schema['title'] = title
        schema['description'] = description

        output_file = Path(output_dir) / filename
        with open(output_file, 'w') as f:
            json.dump(schema, f, indent=2)

        print(f'✓ Exported {title} schema to: {output_file}')
        print(f'  Size: {output_file.stat().st_size:,} bytes')
        print(f'  {len(schema.get("$defs", {}))} model definitions')
        print()
        exported[filename] = schema

    return exported


if __name__ == '__main__':
    output_dir = sys.argv[1] if len(sys.argv) > 1 else '.'
    export_schemas(output_dir)
