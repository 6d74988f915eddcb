"""JSON Schema export for wheelhouse.yaml.

Exports a JSON Schema Draft 2020-12 document generated from PipelineConfig,
for IDE autocomplete and validation of wheelhouse.yaml.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from wheelhouse_core.schemas import PipelineConfig

SCHEMA_DIALECT = "https://json-schema.org/draft/2020-12/schema"

SCHEMA_ID = "https://wheelhouse.dev/schemas/wheelhouse.schema.json"


def export_pipeline_config_schema(
    output_path: Path | str | None = None,
) -> dict[str, Any]:
    """Export the wheelhouse.yaml JSON Schema.

    Args:
        output_path: Optional path to write the schema file. Parent
            directories are created as needed.

    Returns:
        Dictionary containing the JSON Schema.

    Example:
        >>> schema = export_pipeline_config_schema()
        >>> schema["$schema"]
        'https://json-schema.org/draft/2020-12/schema'
    """
    schema = PipelineConfig.model_json_schema()
    schema["$schema"] = SCHEMA_DIALECT
    schema["$id"] = SCHEMA_ID

    if "additionalProperties" not in schema:
        schema["additionalProperties"] = False

    if output_path is not None:
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(schema, indent=2))

    return schema
