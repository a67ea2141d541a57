import hashlib
import json
from typing import Any, Dict


def canonical_input(stage: str, model_id: str, params: Dict[str, Any]) -> str:
    """Serialize a stage's semantic input with fixed key ordering."""
    return json.dumps(
        {"stage": stage, "model": model_id, "input": params},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def derive_job_key(stage: str, model_id: str, params: Dict[str, Any]) -> str:
    """Return the sha256 hex digest addressing a stage's JobRecord.

    Equal inputs always produce equal keys. The stage name is prefixed so keys
    stay readable in the store, e.g. ``detection-3f1a...``.
    """
    blob = canonical_input(stage, model_id, params)
    digest = hashlib.sha256(blob.encode("utf-8")).hexdigest()
    return f"{stage}-{digest}"
