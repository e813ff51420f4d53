"""
Writer — deterministic serialization for orchestrator outputs.

Conventions:
  - JSON:  indent=2, sort_keys=True, trailing newline.
  - JSONL: compact (no indent), sort_keys=True, one object per line.
  - Directories created with mkdir(parents=True, exist_ok=True).
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict

from release_orchestrator.io.schema import RunEvent, RunReport

log = logging.getLogger(__name__)


def _write_json(obj: Any, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(json.dumps(obj, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    os.replace(tmp, path)


def write_store_index(index: Dict[str, Dict[str, Any]], path: Path) -> None:
    """Write the artifact store's platform → {sha256, size_bytes} index."""
    _write_json(index, path)
    log.debug("Wrote %s (%d entries)", path, len(index))


def write_run_report(report: RunReport, output_dir: Path) -> Path:
    """Write ``run_report.json`` to *output_dir*."""
    path = output_dir / "run_report.json"
    _write_json(report.model_dump(mode="json"), path)
    log.info("Wrote %s", path)
    return path


def append_event(event: RunEvent, path: Path) -> None:
    """Append one event to an ``events.jsonl`` file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as fh:
        fh.write(json.dumps(event.model_dump(mode="json"), sort_keys=True) + "\n")
