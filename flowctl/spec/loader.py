"""
loader.py - Load flow definitions from JSON or YAML files.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .compiler import compile_flow
from .types import FlowModel

logger = logging.getLogger(__name__)

YAML_SUFFIXES = {".yaml", ".yml"}


def load_flow_definition(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a flow definition file.

    JSON and YAML are both accepted; the suffix decides the parser.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file cannot be parsed or is not a mapping.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Flow definition not found: {path}")

    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() in YAML_SUFFIXES:
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ValueError(f"Invalid flow definition {path}: {e}")

    if not isinstance(data, dict):
        raise ValueError(f"Flow definition {path} must be a mapping, got {type(data).__name__}")

    logger.debug("Loaded flow definition %s (%d nodes)", path, len(data.get("nodes") or []))
    return data


def load_flow(path: Union[str, Path], flow_id: Optional[str] = None) -> FlowModel:
    """Load and compile a flow definition file.

    The flow id defaults to the definition's ``flowId`` and then to the file stem.
    """
    path = Path(path)
    definition = load_flow_definition(path)
    return compile_flow(definition, flow_id=flow_id or definition.get("flowId") or path.stem)
