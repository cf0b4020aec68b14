"""ID types and generators for the types package.

Provides run, branch and execution-node ID generation, plus type aliases.
"""

from __future__ import annotations

import secrets
import string
import uuid
from datetime import datetime, timezone

# Type aliases
RunId = str
BranchId = str
ExecutionNodeId = str

MAIN_BRANCH_ID: BranchId = "main"


def generate_run_id() -> RunId:
    """Generate a unique run ID.

    Creates IDs in the format: run-YYYYMMDD-HHMMSS-xxxxxx
    where xxxxxx is a random 6-character alphanumeric suffix.

    Example:
        >>> run_id = generate_run_id()
        >>> run_id  # e.g., "run-20251208-143022-abc123"
    """
    now = datetime.now(timezone.utc)
    timestamp = now.strftime("%Y%m%d-%H%M%S")
    suffix = "".join(secrets.choice(string.ascii_lowercase + string.digits) for _ in range(6))
    return f"run-{timestamp}-{suffix}"


def generate_node_id() -> ExecutionNodeId:
    """Globally unique execution node id."""
    return f"node-{uuid.uuid4().hex}"


def generate_branch_id() -> BranchId:
    return f"branch-{uuid.uuid4().hex[:12]}"
