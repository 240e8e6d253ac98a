"""
Task descriptor builder with fluent interface
"""
import hashlib
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..bundle import PACKAGE_ID, DeploymentBundle
from ..config import ResourceConstraints

WASM_IMAGE = "wasm"
WASM_RUNTIME_VERSION = "1.0.0"

MEMORY_PROPERTY = "golem.inf.mem.gib"
STORAGE_PROPERTY = "golem.inf.storage.gib"
PRICING_PROPERTY = "golem.com.pricing.model"


class TaskDescriptorBuilder:
    """Builder for the task descriptor submitted to the requestor daemon"""

    def __init__(self):
        self._reset()

    def _reset(self):
        """Reset the builder state"""
        self._descriptor: Dict[str, Any] = {
            "task_id": str(uuid.uuid4()),
            "created_at": datetime.now(timezone.utc).isoformat(),
            "constraints": [],
            "commands": [],
        }
        self._uploads: List[Dict[str, Any]] = []
        self._run: Optional[Dict[str, Any]] = None
        self._downloads: List[Dict[str, Any]] = []

    def with_package(self, bundle: DeploymentBundle, archive_path: Path) -> "TaskDescriptorBuilder":
        """Set the deployment bundle to run"""
        self._descriptor["package"] = {
            "name": PACKAGE_ID,
            "image": WASM_IMAGE,
            "runtime_version": WASM_RUNTIME_VERSION,
            "archive": str(archive_path),
            "sha3": hashlib.sha3_512(bundle.archive).hexdigest(),
        }
        self._descriptor["entry_point"] = bundle.entry_point
        return self

    def with_budget(self, budget: int) -> "TaskDescriptorBuilder":
        """Set the budget ceiling"""
        if isinstance(budget, bool) or not isinstance(budget, int) or budget < 0:
            raise ValueError("Budget must be a non-negative integer")
        self._descriptor["budget"] = budget
        return self

    def with_constraints(self, constraints: ResourceConstraints) -> "TaskDescriptorBuilder":
        """Require minimum memory, minimum storage and a pricing model"""
        self._descriptor["constraints"] = [
            {"property": MEMORY_PROPERTY, "op": ">=", "value": constraints.min_memory_gib},
            {"property": STORAGE_PROPERTY, "op": ">=", "value": constraints.min_storage_gib},
            {"property": PRICING_PROPERTY, "op": "==", "value": constraints.pricing_model},
        ]
        return self

    def with_subnet(self, subnet: Optional[str]) -> "TaskDescriptorBuilder":
        """Restrict negotiation to a subnet"""
        if subnet:
            self._descriptor["subnet"] = subnet
        return self

    def with_timeout(self, timeout_seconds: float) -> "TaskDescriptorBuilder":
        """Set the provider-side expiration"""
        self._descriptor["timeout_seconds"] = timeout_seconds
        return self

    def upload(self, local_path: Path, logical_path: str) -> "TaskDescriptorBuilder":
        """Add an upload of a local file to a path inside the sandbox"""
        self._uploads.append({"upload": {"from": str(local_path), "to": logical_path}})
        return self

    def run(self, entry_point: str, args: Sequence[str]) -> "TaskDescriptorBuilder":
        """Set the entry point invocation"""
        self._run = {"run": {"entry_point": entry_point, "args": list(args)}}
        return self

    def download(self, logical_path: str, local_path: Path) -> "TaskDescriptorBuilder":
        """Add a download of a sandbox file back to a local path"""
        self._downloads.append({"download": {"from": logical_path, "to": str(local_path)}})
        return self

    def build(self) -> Dict[str, Any]:
        """Build and return the descriptor, then reset the builder"""
        missing = [key for key in ("package", "budget") if key not in self._descriptor]
        if missing:
            raise ValueError(f"Task descriptor is missing: {', '.join(missing)}")
        if self._run is None:
            raise ValueError("Task descriptor needs a run command")

        # upload -> run -> download
        descriptor = dict(self._descriptor)
        descriptor["commands"] = [*self._uploads, self._run, *self._downloads]

        self._reset()
        return descriptor


def job_commands(inputs: Sequence[Tuple[str, Path]], output: Tuple[str, Path], workdir: str) -> Tuple[List[Tuple[Path, str]], List[str], Tuple[str, Path]]:
    """
    Map named local files to sandbox paths.

    Returns:
        (uploads, run arguments, download) where run arguments list the inputs
        first and the output last
    """
    uploads = [(local, f"{workdir}/{name}") for name, local in inputs]
    output_name, output_local = output
    args = [logical for _, logical in uploads] + [f"{workdir}/{output_name}"]
    return uploads, args, (f"{workdir}/{output_name}", output_local)
