"""
WASI Runtime

Local sandbox for deployment bundles, modelled on the provider-side runtime:
deploy unpacks and validates a bundle, start checks the deployment, run
executes an entry point with every volume preopened at its logical path.

All methods are blocking and are expected to run off the event loop.
"""

import json
import logging
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import AbstractSet, Dict, List, Optional, Sequence, Tuple

from wasmtime import (
    Config,
    DirPerms,
    Engine,
    ExitTrap,
    FilePerms,
    Linker,
    Module,
    Store,
    Trap,
    WasiConfig,
    WasmtimeError,
)

from ..bundle import EntryPoint, load_bundle
from ..errors import PackagingError, SandboxError

logger = logging.getLogger(__name__)

DEPLOY_FILE = "deploy.json"
MODULES_DIR = "modules"
WORKDIR_PATH = "/workdir"


def preopen_permissions(read_only: bool) -> Tuple[DirPerms, FilePerms]:
    """Directory and file permissions for a preopened volume"""
    if read_only:
        return DirPerms.READ_ONLY, FilePerms.READ_ONLY
    return DirPerms.READ_WRITE, FilePerms.READ_WRITE


@dataclass(frozen=True)
class Volume:
    """Binding of a logical sandbox path to a directory inside the workspace"""
    name: str
    path: str
    access: str = "rw"

    def host_path(self, workdir: Path) -> Path:
        return workdir / self.name


@dataclass(frozen=True)
class DeployFile:
    """Deployment descriptor written by deploy() and read by start() and run()"""
    entry_points: Tuple[EntryPoint, ...]
    vols: Tuple[Volume, ...]

    @classmethod
    def load(cls, workdir: Path) -> "DeployFile":
        try:
            data = json.loads((workdir / DEPLOY_FILE).read_text(encoding="utf-8"))
            return cls(
                entry_points=tuple(EntryPoint(id=ep["id"], wasm_path=ep["wasm-path"]) for ep in data["entry-points"]),
                vols=tuple(Volume(name=v["name"], path=v["path"], access=v.get("access", "rw")) for v in data["vols"]),
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise SandboxError("deploy", f"Invalid deployment descriptor in {workdir}: {e}")

    def save(self, workdir: Path) -> None:
        data = {
            "entry-points": [ep.to_dict() for ep in self.entry_points],
            "vols": [{"name": v.name, "path": v.path, "access": v.access} for v in self.vols],
        }
        (workdir / DEPLOY_FILE).write_text(json.dumps(data, indent=2), encoding="utf-8")

    def find_volume(self, logical_path: str) -> Volume:
        """Resolve the volume mounted at logical_path"""
        for vol in self.vols:
            if vol.path.rstrip("/") == logical_path.rstrip("/"):
                return vol
        raise SandboxError("deploy", f"No volume mounted at {logical_path}")

    def find_entry_point(self, entry_id: str) -> EntryPoint:
        for ep in self.entry_points:
            if ep.id == entry_id:
                return ep
        raise SandboxError("run", f"Unknown entry point {entry_id!r}")


class WasiRuntime:
    """
    Runs bundled WASI modules with wasmtime.

    Args:
        timeout: Optional wall-clock limit in seconds for a single run
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        self.engine = Engine()

    def deploy(self, workdir: Path, package: Path) -> DeployFile:
        """
        Unpack and validate a bundle into the sandbox layout.

        Creates one volume directory per mount point and writes deploy.json.
        """
        try:
            bundle = load_bundle(package)
        except PackagingError as e:
            raise SandboxError("deploy", str(e))

        modules_dir = workdir / MODULES_DIR
        modules_dir.mkdir(exist_ok=True)
        module_path = modules_dir / bundle.module_file_name
        module_path.write_bytes(bundle.module_bytes)

        vols = []
        for mount in bundle.manifest.mount_points:
            vol = Volume(name=f"vol-{uuid.uuid4().hex}", path=mount.logical_path, access=mount.access)
            vol.host_path(workdir).mkdir()
            vols.append(vol)

        deploy_file = DeployFile(entry_points=bundle.manifest.entry_points, vols=tuple(vols))
        deploy_file.save(workdir)
        logger.debug(f"Deployed {bundle.module_file_name} into {workdir} with {len(vols)} volume(s)")
        return deploy_file

    def start(self, workdir: Path) -> DeployFile:
        """Check that a deployment is complete and every module is valid WebAssembly"""
        deploy_file = DeployFile.load(workdir)
        for ep in deploy_file.entry_points:
            module_path = workdir / MODULES_DIR / ep.wasm_path
            if not module_path.is_file():
                raise SandboxError("start", f"Module {ep.wasm_path} missing from deployment")
            try:
                Module.validate(self.engine, module_path.read_bytes())
            except WasmtimeError as e:
                raise SandboxError("start", f"Module {ep.wasm_path} is not valid WebAssembly: {e}")
        for vol in deploy_file.vols:
            if not vol.host_path(workdir).is_dir():
                raise SandboxError("start", f"Volume {vol.name} missing from deployment")
        return deploy_file

    def run(self, workdir: Path, entry_point: str, args: Sequence[str]) -> None:
        """
        Invoke an entry point.

        Args:
            workdir: Deployment directory
            entry_point: Entry point id from the manifest
            args: Arguments passed after argv[0], logical paths inside the sandbox

        Raises:
            SandboxError: If the module traps or exits with a non-zero status
        """
        deploy_file = DeployFile.load(workdir)
        ep = deploy_file.find_entry_point(entry_point)
        module_path = workdir / MODULES_DIR / ep.wasm_path
        preopens = {vol.path: vol.host_path(workdir) for vol in deploy_file.vols}
        read_only = frozenset(vol.path for vol in deploy_file.vols if vol.access == "ro")
        self._execute_module(module_path, [entry_point, *args], preopens, read_only)

    def _execute_module(self, module_path: Path, argv: List[str], preopens: Dict[str, Path],
                        read_only: AbstractSet[str] = frozenset()) -> None:
        # Epochs are per engine, so each run gets its own to keep timeouts independent
        config = Config()
        config.epoch_interruption = True
        engine = Engine(config)
        try:
            module = Module.from_file(engine, str(module_path))
        except WasmtimeError as e:
            raise SandboxError("run", f"Failed to compile {module_path.name}: {e}")

        wasi = WasiConfig()
        wasi.argv = argv
        wasi.inherit_stdout()
        wasi.inherit_stderr()
        for guest_path, host_path in preopens.items():
            dir_perms, file_perms = preopen_permissions(guest_path in read_only)
            wasi.preopen_dir(str(host_path), guest_path, dir_perms, file_perms)

        store = Store(engine)
        store.set_wasi(wasi)
        store.set_epoch_deadline(1)

        linker = Linker(engine)
        linker.define_wasi()

        timer = None
        if self.timeout is not None:
            timer = threading.Timer(self.timeout, engine.increment_epoch)
            timer.daemon = True
            timer.start()

        try:
            instance = linker.instantiate(store, module)
            instance.exports(store)["_start"](store)
        except ExitTrap as e:
            if e.code != 0:
                raise SandboxError("run", f"Module exited with status {e.code}")
        except (Trap, WasmtimeError) as e:
            raise SandboxError("run", f"Module trapped: {e}")
        finally:
            if timer is not None:
                timer.cancel()
