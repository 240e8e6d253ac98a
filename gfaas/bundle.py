"""
Deployment bundle builder

A deployment bundle is a zip archive holding exactly one WASI module, stored
uncompressed, and a manifest.json describing its entry point and mount points.
"""

import io
import json
import logging
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .errors import PackagingError

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
PACKAGE_ID = "custom"
WORKDIR_VOLUME = "workdir"
ACCESS_MODES = ("rw", "ro")

# Fixed entry timestamp so that identical modules produce identical archives
_ZIP_DATE_TIME = (1980, 1, 1, 0, 0, 0)


@dataclass(frozen=True)
class EntryPoint:
    id: str
    wasm_path: str

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "wasm-path": self.wasm_path}


@dataclass(frozen=True)
class MountPoint:
    access: str
    name: str

    def __post_init__(self):
        if self.access not in ACCESS_MODES:
            raise PackagingError(f"Invalid mount point access {self.access!r}, expected one of {ACCESS_MODES}")

    @property
    def logical_path(self) -> str:
        return f"/{self.name}"

    def to_dict(self) -> Dict[str, str]:
        return {self.access: self.name}


@dataclass(frozen=True)
class Manifest:
    """Machine-readable description of a bundle's entry points and mount points"""
    id: str
    name: str
    entry_points: Tuple[EntryPoint, ...]
    mount_points: Tuple[MountPoint, ...] = field(default=(MountPoint("rw", WORKDIR_VOLUME),))

    def __post_init__(self):
        if not self.entry_points:
            raise PackagingError("Manifest must declare at least one entry point")

    @classmethod
    def for_module(cls, module_file_name: str) -> "Manifest":
        """
        Generate the manifest for a single module.

        The entry-point id is the file name up to its first '.', so
        'compute.wasm' and 'compute.opt.wasm' both yield 'compute'.
        """
        entry_id = module_file_name.split(".")[0]
        if not entry_id:
            raise PackagingError(f"Cannot derive entry point from module name {module_file_name!r}")
        return cls(
            id=PACKAGE_ID,
            name=PACKAGE_ID,
            entry_points=(EntryPoint(id=entry_id, wasm_path=module_file_name),),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Manifest":
        """
        Parse and validate a manifest dictionary.

        Raises:
            PackagingError: If required fields are missing or malformed
        """
        try:
            entry_points = tuple(
                EntryPoint(id=str(ep["id"]), wasm_path=str(ep["wasm-path"]))
                for ep in data["entry-points"]
            )
            mount_points = []
            for mp in data.get("mount-points", []):
                if not isinstance(mp, dict) or len(mp) != 1:
                    raise PackagingError(f"Malformed mount point: {mp!r}")
                (access, name), = mp.items()
                mount_points.append(MountPoint(access=access, name=str(name)))
            return cls(
                id=str(data["id"]),
                name=str(data["name"]),
                entry_points=entry_points,
                mount_points=tuple(mount_points),
            )
        except (KeyError, TypeError) as e:
            raise PackagingError(f"Malformed manifest: missing or invalid field {e}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "entry-points": [ep.to_dict() for ep in self.entry_points],
            "mount-points": [mp.to_dict() for mp in self.mount_points],
        }

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict(), separators=(",", ":")).encode("utf-8")


@dataclass(frozen=True)
class DeploymentBundle:
    """A finalized, immutable deployment bundle"""
    module_bytes: bytes
    module_file_name: str
    manifest: Manifest
    archive: bytes = field(repr=False)

    @property
    def entry_point(self) -> str:
        return self.manifest.entry_points[0].id

    def write(self, path: Union[str, Path]) -> Path:
        """Store the archive at the given path"""
        path = Path(path)
        try:
            path.write_bytes(self.archive)
        except OSError as e:
            raise PackagingError(f"Failed to write bundle to {path}: {e}")
        return path


class BundleBuilder:
    """Single-use builder assembling one module and its manifest into a bundle"""

    def __init__(self):
        self._buffer = io.BytesIO()
        self._zip: Optional[zipfile.ZipFile] = zipfile.ZipFile(self._buffer, "w", zipfile.ZIP_STORED)
        self._module_name: Optional[str] = None
        self._module_bytes: Optional[bytes] = None

    @property
    def finalized(self) -> bool:
        return self._zip is None

    def add_module_from_path(self, path: Union[str, Path]) -> "BundleBuilder":
        """Add the WASI module found at path"""
        path = Path(path)
        try:
            contents = path.read_bytes()
        except OSError as e:
            raise PackagingError(f"Failed to read module {path}: {e}")
        return self.add_module(path.name, contents)

    def add_module(self, file_name: str, contents: bytes) -> "BundleBuilder":
        """Add a module from memory"""
        self._check_open()
        if self._module_name is not None:
            raise PackagingError("A bundle holds exactly one module")
        self._write_entry(file_name, contents)
        self._module_name = file_name
        self._module_bytes = bytes(contents)
        return self

    def finalize(self) -> DeploymentBundle:
        """Write the manifest and close the archive"""
        self._check_open()
        if self._module_name is None or self._module_bytes is None:
            raise PackagingError("Cannot finalize a bundle without a module")

        manifest = Manifest.for_module(self._module_name)
        self._write_entry(MANIFEST_NAME, manifest.to_json())
        try:
            self._zip.close()
        except (OSError, zipfile.BadZipFile) as e:
            raise PackagingError(f"Failed to finalize bundle archive: {e}")
        finally:
            self._zip = None

        bundle = DeploymentBundle(
            module_bytes=self._module_bytes,
            module_file_name=self._module_name,
            manifest=manifest,
            archive=self._buffer.getvalue(),
        )
        logger.debug(f"Built bundle for {self._module_name} ({len(bundle.archive)} bytes)")
        return bundle

    def _check_open(self):
        if self._zip is None:
            raise PackagingError("Bundle builder has already been finalized")

    def _write_entry(self, name: str, data: bytes):
        info = zipfile.ZipInfo(name, date_time=_ZIP_DATE_TIME)
        info.compress_type = zipfile.ZIP_STORED
        info.external_attr = 0o644 << 16
        try:
            self._zip.writestr(info, data)
        except (OSError, ValueError) as e:
            raise PackagingError(f"Failed to add {name} to bundle: {e}")


def build_bundle(module_path: Union[str, Path]) -> DeploymentBundle:
    """
    Build a deployment bundle from a compiled module.

    Args:
        module_path: Path to the .wasm module

    Returns:
        Finalized DeploymentBundle

    Raises:
        PackagingError: If the module cannot be read or the archive cannot be finalized
    """
    return BundleBuilder().add_module_from_path(module_path).finalize()


def load_bundle(source: Union[str, Path, bytes]) -> DeploymentBundle:
    """
    Read a bundle archive back and validate it.

    Args:
        source: Path to an archive or the archive bytes

    Raises:
        PackagingError: If the archive or its manifest is invalid
    """
    try:
        archive = source if isinstance(source, bytes) else Path(source).read_bytes()
    except OSError as e:
        raise PackagingError(f"Failed to read bundle {source}: {e}")

    try:
        with zipfile.ZipFile(io.BytesIO(archive)) as zf:
            names = zf.namelist()
            if MANIFEST_NAME not in names:
                raise PackagingError("Bundle has no manifest.json")
            try:
                manifest_data = json.loads(zf.read(MANIFEST_NAME))
            except ValueError as e:
                raise PackagingError(f"Invalid manifest.json: {e}")
            manifest = Manifest.from_dict(manifest_data)
            if len(manifest.entry_points) != 1:
                raise PackagingError("Bundle must declare exactly one entry point")
            module_name = manifest.entry_points[0].wasm_path
            if module_name not in names:
                raise PackagingError(f"Bundle does not contain module {module_name}")
            module_bytes = zf.read(module_name)
    except zipfile.BadZipFile as e:
        raise PackagingError(f"Invalid bundle archive: {e}")

    return DeploymentBundle(
        module_bytes=module_bytes,
        module_file_name=module_name,
        manifest=manifest,
        archive=archive,
    )
