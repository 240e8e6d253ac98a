"""
Native build pipeline

Drives cargo: the primary build of the caller's project, then a cross build of
the generated entry-point crate for wasm32-wasi, then copies every produced
module next to the primary output where RemoteTask looks for it.
"""
import logging
import os
import shutil
import subprocess
import tomllib
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .codegen import CONFIG_FILE, STUB_FILE, CodeGenerator
from .errors import BuildError

logger = logging.getLogger(__name__)

WASM_TARGET = "wasm32-wasi"
MODULES_CRATE = "gfaas_modules"
DEPENDENCIES_TABLE = "gfaas_dependencies"
DEFAULT_DEPENDENCIES: Dict[str, Any] = {"serde_json": "1"}


def run_command(
    command: List[str],
    cwd: Optional[Path] = None,
    env: Optional[Dict[str, str]] = None,
    timeout: Optional[int] = None,
) -> Tuple[str, str]:
    """
    Run a build command and capture its output.

    Args:
        command: List of command components (e.g., ["cargo", "build"])
        cwd: Working directory
        env: Environment variables to add/override
        timeout: Command timeout in seconds

    Returns:
        Tuple of (stdout, stderr)

    Raises:
        BuildError: If the command cannot be started, times out or exits non-zero
    """
    cmd_env = os.environ.copy()
    if env:
        cmd_env.update(env)

    logger.debug(f"Executing command: {' '.join(command)}")
    try:
        process = subprocess.run(
            command,
            cwd=cwd,
            env=cmd_env,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise BuildError(f"Command not found: {command[0]}", str(e))
    except subprocess.TimeoutExpired as e:
        raise BuildError(f"Command timed out after {timeout} seconds: {' '.join(command)}", str(e.stderr or ""))

    if process.returncode != 0:
        raise BuildError(
            f"Command failed with exit code {process.returncode}: {' '.join(command)}",
            process.stderr,
        )
    return process.stdout, process.stderr


def filter_cargo_args(args: Sequence[str]) -> List[str]:
    """Drop arguments the pipeline controls itself"""
    return [a for a in args if a != "--release" and "--target-dir" not in a]


def _toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_toml_value(v) for v in value) + "]"
    if isinstance(value, dict):
        return "{ " + ", ".join(f"{k} = {_toml_value(v)}" for k, v in value.items()) + " }"
    raise BuildError(f"Unsupported dependency value: {value!r}")


def render_modules_manifest(dependencies: Dict[str, Any]) -> str:
    """Cargo.toml of the generated entry-point crate"""
    lines = [
        "[package]",
        f'name = "{MODULES_CRATE}"',
        'version = "0.1.0"',
        'edition = "2018"',
        "",
        "[dependencies]",
    ]
    for name, spec in dependencies.items():
        lines.append(f"{name} = {_toml_value(spec)}")
    return "\n".join(lines) + "\n"


class BuildPipeline:
    """
    Build pipeline for a cargo project using remote functions.

    Args:
        project_dir: Root of the caller's cargo project
        release: Build with optimizations
    """

    def __init__(self, project_dir: Path = Path("."), release: bool = False):
        self.project_dir = Path(project_dir)
        self.release = release

    @property
    def profile(self) -> str:
        return "release" if self.release else "debug"

    @property
    def out_dir(self) -> Path:
        return self.project_dir / "target" / self.profile

    @property
    def modules_dir(self) -> Path:
        return self.out_dir / MODULES_CRATE

    @property
    def entry_sources_dir(self) -> Path:
        return self.modules_dir / "src" / "bin"

    def prepare(self) -> Path:
        """
        Create the isolated module crate.

        Dependencies come from the project's [gfaas_dependencies] table,
        falling back to serde_json alone.
        """
        try:
            self.entry_sources_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BuildError(f"Couldn't create {MODULES_CRATE} dir: {e}")

        dependencies = self._project_dependencies()
        manifest_path = self.modules_dir / "Cargo.toml"
        try:
            manifest_path.write_text(render_modules_manifest(dependencies), encoding="utf-8")
        except OSError as e:
            raise BuildError(f"Failed to save {manifest_path}: {e}")
        return self.modules_dir

    def generate_entry_points(self) -> List[Path]:
        """Generate entry sources and client stubs when the project declares functions in gfaas.toml"""
        config_path = self.project_dir / CONFIG_FILE
        if not config_path.is_file():
            logger.debug(f"No {CONFIG_FILE} in {self.project_dir}, using existing entry sources")
            return []
        generator = CodeGenerator(config_path, self.entry_sources_dir, self.project_dir / STUB_FILE)
        return generator.generate()

    def build(self, args: Sequence[str] = ()) -> List[Path]:
        """
        Run both builds and collect the modules.

        Returns:
            Paths of the modules copied into the output directory

        Raises:
            BuildError: If either build fails or no module was produced
        """
        self.prepare()
        self.generate_entry_points()
        profile_flag = ["--release"] if self.release else []

        logger.info(f"Building project in {self.project_dir} ({self.profile})")
        run_command(
            ["cargo", "build", *filter_cargo_args(args), *profile_flag],
            cwd=self.project_dir,
            env={"CARGO_TARGET_DIR": "target", "GFAAS_OUT_DIR": str(self.out_dir.resolve())},
        )

        logger.info(f"Cross-compiling entry points for {WASM_TARGET}")
        run_command(
            ["cargo", "build", "--bins", f"--target={WASM_TARGET}", *profile_flag],
            cwd=self.modules_dir,
        )

        return self._collect_modules()

    def run(self, args: Sequence[str] = ()) -> str:
        """Build, then run the project; returns its standard output"""
        self.build(args)
        profile_flag = ["--release"] if self.release else []
        stdout, _ = run_command(
            ["cargo", "run", *filter_cargo_args(args), *profile_flag],
            cwd=self.project_dir,
            env={"CARGO_TARGET_DIR": "target", "GFAAS_OUT_DIR": str(self.out_dir.resolve())},
        )
        return stdout

    def clean(self, args: Sequence[str] = ()) -> None:
        """Remove build artifacts"""
        run_command(
            ["cargo", "clean", *[a for a in args if "--target-dir" not in a]],
            cwd=self.project_dir,
            env={"CARGO_TARGET_DIR": "target"},
        )

    def _project_dependencies(self) -> Dict[str, Any]:
        manifest_path = self.project_dir / "Cargo.toml"
        try:
            with open(manifest_path, "rb") as f:
                manifest = tomllib.load(f)
        except FileNotFoundError:
            raise BuildError(f"No Cargo.toml found in {self.project_dir}")
        except tomllib.TOMLDecodeError as e:
            raise BuildError(f"Failed to parse {manifest_path}: {e}")
        return manifest.get(DEPENDENCIES_TABLE) or dict(DEFAULT_DEPENDENCIES)

    def _collect_modules(self) -> List[Path]:
        from_dir = self.modules_dir / "target" / WASM_TARGET / self.profile
        modules = sorted(from_dir.glob("*.wasm")) if from_dir.is_dir() else []
        if not modules:
            raise BuildError("No Wasm modules were generated!")

        copied = []
        for module in modules:
            to_path = self.out_dir / module.name
            try:
                shutil.copyfile(module, to_path)
            except OSError as e:
                raise BuildError(f"Copying final Wasm artifact to main output dir: '{module}' -> '{to_path}': {e}")
            copied.append(to_path)
        logger.info(f"Copied {len(copied)} module(s) into {self.out_dir}")
        return copied
