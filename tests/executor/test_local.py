"""
Tests for the local sandbox executor
"""
import asyncio
import threading
from pathlib import Path
from typing import Dict, List
from unittest.mock import patch

import pytest

from gfaas.bundle import DeploymentBundle, build_bundle
from gfaas.cancellation import CancellationToken
from gfaas.errors import CancelledError, ErrorKind, SandboxError
from gfaas.executor.local import LocalSandboxExecutor
from gfaas.executor.runtime import DEPLOY_FILE, MODULES_DIR, DeployFile, WasiRuntime
from gfaas.job import JobRequest


class UppercaseRuntime(WasiRuntime):
    """Runs a fake module that uppercases its only input"""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.calls: List[List[str]] = []
        self.workdirs: List[Path] = []

    def _execute_module(self, module_path: Path, argv: List[str], preopens: Dict[str, Path],
                        read_only=frozenset()) -> None:
        self.calls.append(argv)
        self.workdirs.append(module_path.parent.parent)
        workdir = preopens["/workdir"]
        data = (workdir / Path(argv[1]).name).read_bytes()
        (workdir / Path(argv[-1]).name).write_bytes(data.upper())


class SilentRuntime(WasiRuntime):
    """Runs a fake module that never writes its output"""

    def _execute_module(self, module_path, argv, preopens, read_only=frozenset()):
        pass


class TrappingRuntime(WasiRuntime):
    def _execute_module(self, module_path, argv, preopens, read_only=frozenset()):
        raise SandboxError("run", "Module exited with status 1")


class BlockingRuntime(WasiRuntime):
    """Runs a fake module that only returns once released"""

    def __init__(self):
        super().__init__()
        self.release = threading.Event()

    def _execute_module(self, module_path, argv, preopens, read_only=frozenset()):
        self.release.wait(5)


@pytest.fixture
def request_for(module_file):
    def make(*payloads: bytes) -> JobRequest:
        return JobRequest.create(build_bundle(module_file), payloads)
    return make


class TestWasiRuntime:
    """Test deployment layout"""

    def test_deploy_and_start(self, module_file, tmp_path):
        workdir = tmp_path / "job"
        workdir.mkdir()
        package = build_bundle(module_file).write(tmp_path / "package.zip")

        runtime = WasiRuntime()
        deployed = runtime.deploy(workdir, package)

        assert (workdir / DEPLOY_FILE).is_file()
        assert (workdir / MODULES_DIR / "compute.wasm").read_bytes() == module_file.read_bytes()
        assert [ep.id for ep in deployed.entry_points] == ["compute"]
        volume = deployed.find_volume("/workdir")
        assert volume.host_path(workdir).is_dir()
        assert runtime.start(workdir) == DeployFile.load(workdir)

    def test_deploy_invalid_package(self, tmp_path):
        package = tmp_path / "package.zip"
        package.write_bytes(b"garbage")
        with pytest.raises(SandboxError) as exc_info:
            WasiRuntime().deploy(tmp_path, package)
        assert exc_info.value.step == "deploy"

    def test_start_rejects_invalid_module(self, tmp_path):
        module = tmp_path / "broken.wasm"
        module.write_bytes(b"not wasm")
        workdir = tmp_path / "job"
        workdir.mkdir()
        runtime = WasiRuntime()
        runtime.deploy(workdir, build_bundle(module).write(tmp_path / "package.zip"))

        with pytest.raises(SandboxError) as exc_info:
            runtime.start(workdir)
        assert exc_info.value.step == "start"

    def test_unknown_volume_and_entry_point(self, module_file, tmp_path):
        workdir = tmp_path / "job"
        workdir.mkdir()
        deployed = WasiRuntime().deploy(workdir, build_bundle(module_file).write(tmp_path / "package.zip"))

        with pytest.raises(SandboxError, match="No volume mounted at /data"):
            deployed.find_volume("/data")
        with pytest.raises(SandboxError, match="Unknown entry point"):
            deployed.find_entry_point("other")


class TestLocalSandboxExecutor:
    """Test local job execution"""

    @pytest.mark.asyncio
    async def test_uppercase_job(self, local_config, request_for):
        runtime = UppercaseRuntime()
        executor = LocalSandboxExecutor(local_config, runtime=runtime)

        result = await executor.execute(request_for(b"hey there"))

        assert result.ok, result.message
        assert result.output == b"HEY THERE"
        assert runtime.calls == [["compute", "/workdir/in0", "/workdir/out"]]

    @pytest.mark.asyncio
    async def test_workspace_removed(self, local_config, request_for):
        runtime = UppercaseRuntime()
        executor = LocalSandboxExecutor(local_config, runtime=runtime)

        await executor.execute(request_for(b"a"))

        assert runtime.workdirs
        assert not runtime.workdirs[0].exists()

    @pytest.mark.asyncio
    async def test_missing_output(self, local_config, request_for):
        executor = LocalSandboxExecutor(local_config, runtime=SilentRuntime())

        result = await executor.execute(request_for(b"a"))

        assert not result.ok
        assert result.error_kind is ErrorKind.SANDBOX
        assert result.error.step == "read-output"

    @pytest.mark.asyncio
    async def test_module_failure_is_tagged_with_run_step(self, local_config, request_for):
        executor = LocalSandboxExecutor(local_config, runtime=TrappingRuntime())

        result = await executor.execute(request_for(b"a"))

        assert not result.ok
        assert result.error.step == "run"
        assert "status 1" in result.message

    @pytest.mark.asyncio
    async def test_concurrent_jobs_are_independent(self, local_config, request_for):
        executor = LocalSandboxExecutor(local_config, runtime=UppercaseRuntime())

        results = await asyncio.gather(*(executor.execute(request_for(w)) for w in (b"one", b"two", b"three")))

        assert [r.output for r in results] == [b"ONE", b"TWO", b"THREE"]

    @pytest.mark.asyncio
    async def test_cancel(self, local_config, request_for):
        runtime = BlockingRuntime()
        executor = LocalSandboxExecutor(local_config, runtime=runtime)
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.05, token.cancel, "interrupted")

        try:
            result = await executor.execute(request_for(b"a"), token)
        finally:
            runtime.release.set()

        assert not result.ok
        assert result.error_kind is ErrorKind.CANCELLED
        assert isinstance(result.error, CancelledError)

    @pytest.mark.asyncio
    async def test_bundle_write_failure_is_tagged_with_deploy_step(self, local_config, request_for):
        executor = LocalSandboxExecutor(local_config, runtime=UppercaseRuntime())

        with patch.object(DeploymentBundle, "write", side_effect=OSError("No space left on device")):
            result = await executor.execute(request_for(b"a"))

        assert result.error_kind is ErrorKind.SANDBOX
        assert result.error.step == "deploy"
        assert "No space left" in result.message
