"""
Tests running real WASI modules through wasmtime
"""
import pytest
from wasmtime import DirPerms, FilePerms, wat2wasm

from gfaas.bundle import build_bundle
from gfaas.config import RunConfig, RunMode
from gfaas.errors import ErrorKind, SandboxError
from gfaas.executor.local import LocalSandboxExecutor
from gfaas.executor.runtime import DeployFile, Volume, WasiRuntime, preopen_permissions
from gfaas.job import JobRequest

# Reads /workdir/in0 through the first preopened directory (fd 3), uppercases
# ASCII letters and writes /workdir/out. Exit status 1-4 names the failing call.
SHOUT_WAT = """
(module
  (import "wasi_snapshot_preview1" "path_open"
    (func $path_open (param i32 i32 i32 i32 i32 i64 i64 i32 i32) (result i32)))
  (import "wasi_snapshot_preview1" "fd_read"
    (func $fd_read (param i32 i32 i32 i32) (result i32)))
  (import "wasi_snapshot_preview1" "fd_write"
    (func $fd_write (param i32 i32 i32 i32) (result i32)))
  (import "wasi_snapshot_preview1" "proc_exit" (func $proc_exit (param i32)))
  (memory (export "memory") 1)
  (data (i32.const 0) "in0")
  (data (i32.const 8) "out")
  (func (export "_start")
    (local $fd i32) (local $n i32) (local $i i32) (local $c i32)
    (if (call $path_open (i32.const 3) (i32.const 0) (i32.const 0) (i32.const 3)
                         (i32.const 0) (i64.const 2) (i64.const 0) (i32.const 0) (i32.const 16))
      (then (call $proc_exit (i32.const 1))))
    (local.set $fd (i32.load (i32.const 16)))
    (i32.store (i32.const 24) (i32.const 1024))
    (i32.store (i32.const 28) (i32.const 1024))
    (if (call $fd_read (local.get $fd) (i32.const 24) (i32.const 1) (i32.const 32))
      (then (call $proc_exit (i32.const 2))))
    (local.set $n (i32.load (i32.const 32)))
    (block $done
      (loop $next
        (br_if $done (i32.ge_u (local.get $i) (local.get $n)))
        (local.set $c (i32.load8_u (i32.add (i32.const 1024) (local.get $i))))
        (if (i32.and (i32.ge_u (local.get $c) (i32.const 97))
                     (i32.le_u (local.get $c) (i32.const 122)))
          (then (i32.store8 (i32.add (i32.const 1024) (local.get $i))
                            (i32.sub (local.get $c) (i32.const 32)))))
        (local.set $i (i32.add (local.get $i) (i32.const 1)))
        (br $next)))
    (if (call $path_open (i32.const 3) (i32.const 0) (i32.const 8) (i32.const 3)
                         (i32.const 9) (i64.const 64) (i64.const 0) (i32.const 0) (i32.const 16))
      (then (call $proc_exit (i32.const 3))))
    (local.set $fd (i32.load (i32.const 16)))
    (i32.store (i32.const 28) (local.get $n))
    (if (call $fd_write (local.get $fd) (i32.const 24) (i32.const 1) (i32.const 32))
      (then (call $proc_exit (i32.const 4))))))
"""

EXIT_WAT = """
(module
  (import "wasi_snapshot_preview1" "proc_exit" (func $proc_exit (param i32)))
  (memory (export "memory") 1)
  (func (export "_start") (call $proc_exit (i32.const 3))))
"""

SPIN_WAT = """
(module
  (memory (export "memory") 1)
  (func (export "_start") (loop $spin (br $spin))))
"""


@pytest.fixture
def compile_module(tmp_path):
    def compile(name: str, wat: str):
        path = tmp_path / f"{name}.wasm"
        path.write_bytes(wat2wasm(wat))
        return path
    return compile


def _config(tmp_path, timeout=5):
    return RunConfig(mode=RunMode.LOCAL, data_dir=tmp_path, timeout_seconds=timeout)


class TestWasiModules:
    """Test jobs running unmodified modules in the local sandbox"""

    @pytest.mark.asyncio
    async def test_matches_direct_computation(self, tmp_path, compile_module):
        bundle = build_bundle(compile_module("shout", SHOUT_WAT))
        executor = LocalSandboxExecutor(_config(tmp_path))

        for payload in (b"hey there", b"Mixed Case 123", b""):
            result = await executor.execute(JobRequest.create(bundle, [payload]))
            assert result.ok, result.message
            assert result.output == payload.upper()

    @pytest.mark.asyncio
    async def test_non_zero_exit(self, tmp_path, compile_module):
        bundle = build_bundle(compile_module("fail", EXIT_WAT))
        executor = LocalSandboxExecutor(_config(tmp_path))

        result = await executor.execute(JobRequest.create(bundle, [b"a"]))

        assert result.error_kind is ErrorKind.SANDBOX
        assert result.error.step == "run"
        assert "status 3" in result.message

    @pytest.mark.asyncio
    async def test_runaway_module_times_out(self, tmp_path, compile_module):
        bundle = build_bundle(compile_module("spin", SPIN_WAT))
        executor = LocalSandboxExecutor(_config(tmp_path, timeout=0.5))

        result = await executor.execute(JobRequest.create(bundle, [b"a"]))

        assert result.error_kind is ErrorKind.CANCELLED
        assert "timed out after 0.5 seconds" in result.message

    def test_read_only_volume(self, tmp_path, compile_module):
        module = compile_module("shout", SHOUT_WAT)
        workdir = tmp_path / "job"
        workdir.mkdir()
        runtime = WasiRuntime(timeout=5)
        deployed = runtime.deploy(workdir, build_bundle(module).write(tmp_path / "package.zip"))

        vol = deployed.find_volume("/workdir")
        DeployFile(
            entry_points=deployed.entry_points,
            vols=(Volume(name=vol.name, path=vol.path, access="ro"),),
        ).save(workdir)
        (vol.host_path(workdir) / "in0").write_bytes(b"hey there")

        with pytest.raises(SandboxError, match="status 3") as exc_info:
            runtime.run(workdir, "shout", ["/workdir/in0", "/workdir/out"])

        assert exc_info.value.step == "run"
        assert not (vol.host_path(workdir) / "out").exists()


def test_preopen_permissions():
    assert preopen_permissions(True) == (DirPerms.READ_ONLY, FilePerms.READ_ONLY)
    assert preopen_permissions(False) == (DirPerms.READ_WRITE, FilePerms.READ_WRITE)
