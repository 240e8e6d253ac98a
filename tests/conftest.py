"""
Shared fixtures
"""
import pytest

from gfaas.config import RunConfig, RunMode, set_run_config

# Smallest valid module: magic number and version
WASM_HEADER = b"\x00asm\x01\x00\x00\x00"


@pytest.fixture
def module_file(tmp_path):
    """A compute.wasm module on disk"""
    path = tmp_path / "compute.wasm"
    path.write_bytes(WASM_HEADER)
    return path


@pytest.fixture
def local_config(tmp_path):
    return RunConfig(mode=RunMode.LOCAL, data_dir=tmp_path, timeout_seconds=5)


@pytest.fixture(autouse=True)
def reset_run_config():
    yield
    set_run_config(None)
