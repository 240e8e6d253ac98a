"""
Tests for the remote marketplace executor
"""
import asyncio
from pathlib import Path

import pytest

from gfaas.bundle import build_bundle
from gfaas.cancellation import CancellationToken
from gfaas.config import ResourceConstraints, RunConfig, RunMode
from gfaas.errors import DispatchError, ErrorKind
from gfaas.executor.remote import RemoteMarketplaceExecutor
from gfaas.job import JobRequest
from gfaas.marketplace import RpcError


class FakeRequestor:
    """Stands in for the requestor daemon: runs an uppercase job and stores the download"""

    def __init__(self, delay: float = 0, error: Exception = None, download: bool = True):
        self.delay = delay
        self.error = error
        self.download = download
        self.descriptors = []
        self.closed = 0

    def __call__(self, settings):
        self.settings = settings
        return self

    async def run_task(self, descriptor):
        self.descriptors.append(descriptor)
        await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error

        commands = descriptor["commands"]
        data = Path(commands[0]["upload"]["from"]).read_bytes()
        if self.download:
            Path(commands[-1]["download"]["to"]).write_bytes(data.upper())
        return {"commands": len(commands)}

    def close(self):
        self.closed += 1


@pytest.fixture
def data_dir(tmp_path):
    path = tmp_path / "yagna"
    path.mkdir()
    (path / ".env").write_text("YAGNA_APPKEY=secret-key\nGFAAS_REQUESTOR_URL=tcp://127.0.0.1:9999\n")
    return path


@pytest.fixture
def remote_config(data_dir):
    return RunConfig(
        mode=RunMode.REMOTE,
        data_dir=data_dir,
        budget=100,
        constraints=ResourceConstraints(min_memory_gib=0.5, min_storage_gib=1.0),
        network_tag="devnet-alpha.2",
        timeout_seconds=5,
    )


@pytest.fixture
def job(module_file):
    return JobRequest.create(build_bundle(module_file), [b"hey there"])


class TestRemoteMarketplaceExecutor:
    """Test remote job dispatch"""

    @pytest.mark.asyncio
    async def test_successful_job(self, remote_config, job):
        requestor = FakeRequestor()
        executor = RemoteMarketplaceExecutor(remote_config, client_factory=requestor)

        result = await executor.execute(job)

        assert result.ok, result.message
        assert result.output == b"HEY THERE"
        assert requestor.settings.appkey == "secret-key"
        assert requestor.settings.requestor_url == "tcp://127.0.0.1:9999"
        assert requestor.closed == 1

    @pytest.mark.asyncio
    async def test_descriptor(self, remote_config, job):
        requestor = FakeRequestor()
        executor = RemoteMarketplaceExecutor(remote_config, client_factory=requestor)

        await executor.execute(job)

        descriptor = requestor.descriptors[0]
        assert descriptor["budget"] == 100
        assert descriptor["subnet"] == "devnet-alpha.2"
        assert descriptor["entry_point"] == "compute"
        assert descriptor["package"]["image"] == "wasm"
        assert {c["property"]: (c["op"], c["value"]) for c in descriptor["constraints"]} == {
            "golem.inf.mem.gib": (">=", 0.5),
            "golem.inf.storage.gib": (">=", 1.0),
            "golem.com.pricing.model": ("==", "linear"),
        }

        commands = descriptor["commands"]
        assert [next(iter(c)) for c in commands] == ["upload", "run", "download"]
        assert commands[0]["upload"]["to"] == "/workdir/in0"
        assert commands[1]["run"] == {"entry_point": "compute", "args": ["/workdir/in0", "/workdir/out"]}
        assert commands[2]["download"]["from"] == "/workdir/out"

    @pytest.mark.asyncio
    async def test_workspace_removed(self, remote_config, job):
        requestor = FakeRequestor()
        executor = RemoteMarketplaceExecutor(remote_config, client_factory=requestor)

        await executor.execute(job)

        package = Path(requestor.descriptors[0]["package"]["archive"])
        assert not package.parent.exists()

    @pytest.mark.asyncio
    async def test_provider_failure(self, remote_config, job):
        requestor = FakeRequestor(error=RpcError(-32000, "no offers within budget"))
        executor = RemoteMarketplaceExecutor(remote_config, client_factory=requestor)

        result = await executor.execute(job)

        assert not result.ok
        assert result.error_kind is ErrorKind.DISPATCH
        assert "no offers within budget" in result.message
        assert isinstance(result.error.cause, RpcError)
        assert requestor.closed == 1

    @pytest.mark.asyncio
    async def test_connection_failure(self, remote_config, job):
        requestor = FakeRequestor(error=ConnectionError("ZeroMQ connection error"))
        executor = RemoteMarketplaceExecutor(remote_config, client_factory=requestor)

        result = await executor.execute(job)

        assert result.error_kind is ErrorKind.DISPATCH

    @pytest.mark.asyncio
    async def test_unexpected_requestor_error(self, remote_config, job):
        requestor = FakeRequestor(error=AttributeError("'str' object has no attribute 'get'"))
        executor = RemoteMarketplaceExecutor(remote_config, client_factory=requestor)

        result = await executor.execute(job)

        assert result.error_kind is ErrorKind.DISPATCH
        assert isinstance(result.error.cause, AttributeError)
        assert requestor.closed == 1

    @pytest.mark.asyncio
    async def test_client_factory_failure(self, remote_config, job):
        def broken_factory(settings):
            raise RuntimeError("cannot connect")

        executor = RemoteMarketplaceExecutor(remote_config, client_factory=broken_factory)

        result = await executor.execute(job)

        assert result.error_kind is ErrorKind.DISPATCH
        assert "cannot connect" in result.message

    @pytest.mark.asyncio
    async def test_missing_download(self, remote_config, job):
        executor = RemoteMarketplaceExecutor(remote_config, client_factory=FakeRequestor(download=False))

        result = await executor.execute(job)

        assert isinstance(result.error, DispatchError)
        assert "without downloading out" in result.message

    @pytest.mark.asyncio
    async def test_missing_settings(self, tmp_path, job):
        config = RunConfig(mode=RunMode.REMOTE, data_dir=tmp_path / "nowhere")
        executor = RemoteMarketplaceExecutor(config, client_factory=FakeRequestor())

        result = await executor.execute(job)

        assert result.error_kind is ErrorKind.CONFIG

    @pytest.mark.asyncio
    async def test_cancel_abandons_task(self, remote_config, job):
        requestor = FakeRequestor(delay=10)
        executor = RemoteMarketplaceExecutor(remote_config, client_factory=requestor)
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.05, token.cancel, "interrupted")

        result = await executor.execute(job, token)

        assert result.error_kind is ErrorKind.CANCELLED
        assert requestor.closed == 1

    @pytest.mark.asyncio
    async def test_timeout(self, data_dir, job):
        config = RunConfig(mode=RunMode.REMOTE, data_dir=data_dir, timeout_seconds=0.05)
        executor = RemoteMarketplaceExecutor(config, client_factory=FakeRequestor(delay=10))

        result = await executor.execute(job)

        assert result.error_kind is ErrorKind.CANCELLED
        assert "timed out" in result.message
