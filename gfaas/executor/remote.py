"""
Remote Marketplace Executor

Dispatches a bundle to remote providers through the requestor daemon under a
budget ceiling and resource constraints.

A job cancelled by an interrupt or a timeout is only abandoned locally: no
abort is sent, so the provider may keep computing (and charging) until its own
expiration.
"""

import logging
from pathlib import Path
from typing import Callable, Optional

from ..cancellation import CancellationToken, race
from ..config import RunConfig, RunMode
from ..errors import CancelledError, ConfigError, DispatchError
from ..job import JobRequest
from ..marketplace import MarketplaceClient, MarketplaceSettings, RpcError, TaskDescriptorBuilder
from ..marketplace.descriptor import job_commands
from .base import Executor, job_workspace
from .runtime import WORKDIR_PATH

logger = logging.getLogger(__name__)

PACKAGE_FILE = "package.zip"

ClientFactory = Callable[[MarketplaceSettings], MarketplaceClient]


def default_client_factory(settings: MarketplaceSettings) -> MarketplaceClient:
    return MarketplaceClient(settings.requestor_url, appkey=settings.appkey)


class RemoteMarketplaceExecutor(Executor):
    """
    Remote marketplace backend.

    Args:
        config: Run configuration (data dir, budget, constraints, subnet, timeout)
        client_factory: Creates one requestor client per job
    """

    mode = RunMode.REMOTE

    def __init__(self, config: RunConfig, client_factory: Optional[ClientFactory] = None):
        super().__init__(config)
        self.client_factory = client_factory or default_client_factory

    async def _run(self, request: JobRequest, token: Optional[CancellationToken]) -> bytes:
        settings = MarketplaceSettings.load(self.config.data_dir)

        with job_workspace("remote") as workspace:
            try:
                package_path = request.bundle.write(workspace / PACKAGE_FILE)
                local_inputs = []
                for name, payload in request.inputs:
                    path = workspace / name
                    path.write_bytes(payload)
                    local_inputs.append((name, path))
            except OSError as e:
                raise DispatchError("Failed to prepare job workspace", e)

            output_path = workspace / request.output_name
            descriptor = self.build_descriptor(request, package_path, local_inputs, output_path)
            task_id = descriptor["task_id"]

            client = self._connect(settings)
            try:
                logger.info(f"Submitting task {task_id} for {request.entry_point} with budget {self.config.budget}")
                report = await race(client.run_task(descriptor), token, self.config.timeout_seconds)
                logger.debug(f"Task {task_id} completed: {report}")
            except CancelledError:
                logger.warning(f"Abandoned task {task_id}; the provider may still be running it")
                raise
            except RpcError as e:
                raise DispatchError(f"Provider failed task {task_id}", e)
            except (ConnectionError, TimeoutError, ValueError, OSError) as e:
                raise DispatchError(f"Failed to dispatch task {task_id}", e)
            except Exception as e:
                raise DispatchError(f"Unexpected failure of task {task_id}", e)
            finally:
                client.close()

            if not output_path.is_file():
                raise DispatchError(f"Task {task_id} finished without downloading {request.output_name}")
            try:
                return output_path.read_bytes()
            except OSError as e:
                raise DispatchError(f"Failed to read output of task {task_id}", e)

    def build_descriptor(self, request: JobRequest, package_path: Path, local_inputs, output_path: Path) -> dict:
        """Describe the job: upload inputs, run the entry point, download the output"""
        uploads, args, download = job_commands(local_inputs, (request.output_name, output_path), WORKDIR_PATH)

        builder = (TaskDescriptorBuilder()
                   .with_package(request.bundle, package_path)
                   .with_budget(self.config.budget)
                   .with_constraints(self.config.constraints)
                   .with_subnet(self.config.network_tag)
                   .with_timeout(self.config.timeout_seconds))
        for local, logical in uploads:
            builder.upload(local, logical)
        builder.run(request.entry_point, args)
        builder.download(*download)
        return builder.build()

    def _connect(self, settings: MarketplaceSettings) -> MarketplaceClient:
        try:
            return self.client_factory(settings)
        except ConfigError:
            raise
        except Exception as e:
            raise DispatchError(f"Failed to connect to requestor at {settings.requestor_url}", e)
