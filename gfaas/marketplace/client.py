"""
Requestor daemon client

JSON-RPC 2.0 over a ZeroMQ REQ socket. The daemon negotiates with providers,
serves uploads from and stores downloads to the local paths named in the task
descriptor, and answers run_task once the provider has finished.
"""

import json
import logging
import time
import uuid
from typing import Any, Dict, Optional

import zmq
import zmq.asyncio

from ..telemetry import increment_counter, record_latency

logger = logging.getLogger(__name__)


class RpcError(Exception):
    """Error object returned by the requestor daemon"""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(f"{message} (code {code})")
        self.code = code
        self.message = message
        self.data = data


class MarketplaceClient:
    """
    Asynchronous JSON-RPC client for the requestor daemon.

    One client serves one request at a time; use one client per job.
    """

    def __init__(self, server_address: str, appkey: Optional[str] = None):
        """Initialize the client

        Args:
            server_address: ZeroMQ address of the requestor daemon
            appkey: Application key authorizing payments
        """
        self.server_address = server_address
        self.appkey = appkey
        self.context = zmq.asyncio.Context()
        self.socket = self.context.socket(zmq.REQ)
        self.socket.setsockopt(zmq.LINGER, 0)
        self.socket.connect(server_address)
        logger.debug(f"Requestor client connected to {server_address}")

    def close(self):
        """Close the socket and context"""
        if self.socket is not None:
            self.socket.close()
            self.socket = None
        if self.context is not None:
            self.context.term()
            self.context = None

    async def call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Send a JSON-RPC 2.0 request and wait for the response

        Args:
            method: Method name
            params: Method parameters

        Returns:
            The response's result member

        Raises:
            RpcError: If the daemon answered with an error object
            ValueError: If the response is not a matching JSON-RPC 2.0 response
            ConnectionError: On ZeroMQ transport errors
        """
        if self.socket is None:
            raise ConnectionError("Requestor client is closed")

        request_id = str(uuid.uuid4())
        request = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params or {},
            "id": request_id,
        }
        start_time = time.time()

        try:
            await self.socket.send(json.dumps(request).encode("utf-8"))
            increment_counter("gfaas.rpc.requests", 1, {"method": method})
            response_bytes = await self.socket.recv()
        except zmq.error.ZMQError as e:
            increment_counter("gfaas.rpc.errors", 1, {"type": "zmq_error", "method": method})
            raise ConnectionError(f"ZeroMQ connection error: {e}")

        latency_ms = (time.time() - start_time) * 1000
        record_latency("gfaas.rpc.latency", latency_ms, {"method": method})
        logger.debug(f"Received {method} response after {latency_ms:.2f}ms")

        try:
            response = json.loads(response_bytes.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise ValueError(f"Invalid JSON-RPC response: {e}")

        if not isinstance(response, dict) or response.get("jsonrpc") != "2.0":
            raise ValueError(f"Invalid JSON-RPC 2.0 response: {response!r}")
        if response.get("id") != request_id:
            raise ValueError(f"Response ID mismatch: {response.get('id')} != {request_id}")

        if "error" in response:
            error = response["error"]
            increment_counter("gfaas.rpc.errors", 1, {"type": "rpc_error", "method": method})
            if not isinstance(error, dict):
                raise RpcError(-1, str(error))
            raise RpcError(error.get("code", -1), error.get("message", "unknown error"), error.get("data"))

        return response.get("result")

    async def run_task(self, descriptor: Dict[str, Any]) -> Dict[str, Any]:
        """
        Submit a task and wait until the provider has finished it.

        Returns:
            The daemon's completion report (per-command outputs)
        """
        result = await self.call("run_task", {"appkey": self.appkey, "task": descriptor})
        return result or {}
