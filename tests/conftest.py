"""
Pytest configuration for multipart uploader tests
"""

import asyncio
import json
from typing import Dict, Tuple

import httpx
import pytest

from multipart_uploader.config import UploaderConfig
from multipart_uploader.services.control_plane_client import ControlPlaneClient
from multipart_uploader.services.part_uploader import PartUploader
from multipart_uploader.services.upload_orchestrator import UploadOrchestrator

CONTROL_URL = "http://control.test"
STORAGE_URL = "http://storage.test"
PART_SIZE = 1024


class FakeUploadBackend:
    """In-memory control plane plus storage endpoint behind one MockTransport.

    Tests tweak the attributes to inject failures and use ``block`` to hold a
    request open until they release it.
    """

    def __init__(self):
        self.requests = []
        self.started = []
        self.presigned = []
        self.parts: Dict[Tuple[str, int], bytes] = {}
        self.completed = []
        self.aborted = []

        self.start_body = None
        self.presign_body = None
        self.part_status: Dict[int, int] = {}
        self.omit_etag = set()
        self.etag_header = "ETag"
        self.complete_status = 200
        self.complete_body = None
        self.abort_status = 200

        self.gates: Dict[str, Tuple[asyncio.Event, asyncio.Event]] = {}
        self._uploads = 0

    def block(self, name: str) -> Tuple[asyncio.Event, asyncio.Event]:
        """Hold the request ``name`` (e.g. ``"start"``, ``"put:3"``).

        Returns (entered, release) events.
        """
        self.gates[name] = (asyncio.Event(), asyncio.Event())
        return self.gates[name]

    async def _checkpoint(self, name: str) -> None:
        gate = self.gates.get(name)
        if gate is not None:
            entered, release = gate
            entered.set()
            await release.wait()

    def paths(self, method: str = None):
        return [path for m, path in self.requests if method is None or m == method]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, request.url.path))
        if request.url.host == "control.test":
            return await self._control(request)
        return await self._storage(request)

    async def _control(self, request: httpx.Request) -> httpx.Response:
        params = request.url.params
        path = request.url.path

        if path == "/upload/start":
            await self._checkpoint("start")
            self._uploads += 1
            upload_id = f"upload-{self._uploads}"
            self.started.append(params["key"])
            body = self.start_body if self.start_body is not None else {"uploadId": upload_id, "key": params["key"]}
            return httpx.Response(200, json=body)

        if path == "/upload/presign":
            part_number = int(params["partNumber"])
            self.presigned.append(part_number)
            await self._checkpoint(f"presign:{part_number}")
            if self.presign_body is not None:
                return httpx.Response(200, json=self.presign_body)
            url = f"{STORAGE_URL}/bucket/{params['key']}?uploadId={params['uploadId']}&partNumber={part_number}"
            return httpx.Response(200, json={"presignUrl": url})

        if path == "/upload/complete":
            payload = json.loads(request.content)
            self.completed.append(payload)
            body = self.complete_body if self.complete_body is not None else {"message": "upload completed"}
            return httpx.Response(self.complete_status, json=body)

        if path == "/upload/abort":
            self.aborted.append(json.loads(request.content))
            return httpx.Response(self.abort_status, json={"message": "upload aborted"})

        return httpx.Response(404, json={"detail": "not found"})

    async def _storage(self, request: httpx.Request) -> httpx.Response:
        params = request.url.params
        upload_id = params["uploadId"]
        part_number = int(params["partNumber"])
        await self._checkpoint(f"put:{part_number}")

        status = self.part_status.get(part_number, 200)
        if status != 200:
            return httpx.Response(status, text="storage error")

        self.parts[(upload_id, part_number)] = request.content
        headers = {}
        if part_number not in self.omit_etag:
            headers[self.etag_header] = f"{upload_id}-etag-{part_number}"
        return httpx.Response(200, headers=headers)


@pytest.fixture
def backend():
    return FakeUploadBackend()


@pytest.fixture
def config():
    return UploaderConfig(api_base_url=CONTROL_URL, part_size=PART_SIZE, max_file_size=64 * PART_SIZE)


@pytest.fixture
async def http_clients(backend):
    transport = httpx.MockTransport(backend.handler)
    control = httpx.AsyncClient(base_url=CONTROL_URL, transport=transport)
    storage = httpx.AsyncClient(transport=transport)
    yield control, storage
    await control.aclose()
    await storage.aclose()


@pytest.fixture
def orchestrator(config, http_clients):
    control, storage = http_clients
    return UploadOrchestrator(
        config,
        control_plane=ControlPlaneClient(config, control),
        part_uploader=PartUploader(config, storage, chunk_size=256),
    )


@pytest.fixture
def make_file(tmp_path):
    """Write a file of ``size`` patterned bytes and return its path"""

    def _make(size: int, name: str = "video.mp4") -> str:
        path = tmp_path / name
        path.write_bytes(bytes(i % 251 for i in range(size)))
        return str(path)

    return _make
