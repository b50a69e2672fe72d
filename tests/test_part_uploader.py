import asyncio

import httpx
import pytest

from multipart_uploader.config import UploaderConfig
from multipart_uploader.errors import PartUploadError, UploadCancelledError
from multipart_uploader.services.part_uploader import PartUploader, TransferHandle, extract_etag

URL = "http://storage.test/bucket/a.mp4?uploadId=u-1&partNumber=1"


def make_uploader(handler, chunk_size=256) -> PartUploader:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PartUploader(UploaderConfig(), http_client, chunk_size=chunk_size)


async def test_upload_part_puts_raw_bytes():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, headers={"ETag": '"abc"'})

    data = b"x" * 1000
    result = await make_uploader(handler).upload_part(URL, 1, data)

    assert (result.part_number, result.etag) == (1, '"abc"')
    assert seen[0].method == "PUT"
    assert seen[0].content == data
    assert seen[0].headers["content-length"] == "1000"
    assert seen[0].headers["content-type"] == "application/octet-stream"
    assert "transfer-encoding" not in seen[0].headers


async def test_progress_is_reported_per_slice():
    fractions = []
    uploader = make_uploader(lambda request: httpx.Response(200, headers={"ETag": "abc"}))

    await uploader.upload_part(URL, 1, b"x" * 1000, on_progress=fractions.append)

    assert fractions == [0.256, 0.512, 0.768, 1.0]


@pytest.mark.parametrize("header", ["ETag", "etag", "x-amz-etag", "X-Amz-ETag"])
async def test_etag_header_aliases(header):
    uploader = make_uploader(lambda request: httpx.Response(200, headers={header: "abc"}))

    result = await uploader.upload_part(URL, 2, b"data")

    assert result.etag == "abc"


def test_extract_etag_prefers_canonical_header():
    headers = httpx.Headers({"x-amz-etag": "alias", "ETag": "canonical"})
    assert extract_etag(headers) == "canonical"
    assert extract_etag(httpx.Headers({})) is None


@pytest.mark.parametrize("status", [201, 204, 403, 500])
async def test_non_200_status_fails(status):
    uploader = make_uploader(lambda request: httpx.Response(status, headers={"ETag": "abc"}))

    with pytest.raises(PartUploadError) as info:
        await uploader.upload_part(URL, 3, b"data")

    assert info.value.status == status
    assert info.value.part_number == 3
    assert info.value.message == f"Upload failed with status {status}"


async def test_missing_etag_is_a_protocol_error():
    uploader = make_uploader(lambda request: httpx.Response(200))

    with pytest.raises(PartUploadError) as info:
        await uploader.upload_part(URL, 4, b"data")

    assert info.value.missing_token == 4
    assert info.value.message == "No ETag in response for part 4"


async def test_transport_error_is_wrapped():
    def handler(request):
        raise httpx.ConnectError("connection reset", request=request)

    with pytest.raises(PartUploadError) as info:
        await make_uploader(handler).upload_part(URL, 1, b"data")
    assert info.value.status is None


async def test_cancel_before_bind_prevents_the_transfer():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, headers={"ETag": "abc"})

    handle = TransferHandle()
    assert handle.cancel() is False

    with pytest.raises(UploadCancelledError) as info:
        await make_uploader(handler).upload_part(URL, 5, b"data", handle=handle)

    assert info.value.part_number == 5
    assert handle.bound
    assert seen == []


async def test_cancel_in_flight_transfer():
    entered = asyncio.Event()

    async def handler(request):
        entered.set()
        await asyncio.Event().wait()

    handle = TransferHandle()
    uploader = make_uploader(handler)
    task = asyncio.create_task(uploader.upload_part(URL, 1, b"data", handle=handle))

    await entered.wait()
    assert handle.cancel() is True

    with pytest.raises(UploadCancelledError):
        await task


async def test_outer_cancellation_is_not_converted():
    entered = asyncio.Event()

    async def handler(request):
        entered.set()
        await asyncio.Event().wait()

    uploader = make_uploader(handler)
    task = asyncio.create_task(uploader.upload_part(URL, 1, b"data"))

    await entered.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task


async def test_handle_binds_once():
    handle = TransferHandle()
    future = asyncio.get_running_loop().create_future()

    handle.bind(future)
    with pytest.raises(RuntimeError):
        handle.bind(future)
    assert not future.cancelled()
