"""Unit tests for ProcessingClient using httpx.MockTransport."""

import asyncio

import httpx
import pytest

from shotqueue import DEFAULT_TEXT_PROMPT, EventTypes
from shotqueue.models.processing_client import ProcessingClient
from shotqueue.models.screenshot_models import ProcessingState, ScreenshotEntry
from shotqueue.models.screenshot_queue import ScreenshotQueueManager
from shotqueue.models.settings_manager import SettingsManager

ENDPOINT = "http://testserver/process_images"


class Endpoint:
    """Records requests and answers with a configurable handler."""

    def __init__(self, status_code=200, body="ok"):
        self.requests = []
        self.status_code = status_code
        self.body = body
        self.gate = None
        self.delay = None
        self.error = None

    async def __call__(self, request):
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay is not None:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, text=self.body)

    def transport(self):
        return httpx.MockTransport(self)


def make_client(event_bus, endpoint, **kwargs):
    return ProcessingClient(event_bus, endpoint_url=ENDPOINT, transport=endpoint.transport(), **kwargs)


@pytest.mark.asyncio
async def test_successful_submission_sends_multipart_request(event_bus, recorder, make_entry):
    await recorder.listen(EventTypes.NOTICE_SHOWN, EventTypes.PROCESSING_COMPLETED)
    endpoint = Endpoint(body='{"solutions": []}')
    client = make_client(event_bus, endpoint)

    result = await client.submit([make_entry("a"), make_entry("b")])
    await recorder.settle()

    assert result.success
    assert result.status_code == 200
    assert result.image_count == 2
    assert client.state is ProcessingState.IDLE

    request = endpoint.requests[0]
    assert request.method == "POST"
    assert str(request.url) == ENDPOINT
    assert request.headers["content-type"].startswith("multipart/form-data")

    body = request.content
    assert b'name="image_0"' in body
    assert b'name="image_1"' in body
    assert b'name="text_prompt"' in body
    assert b"/shots/a.png" in body
    assert b"/shots/b.png" in body
    assert body.index(b'name="image_0"') < body.index(b'name="image_1"') < body.index(b'name="text_prompt"')
    assert DEFAULT_TEXT_PROMPT.splitlines()[0].encode() in body

    assert recorder.notices() == ["Processing completed successfully!"]
    assert recorder.of(EventTypes.PROCESSING_COMPLETED)[0]['response'] == '{"solutions": []}'


@pytest.mark.asyncio
async def test_custom_prompt_replaces_default(event_bus, make_entry):
    endpoint = Endpoint()
    client = make_client(event_bus, endpoint)

    await client.submit([make_entry("a")], prompt="Explain this diagram")

    assert b"Explain this diagram" in endpoint.requests[0].content


@pytest.mark.asyncio
async def test_empty_queue_makes_no_request(event_bus, recorder):
    await recorder.listen(EventTypes.NOTICE_SHOWN)
    endpoint = Endpoint()
    client = make_client(event_bus, endpoint)

    result = await client.submit([])
    await recorder.settle()

    assert not result.success
    assert result.rejected
    assert endpoint.requests == []
    assert client.state is ProcessingState.IDLE
    assert recorder.notices() == ["No screenshots to process."]


@pytest.mark.asyncio
async def test_second_submission_while_in_flight_is_rejected(event_bus, recorder, make_entry):
    await recorder.listen(EventTypes.NOTICE_SHOWN)
    endpoint = Endpoint()
    endpoint.gate = asyncio.Event()
    client = make_client(event_bus, endpoint)

    first = asyncio.create_task(client.submit([make_entry("a")]))
    while not endpoint.requests:
        await asyncio.sleep(0)
    assert client.state is ProcessingState.IN_FLIGHT

    second = await client.submit([make_entry("a")])
    endpoint.gate.set()
    first_result = await first
    await recorder.settle()

    assert second.rejected
    assert first_result.success
    assert len(endpoint.requests) == 1
    assert client.submission_count == 1
    assert recorder.notices() == ["Processing already in progress.", "Processing completed successfully!"]


@pytest.mark.asyncio
async def test_timeout_returns_to_idle_with_one_failure_notice(event_bus, recorder, make_entry):
    await recorder.listen(EventTypes.NOTICE_SHOWN, EventTypes.PROCESSING_FAILED)
    endpoint = Endpoint()
    endpoint.delay = 5
    client = make_client(event_bus, endpoint, timeout_seconds=0.05)

    result = await client.submit([make_entry("a")])
    await recorder.settle()

    assert not result.success
    assert "timed out" in result.error
    assert client.state is ProcessingState.IDLE
    assert recorder.notices() == ["Failed to process screenshots."]
    assert len(recorder.of(EventTypes.PROCESSING_FAILED)) == 1


@pytest.mark.asyncio
async def test_server_error_status_is_a_failure(event_bus, recorder, make_entry):
    await recorder.listen(EventTypes.NOTICE_SHOWN)
    client = make_client(event_bus, Endpoint(status_code=500, body="boom"))

    result = await client.submit([make_entry("a")])
    await recorder.settle()

    assert not result.success
    assert "500" in result.error
    assert recorder.notices() == ["Failed to process screenshots."]


@pytest.mark.asyncio
async def test_connection_error_is_a_failure(event_bus, recorder, make_entry):
    await recorder.listen(EventTypes.NOTICE_SHOWN)
    endpoint = Endpoint()
    endpoint.error = httpx.ConnectError("connection refused")
    client = make_client(event_bus, endpoint)

    result = await client.submit([make_entry("a")])
    await recorder.settle()

    assert not result.success
    assert client.state is ProcessingState.IDLE
    assert recorder.notices() == ["Failed to process screenshots."]


@pytest.mark.asyncio
async def test_state_changes_are_announced(event_bus, recorder, make_entry):
    await recorder.listen(EventTypes.PROCESSING_STATE_CHANGED, EventTypes.PROCESSING_STARTED)
    client = make_client(event_bus, Endpoint())

    await client.submit([make_entry("a")])
    await recorder.settle()

    states = [data['new_state'] for data in recorder.of(EventTypes.PROCESSING_STATE_CHANGED)]
    assert states == ["in_flight", "idle"]
    assert recorder.of(EventTypes.PROCESSING_STARTED)[0]['image_count'] == 1


@pytest.mark.asyncio
async def test_upload_files_sends_image_bytes(event_bus, tmp_path):
    image = tmp_path / "shot.png"
    image.write_bytes(b"\x89PNG fake image bytes")
    endpoint = Endpoint()
    client = make_client(event_bus, endpoint, upload_files=True)

    result = await client.submit([ScreenshotEntry(path=str(image))])

    body = endpoint.requests[0].content
    assert result.success
    assert b'filename="shot.png"' in body
    assert b"\x89PNG fake image bytes" in body


@pytest.mark.asyncio
async def test_queue_changes_do_not_reach_in_flight_request(host, event_bus, make_entry):
    manager = ScreenshotQueueManager(host, event_bus)
    for name in "ab":
        await manager.append(make_entry(name))

    endpoint = Endpoint()
    endpoint.gate = asyncio.Event()
    client = make_client(event_bus, endpoint)

    submission = asyncio.create_task(client.submit(manager.current_snapshot()))
    while not endpoint.requests:
        await asyncio.sleep(0)

    deletion = await manager.remove_at(0)
    endpoint.gate.set()
    result = await submission

    assert deletion.success
    assert result.image_count == 2
    assert b"/shots/a.png" in endpoint.requests[0].content
    assert len(manager) == 1


@pytest.mark.asyncio
async def test_load_settings_applies_processing_section(event_bus):
    settings = SettingsManager()
    await settings.update_setting('processing.endpoint_url', 'https://analysis.example/process_images')
    await settings.update_setting('processing.timeout_seconds', 12)
    client = ProcessingClient(event_bus)

    await client.load_settings(settings)

    assert client.endpoint_url == 'https://analysis.example/process_images'
    assert client.timeout_seconds == 12.0


@pytest.mark.asyncio
async def test_malformed_endpoint_url_is_a_failure(event_bus, recorder, make_entry):
    await recorder.listen(EventTypes.NOTICE_SHOWN, EventTypes.PROCESSING_FAILED)
    endpoint = Endpoint()
    client = ProcessingClient(event_bus, endpoint_url="http://[::1/process_images",
                              transport=endpoint.transport())

    result = await client.submit([make_entry("a")])
    await recorder.settle()

    assert not result.success
    assert "Request failed" in result.error
    assert endpoint.requests == []
    assert client.state is ProcessingState.IDLE
    assert recorder.notices() == ["Failed to process screenshots."]
    assert len(recorder.of(EventTypes.PROCESSING_FAILED)) == 1


@pytest.mark.asyncio
async def test_return_to_idle_reports_previous_state(event_bus, recorder, make_entry):
    await recorder.listen(EventTypes.PROCESSING_STATE_CHANGED)
    client = make_client(event_bus, Endpoint(status_code=503))

    await client.submit([make_entry("a")])
    await recorder.settle()

    assert recorder.of(EventTypes.PROCESSING_STATE_CHANGED) == [
        {'old_state': "idle", 'new_state': "in_flight"},
        {'old_state': "in_flight", 'new_state': "idle"},
    ]


@pytest.mark.asyncio
async def test_processing_setting_changes_are_followed(event_bus, recorder):
    await recorder.listen(EventTypes.SETTINGS_UPDATED)
    settings = SettingsManager(event_bus=event_bus)
    client = ProcessingClient(event_bus)
    await client.load_settings(settings)

    await settings.update_setting('processing.endpoint_url', 'https://analysis.example/process_images')
    await settings.update_setting('processing.upload_files', True)
    await recorder.settle()

    assert client.endpoint_url == 'https://analysis.example/process_images'
    assert client.upload_files is True

    await client.close()
    await settings.update_setting('processing.timeout_seconds', 5)
    await recorder.settle()

    assert client.timeout_seconds == 30.0
