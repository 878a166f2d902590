"""
Processing Pipeline Client

Submits a snapshot of the screenshot queue to the remote analysis service as
a single multipart/form-data request. Only one submission may be in flight;
the client confirms transport-level success and leaves interpreting the
analysis to the receiving side.
"""

import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import httpx

from .. import DEFAULT_ENDPOINT_URL, DEFAULT_TEXT_PROMPT, DEFAULT_TIMEOUT_SECONDS, EventTypes
from .screenshot_models import ProcessingState, ScreenshotEntry, SubmissionError, SubmissionResult

logger = logging.getLogger(__name__)

MultipartField = Tuple[str, tuple]


class ProcessingClient:
    """
    Client for the ``/process_images`` endpoint.

    The request carries one ``image_<n>`` part per screenshot, keyed by queue
    position, followed by a ``text_prompt`` part. By default each image part
    holds the file reference (path); with ``upload_files`` the image bytes
    are sent instead.
    """

    def __init__(
        self,
        event_bus,
        endpoint_url: str = DEFAULT_ENDPOINT_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        text_prompt: str = DEFAULT_TEXT_PROMPT,
        upload_files: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize ProcessingClient.

        Args:
            event_bus: EventBus for notices and state notifications
            endpoint_url: Full URL of the analysis endpoint
            timeout_seconds: Overall bound for one submission
            text_prompt: Instruction sent with every submission
            upload_files: Send image bytes instead of file references
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.event_bus = event_bus
        self.endpoint_url = endpoint_url
        self.timeout_seconds = timeout_seconds
        self.text_prompt = text_prompt
        self.upload_files = upload_files
        self._transport = transport

        self._state = ProcessingState.IDLE
        self._submission_count = 0

        self._settings_manager = None
        self._settings_subscription: Optional[str] = None

        logger.debug("ProcessingClient created for %s", endpoint_url)

    @property
    def state(self) -> ProcessingState:
        return self._state

    @property
    def is_in_flight(self) -> bool:
        return self._state is ProcessingState.IN_FLIGHT

    @property
    def submission_count(self) -> int:
        """Number of requests actually sent."""
        return self._submission_count

    async def load_settings(self, settings_manager) -> None:
        """Apply the ``processing`` settings section and follow later changes to it."""
        self._settings_manager = settings_manager
        await self._apply_settings()

        if self._settings_subscription is None:
            self._settings_subscription = await self.event_bus.subscribe(
                EventTypes.SETTINGS_UPDATED,
                self._handle_settings_updated,
                priority=100
            )

    async def close(self) -> None:
        """Stop following settings changes."""
        if self._settings_subscription is not None:
            await self.event_bus.unsubscribe(self._settings_subscription)
            self._settings_subscription = None

    async def _apply_settings(self) -> None:
        try:
            settings = await self._settings_manager.load_settings()
        except Exception as e:
            logger.error("Failed to load processing settings: %s", e)
            return

        config = settings.processing
        self.endpoint_url = config.endpoint_url
        self.timeout_seconds = float(config.timeout_seconds)
        self.text_prompt = config.text_prompt
        self.upload_files = config.upload_files

        logger.info("Processing endpoint: %s (timeout %ss)", self.endpoint_url, self.timeout_seconds)

    async def submit(
        self,
        queue: Sequence[ScreenshotEntry],
        prompt: Optional[str] = None
    ) -> SubmissionResult:
        """
        Submit the given screenshots for analysis.

        The sequence is copied before anything else happens, so later queue
        mutations never reach an in-flight request.

        Args:
            queue: Screenshots to submit, in queue order
            prompt: Instruction text; the configured prompt when omitted

        Returns:
            SubmissionResult for this attempt
        """
        snapshot = tuple(queue)

        if not snapshot:
            logger.info("Submission rejected: queue is empty")
            await self.event_bus.notify(
                "Nothing to process", "No screenshots to process.", level="warning",
                source="ProcessingClient"
            )
            return SubmissionResult(success=False, state=self._state, rejected=True,
                                    error="No screenshots to process")

        if self.is_in_flight:
            logger.info("Submission rejected: another submission is in flight")
            await self.event_bus.notify(
                "Busy", "Processing already in progress.", level="warning",
                source="ProcessingClient"
            )
            return SubmissionResult(success=False, state=self._state, rejected=True,
                                    image_count=len(snapshot),
                                    error="Processing already in progress")

        await self._set_state(ProcessingState.IN_FLIGHT)
        await self.event_bus.emit(
            EventTypes.PROCESSING_STARTED,
            {'image_count': len(snapshot), 'endpoint': self.endpoint_url},
            source="ProcessingClient"
        )

        try:
            result = await self._send(snapshot, prompt or self.text_prompt)
        finally:
            await self._set_state(ProcessingState.IDLE)

        if result.success:
            logger.info("Processing completed (HTTP %s, %d images)", result.status_code, result.image_count)
            await self.event_bus.emit(
                EventTypes.PROCESSING_COMPLETED,
                {
                    'image_count': result.image_count,
                    'status_code': result.status_code,
                    'response': result.response_text
                },
                source="ProcessingClient"
            )
            await self.event_bus.notify(
                "Success", "Processing completed successfully!", level="success",
                source="ProcessingClient"
            )
        else:
            await self.event_bus.emit(
                EventTypes.PROCESSING_FAILED,
                {'image_count': result.image_count, 'error': result.error},
                source="ProcessingClient"
            )
            await self.event_bus.notify(
                "Error", "Failed to process screenshots.", level="error",
                source="ProcessingClient"
            )

        return result

    async def _send(self, snapshot: Tuple[ScreenshotEntry, ...], prompt: str) -> SubmissionResult:
        """Issue the request; every failure becomes a failed result."""
        count = len(snapshot)
        try:
            response = await asyncio.wait_for(
                self._post(snapshot, prompt),
                timeout=self.timeout_seconds
            )
            response.raise_for_status()
        except asyncio.TimeoutError:
            error = SubmissionError(f"Request timed out after {self.timeout_seconds}s")
        except httpx.HTTPStatusError as e:
            error = SubmissionError(f"Server responded with HTTP {e.response.status_code}")
        except (httpx.HTTPError, httpx.InvalidURL, OSError, ValueError) as e:
            error = SubmissionError(f"Request failed: {e}")
        else:
            return SubmissionResult(
                success=True,
                image_count=count,
                status_code=response.status_code,
                response_text=response.text
            )

        logger.error("Error processing screenshots: %s", error)
        return SubmissionResult(success=False, image_count=count, error=str(error))

    async def _post(self, snapshot: Tuple[ScreenshotEntry, ...], prompt: str) -> httpx.Response:
        files = await self._build_multipart(snapshot, prompt)

        async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout_seconds) as client:
            self._submission_count += 1
            logger.debug("POST %s with %d images", self.endpoint_url, len(snapshot))
            return await client.post(self.endpoint_url, files=files)

    async def _build_multipart(self, snapshot: Tuple[ScreenshotEntry, ...], prompt: str) -> List[MultipartField]:
        """One part per screenshot keyed by position, then the prompt."""
        files: List[MultipartField] = []
        loop = asyncio.get_running_loop()

        for index, entry in enumerate(snapshot):
            if self.upload_files:
                content = await loop.run_in_executor(None, Path(entry.path).read_bytes)
                content_type = mimetypes.guess_type(entry.path)[0] or "application/octet-stream"
                files.append((f"image_{index}", (entry.filename, content, content_type)))
            else:
                files.append((f"image_{index}", (None, entry.path)))

        files.append(("text_prompt", (None, prompt)))
        return files

    async def _set_state(self, state: ProcessingState) -> None:
        previous, self._state = self._state, state
        await self.event_bus.emit(
            EventTypes.PROCESSING_STATE_CHANGED,
            {'old_state': previous.value, 'new_state': state.value},
            source="ProcessingClient"
        )

    async def _handle_settings_updated(self, event_data) -> None:
        data = event_data.data if isinstance(event_data.data, dict) else {}
        key = data.get('key') or ''
        if not (key.startswith('processing.') or data.get('full_save')):
            return

        await self._apply_settings()

    def __str__(self) -> str:
        return f"ProcessingClient(endpoint={self.endpoint_url}, state={self._state.value})"
