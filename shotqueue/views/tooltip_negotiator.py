"""
Tooltip Layout Negotiator

Tracks whether the shortcut tooltip is shown and tells the host window how
much vertical space it needs, so the overlay can grow while the tooltip is
visible and shrink back afterwards. It never touches the screenshot queue.
"""

import logging
from typing import Callable, Optional, Tuple

from .. import EventTypes
from ..models.screenshot_models import TooltipState

logger = logging.getLogger(__name__)

REGIONS = ('trigger', 'content')

DEFAULT_MARGIN = 10.0


class TooltipNegotiator:
    """
    Hover-driven tooltip state.

    ``pointer_enter`` on either region shows the tooltip and
    ``pointer_leave`` on either region hides it. Each change of the reported
    ``(visible, height)`` pair is forwarded to ``host.update_tooltip_layout``.
    """

    def __init__(
        self,
        host,
        event_bus=None,
        measure: Optional[Callable[[], float]] = None,
        margin: float = DEFAULT_MARGIN
    ):
        """
        Initialize TooltipNegotiator.

        Args:
            host: Object exposing ``update_tooltip_layout(visible, height)``
            event_bus: Optional EventBus for layout notifications
            measure: Returns the rendered tooltip height; None until rendered
            margin: Extra space added below a visible tooltip
        """
        self.host = host
        self.event_bus = event_bus
        self.margin = margin
        self._measure = measure

        self._state = TooltipState()
        self._last_report: Optional[Tuple[bool, float]] = None

    @property
    def state(self) -> TooltipState:
        return TooltipState(visible=self._state.visible, measured_height=self._state.measured_height)

    @property
    def is_visible(self) -> bool:
        return self._state.visible

    @property
    def last_report(self) -> Optional[Tuple[bool, float]]:
        """Last ``(visible, height)`` pair sent to the host."""
        return self._last_report

    def set_measurer(self, measure: Optional[Callable[[], float]]) -> None:
        """Attach the function that measures the rendered tooltip."""
        self._measure = measure

    async def load_settings(self, settings_manager) -> None:
        try:
            self.margin = float(await settings_manager.get_setting('tooltip.margin', DEFAULT_MARGIN))
        except Exception as e:
            logger.error("Failed to load tooltip settings: %s", e)

    async def pointer_enter(self, region: str = 'trigger') -> Tuple[bool, float]:
        self._check_region(region)
        self._state.visible = True
        self._state.measured_height = self._measure_height()
        return await self._report()

    async def pointer_leave(self, region: str = 'trigger') -> Tuple[bool, float]:
        self._check_region(region)
        self._state.visible = False
        return await self._report()

    async def remeasure(self) -> Tuple[bool, float]:
        """Re-read the tooltip height, e.g. after its content changed."""
        self._state.measured_height = self._measure_height()
        return await self._report()

    def layout_height(self) -> float:
        """Height the host should reserve for the tooltip; 0 until it has been measured."""
        if not self._state.visible or self._state.measured_height <= 0:
            return 0.0
        return self._state.measured_height + self.margin

    def _measure_height(self) -> float:
        if self._measure is None:
            return 0.0
        try:
            height = float(self._measure())
        except Exception as e:
            logger.warning("Tooltip measurement failed: %s", e)
            return 0.0
        return height if height > 0 else 0.0

    async def _report(self) -> Tuple[bool, float]:
        report = (self._state.visible, self.layout_height())
        if report == self._last_report:
            return report

        try:
            self.host.update_tooltip_layout(*report)
        except Exception as e:
            logger.error("Failed to report tooltip layout %s: %s", report, e)
            return report

        self._last_report = report
        logger.debug("Tooltip layout reported: visible=%s height=%s", *report)

        if self.event_bus is not None:
            await self.event_bus.emit(
                EventTypes.TOOLTIP_LAYOUT_CHANGED,
                {'visible': report[0], 'height': report[1]},
                source="TooltipNegotiator"
            )
        return report

    @staticmethod
    def _check_region(region: str) -> None:
        if region not in REGIONS:
            raise ValueError(f"Unknown tooltip region: {region!r}")
