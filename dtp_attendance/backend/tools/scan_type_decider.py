from datetime import datetime
from zoneinfo import ZoneInfo

from ..models.db_models import ScanType, WindowState
from ..models.scan_models import ScanContext, ScanDecision
from . import window_resolver


def _format_local_time(instant: datetime, tz_name: str) -> str:
    return instant.astimezone(ZoneInfo(tz_name)).strftime("%H:%M")


def decide(context: ScanContext) -> ScanDecision:
    """
    Oturum/etkinlik aktifliği ile pencere sınıflandırmasını birleştirerek taramanın
    kabul edilip edilmeyeceğine ve türüne karar verir. Yan etkisi yoktur; "şimdi"
    bağlamdan gelir.
    """
    session = context.session

    if not session.is_active:
        return ScanDecision(
            is_allowed=False,
            reason="Session is not currently active",
            rejection="session_inactive",
        )
    if not context.event.is_active:
        return ScanDecision(
            is_allowed=False,
            reason="Event is not currently active",
            rejection="event_inactive",
        )

    state = window_resolver.classify(session.time_in_window, session.time_out_window, context.now)

    if state == WindowState.TIME_IN_ACTIVE:
        return ScanDecision(is_allowed=True, scan_type=ScanType.TIME_IN, reason="Within time-in window", window_state=state)
    if state == WindowState.TIME_OUT_ACTIVE:
        return ScanDecision(is_allowed=True, scan_type=ScanType.TIME_OUT, reason="Within time-out window", window_state=state)

    if state == WindowState.UPCOMING:
        opens_at = window_resolver.next_opening(session.time_in_window, session.time_out_window, context.now)
        reason = f"Scanning opens at {_format_local_time(opens_at, context.timezone)}"
        return ScanDecision(is_allowed=False, reason=reason, window_state=state, rejection="upcoming")

    if state == WindowState.ENDED:
        return ScanDecision(is_allowed=False, reason="Scanning window has closed", window_state=state, rejection="ended")

    return ScanDecision(
        is_allowed=False,
        reason="No scanning window is configured for this session",
        window_state=state,
        rejection="no_window",
    )
