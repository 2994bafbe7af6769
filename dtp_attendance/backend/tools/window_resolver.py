from datetime import datetime
from typing import Optional

from ..models.db_models import TimeWindow, WindowState


def classify(
    time_in_window: Optional[TimeWindow],
    time_out_window: Optional[TimeWindow],
    now: datetime,
) -> WindowState:
    """
    Verilen anı oturumun pencerelerine göre sınıflandırır.

    Her iki sınır da kapsayıcıdır; start == end olan bir pencere yalnızca o
    anda aktiftir. Pencereler çakışırsa time-in önceliklidir. Time-in bittikten
    sonra time-out başlayana kadar geçen boşluk `upcoming` sayılır (time-out
    için); ek bir tolerans süresi uygulanmaz.
    """
    if time_in_window is None and time_out_window is None:
        return WindowState.NO_WINDOW

    if time_in_window is not None:
        if now < time_in_window.start:
            return WindowState.UPCOMING
        if time_in_window.contains(now):
            return WindowState.TIME_IN_ACTIVE

    if time_out_window is not None:
        if time_out_window.contains(now):
            return WindowState.TIME_OUT_ACTIVE
        if now < time_out_window.start:
            return WindowState.UPCOMING

    return WindowState.ENDED


def next_opening(
    time_in_window: Optional[TimeWindow],
    time_out_window: Optional[TimeWindow],
    now: datetime,
) -> Optional[datetime]:
    """Henüz açılmamış ilk pencerenin başlangıcı; yoksa None."""
    for window in (time_in_window, time_out_window):
        if window is not None and now < window.start:
            return window.start
    return None


def active_window(
    time_in_window: Optional[TimeWindow],
    time_out_window: Optional[TimeWindow],
    now: datetime,
) -> Optional[TimeWindow]:
    state = classify(time_in_window, time_out_window, now)
    if state == WindowState.TIME_IN_ACTIVE:
        return time_in_window
    if state == WindowState.TIME_OUT_ACTIVE:
        return time_out_window
    return None


def minutes_remaining(window: Optional[TimeWindow], now: datetime) -> int:
    """Aktif pencerede kalan tam dakika sayısı; aktif değilse 0."""
    if window is None or not window.contains(now):
        return 0
    return max(0, int((window.end - now).total_seconds() // 60))
