import asyncio
import logging

logger = logging.getLogger(__name__)


def format_time(seconds):
    """Format seconds as H:MM:SS, or M:SS under an hour"""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


class SectionTimer:
    """Countdown clock for one timing context.

    Each tick removes exactly one second; wall-clock drift is not corrected,
    which is acceptable at exam lengths. ``on_expire`` is called once when the
    count reaches zero. After ``cancel()`` the timer never ticks or fires again.
    """

    def __init__(self, duration, on_expire, interval=1.0):
        self.duration = int(duration)
        self.remaining = int(duration)
        self.interval = interval
        self._on_expire = on_expire
        self._task = None
        self._expired = False
        self._cancelled = False

    @property
    def running(self):
        return self._task is not None and not self._task.done()

    @property
    def cancelled(self):
        return self._cancelled

    @property
    def expired(self):
        return self._expired

    def start(self):
        if self._cancelled or self._task is not None:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self):
        while not (self._expired or self._cancelled):
            await asyncio.sleep(self.interval)
            self.tick()

    def tick(self):
        if self._expired or self._cancelled:
            return
        if self.remaining > 0:
            self.remaining -= 1
        if self.remaining == 0:
            self._expired = True
            logger.debug("Timer expired after %s seconds", self.duration)
            self._on_expire()

    def cancel(self):
        self._cancelled = True
        if self._task is not None and not self._task.done():
            # may run inside on_expire; _run exits before its next await
            self._task.cancel()
        self._task = None
