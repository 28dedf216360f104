import logging
import threading

logger = logging.getLogger(__name__)


class Ticker:
    """
    Calls ``callback`` every ``interval`` seconds on a timer thread until cancel().
    One ticker per owner; cancel it on every state change that ends its purpose.
    """

    def __init__(self, interval, callback):
        self.interval = interval
        self.callback = callback
        self._timer = None
        self._cancelled = False
        self._lock = threading.Lock()

    @property
    def active(self):
        return self._timer is not None and not self._cancelled

    def start(self):
        self._schedule()
        return self

    def _schedule(self):
        with self._lock:
            if self._cancelled:
                return
            self._timer = threading.Timer(self.interval, self._run)
            self._timer.daemon = True
            self._timer.start()

    def _run(self):
        if self._cancelled:
            return
        try:
            self.callback()
        except Exception:
            logger.exception("Ticker callback failed")
        self._schedule()

    def cancel(self):
        with self._lock:
            self._cancelled = True
            if self._timer is not None:
                self._timer.cancel()
