"""
@generation_poller
Fixed-interval background polling of queued fal.ai requests
"""

import time
import logging
import threading
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)


class GenerationPoller:
    """At most one poll loop per generation id.

    ``check(generation_id)`` performs one status check and returns True once
    the generation reached a terminal state. ``on_timeout(generation_id,
    message)`` is called when the loop gives up.
    """

    def __init__(self, check: Callable[[int], bool], on_timeout: Callable[[int, str], None],
                 interval: float = 2.0, timeout: float = 600.0):
        self.check = check
        self.on_timeout = on_timeout
        self.interval = interval
        self.timeout = timeout
        self._active: Dict[int, threading.Event] = {}
        self._threads: Dict[int, threading.Thread] = {}
        self._lock = threading.Lock()

    def start(self, generation_id: int) -> bool:
        """Begin polling; False when a loop for this id is already running"""
        with self._lock:
            if generation_id in self._active:
                return False
            stop = threading.Event()
            thread = threading.Thread(target=self._run, args=(generation_id, stop),
                                      name=f'generation-poll-{generation_id}', daemon=True)
            self._active[generation_id] = stop
            self._threads[generation_id] = thread
        thread.start()
        logger.info(f"Polling generation {generation_id} every {self.interval}s")
        return True

    def _run(self, generation_id: int, stop: threading.Event) -> None:
        started = time.monotonic()
        try:
            while not stop.wait(self.interval):
                if self.check(generation_id):
                    break
                if time.monotonic() - started >= self.timeout:
                    self.on_timeout(generation_id, f"Generation timed out after {int(self.timeout)} seconds")
                    break
        except Exception:
            logger.exception(f"Poll loop for generation {generation_id} crashed")
        finally:
            with self._lock:
                if self._active.get(generation_id) is stop:
                    del self._active[generation_id]
                    self._threads.pop(generation_id, None)
            logger.info(f"Stopped polling generation {generation_id}")

    def is_polling(self, generation_id: int) -> bool:
        with self._lock:
            return generation_id in self._active

    def active_ids(self) -> List[int]:
        with self._lock:
            return sorted(self._active)

    def stop(self, generation_id: int) -> bool:
        with self._lock:
            stop = self._active.get(generation_id)
        if stop is None:
            return False
        stop.set()
        return True

    def wait(self, generation_id: int, timeout: float = None) -> None:
        """Block until the loop for ``generation_id`` has exited"""
        with self._lock:
            thread = self._threads.get(generation_id)
        if thread is not None:
            thread.join(timeout)

    def shutdown(self, timeout: float = 5.0) -> None:
        """@poller_teardown - Stop every loop, e.g. when the server exits"""
        with self._lock:
            stops = list(self._active.values())
            threads = list(self._threads.values())
        for stop in stops:
            stop.set()
        for thread in threads:
            thread.join(timeout)
        if stops:
            logger.info(f"Stopped {len(stops)} generation poll loop(s)")
