import time
from typing import Callable, Optional

from flask import has_app_context

from livequiz import socketio


class Countdown:
    """Host-owned answer window for the active question.

    - No-ops its background worker in TESTING mode
    - Keeps a deadline so the host can show the remaining time
    - Every schedule/cancel bumps a generation; a worker whose generation is
      no longer current aborts instead of firing
    """

    def __init__(self, app) -> None:
        self.app = app
        self._generation = 0
        self.deadline: Optional[float] = None
        self.question_id: Optional[int] = None

    @property
    def generation(self) -> int:
        return self._generation

    def remaining(self, now: Optional[float] = None) -> float:
        if self.deadline is None:
            return 0.0
        now = time.time() if now is None else now
        return max(0.0, self.deadline - now)

    def cancel(self) -> None:
        if self.deadline is not None:
            self.app.logger.info(f"[timer-cancel] question={self.question_id} generation={self._generation}")
        self._generation += 1
        self.deadline = None
        self.question_id = None

    def schedule(self, question_id: int, started_at: float, duration: int,
                 on_expire: Callable[[int], None]) -> int:
        self.cancel()
        generation = self._generation
        self.question_id = question_id
        self.deadline = started_at + duration
        self.app.logger.info(
            f"[timer-set] question={question_id} duration={duration}s deadline={self.deadline}"
        )
        if self.app.config.get('TESTING') and not self.app.config.get('ENABLE_COUNTDOWN_IN_TESTS'):
            return generation
        socketio.start_background_task(self._worker, generation, question_id, on_expire)
        return generation

    def _worker(self, generation: int, question_id: int, on_expire: Callable[[int], None]) -> None:
        hb = int(self.app.config.get('TIMER_HEARTBEAT_SEC', 0) or 0)
        while generation == self._generation:
            left = self.remaining()
            if left <= 0:
                break
            step = min(hb, left) if hb > 0 else left
            socketio.sleep(step)
            if hb > 0 and generation == self._generation:
                self.app.logger.info(
                    f"[timer-heartbeat] question={question_id} remaining={self.remaining():.1f}s"
                )
        self.expire(generation, question_id, on_expire)

    def expire(self, generation: int, question_id: int, on_expire: Callable[[int], None]) -> bool:
        """Fire ``on_expire`` if this countdown is still the current one."""
        if generation != self._generation:
            self.app.logger.info(f"[timer-abort] question={question_id} generation={generation} stale")
            return False
        self.app.logger.info(f"[timer-fire] question={question_id}")
        self.deadline = None
        if has_app_context():
            on_expire(question_id)
        else:
            with self.app.app_context():
                on_expire(question_id)
        return True
