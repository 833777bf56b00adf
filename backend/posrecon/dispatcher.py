# Overview: Bounded background runner for work that continues after an HTTP response.

"""
Webhook Dispatcher

WHY: The terminal must get its acknowledgement before the delivery is
processed, but the delivery still has to be processed to completion. Flask
has no "run after response" primitive, so accepted jobs go to a fixed set of
worker threads that run each one inside its own application context.

- No caller-visible cancellation: an accepted job runs to completion or failure.
- Workers are daemon threads. Interpreter exit never joins them on its own;
  the atexit hook waits for running jobs for at most
  WEBHOOK_SHUTDOWN_GRACE_SECONDS and then lets the process go.
- Jobs still queued at shutdown are cancelled. Webhook jobs are backed by a
  row in the webhook inbox, which the next startup drains again.
- WEBHOOK_PROCESS_INLINE runs jobs synchronously (tests, single-threaded tools).

Like other Flask extensions, one instance serves any number of apps; the
per-app workers live in app.extensions["webhook_dispatcher"].
"""

from __future__ import annotations

import atexit
import queue
import threading
from concurrent.futures import Future, wait

from flask import current_app


class _DispatcherState:
    def __init__(self, app):
        self.app = app
        self.inline = bool(app.config.get("WEBHOOK_PROCESS_INLINE", False))
        self.grace_seconds = float(app.config.get("WEBHOOK_SHUTDOWN_GRACE_SECONDS", 10))
        self.jobs: queue.Queue = queue.Queue()
        self.workers: list[threading.Thread] = []
        self.pending: set[Future] = set()
        self.lock = threading.Lock()
        self.accepting = not self.inline
        if not self.inline:
            for n in range(max(1, int(app.config.get("WEBHOOK_WORKERS", 4)))):
                worker = threading.Thread(
                    target=self._work, name=f"webhook-worker-{n}", daemon=True,
                )
                worker.start()
                self.workers.append(worker)

    def _work(self) -> None:
        while True:
            item = self.jobs.get()
            if item is None:
                return
            future, func, args, kwargs = item
            if not future.set_running_or_notify_cancel():
                continue
            try:
                result = _run(self.app, func, args, kwargs)
            except BaseException as exc:
                future.set_exception(exc)
            else:
                future.set_result(result)

    def enqueue(self, func, args, kwargs) -> Future | None:
        future: Future = Future()
        with self.lock:
            if not self.accepting:
                return None
            self.pending.add(future)
            self.jobs.put((future, func, args, kwargs))
        future.add_done_callback(self.discard)
        return future

    def discard(self, future: Future) -> None:
        with self.lock:
            self.pending.discard(future)

    def shutdown(self, grace_seconds: float | None = None) -> int:
        with self.lock:
            if not self.accepting:
                return 0
            self.accepting = False

        cancelled = 0
        while True:
            try:
                item = self.jobs.get_nowait()
            except queue.Empty:
                break
            if item is not None and item[0].cancel():
                cancelled += 1
        for _ in self.workers:
            self.jobs.put(None)

        timeout = self.grace_seconds if grace_seconds is None else grace_seconds
        with self.lock:
            running = [f for f in self.pending if not f.done()]
        _, not_done = wait(running, timeout=timeout)

        if cancelled:
            self.app.logger.info("Webhook dispatcher cancelled %d queued job(s) at shutdown", cancelled)
        if not_done:
            self.app.logger.warning(
                "Webhook dispatcher shut down with %d job(s) still running", len(not_done)
            )
        return len(not_done)


class WebhookDispatcher:
    def __init__(self, app=None):
        if app is not None:
            self.init_app(app)

    def init_app(self, app) -> None:
        state = _DispatcherState(app)
        app.extensions["webhook_dispatcher"] = state
        if state.workers:
            atexit.register(state.shutdown)

    def _state(self, app=None) -> _DispatcherState:
        app = app or current_app._get_current_object()
        try:
            return app.extensions["webhook_dispatcher"]
        except KeyError:
            raise RuntimeError("WebhookDispatcher is not initialized for this application") from None

    @property
    def inline(self) -> bool:
        return self._state().inline

    @property
    def pending_count(self) -> int:
        state = self._state()
        with state.lock:
            return len(state.pending)

    def submit(self, func, *args, **kwargs) -> Future:
        """
        Hand a job off; returns a Future.

        Inline mode, or a dispatcher that has already shut down, runs the job
        in the caller's thread and returns an already-resolved Future.
        """
        state = self._state()

        future = None if state.inline else state.enqueue(func, args, kwargs)
        if future is None:
            future = Future()
            future.set_result(_run(state.app, func, args, kwargs))
        return future

    def shutdown(self, app=None, grace_seconds: float | None = None) -> int:
        """
        Stop accepting work, cancel queued jobs and wait for running ones.

        Returns the number of jobs still running when the grace period ran out.
        """
        return self._state(app).shutdown(grace_seconds)


def _run(app, func, args, kwargs):
    from .extensions import db

    with app.app_context():
        try:
            return func(*args, **kwargs)
        except Exception:
            app.logger.exception("Background webhook job failed")
            db.session.rollback()
            return None
        finally:
            db.session.remove()
