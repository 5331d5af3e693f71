"""Background scheduler for the periodic evaluation and escalation loops."""
import logging
import threading
import schedule
import time

logger = logging.getLogger("gridwatch.scheduler")


class PeriodicScheduler:
    """Runs registered jobs on fixed intervals in one daemon thread.

    Nothing runs until ``start()`` is called. A failing job is logged and
    retried on its next interval; it never stops the loop.
    """

    def __init__(self, poll_seconds=1.0):
        self.poll_seconds = poll_seconds
        self._scheduler = schedule.Scheduler()
        self._jobs = []
        self._failures = {}
        self._thread = None
        self._running = threading.Event()

    def every(self, seconds, job, name=None):
        """Register ``job`` to run every ``seconds`` seconds."""
        name = name or getattr(job, "__name__", "job")
        self._jobs.append((name, job))
        self._failures[name] = 0
        self._scheduler.every(seconds).seconds.do(self._run_job, name, job)
        logger.debug(f"Registered job {name} (every {seconds}s)")
        return self

    @property
    def running(self):
        return self._running.is_set()

    def start(self):
        """Start background execution."""
        if self.running:
            return
        self._running.set()
        self._thread = threading.Thread(target=self._run_loop, name="gridwatch-scheduler", daemon=True)
        self._thread.start()
        logger.info(f"Scheduler started ({len(self._jobs)} jobs)")

    def stop(self):
        """Stop background execution. Registered jobs are kept."""
        self._running.clear()
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
        logger.info("Scheduler stopped")

    def run_pending(self):
        self._scheduler.run_pending()

    def run_all(self):
        """Run every job once, now."""
        for name, job in self._jobs:
            self._run_job(name, job)

    def _run_loop(self):
        self.run_all()
        while self._running.is_set():
            self.run_pending()
            time.sleep(self.poll_seconds)

    def _run_job(self, name, job):
        try:
            job()
            self._failures[name] = 0
        except Exception as e:
            self._failures[name] += 1
            logger.error(f"Job {name} failed ({self._failures[name]} consecutive): {e}")
            if self._failures[name] >= 5:
                logger.critical(f"Job {name}: 5+ consecutive failures!")

    def consecutive_failures(self, name):
        return self._failures.get(name, 0)
