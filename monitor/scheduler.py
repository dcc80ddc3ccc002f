"""Background scheduler that polls Prometheus and feeds the evaluator."""
import logging
import threading
import time
from datetime import datetime, timedelta, timezone

import schedule

from utils.http_client import APIError

logger = logging.getLogger("aimonitor.scheduler")


class EvaluationScheduler:
    def __init__(self, evaluator, db, prometheus, cache=None, config=None):
        config = config or {}
        prom_cfg = config.get("prometheus", {})
        self.evaluator = evaluator
        self.db = db
        self.prometheus = prometheus
        self.cache = cache
        self.interval = config.get("scheduler", {}).get("interval", 60)
        self.target_label = prom_cfg.get("target_label", "instance")
        self.target_type = prom_cfg.get("target_type", "host")
        self.retention_days = config.get("analysis", {}).get("sample_retention_days", 30)
        self._scheduler = schedule.Scheduler()
        self._thread = None
        self._running = False
        self._consecutive_failures = 0

    def start(self):
        """Start background polling."""
        if self._running:
            return
        self._running = True

        self._scheduler.every(self.interval).seconds.do(self.evaluate_once)
        self._scheduler.every(1).hours.do(self.maintenance)

        self._thread = threading.Thread(target=self._run_loop, name="evaluation-scheduler", daemon=True)
        self._thread.start()
        logger.info(f"Scheduler started (every {self.interval}s)")

    def stop(self):
        """Stop background polling."""
        self._running = False
        self._scheduler.clear()
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
        logger.info("Scheduler stopped")

    def _run_loop(self):
        self.evaluate_once()
        while self._running:
            self._scheduler.run_pending()
            time.sleep(1)

    def evaluate_once(self):
        """Query every metric with an enabled rule and evaluate each series.

        Returns the number of samples processed.
        """
        processed = 0
        failed = False
        for metric in self.db.list_enabled_metrics():
            try:
                samples = self.prometheus.query(metric)
            except APIError as e:
                failed = True
                logger.warning(f"Prometheus query for {metric} failed: {e}")
                continue
            for labels, value, ts in samples:
                target_id = labels.get(self.target_label, "")
                try:
                    self.evaluator.process_sample(self.target_type, target_id, metric, value, labels, ts)
                    processed += 1
                except Exception as e:
                    logger.error(f"Evaluating {metric}@{target_id} failed: {e}")

        if failed:
            self._consecutive_failures += 1
            if self._consecutive_failures >= 5:
                logger.critical(f"{self._consecutive_failures} consecutive polling cycles with Prometheus errors")
        else:
            self._consecutive_failures = 0
        logger.debug(f"Evaluated {processed} samples")
        return processed

    def maintenance(self):
        """Drop expired cache entries and samples past retention."""
        purged = self.cache.purge_expired() if self.cache is not None else 0
        cutoff = datetime.now(timezone.utc) - timedelta(days=self.retention_days)
        removed = self.db.purge_samples(cutoff)
        logger.info(f"Maintenance: {purged} cache entries expired, {removed} old samples removed")
        return purged, removed
