"""
Background task scheduler for periodic driver/task reconciliation
"""

import logging
import threading
import time

import schedule

logger = logging.getLogger(__name__)

class ReconciliationScheduler:
    """Runs ReconciliationService.reconcile() on a fixed interval"""

    def __init__(self, reconciliation_service, interval_minutes: int):
        self.reconciliation_service = reconciliation_service
        self.interval_minutes = interval_minutes
        self.scheduler = schedule.Scheduler()
        self.running = False
        self.scheduler_thread = None

    def start_scheduler(self):
        """Start the background task scheduler"""
        if self.running:
            logger.warning("Scheduler already running")
            return

        logger.info(f"Starting reconciliation scheduler (every {self.interval_minutes} minutes)")
        self.scheduler.every(self.interval_minutes).minutes.do(self._safe_reconcile)

        self.running = True
        self.scheduler_thread = threading.Thread(target=self._run_scheduler, daemon=True)
        self.scheduler_thread.start()

    def stop_scheduler(self):
        """Stop the background task scheduler"""
        if not self.running:
            return

        logger.info("Stopping reconciliation scheduler")
        self.running = False
        self.scheduler.clear()

        if self.scheduler_thread:
            self.scheduler_thread.join(timeout=30)

    def _run_scheduler(self):
        """Main scheduler loop"""
        while self.running:
            try:
                self.scheduler.run_pending()
                time.sleep(30)
            except Exception as e:
                logger.error(f"Error in scheduler loop: {str(e)}")
                time.sleep(300)  # back off before retrying

    def _safe_reconcile(self):
        """Run reconciliation, logging instead of raising so the schedule survives"""
        try:
            report = self.reconciliation_service.reconcile()
            logger.info(f"Scheduled reconciliation completed: {report.to_dict()}")
        except Exception as e:
            logger.error(f"Scheduled reconciliation failed: {str(e)}")
