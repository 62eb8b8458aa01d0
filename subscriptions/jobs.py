"""
Background sweeps: recurring billing, trial expiry and stale payment expiry.
"""
import logging

from core.config import Settings
from core.scheduler import Scheduler
from payments.ledger import PaymentLedger

from .engine import SubscriptionEngine

logger = logging.getLogger(__name__)

BILLING_SWEEP_JOB = "billing_sweep"
TRIAL_EXPIRY_JOB = "trial_expiry_sweep"
PAYMENT_EXPIRY_JOB = "payment_expiry_sweep"


def register_jobs(
    scheduler: Scheduler,
    engine: SubscriptionEngine,
    ledger: PaymentLedger,
    settings: Settings,
) -> None:
    async def billing_sweep():
        report = await engine.run_billing_sweep()
        return report.model_dump(mode="json")

    async def trial_expiry_sweep():
        return {"converted": await engine.run_trial_expiry_sweep()}

    async def payment_expiry_sweep():
        return {"expired": await ledger.expire_stale_payments()}

    scheduler.add_job(BILLING_SWEEP_JOB, settings.BILLING_SWEEP_INTERVAL_SECONDS, billing_sweep)
    scheduler.add_job(TRIAL_EXPIRY_JOB, settings.TRIAL_SWEEP_INTERVAL_SECONDS, trial_expiry_sweep)
    scheduler.add_job(PAYMENT_EXPIRY_JOB, settings.EXPIRY_SWEEP_INTERVAL_SECONDS, payment_expiry_sweep)
    logger.info(f"Registered {len(scheduler.jobs)} scheduled jobs")
