"""
Celery tasks for proposal generation and expiration.
"""

from datetime import date, datetime
from typing import Optional

from matchmaker.core.celery_app import celery_app
from matchmaker.core.logging_config import get_logger
from matchmaker.services.engine import get_engine

logger = get_logger(__name__)


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


@celery_app.task(bind=True, name="generate_proposals")
def generate_proposals_task(self, vendor_id: str, window_start: Optional[str] = None,
                            window_end: Optional[str] = None):
    """
    Generate PENDING proposals for one vendor.

    Dates travel as ISO strings because the task payload is JSON.

    Returns:
        dict: Vendor id, number of proposals created and their ids
    """
    if not self.request.called_directly:
        self.update_state(state="PROGRESS", meta={"status": f"Generating proposals for {vendor_id}..."})
    start_time = datetime.now()

    proposals = get_engine().generate_proposals(
        vendor_id, _parse_date(window_start), _parse_date(window_end)
    )

    return {
        "success": True,
        "vendor_id": vendor_id,
        "created": len(proposals),
        "proposal_ids": [p.id for p in proposals],
        "generation_time": (datetime.now() - start_time).total_seconds(),
    }


@celery_app.task(name="generate_all_vendors")
def generate_all_vendors_task():
    """Nightly job: generate over the default horizon for every vendor."""
    engine = get_engine()
    results = {}
    for vendor_id in engine.vendor_ids():
        try:
            results[vendor_id] = len(engine.generate_proposals(vendor_id))
        except Exception:
            logger.exception("Proposal generation failed for vendor %s", vendor_id)
            results[vendor_id] = None
    logger.info("Nightly generation finished for %d vendors", len(results))
    return {"success": all(v is not None for v in results.values()), "vendors": results}


@celery_app.task(name="sweep_expired")
def sweep_expired_task():
    """Periodic job: expire PENDING proposals whose response window has closed."""
    expired = get_engine().sweep_expired()
    return {"success": True, "expired": expired}
