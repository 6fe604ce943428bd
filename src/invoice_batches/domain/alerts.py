"""Price change detection for ingested line items."""

import logging
from decimal import ROUND_HALF_UP, Decimal

from ..ports.repository import InvoiceRepository
from .models import PriceAlert, PriceObservation

logger = logging.getLogger(__name__)

# Reported when the previous unit price was zero
ZERO_BASE_PERCENTAGE = Decimal("9999")


def exact_change(old_price: Decimal, new_price: Decimal) -> Decimal:
    """Unrounded relative change from old to new, in percent."""
    if old_price == 0:
        if new_price == 0:
            return Decimal("0")
        return ZERO_BASE_PERCENTAGE if new_price > 0 else -ZERO_BASE_PERCENTAGE
    return (new_price - old_price) / old_price * 100


def percentage_change(old_price: Decimal, new_price: Decimal) -> Decimal:
    """Relative change from old to new, in percent, rounded to two places."""
    change = exact_change(old_price, new_price)
    if abs(change) == ZERO_BASE_PERCENTAGE:
        return change
    return change.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class PriceAlertDetector:
    """Compares each observed unit price with the previous one for the same
    material and provider, raising an alert on significant changes."""

    def __init__(self, repository: InvoiceRepository, threshold_percent: Decimal = Decimal("10")) -> None:
        self.repository = repository
        self.threshold_percent = Decimal(threshold_percent)

    def observe(self, observation: PriceObservation) -> PriceAlert | None:
        """Record an observation and return the alert it raised, if any."""
        previous = self.repository.previous_price(
            observation.material_id,
            observation.provider_id,
            before=observation.effective_date,
        )
        self.repository.record_latest_price(observation)

        if previous is None:
            return None

        old_price = previous.unit_price
        new_price = observation.unit_price
        # Threshold applies to the exact change; only the stored value is rounded
        if abs(exact_change(old_price, new_price)) <= self.threshold_percent:
            return None
        percentage = percentage_change(old_price, new_price)

        existing = self.repository.find_alert(
            observation.material_id,
            observation.provider_id,
            observation.effective_date,
            old_price,
            new_price,
        )
        if existing is not None:
            logger.debug(f"Alert {existing.id} already recorded for this price change")
            return None

        alert = self.repository.add_alert(
            material_id=observation.material_id,
            provider_id=observation.provider_id,
            old_price=old_price,
            new_price=new_price,
            percentage=percentage,
            effective_date=observation.effective_date,
        )
        logger.info(
            f"Price alert: material {observation.material_id} from provider "
            f"{observation.provider_id} changed {old_price} -> {new_price} ({percentage}%)"
        )
        return alert
