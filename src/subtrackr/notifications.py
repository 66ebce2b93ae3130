"""Reminder planning for upcoming renewals.

Planning is a pure function of its inputs. Handing the reminders to the OS
notification system happens elsewhere.
"""

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta

from .models import NotificationPreferences, Reminder, SubscriptionRecord
from .scheduler import renewals_between

logger = logging.getLogger(__name__)


def plan(
    records: Iterable[SubscriptionRecord],
    preferences: NotificationPreferences,
    horizon: timedelta,
    now: datetime,
) -> list[Reminder]:
    """
    Plan reminders for renewals of active records.

    Each renewal gets one reminder per lead time, fired at the preferred
    time of day `lead_days` before the renewal. Only reminders in
    (now, now + horizon] are returned. Paused, cancelled and muted records
    get none.

    Args:
        records: Subscription records
        preferences: Lead times, time of day and muted records
        horizon: How far ahead to plan
        now: Planning instant (its tzinfo is used for fire times)

    Returns:
        Reminders ordered by fire time, then record id
    """
    end = now + horizon
    lead_days = sorted(set(preferences.lead_days), reverse=True)
    if not lead_days:
        return []
    longest_lead = lead_days[0]

    reminders: set[Reminder] = set()
    for record in records:
        if not record.is_active or record.id in preferences.muted_record_ids:
            continue

        # Renewals up to end + longest lead can still have a reminder in range
        window_start = now.date() - timedelta(days=1)
        window_end = end.date() + timedelta(days=longest_lead)
        for renewal in renewals_between(
            record.billing_cycle, record.anchor_date, window_start, window_end
        ):
            for lead in lead_days:
                fire_at = datetime.combine(
                    renewal - timedelta(days=lead),
                    preferences.reminder_time,
                    tzinfo=now.tzinfo,
                )
                if now < fire_at <= end:
                    reminders.add(
                        Reminder(
                            record_id=record.id,
                            fire_at=fire_at,
                            renewal_date=renewal,
                            lead_days=lead,
                        )
                    )

    ordered = sorted(reminders, key=lambda r: (r.fire_at, r.record_id, -r.lead_days))
    logger.debug(f"Planned {len(ordered)} reminder(s) until {end.isoformat()}")
    return ordered
