# enrolment_waitlist/utils/enrolment_waitlist_notifications.py
"""
Notification and event dispatch for enrolment waitlist transitions.

Channels: Email (offer links) + In-app (Redis pub/sub) + Kafka events.
Every dispatcher here is fire-and-forget: failures are logged and never
propagate to the operation that triggered them.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlencode

import resend

from enrolment_waitlist.core.config import settings
from enrolment_waitlist.core.kafka_producer import get_kafka_singleton
from enrolment_waitlist.db.redis import redis_client
from enrolment_waitlist.models.enrolment_waitlist import EnrolmentWaitlistEntry
from enrolment_waitlist.utils.offer_tokens import generate_offer_token
from enrolment_waitlist.utils.time_utils import as_utc

logger = logging.getLogger(__name__)

# Configure Resend
if settings.RESEND_API_KEY:
    resend.api_key = settings.RESEND_API_KEY

WAITLIST_EVENTS_TOPIC = "enrolment-waitlist.events.v1"
LEAD_ACTIVITIES_TOPIC = "lead.activities.v1"
INAPP_CHANNEL = "enrolment-waitlist-notifications"


# ── Helper Functions ──────────────────────────────────────────────────

def _send_email(to: str, subject: str, html: str, text: str) -> bool:
    """Send email via Resend. Returns True on success."""
    if not settings.RESEND_API_KEY:
        logger.debug(f"Skipping email to {to}: RESEND_API_KEY not configured")
        return False
    try:
        params = {
            "from": f"LessonLoop <noreply@{settings.RESEND_FROM_DOMAIN}>",
            "to": [to],
            "subject": subject,
            "html": html,
            "text": text,
        }
        resend.Emails.send(params)
        logger.info(f"Sent email to {to}: {subject}")
        return True
    except Exception as e:
        logger.error(f"Failed to send email to {to}: {e}", exc_info=True)
        return False


def _publish_inapp(channel: str, payload: dict) -> bool:
    """Publish in-app notification via Redis pub/sub."""
    try:
        redis_client.publish(channel, json.dumps(payload, default=str))
        return True
    except Exception as e:
        logger.error(f"Failed to publish in-app notification: {e}", exc_info=True)
        return False


def _child_name(entry: EnrolmentWaitlistEntry) -> str:
    if entry.child_last_name:
        return f"{entry.child_first_name} {entry.child_last_name}"
    return entry.child_first_name


def _respond_link(entry: EnrolmentWaitlistEntry, action: str) -> str:
    token = generate_offer_token(
        entry.id, entry.organization_id, action, entry.offer_expires_at
    )
    query = urlencode({"token": token, "action": action})
    return f"{settings.PUBLIC_API_URL}/api/v1/enrolment-waitlist/respond?{query}"


def _format_rate(rate_minor: Optional[int]) -> str:
    if rate_minor is None:
        return "-"
    return f"£{rate_minor / 100:.2f}"


# ── Notification Dispatchers ──────────────────────────────────────────


def notify_offer_sent(entry: EnrolmentWaitlistEntry) -> bool:
    """
    Email the family a slot offer with accept/decline links.
    Channels: Email + In-app (staff)

    Returns True if the email went out.
    """
    logger.info(f"Sending slot offer notification for entry {entry.id}")

    _publish_inapp(INAPP_CHANNEL, {
        "event": "enrolment_waitlist.offered",
        "orgId": entry.organization_id,
        "waitlistEntryId": entry.id,
        "instrumentName": entry.instrument_name,
        "offerExpiresAt": entry.offer_expires_at,
    })

    if not entry.contact_email:
        logger.warning(f"No contact email on waitlist entry {entry.id}; offer email not sent")
        return False

    try:
        accept_url = _respond_link(entry, "accept")
        decline_url = _respond_link(entry, "decline")
    except Exception as e:
        logger.error(f"Failed to sign offer links for entry {entry.id}: {e}", exc_info=True)
        return False

    child = _child_name(entry)
    slot_time = entry.offered_slot_time.strftime("%H:%M") if entry.offered_slot_time else ""
    day = (entry.offered_slot_day or "").capitalize()
    expires_at = as_utc(entry.offer_expires_at)
    expires = expires_at.strftime("%A %d %B at %H:%M UTC") if expires_at else ""
    rate = _format_rate(entry.offered_rate_minor)

    subject = f"Lesson slot available: {entry.instrument_name} for {child}"
    html = f"""
    <div style="font-family: sans-serif; max-width: 600px; margin: 0 auto;">
        <h2>A lesson slot is available</h2>
        <p>Hi {entry.contact_name},</p>
        <p>We have a <strong>{entry.instrument_name}</strong> slot for <strong>{child}</strong>.</p>
        <p><strong>When:</strong> {day} at {slot_time} ({entry.lesson_duration_mins} minutes)</p>
        <p><strong>Rate:</strong> {rate} per lesson</p>
        <p>Please respond by <strong>{expires}</strong>.</p>
        <a href="{accept_url}" style="display: inline-block; background: #16a34a; color: white; padding: 12px 24px; text-decoration: none; border-radius: 6px; margin-top: 12px;">Accept</a>
        <a href="{decline_url}" style="display: inline-block; background: #6b7280; color: white; padding: 12px 24px; text-decoration: none; border-radius: 6px; margin-top: 12px; margin-left: 8px;">Decline</a>
    </div>
    """
    text = (
        f"Hi {entry.contact_name},\n\n"
        f"We have a {entry.instrument_name} slot for {child}: {day} at {slot_time} "
        f"({entry.lesson_duration_mins} minutes), {rate} per lesson.\n\n"
        f"Please respond by {expires}.\n\n"
        f"Accept: {accept_url}\nDecline: {decline_url}"
    )
    return _send_email(entry.contact_email, subject, html, text)


def notify_offer_responded(entry: EnrolmentWaitlistEntry):
    """
    Tell staff a family accepted or declined.
    Channels: In-app
    """
    _publish_inapp(INAPP_CHANNEL, {
        "event": f"enrolment_waitlist.{entry.status}",
        "orgId": entry.organization_id,
        "waitlistEntryId": entry.id,
        "childName": _child_name(entry),
        "instrumentName": entry.instrument_name,
    })


# ── Kafka Events ──────────────────────────────────────────────────────


def emit_waitlist_event(event_type: str, entry: EnrolmentWaitlistEntry, metadata: dict = None):
    """Publish a lifecycle event for one entry."""
    try:
        producer = get_kafka_singleton()
        if not producer:
            logger.warning("Kafka producer unavailable, skipping event")
            return

        event_data = {
            "type": event_type,
            "waitlist_entry_id": entry.id,
            "organization_id": entry.organization_id,
            "instrument_name": entry.instrument_name,
            "status": entry.status,
            "position": entry.position,
            "metadata": metadata or {},
            "timestamp": str(datetime.now(timezone.utc)),
        }

        producer.send(WAITLIST_EVENTS_TOPIC, key=entry.organization_id, value=event_data)
        logger.debug(f"Emitted Kafka event: {event_type} for entry {entry.id}")
    except Exception as e:
        logger.error(f"Failed to emit Kafka event {event_type}: {e}", exc_info=True)


def emit_lead_activity(
    entry: EnrolmentWaitlistEntry,
    activity_type: str,
    description: str,
    user_id: Optional[str] = None,
):
    """Leave a note on the originating lead in the CRM. No-op without a lead."""
    if not entry.lead_id:
        return

    try:
        producer = get_kafka_singleton()
        if not producer:
            logger.warning("Kafka producer unavailable, skipping lead activity")
            return

        producer.send(
            LEAD_ACTIVITIES_TOPIC,
            key=entry.lead_id,
            value={
                "lead_id": entry.lead_id,
                "org_id": entry.organization_id,
                "activity_type": activity_type,
                "description": description,
                "created_by": user_id,
                "metadata": {"waitlist_id": entry.id},
                "timestamp": str(datetime.now(timezone.utc)),
            },
        )
    except Exception as e:
        logger.error(
            f"Failed to emit lead activity {activity_type} for lead {entry.lead_id}: {e}",
            exc_info=True,
        )
