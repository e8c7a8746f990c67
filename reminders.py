"""
Reminder store operations and the reminder dispatch loop.

The dispatch loop is a single interval job: every tick it looks for Pending
reminders scheduled within the last grace window (default one minute) and
sends an SMS for those that asked for one. A reminder whose window passes
without a successful send stays Pending and is not retried.
"""
import logging
import re
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from pymongo import ASCENDING, ReturnDocument
from pymongo.database import Database

from config import Config
from database import create_document, get_documents, object_id
from gateways import NotificationGateway
from schemas import LastSent, Reminder, ReminderCreate, ReminderUpdate, parse_datetime as parse_any_datetime

logger = logging.getLogger(__name__)

COLLECTION = "reminder"
SMS_PREFERENCES = ("SMS", "SMS+Push")
LIST_LIMIT = 100


class ReminderValidationError(ValueError):
    pass


def parse_datetime(value: Any, field: str = "scheduledFor") -> datetime:
    try:
        return parse_any_datetime(value, field)
    except ValueError as e:
        raise ReminderValidationError(str(e))


def has_phone(user: Dict[str, Any]) -> bool:
    return bool(re.sub(r"\D", "", user.get("phone") or ""))


def _check_sms_allowed(preference: Optional[str], user: Dict[str, Any]) -> None:
    if preference and "SMS" in preference and not has_phone(user):
        raise ReminderValidationError("Cannot create SMS reminder: user has no phone number on profile")


# ---------------------- CRUD ----------------------
def create_reminder(db: Database, user: Dict[str, Any], data: ReminderCreate) -> Dict[str, Any]:
    scheduled_for = parse_datetime(data.scheduled_for)
    _check_sms_allowed(data.notification_preference, user)
    reminder = Reminder(
        user_id=user["_id"],
        scheduled_for=scheduled_for,
        **data.model_dump(exclude={"scheduled_for"}),
    )
    reminder_id = create_document(db, COLLECTION, reminder)
    return db[COLLECTION].find_one({"_id": object_id(reminder_id)})


def list_reminders(
    db: Database,
    user: Dict[str, Any],
    status: Optional[str] = None,
    reminder_type: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {"userId": user["_id"]}
    if status:
        query["status"] = status
    if reminder_type:
        query["type"] = reminder_type
    if start_date or end_date:
        query["scheduledFor"] = {}
        if start_date:
            query["scheduledFor"]["$gte"] = parse_datetime(start_date, "startDate")
        if end_date:
            query["scheduledFor"]["$lte"] = parse_datetime(end_date, "endDate")
    return get_documents(db, COLLECTION, query, limit=LIST_LIMIT, sort=[("scheduledFor", ASCENDING)])


def update_reminder(db: Database, user: Dict[str, Any], reminder_id: str, data: ReminderUpdate) -> Optional[Dict[str, Any]]:
    _id = object_id(reminder_id)
    if _id is None:
        return None
    changes = data.model_dump(by_alias=True, exclude_none=True)
    if "scheduledFor" in changes:
        changes["scheduledFor"] = parse_datetime(changes["scheduledFor"])
    _check_sms_allowed(changes.get("notificationPreference"), user)
    changes["updatedAt"] = datetime.utcnow()
    return db[COLLECTION].find_one_and_update(
        {"_id": _id, "userId": user["_id"]},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )


def delete_reminder(db: Database, user: Dict[str, Any], reminder_id: str) -> bool:
    _id = object_id(reminder_id)
    if _id is None:
        return False
    return db[COLLECTION].find_one_and_delete({"_id": _id, "userId": user["_id"]}) is not None


# ---------------------- Dispatch ----------------------
def compose_sms_body(reminder: Dict[str, Any]) -> str:
    scheduled = reminder["scheduledFor"].strftime("%b %d, %Y %I:%M %p UTC")
    description = f" {reminder['description']}." if reminder.get("description") else ""
    return f"Smart Health Vault Reminder: {reminder['title']}.{description} Scheduled for {scheduled}."


class ReminderDispatcher:
    def __init__(
        self,
        db: Database,
        gateway: NotificationGateway,
        clock: Callable[[], datetime] = datetime.utcnow,
        grace_seconds: int = Config.REMINDER_GRACE_SECONDS,
    ):
        self.db = db
        self.gateway = gateway
        self.clock = clock
        self.grace = timedelta(seconds=grace_seconds)

    def due_reminders(self, now: datetime) -> List[Dict[str, Any]]:
        """Pending reminders scheduled in [now - grace, now], each with its owner under `user`."""
        reminders = list(
            self.db[COLLECTION].find(
                {"status": "Pending", "scheduledFor": {"$gte": now - self.grace, "$lte": now}}
            )
        )
        owner_ids = list({r["userId"] for r in reminders})
        owners = {
            u["_id"]: u
            for u in self.db["user"].find(
                {"_id": {"$in": owner_ids}}, {"email": 1, "fullName": 1, "phone": 1}
            )
        }
        for reminder in reminders:
            reminder["user"] = owners.get(reminder["userId"])
        return reminders

    def check_due_reminders(self) -> List[Dict[str, Any]]:
        now = self.clock()
        due = self.due_reminders(now)
        logger.info(f"Found {len(due)} due reminders between {now - self.grace} and {now}")
        for reminder in due:
            try:
                self._process(reminder, now)
            except Exception:
                logger.exception(f"Error processing reminder {reminder['_id']}")
        return due

    def _process(self, reminder: Dict[str, Any], now: datetime) -> None:
        user = reminder.get("user")
        if user is None:
            logger.warning(f"Reminder {reminder['_id']} has no owner; skipping")
            return
        if reminder.get("notificationPreference") not in SMS_PREFERENCES:
            # Push and Email delivery are not implemented
            logger.debug(f"Reminder {reminder['_id']} prefers {reminder.get('notificationPreference')}; nothing to send")
            return
        if not has_phone(user):
            logger.warning(f"User {user['_id']} has no phone number; skipping SMS for reminder {reminder['_id']}")
            return
        if not self.gateway.is_available():
            logger.warning(f"SMS gateway is not configured; cannot send reminder {reminder['_id']}")
            return

        body = compose_sms_body(reminder)
        logger.info(f"Sending SMS for reminder {reminder['_id']} to {user['phone']}")
        result = self.gateway.send_sms(to=user["phone"], body=body)
        logger.info(f"Sent SMS for reminder {reminder['_id']}, sid={result.sid}, status={result.status}")

        last_sent = LastSent(
            channel="SMS",
            sid=result.sid,
            status=result.status,
            to=result.to or user["phone"],
            body=body,
            sent_at=now,
        )
        changes = {"lastSent": last_sent.model_dump(by_alias=True), "updatedAt": now}
        # Recurring reminders are not rescheduled; they stay Pending after a send
        if reminder.get("recurrence", "Once") == "Once":
            changes["status"] = "Completed"
        self.db[COLLECTION].update_one({"_id": reminder["_id"]}, {"$set": changes})


def start_scheduler(dispatcher: ReminderDispatcher, interval_seconds: int = Config.REMINDER_INTERVAL_SECONDS) -> BackgroundScheduler:
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        dispatcher.check_due_reminders,
        IntervalTrigger(seconds=interval_seconds),
        id="check_due_reminders",
        name="Check due reminders",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info(f"Reminder scheduler started; checking every {interval_seconds}s")
    return scheduler


if __name__ == "__main__":
    # One-off check, e.g. from cron or while debugging SMS delivery
    from database import db
    from gateways import build_notification_gateway

    logging.basicConfig(level=Config.LOG_LEVEL)
    checked = ReminderDispatcher(db, build_notification_gateway()).check_due_reminders()
    print(f"Checked {len(checked)} due reminders")
