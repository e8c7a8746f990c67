"""
Tests for reminder CRUD and the reminder dispatch loop
"""
from datetime import datetime, timedelta

import pytest

from conftest import FakeSmsGateway, auth_headers
from reminders import ReminderDispatcher, compose_sms_body, has_phone

NOW = datetime(2024, 6, 15, 8, 0, 0)


def insert_reminder(mongo_db, user, scheduled_for, **overrides):
    doc = {
        "userId": user["_id"],
        "type": "Medication",
        "title": "Take Metformin",
        "description": "500mg with breakfast",
        "scheduledFor": scheduled_for,
        "recurrence": "Once",
        "status": "Pending",
        "notificationPreference": "SMS",
        "metadata": {},
        "lastSent": None,
    }
    doc.update(overrides)
    doc["_id"] = mongo_db["reminder"].insert_one(doc).inserted_id
    return doc


def reload(mongo_db, reminder):
    return mongo_db["reminder"].find_one({"_id": reminder["_id"]})


def dispatcher(mongo_db, gateway, now=NOW):
    return ReminderDispatcher(mongo_db, gateway, clock=lambda: now, grace_seconds=60)


class TestPhoneCheck:
    @pytest.mark.parametrize("phone,expected", [
        ("5551234567", True),
        ("+1 (555) 123-4567", True),
        ("", False),
        (None, False),
        ("--- ()", False),
    ])
    def test_has_phone(self, phone, expected):
        assert has_phone({"phone": phone}) is expected


class TestReminderEndpoints:
    def test_create_sms_reminder(self, client, alice_headers):
        response = client.post("/api/reminders", json={
            "type": "Appointment",
            "title": "Dentist",
            "scheduledFor": "2030-01-15T09:30:00Z",
            "notificationPreference": "SMS",
            "metadata": {"doctorName": "Dr. Smile", "location": "Main St"},
        }, headers=alice_headers)

        assert response.status_code == 201
        reminder = response.json()["reminder"]
        assert reminder["status"] == "Pending"
        assert reminder["recurrence"] == "Once"
        assert reminder["scheduledFor"].startswith("2030-01-15T09:30:00")
        assert reminder["metadata"]["doctorName"] == "Dr. Smile"

    def test_missing_scheduled_for(self, client, alice_headers):
        response = client.post("/api/reminders", json={"type": "Test", "title": "Blood work"}, headers=alice_headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "scheduledFor (date/time) is required"

    def test_invalid_scheduled_for(self, client, alice_headers):
        response = client.post("/api/reminders", json={
            "type": "Test", "title": "Blood work", "scheduledFor": "next tuesday-ish",
        }, headers=alice_headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "scheduledFor is not a valid date/time"

    @pytest.mark.parametrize("phone", [None, "", "()- "])
    @pytest.mark.parametrize("preference", ["SMS", "SMS+Push"])
    def test_sms_requires_phone(self, client, make_user, phone, preference):
        make_user(uid="uid-nophone", email="nophone@example.com", phone=phone)
        response = client.post("/api/reminders", json={
            "type": "Medication", "title": "Pills", "scheduledFor": "2030-01-01T08:00:00",
            "notificationPreference": preference,
        }, headers=auth_headers("uid-nophone"))
        assert response.status_code == 400
        assert "no phone number" in response.json()["detail"]

    def test_push_reminder_without_phone(self, client, make_user):
        make_user(uid="uid-nophone", email="nophone@example.com", phone=None)
        response = client.post("/api/reminders", json={
            "type": "Medication", "title": "Pills", "scheduledFor": "2030-01-01T08:00:00",
            "notificationPreference": "Push",
        }, headers=auth_headers("uid-nophone"))
        assert response.status_code == 201

    def test_list_filters_and_sorts(self, client, alice_headers, mongo_db, test_user):
        insert_reminder(mongo_db, test_user, NOW + timedelta(days=2), title="Later")
        insert_reminder(mongo_db, test_user, NOW + timedelta(days=1), title="Sooner")
        insert_reminder(mongo_db, test_user, NOW + timedelta(days=3), title="Done", status="Completed")

        titles = [r["title"] for r in client.get("/api/reminders", headers=alice_headers).json()["reminders"]]
        assert titles == ["Sooner", "Later", "Done"]

        pending = client.get("/api/reminders", params={"status": "Pending"}, headers=alice_headers).json()["reminders"]
        assert [r["title"] for r in pending] == ["Sooner", "Later"]

        ranged = client.get("/api/reminders", params={
            "startDate": (NOW + timedelta(days=1, hours=12)).isoformat(),
        }, headers=alice_headers).json()["reminders"]
        assert [r["title"] for r in ranged] == ["Later", "Done"]

    def test_update_and_delete_are_owner_scoped(self, client, alice_headers, mongo_db, test_user, make_user):
        reminder = insert_reminder(mongo_db, test_user, NOW)
        make_user(uid="uid-mallory", email="mallory@example.com")
        other = auth_headers("uid-mallory")
        url = f"/api/reminders/{reminder['_id']}"

        assert client.put(url, json={"title": "Hijacked"}, headers=other).status_code == 404
        assert client.delete(url, headers=other).status_code == 404

        response = client.put(url, json={"title": "Take Metformin XR", "scheduledFor": "2030-02-01T10:00:00"}, headers=alice_headers)
        assert response.status_code == 200
        assert response.json()["reminder"]["title"] == "Take Metformin XR"
        assert reload(mongo_db, reminder)["scheduledFor"] == datetime(2030, 2, 1, 10, 0)

        assert client.delete(url, headers=alice_headers).status_code == 200
        assert reload(mongo_db, reminder) is None

    def test_unknown_reminder_id(self, client, alice_headers):
        assert client.delete("/api/reminders/not-an-id", headers=alice_headers).status_code == 404


class TestDispatchLoop:
    def test_due_sms_reminder_is_sent_and_completed(self, mongo_db, test_user, sms_gateway):
        reminder = insert_reminder(mongo_db, test_user, NOW - timedelta(seconds=30))

        due = dispatcher(mongo_db, sms_gateway).check_due_reminders()

        assert len(due) == 1
        assert sms_gateway.sent == [{"to": "5551234567", "body": compose_sms_body(reminder)}]
        saved = reload(mongo_db, reminder)
        assert saved["status"] == "Completed"
        assert saved["lastSent"]["channel"] == "SMS"
        assert saved["lastSent"]["sid"] == "SM0001"
        assert saved["lastSent"]["status"] == "queued"
        assert saved["lastSent"]["to"] == "5551234567"
        assert saved["lastSent"]["sentAt"] == NOW

    def test_outside_grace_window_is_not_processed(self, mongo_db, test_user, sms_gateway):
        stale = insert_reminder(mongo_db, test_user, NOW - timedelta(seconds=90))
        future = insert_reminder(mongo_db, test_user, NOW + timedelta(seconds=5))

        due = dispatcher(mongo_db, sms_gateway).check_due_reminders()

        assert due == []
        assert sms_gateway.sent == []
        assert reload(mongo_db, stale)["status"] == "Pending"
        assert reload(mongo_db, future)["status"] == "Pending"

    def test_window_bounds_are_inclusive(self, mongo_db, test_user, sms_gateway):
        insert_reminder(mongo_db, test_user, NOW - timedelta(seconds=60))
        insert_reminder(mongo_db, test_user, NOW)

        assert len(dispatcher(mongo_db, sms_gateway).check_due_reminders()) == 2
        assert len(sms_gateway.sent) == 2

    def test_only_pending_reminders(self, mongo_db, test_user, sms_gateway):
        insert_reminder(mongo_db, test_user, NOW, status="Cancelled")
        assert dispatcher(mongo_db, sms_gateway).check_due_reminders() == []

    def test_recurring_reminder_stays_pending(self, mongo_db, test_user, sms_gateway):
        reminder = insert_reminder(mongo_db, test_user, NOW, recurrence="Daily")

        dispatcher(mongo_db, sms_gateway).check_due_reminders()

        saved = reload(mongo_db, reminder)
        assert saved["status"] == "Pending"
        assert saved["lastSent"]["channel"] == "SMS"

    def test_user_without_phone_is_skipped(self, mongo_db, make_user, sms_gateway):
        user = make_user(uid="uid-nophone", email="nophone@example.com", phone=None)
        reminder = insert_reminder(mongo_db, user, NOW)

        dispatcher(mongo_db, sms_gateway).check_due_reminders()

        assert sms_gateway.sent == []
        assert reload(mongo_db, reminder)["status"] == "Pending"

    def test_unconfigured_gateway_is_skipped(self, mongo_db, test_user):
        gateway = FakeSmsGateway(available=False)
        reminder = insert_reminder(mongo_db, test_user, NOW)

        dispatcher(mongo_db, gateway).check_due_reminders()

        assert gateway.sent == []
        saved = reload(mongo_db, reminder)
        assert saved["status"] == "Pending"
        assert saved["lastSent"] is None

    def test_push_only_reminder_is_not_sent(self, mongo_db, test_user, sms_gateway):
        reminder = insert_reminder(mongo_db, test_user, NOW, notificationPreference="Push")
        dispatcher(mongo_db, sms_gateway).check_due_reminders()
        assert sms_gateway.sent == []
        assert reload(mongo_db, reminder)["status"] == "Pending"

    def test_one_failure_does_not_stop_the_batch(self, mongo_db, test_user, make_user):
        bad_user = make_user(uid="uid-bad", email="bad@example.com", phone="5550000000")
        gateway = FakeSmsGateway(fail_for={"5550000000"})
        failing = insert_reminder(mongo_db, bad_user, NOW - timedelta(seconds=20))
        ok = insert_reminder(mongo_db, test_user, NOW - timedelta(seconds=10))

        dispatcher(mongo_db, gateway).check_due_reminders()

        assert reload(mongo_db, failing)["status"] == "Pending"
        assert reload(mongo_db, ok)["status"] == "Completed"
        assert [m["to"] for m in gateway.sent] == ["5551234567"]

    def test_missed_window_is_never_retried(self, mongo_db, test_user):
        gateway = FakeSmsGateway(available=False)
        reminder = insert_reminder(mongo_db, test_user, NOW - timedelta(seconds=30))
        dispatcher(mongo_db, gateway).check_due_reminders()

        gateway.available = True
        dispatcher(mongo_db, gateway, now=NOW + timedelta(seconds=60)).check_due_reminders()

        assert gateway.sent == []
        assert reload(mongo_db, reminder)["status"] == "Pending"

    def test_message_body(self):
        body = compose_sms_body({
            "title": "Take Metformin",
            "description": "500mg with breakfast",
            "scheduledFor": datetime(2024, 6, 15, 8, 0),
        })
        assert body == "Smart Health Vault Reminder: Take Metformin. 500mg with breakfast. Scheduled for Jun 15, 2024 08:00 AM UTC."
        assert "None" not in compose_sms_body({"title": "Walk", "scheduledFor": NOW})


class TestReminderScenario:
    def test_register_create_and_dispatch(self, client, mongo_db, sms_gateway):
        response = client.post("/api/auth/register", json={
            "firebaseUid": "uid-a",
            "email": "a@example.com",
            "fullName": "User A",
            "phone": "5551234567",
        })
        assert response.status_code == 201

        now = datetime.utcnow().replace(microsecond=0)
        created = client.post("/api/reminders", json={
            "type": "Medication",
            "title": "Vitamin D",
            "scheduledFor": now.isoformat(),
            "notificationPreference": "SMS",
        }, headers=auth_headers("uid-a"))
        assert created.status_code == 201

        dispatcher(mongo_db, sms_gateway, now=now + timedelta(seconds=1)).check_due_reminders()

        reminder = client.get("/api/reminders", headers=auth_headers("uid-a")).json()["reminders"][0]
        assert reminder["status"] == "Completed"
        assert reminder["lastSent"]["channel"] == "SMS"
        assert sms_gateway.sent[0]["to"] == "5551234567"
