from pathlib import Path
import uuid

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, select

from crm.activities.models import ActivityType, LeadActivity
from crm.database import utcnow
from crm.leads.models import Lead
from crm.storage import FileStorage
from crm.users.models import User
from tests.conftest import FakeMailer, auth_headers, make_lead

PDF = ("proposal.pdf", b"%PDF-1.4 proposal", "application/pdf")

@pytest.fixture(name="lead")
def lead_fixture(session: Session, admin: User, sales: User, other_sales: User) -> Lead:
    # Both sales users can see this lead
    return make_lead(session, admin, [sales, other_sales], title="Shared deal", company="Acme")

def stored_files(storage: FileStorage) -> list:
    if not storage.upload_dir.exists():
        return []
    return sorted(path.name for path in storage.upload_dir.iterdir())

# ---- Notes ----

def test_note_with_attachment(client: TestClient, storage: FileStorage, lead: Lead, sales: User):
    headers = auth_headers(sales)

    # 1. Create
    response = client.post(
        f"/leads/{lead.id}/notes",
        data={"content": "Client wants a discount"},
        files={"attachment": PDF},
        headers=headers,
    )
    assert response.status_code == 201
    note = response.json()
    assert note["type"] == "NOTE"
    assert note["title"] == "Note"
    assert note["description"] == "Client wants a discount"
    assert note["scheduled_at"] is None
    assert note["created_by"]["name"] == sales.name
    assert note["meta"]["attachment_name"] == "proposal.pdf"
    assert note["meta"]["attachment_url"].startswith("http://testserver/uploads/")
    assert Path(note["meta"]["attachment_path"]).is_file()

    # 2. Served inline
    stored_name = note["meta"]["attachment_url"].rsplit("/", 1)[-1]
    response = client.get(f"/uploads/{stored_name}")
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.headers["content-disposition"].startswith("inline")

    # 3. Listed
    response = client.get(f"/leads/{lead.id}/notes", headers=headers)
    assert [item["id"] for item in response.json()] == [note["id"]]

    # 4. Removing the attachment deletes the file
    response = client.patch(
        f"/leads/{lead.id}/notes/{note['id']}",
        data={"content": "Discount agreed", "remove_attachment": "true"},
        headers=headers,
    )
    assert response.status_code == 200
    assert response.json()["meta"]["attachment_url"] is None
    assert stored_files(storage) == []

def test_note_replacing_attachment_deletes_old_file(client: TestClient, storage: FileStorage, lead: Lead, sales: User):
    headers = auth_headers(sales)
    note = client.post(
        f"/leads/{lead.id}/notes", data={"content": "v1"}, files={"attachment": PDF}, headers=headers
    ).json()

    response = client.patch(
        f"/leads/{lead.id}/notes/{note['id']}",
        data={"content": "v2"},
        files={"attachment": ("photo.png", b"\x89PNG", "image/png")},
        headers=headers,
    )
    assert response.status_code == 200
    assert response.json()["meta"]["attachment_name"] == "photo.png"
    files = stored_files(storage)
    assert len(files) == 1 and files[0].endswith("photo.png")

    response = client.delete(f"/leads/{lead.id}/notes/{note['id']}", headers=headers)
    assert response.status_code == 200
    assert stored_files(storage) == []

def test_note_rejects_unsupported_upload(client: TestClient, storage: FileStorage, lead: Lead, sales: User):
    response = client.post(
        f"/leads/{lead.id}/notes",
        data={"content": "Script"},
        files={"attachment": ("run.sh", b"echo hi", "text/x-sh")},
        headers=auth_headers(sales),
    )
    assert response.status_code == 400
    assert stored_files(storage) == []

def test_only_creator_or_admin_can_change_note(
    client: TestClient, session: Session, lead: Lead, admin: User, sales: User, other_sales: User
):
    note = client.post(f"/leads/{lead.id}/notes", data={"content": "Mine"}, headers=auth_headers(sales)).json()
    url = f"/leads/{lead.id}/notes/{note['id']}"

    response = client.patch(url, data={"content": "Hijacked"}, headers=auth_headers(other_sales))
    assert response.status_code == 403
    assert client.delete(url, headers=auth_headers(other_sales)).status_code == 403

    stored = session.get(LeadActivity, uuid.UUID(note["id"]))
    session.refresh(stored)
    assert stored.description == "Mine"

    response = client.patch(url, data={"content": "Edited by admin"}, headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.json()["description"] == "Edited by admin"

def test_activities_on_hidden_lead_are_forbidden(client: TestClient, session: Session, admin: User, sales: User):
    hidden = make_lead(session, admin, title="Not yours")
    assert client.get(f"/leads/{hidden.id}/notes", headers=auth_headers(sales)).status_code == 403
    assert client.get(f"/leads/{uuid.uuid4()}/notes", headers=auth_headers(sales)).status_code == 404

def test_note_from_other_lead_is_404(client: TestClient, session: Session, lead: Lead, admin: User):
    other = make_lead(session, admin, title="Other")
    note = client.post(f"/leads/{other.id}/notes", data={"content": "Elsewhere"}, headers=auth_headers(admin)).json()
    assert client.get(f"/leads/{lead.id}/notes/{note['id']}", headers=auth_headers(admin)).status_code == 404

# ---- Calls and meetings ----

def test_call_lifecycle(client: TestClient, lead: Lead, sales: User, other_sales: User):
    headers = auth_headers(sales)

    response = client.post(
        f"/leads/{lead.id}/calls",
        json={"title": "Intro call", "meta": {"phone_number": "+62 811", "duration_minutes": 15}},
        headers=headers,
    )
    assert response.status_code == 201
    call = response.json()
    assert call["type"] == "CALL"
    assert call["scheduled_at"] is not None
    assert call["is_completed"] is False
    assert call["meta"]["phone_number"] == "+62 811"

    url = f"/leads/{lead.id}/calls/{call['id']}"
    assert client.patch(url, json={"title": "Nope"}, headers=auth_headers(other_sales)).status_code == 403

    response = client.patch(url, json={"title": "Intro call", "is_completed": True}, headers=headers)
    assert response.status_code == 200
    assert response.json()["is_completed"] is True
    assert response.json()["meta"]["duration_minutes"] == 15

    assert client.delete(url, headers=auth_headers(other_sales)).status_code == 403
    assert client.delete(url, headers=headers).status_code == 200
    assert client.get(url, headers=headers).status_code == 404

def test_call_requires_title(client: TestClient, lead: Lead, sales: User):
    response = client.post(f"/leads/{lead.id}/calls", json={"description": "?"}, headers=auth_headers(sales))
    assert response.status_code == 400

def test_meeting_lifecycle(client: TestClient, lead: Lead, sales: User):
    headers = auth_headers(sales)
    response = client.post(
        f"/leads/{lead.id}/meetings",
        json={
            "title": "Demo",
            "location": "Acme HQ",
            "scheduled_at": "2030-05-01T10:00:00Z",
            "meta": {"attendees": ["jo@acme.com"], "meeting_link": "https://meet.example.com/x"},
        },
        headers=headers,
    )
    assert response.status_code == 201
    meeting = response.json()
    assert meeting["location"] == "Acme HQ"
    assert meeting["meta"]["attendees"] == ["jo@acme.com"]

    response = client.patch(
        f"/leads/{lead.id}/meetings/{meeting['id']}",
        json={"title": "Demo v2", "location": "Online"},
        headers=headers,
    )
    assert response.json()["title"] == "Demo v2"
    assert response.json()["location"] == "Online"
    assert response.json()["meta"]["attendees"] == ["jo@acme.com"]

    response = client.get(f"/leads/{lead.id}/meetings", headers=headers)
    assert [item["title"] for item in response.json()] == ["Demo v2"]

# ---- Emails ----

def test_send_email(client: TestClient, session: Session, mailer: FakeMailer, lead: Lead, sales: User):
    response = client.post(
        f"/leads/{lead.id}/emails",
        data={"to": "jo@acme.com", "subject": "Proposal", "message": "<p>Attached</p>", "cc": "boss@acme.com"},
        files={"file": PDF},
        headers=auth_headers(sales),
    )
    assert response.status_code == 201
    email = response.json()
    assert email["type"] == "EMAIL"
    assert email["title"] == "Proposal"
    assert email["is_completed"] is True
    assert email["scheduled_at"] is None
    assert email["meta"]["status"] == "SENT"
    assert email["meta"]["from_label"].startswith(sales.name)
    assert email["meta"]["attachment_name"] == "proposal.pdf"

    assert len(mailer.sent) == 1
    sent = mailer.sent[0]
    assert sent.to == "jo@acme.com"
    assert sent.cc == "boss@acme.com"
    assert sent.sender_name == sales.name
    assert [attachment.filename for attachment in sent.attachments] == ["proposal.pdf"]

def test_email_failure_leaves_nothing_behind(
    client: TestClient, session: Session, mailer: FakeMailer, storage: FileStorage, lead: Lead, sales: User
):
    mailer.fail = True
    response = client.post(
        f"/leads/{lead.id}/emails",
        data={"to": "jo@acme.com", "subject": "Proposal", "message": "Hi"},
        files={"file": PDF},
        headers=auth_headers(sales),
    )
    assert response.status_code == 500
    assert session.exec(select(LeadActivity).where(LeadActivity.type == ActivityType.EMAIL)).all() == []
    assert stored_files(storage) == []

def test_email_requires_fields(client: TestClient, lead: Lead, sales: User):
    response = client.post(
        f"/leads/{lead.id}/emails", data={"to": "jo@acme.com", "subject": "No body"}, headers=auth_headers(sales)
    )
    assert response.status_code == 400

def test_draft_then_send(client: TestClient, mailer: FakeMailer, lead: Lead, sales: User):
    headers = auth_headers(sales)

    # 1. Save a draft
    response = client.post(
        f"/leads/{lead.id}/emails",
        data={"to": "jo@acme.com", "subject": "Follow up", "message": "Draft body", "is_draft": "true"},
        headers=headers,
    )
    assert response.status_code == 201
    draft = response.json()
    assert draft["is_completed"] is False
    assert draft["meta"]["status"] == "DRAFT"
    assert mailer.sent == []

    # 2. Edit the draft without sending
    url = f"/leads/{lead.id}/emails/{draft['id']}"
    response = client.patch(url, data={"message": "Better body"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["meta"]["message_body"] == "Better body"
    assert response.json()["meta"]["to"] == "jo@acme.com"
    assert mailer.sent == []

    # 3. Send it
    response = client.patch(url, data={"is_draft": "false"}, headers=headers)
    assert response.status_code == 200
    sent = response.json()
    assert sent["meta"]["status"] == "SENT"
    assert sent["is_completed"] is True
    assert len(mailer.sent) == 1
    assert mailer.sent[0].html == "Better body"

def test_sending_draft_failure_keeps_draft(client: TestClient, mailer: FakeMailer, lead: Lead, sales: User):
    headers = auth_headers(sales)
    draft = client.post(
        f"/leads/{lead.id}/emails",
        data={"to": "jo@acme.com", "subject": "Later", "message": "Body", "is_draft": "true"},
        headers=headers,
    ).json()

    mailer.fail = True
    url = f"/leads/{lead.id}/emails/{draft['id']}"
    assert client.patch(url, data={"is_draft": "false"}, headers=headers).status_code == 500
    assert client.get(url, headers=headers).json()["meta"]["status"] == "DRAFT"

# ---- Invoices ----

def test_invoice_lifecycle(client: TestClient, lead: Lead, sales: User, other_sales: User):
    headers = auth_headers(sales)
    now = utcnow()
    prefix = f"INV/{now.year}/{now.month:02d}/"

    # 1. Two invoices in the same month get consecutive numbers
    first = client.post(
        f"/leads/{lead.id}/invoices",
        json={
            "meta": {
                "status": "unpaid",
                "items": [{"description": "Licence", "quantity": 2, "price": 500}],
                "subtotal": 1000,
                "tax": 110,
                "total_amount": 1110,
                "billed_to": "Acme",
            }
        },
        headers=headers,
    )
    assert first.status_code == 201
    second = client.post(f"/leads/{lead.id}/invoices", json={"status": "draft"}, headers=headers)
    assert second.status_code == 201

    assert first.json()["title"] == f"{prefix}0001"
    assert second.json()["title"] == f"{prefix}0002"
    invoice = first.json()
    assert invoice["description"] == "Invoice"
    assert invoice["is_completed"] is False
    assert invoice["meta"]["total_amount"] == 1110
    assert invoice["meta"]["invoice_date"] is not None

    # 2. Only the creator or an admin may update
    url = f"/leads/{lead.id}/invoices/{invoice['id']}"
    assert client.patch(url, json={"status": "paid"}, headers=auth_headers(other_sales)).status_code == 403

    # 3. Marking paid completes it and keeps the other fields
    response = client.patch(url, json={"meta": {"status": "paid"}}, headers=headers)
    assert response.status_code == 200
    assert response.json()["is_completed"] is True
    assert response.json()["meta"]["status"] == "paid"
    assert response.json()["meta"]["billed_to"] == "Acme"
    assert response.json()["title"] == f"{prefix}0001"

    response = client.get(f"/leads/{lead.id}/invoices", headers=headers)
    assert len(response.json()) == 2

    assert client.delete(url, headers=headers).status_code == 200
    assert client.get(url, headers=headers).status_code == 404

# ---- Timeline and feed ----

def test_generic_activity_and_timeline(client: TestClient, lead: Lead, sales: User):
    headers = auth_headers(sales)

    response = client.post(
        f"/leads/{lead.id}/activities",
        json={"type": "TASK", "content": "Prepare contract", "meta": {"description": "Use template B"}},
        headers=headers,
    )
    assert response.status_code == 201
    task = response.json()
    assert task["title"] == "Prepare contract"
    assert task["description"] == "Use template B"

    assert client.post(
        f"/leads/{lead.id}/activities", json={"type": "TASK"}, headers=headers
    ).status_code == 400

    client.post(f"/leads/{lead.id}/notes", data={"content": "Side note"}, headers=headers)
    response = client.get(f"/leads/{lead.id}/activities", headers=headers)
    assert {item["type"] for item in response.json()} == {"TASK", "NOTE"}

def test_recent_feed_is_scoped(client: TestClient, session: Session, admin: User, sales: User, other_sales: User):
    mine = make_lead(session, sales, title="Mine")
    theirs = make_lead(session, other_sales, title="Theirs")
    client.post(f"/leads/{mine.id}/notes", data={"content": "On my lead"}, headers=auth_headers(sales))
    client.post(f"/leads/{theirs.id}/notes", data={"content": "On their lead"}, headers=auth_headers(other_sales))

    response = client.get("/activities", headers=auth_headers(sales))
    assert response.status_code == 200
    items = response.json()
    assert [item["description"] for item in items] == ["On my lead"]
    assert items[0]["lead"]["title"] == "Mine"

    response = client.get("/activities", params={"limit": 1}, headers=auth_headers(admin))
    assert len(response.json()) == 1

def test_generic_activity_rejects_malformed_meta(client: TestClient, session: Session, lead: Lead, sales: User):
    headers = auth_headers(sales)

    response = client.post(
        f"/leads/{lead.id}/activities",
        json={"type": "CALL", "title": "Intro call", "meta": {"duration_minutes": "15 min"}},
        headers=headers,
    )
    assert response.status_code == 400
    assert session.exec(select(LeadActivity)).all() == []

    # Valid meta is stored in its typed shape and lists cleanly
    response = client.post(
        f"/leads/{lead.id}/activities",
        json={"type": "CALL", "title": "Intro call", "meta": {"duration_minutes": "15"}},
        headers=headers,
    )
    assert response.status_code == 201
    assert response.json()["meta"]["duration_minutes"] == 15

    assert client.get(f"/leads/{lead.id}/activities", headers=headers).status_code == 200
    assert client.get(f"/leads/{lead.id}/calls", headers=headers).status_code == 200
    assert client.get("/activities", headers=headers).status_code == 200

# ---- Changes by someone other than the creator ----

def test_only_creator_or_admin_can_change_meeting(
    client: TestClient, session: Session, lead: Lead, sales: User, other_sales: User
):
    meeting = client.post(
        f"/leads/{lead.id}/meetings", json={"title": "Demo", "location": "Acme HQ"}, headers=auth_headers(sales)
    ).json()
    url = f"/leads/{lead.id}/meetings/{meeting['id']}"

    response = client.patch(url, json={"title": "Hijacked", "location": "Elsewhere"}, headers=auth_headers(other_sales))
    assert response.status_code == 403
    assert client.delete(url, headers=auth_headers(other_sales)).status_code == 403

    stored = client.get(url, headers=auth_headers(sales)).json()
    assert stored["title"] == "Demo"
    assert stored["location"] == "Acme HQ"

def test_only_creator_or_admin_can_change_email(
    client: TestClient, lead: Lead, sales: User, other_sales: User
):
    email = client.post(
        f"/leads/{lead.id}/emails",
        data={"to": "jo@acme.com", "subject": "Proposal", "message": "Attached"},
        files={"file": PDF},
        headers=auth_headers(sales),
    ).json()
    url = f"/leads/{lead.id}/emails/{email['id']}"

    response = client.patch(url, data={"subject": "Hijacked"}, headers=auth_headers(other_sales))
    assert response.status_code == 403
    assert client.delete(url, headers=auth_headers(other_sales)).status_code == 403

    stored = client.get(url, headers=auth_headers(sales)).json()
    assert stored["title"] == "Proposal"
    assert stored["meta"]["status"] == "SENT"
    assert Path(stored["meta"]["attachment_path"]).is_file()

def test_only_creator_or_admin_can_delete_invoice(
    client: TestClient, lead: Lead, admin: User, sales: User, other_sales: User
):
    invoice = client.post(
        f"/leads/{lead.id}/invoices", json={"status": "unpaid", "total_amount": 900}, headers=auth_headers(sales)
    ).json()
    url = f"/leads/{lead.id}/invoices/{invoice['id']}"

    assert client.delete(url, headers=auth_headers(other_sales)).status_code == 403

    stored = client.get(url, headers=auth_headers(sales)).json()
    assert stored["title"] == invoice["title"]
    assert stored["meta"]["total_amount"] == 900

    assert client.delete(url, headers=auth_headers(admin)).status_code == 200
