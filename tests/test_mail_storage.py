import io
import smtplib

import pytest
from fastapi import UploadFile
from starlette.datastructures import Headers

from crm.mail import EmailDeliveryError, MailAttachment, OutgoingEmail, SmtpMailer
from crm.storage import FileStorage, UploadRejected, sanitize_filename, validate_upload

def make_upload(name: str, content: bytes, content_type: str) -> UploadFile:
    return UploadFile(file=io.BytesIO(content), filename=name, headers=Headers({"content-type": content_type}))

# ---- Mail ----

def test_build_message(tmp_path):
    attachment = tmp_path / "quote.pdf"
    attachment.write_bytes(b"%PDF-1.4")
    mailer = SmtpMailer(host="smtp.example.com", from_email="crm@example.com", brand="Acme CRM")

    msg = mailer.build_message(
        OutgoingEmail(
            to="jo@client.com",
            cc="boss@client.com",
            subject="Quote",
            html="<p>Hi</p>",
            reply_to="sam@example.com",
            sender_name="Sam",
            attachments=[MailAttachment(filename="quote.pdf", path=str(attachment), content_type="application/pdf")],
        )
    )

    assert msg["From"] == "Sam from Acme CRM <crm@example.com>"
    assert msg["Reply-To"] == "sam@example.com"
    assert msg["Cc"] == "boss@client.com"
    assert [part.get_filename() for part in msg.iter_attachments()] == ["quote.pdf"]

def test_send_without_sender_fails():
    mailer = SmtpMailer(host="smtp.example.com", username=None, from_email=None)
    with pytest.raises(EmailDeliveryError):
        mailer.send(OutgoingEmail(to="jo@client.com", subject="Hi", html="Hi"))

def test_send_wraps_smtp_errors(monkeypatch):
    def refuse(*args, **kwargs):
        raise smtplib.SMTPConnectError(421, "try later")

    monkeypatch.setattr("crm.mail.smtplib.SMTP", refuse)
    mailer = SmtpMailer(host="smtp.example.com", from_email="crm@example.com")
    with pytest.raises(EmailDeliveryError):
        mailer.send(OutgoingEmail(to="jo@client.com", subject="Hi", html="Hi"))

def test_send_delivers_to_every_recipient(monkeypatch):
    delivered = {}

    class FakeSMTP:
        def __init__(self, host, port, timeout=None):
            delivered["host"] = host

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def starttls(self):
            delivered["tls"] = True

        def login(self, username, password):
            delivered["login"] = username

        def send_message(self, msg, to_addrs=None):
            delivered["to"] = to_addrs

    monkeypatch.setattr("crm.mail.smtplib.SMTP", FakeSMTP)
    mailer = SmtpMailer(host="smtp.example.com", username="crm", password="pw", from_email="crm@example.com")
    mailer.send(OutgoingEmail(to="a@x.com, b@x.com", cc="c@x.com", bcc="d@x.com", subject="Hi", html="Hi"))

    assert delivered["to"] == ["a@x.com", "b@x.com", "c@x.com", "d@x.com"]
    assert delivered["login"] == "crm"

# ---- Storage ----

def test_sanitize_filename():
    assert sanitize_filename("../../etc/passwd") == "passwd"
    assert sanitize_filename("my quote (1).pdf") == "my_quote__1_.pdf"

def test_validate_upload():
    validate_upload("a.pdf", "application/pdf", 10, 100)
    with pytest.raises(UploadRejected):
        validate_upload("a.pdf", "application/pdf", 101, 100)
    with pytest.raises(UploadRejected):
        validate_upload("a.exe", "application/octet-stream", 10, 100)
    with pytest.raises(UploadRejected):
        validate_upload("a.pdf", "text/plain", 10, 100)

def test_save_resolve_and_delete(tmp_path):
    storage = FileStorage(upload_dir=str(tmp_path / "uploads"), base_url="http://files.example.com/")
    stored = storage.save(make_upload("scan.png", b"\x89PNG", "image/png"))

    name = stored.url.rsplit("/", 1)[-1]
    assert stored.url == f"http://files.example.com/uploads/{name}"
    assert stored.filename == "scan.png"
    assert storage.resolve(name).read_bytes() == b"\x89PNG"
    assert storage.resolve("../secrets.txt") is None

    storage.delete(stored.path)
    assert storage.resolve(name) is None
    # A second delete only logs
    storage.delete(stored.path)

def test_save_rejects_large_files(tmp_path):
    storage = FileStorage(upload_dir=str(tmp_path / "uploads"), base_url="http://testserver", max_bytes=4)
    with pytest.raises(UploadRejected):
        storage.save(make_upload("big.pdf", b"%PDF-1.4", "application/pdf"))

def test_unreadable_attachment_is_a_delivery_error(monkeypatch, tmp_path):
    def connect(*args, **kwargs):
        raise AssertionError("SMTP must not be contacted")

    monkeypatch.setattr("crm.mail.smtplib.SMTP", connect)
    mailer = SmtpMailer(host="smtp.example.com", from_email="crm@example.com")
    missing = MailAttachment(filename="gone.pdf", path=str(tmp_path / "gone.pdf"), content_type="application/pdf")

    with pytest.raises(EmailDeliveryError):
        mailer.send(OutgoingEmail(to="jo@client.com", subject="Hi", html="Hi", attachments=[missing]))

class CountingReader(io.BytesIO):
    def __init__(self, content: bytes):
        super().__init__(content)
        self.requested = []

    def read(self, size=-1):
        self.requested.append(size)
        return super().read(size)

def test_save_reads_at_most_one_byte_past_the_limit(tmp_path):
    storage = FileStorage(upload_dir=str(tmp_path / "uploads"), base_url="http://testserver", max_bytes=4)

    body = CountingReader(b"%PDF" + b"x" * 1000)
    upload = UploadFile(file=body, filename="big.pdf", headers=Headers({"content-type": "application/pdf"}))
    with pytest.raises(UploadRejected):
        storage.save(upload)
    assert body.requested == [5]

    stored = storage.save(make_upload("tiny.pdf", b"%PDF", "application/pdf"))
    assert storage.resolve(stored.url.rsplit("/", 1)[-1]).read_bytes() == b"%PDF"
