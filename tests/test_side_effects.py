"""Tests for the notification email and the remote backup client."""

import json

import httpx
import pytest

from voters.shared import VoteRecord
from voters.dispatch_worker import mailer as mailer_module
from voters.dispatch_worker.mailer import (
    Mailer,
    generate_mail,
    DONE_SUBJECT,
    CONFIRM_SUBJECT,
)
from voters.dispatch_worker.backup_client import BackupClient


FINALIZED = VoteRecord(
    id="https://voters.test/token-1",
    identity="alice@example.org",
    nationality="FR",
    answers={"name": "Alice"},
    created="2024-01-15T10:00:00+00:00",
    index=3,
)

REGISTERED = VoteRecord(id="https://voters.test/token-2", identity="bob@example.org")


class FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.started_tls = False
        self.logged_in = None
        self.messages = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.started_tls = True

    def login(self, username, password):
        self.logged_in = (username, password)

    def send_message(self, message):
        self.messages.append(message)


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    monkeypatch.setattr(mailer_module.smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


class TestGenerateMail:
    def test_finalized_vote_gets_done_email(self):
        message = generate_mail(FINALIZED, "noreply@voters.test", "Voters", "https://app.test")

        assert message["Subject"] == DONE_SUBJECT
        assert message["To"] == "alice@example.org"
        assert message["From"] == "Voters <noreply@voters.test>"
        body = message.get_content()
        assert "voter number 3" in body
        assert "https://app.test/voters/FR" in body

    def test_registered_vote_gets_confirmation_email(self):
        message = generate_mail(REGISTERED, "noreply@voters.test", "Voters", "https://app.test")

        assert message["Subject"] == CONFIRM_SUBJECT
        assert message["To"] == "bob@example.org"
        assert "https://app.test/voters" in message.get_content()


class TestMailer:
    def test_send_over_smtp(self, fake_smtp):
        mailer = Mailer(host="smtp.test", port=2525, username="user", password="pass", starttls=True, timeout=5)

        mailer.send_vote_mail(FINALIZED)

        smtp = fake_smtp.instances[0]
        assert (smtp.host, smtp.port, smtp.timeout) == ("smtp.test", 2525, 5)
        assert smtp.started_tls
        assert smtp.logged_in == ("user", "pass")
        assert smtp.messages[0]["Subject"] == DONE_SUBJECT

    def test_no_login_without_credentials(self, fake_smtp):
        mailer = Mailer(host="smtp.test", port=25, username="", password="", starttls=False, timeout=5)

        mailer.send_vote_mail(REGISTERED)

        smtp = fake_smtp.instances[0]
        assert not smtp.started_tls
        assert smtp.logged_in is None
        assert smtp.messages[0]["Subject"] == CONFIRM_SUBJECT

    def test_missing_host(self, fake_smtp):
        mailer = Mailer(host="", port=25, username="", password="", starttls=False, timeout=5)

        with pytest.raises(RuntimeError):
            mailer.send_vote_mail(FINALIZED)

        assert fake_smtp.instances == []


class TestBackupClient:
    def test_posts_record_with_bearer_token(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(201)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        backup = BackupClient(url="https://backup.test/votes", token="s3cret", timeout=5, client=client)

        backup.backup(FINALIZED)

        request = requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://backup.test/votes"
        assert request.headers["Authorization"] == "Bearer s3cret"
        assert json.loads(request.content) == FINALIZED.to_dict()

    def test_error_status_raises(self):
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
        backup = BackupClient(url="https://backup.test/votes", token="s3cret", timeout=5, client=client)

        with pytest.raises(httpx.HTTPStatusError):
            backup.backup(FINALIZED)

    @pytest.mark.parametrize("url, token, enabled", [
        ("https://backup.test/votes", "s3cret", True),
        ("https://backup.test/votes", "", False),
        ("", "s3cret", False),
    ])
    def test_enabled_only_with_url_and_token(self, url, token, enabled):
        backup = BackupClient(url=url, token=token, timeout=5)

        assert backup.enabled is enabled
        backup.close()
