"""
Unit tests for the e-mail notification service

Tests precondition checks, protocol selection, per-recipient isolation and
throttling. SMTP sessions are mocked.
"""

import smtplib
from pathlib import Path
from unittest.mock import MagicMock, call, patch

import pytest

from wgbulk.config import NotifyConfig, SmtpProtocol
from wgbulk.models.wireguard.provisioning import ProvisioningResult, ProvisioningStatus
from wgbulk.services.exceptions import NotifyConfigInvalidError
from wgbulk.services.notification_service import NotificationService

MODULE = "wgbulk.services.notification_service"


@pytest.fixture
def notify_config():
    return NotifyConfig(
        smtp_server="smtp.example.com",
        smtp_port=587,
        from_email="vpn@example.com",
        smtp_user="mailer",
        smtp_pass="secret",
        delay=2.0,
    )


@pytest.fixture
def results(tmp_path):
    """Three provisioned peers with profiles on disk"""
    items = []
    for local in ("alice", "bob", "carol"):
        name = f"{local}-example.com"
        path = tmp_path / f"{name}.conf"
        path.write_text(f"[Interface]\n# profile for {local}\n")
        items.append(ProvisioningResult(
            name=name,
            status=ProvisioningStatus.SUCCESS,
            profile_path=path,
            recipient=f"{local}@example.com",
        ))
    return items


def _session_factory(sessions):
    """Return a side_effect producing context-manager SMTP mocks"""
    def factory(*args, **kwargs):
        session = MagicMock()
        session.__enter__.return_value = session
        session.__exit__.return_value = False
        sessions.append((args, kwargs, session))
        return session
    return factory


class TestValidate:

    @pytest.mark.parametrize("field", ["smtp_server", "from_email", "smtp_user", "smtp_pass"])
    def test_missing_field_is_fatal(self, notify_config, results, field):
        """
        Given one missing notification setting
        When dispatching
        Then should raise before any SMTP session is opened
        """
        config = notify_config.model_copy(update={field: None})
        service = NotificationService(config)

        with patch(f"{MODULE}.smtplib.SMTP") as smtp, patch(f"{MODULE}.smtplib.SMTP_SSL") as smtp_ssl:
            with pytest.raises(NotifyConfigInvalidError):
                service.dispatch(results)

        smtp.assert_not_called()
        smtp_ssl.assert_not_called()

    def test_credentials_from_environment(self, monkeypatch):
        monkeypatch.setenv("SMTP_USER", "env-user")
        monkeypatch.setenv("SMTP_PASS", "env-pass")

        config = NotifyConfig.from_env(smtp_server="smtp.example.com", from_email="vpn@example.com")

        assert config.smtp_user == "env-user"
        assert config.smtp_pass == "env-pass"
        assert config.missing_fields() == []

    def test_credentials_absent_from_environment(self, monkeypatch):
        monkeypatch.delenv("SMTP_USER", raising=False)
        monkeypatch.delenv("SMTP_PASS", raising=False)

        config = NotifyConfig.from_env(smtp_server="smtp.example.com", from_email="vpn@example.com")

        assert config.missing_fields() == ["SMTP_USER/SMTP_PASS"]


class TestProtocolSelection:

    @pytest.mark.parametrize("port,protocol,implicit", [
        (465, SmtpProtocol.AUTO, True),
        (587, SmtpProtocol.AUTO, False),
        (25, SmtpProtocol.AUTO, False),
        (587, SmtpProtocol.IMPLICIT, True),
        (465, SmtpProtocol.STARTTLS, False),
    ])
    def test_uses_implicit_tls(self, port, protocol, implicit):
        config = NotifyConfig(smtp_port=port, protocol=protocol)

        assert config.uses_implicit_tls() is implicit

    def test_implicit_session(self, notify_config, results):
        """
        Given port 465
        When sending
        Then should use SMTP_SSL and never STARTTLS
        """
        config = notify_config.model_copy(update={"smtp_port": 465})
        sessions = []

        with patch(f"{MODULE}.smtplib.SMTP_SSL", side_effect=_session_factory(sessions)), \
                patch(f"{MODULE}.smtplib.SMTP") as plain, \
                patch(f"{MODULE}.time.sleep"):
            summary = NotificationService(config).dispatch(results[:1])

        assert summary.sent == 1
        plain.assert_not_called()
        args, _, session = sessions[0]
        assert args == ("smtp.example.com", 465)
        session.starttls.assert_not_called()
        session.login.assert_called_once_with("mailer", "secret")

    def test_starttls_session(self, notify_config, results):
        sessions = []

        with patch(f"{MODULE}.smtplib.SMTP", side_effect=_session_factory(sessions)), \
                patch(f"{MODULE}.time.sleep"):
            summary = NotificationService(notify_config).dispatch(results[:1])

        assert summary.sent == 1
        _, _, session = sessions[0]
        session.starttls.assert_called_once()
        session.send_message.assert_called_once()


class TestDispatch:

    def test_sends_all_with_throttle(self, notify_config, results):
        """
        Given three recipients and a 2 second delay
        When dispatching
        Then should send three messages and sleep only between them
        """
        sessions = []

        with patch(f"{MODULE}.smtplib.SMTP", side_effect=_session_factory(sessions)), \
                patch(f"{MODULE}.time.sleep") as sleep:
            summary = NotificationService(notify_config).dispatch(results)

        assert summary.sent == 3
        assert summary.failed == 0
        assert sleep.call_args_list == [call(2.0), call(2.0)]

    def test_failure_is_isolated(self, notify_config, results):
        """
        Given an authentication failure for the second recipient
        When dispatching
        Then should record it and still send to the third
        """
        sessions = []
        factory = _session_factory(sessions)

        def flaky(*args, **kwargs):
            session = factory(*args, **kwargs)
            if len(sessions) == 2:
                session.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")
            return session

        with patch(f"{MODULE}.smtplib.SMTP", side_effect=flaky), \
                patch(f"{MODULE}.time.sleep"):
            summary = NotificationService(notify_config).dispatch(results)

        assert summary.sent == 2
        assert summary.failed == 1
        assert summary.failures[0][0] == "bob@example.com"
        assert sessions[2][2].send_message.called

    def test_connection_error_is_isolated(self, notify_config, results):
        with patch(f"{MODULE}.smtplib.SMTP", side_effect=ConnectionRefusedError("refused")), \
                patch(f"{MODULE}.time.sleep"):
            summary = NotificationService(notify_config).dispatch(results)

        assert summary.sent == 0
        assert summary.failed == 3

    def test_no_delay_configured(self, notify_config, results):
        config = notify_config.model_copy(update={"delay": 0})
        sessions = []

        with patch(f"{MODULE}.smtplib.SMTP", side_effect=_session_factory(sessions)), \
                patch(f"{MODULE}.time.sleep") as sleep:
            NotificationService(config).dispatch(results)

        sleep.assert_not_called()

    def test_result_without_recipient(self, notify_config, results):
        orphan = results[0].model_copy(update={"recipient": None})

        with patch(f"{MODULE}.smtplib.SMTP") as smtp, patch(f"{MODULE}.time.sleep"):
            summary = NotificationService(notify_config).dispatch([orphan])

        smtp.assert_not_called()
        assert summary.failed == 1


class TestBuildMessage:

    def test_message_has_instructions_and_attachment(self, notify_config, results):
        """
        Given a provisioned peer
        When building the e-mail
        Then should carry headers, instructions and the profile as attachment
        """
        result = results[0]
        message = NotificationService(notify_config).build_message(
            result.recipient, result.name, result.profile_path
        )

        assert message["To"] == "alice@example.com"
        assert message["From"] == "vpn@example.com"
        assert message["Subject"] == "Your WireGuard VPN Configuration"

        body = message.get_body(preferencelist=("plain",)).get_content()
        assert "Dear alice," in body
        assert "Installation Instructions" in body

        attachments = list(message.iter_attachments())
        assert len(attachments) == 1
        assert attachments[0].get_filename() == "alice-example.com.conf"
        assert attachments[0]["Content-Transfer-Encoding"] == "base64"
        assert attachments[0].get_content() == Path(result.profile_path).read_bytes()
