from estategate.logging import _mask_credentials, redact_email


class TestCredentialMasking:
    def test_credentials_fully_masked(self):
        event = _mask_credentials(
            None,
            "info",
            {"event": "x", "token": "abcdef123456", "password": "hunter2 hunter2", "value": "v" * 43},
        )
        assert event["token"] == "***"
        assert event["password"] == "***"
        assert event["value"] == "***"

    def test_authorization_keeps_scheme(self):
        event = _mask_credentials(None, "info", {"authorization": "Bearer eyJ.abc.def"})
        assert event["authorization"] == "Bearer ***"

    def test_identifiers_pass_through(self):
        event = _mask_credentials(
            None,
            "info",
            {"token_id": "tok-1", "token_type": "EMAIL_CONFIRM", "user_id": "u-1"},
        )
        assert event == {"token_id": "tok-1", "token_type": "EMAIL_CONFIRM", "user_id": "u-1"}

    def test_suffixed_keys_masked(self):
        event = _mask_credentials(None, "info", {"bearer_token": "abc", "smtp_password": "pw"})
        assert event == {"bearer_token": "***", "smtp_password": "***"}

    def test_emails_partially_masked(self):
        event = _mask_credentials(None, "info", {"email": "resident@example.com"})
        assert event["email"] == "re***@example.com"
        assert redact_email("no-at-sign") == "redacted"
