"""Tests for notifier/recipient_resolver.py."""
from notifier.recipient_resolver import build_recipients

ADMIN = "ops@x.com"


class TestBuildRecipients:
    def test_explicit_recipient_and_audit_copy(self):
        result = build_recipients({"BorrowerEmail": "a@x.com"}, admin_email=ADMIN)
        assert result == {"to": "a@x.com", "bcc": ["ops@x.com"]}

    def test_falls_back_to_audit_address(self):
        result = build_recipients({"Brand": "Fluke"}, admin_email=ADMIN)
        assert result["to"] == ADMIN
        assert result["bcc"] == []

    def test_notify_string_is_split_and_deduplicated(self):
        record = {
            "BorrowerEmail": "a@x.com",
            "notifyEmails": "b@x.com; A@x.com, b@x.com",
        }
        result = build_recipients(record, admin_email=ADMIN)
        assert result["to"] == "a@x.com"
        assert result["bcc"] == ["b@x.com", "ops@x.com"]

    def test_notify_list_from_several_spellings(self):
        record = {
            "borrowerEmail": "a@x.com",
            "notifyEmails": ["b@x.com"],
            "notify_emails": "c@x.com",
        }
        result = build_recipients(record, admin_email=ADMIN)
        assert result["bcc"] == ["b@x.com", "c@x.com", "ops@x.com"]

    def test_to_never_appears_in_bcc(self):
        record = {"BorrowerEmail": "OPS@x.com", "notifyEmails": ["ops@x.com"]}
        result = build_recipients(record, admin_email=ADMIN)
        assert result["to"] == "OPS@x.com"
        assert all(address.lower() != "ops@x.com" for address in result["bcc"])

    def test_blank_recipient_is_ignored(self):
        result = build_recipients({"BorrowerEmail": "  "}, admin_email=ADMIN)
        assert result["to"] == ADMIN

    def test_none_record(self):
        assert build_recipients(None, admin_email=ADMIN) == {"to": ADMIN, "bcc": []}

    def test_empty_admin_address(self):
        result = build_recipients({"BorrowerEmail": "a@x.com"}, admin_email="")
        assert result == {"to": "a@x.com", "bcc": []}
