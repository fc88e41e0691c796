import pytest

from forever_paws.auth.email_policy import EmailPolicy, PasswordPolicy, _has_sequential_run
from forever_paws.utils.config import AuthSettings, EmailPolicySettings
from forever_paws.utils.exceptions import InvalidInput


def test_accepts_and_normalizes():
    assert EmailPolicy().validate("  alice@PawMail.com ") == "alice@pawmail.com"


@pytest.mark.parametrize(
    "email",
    ["", "   ", "alice", "@pawmail.com", "alice@pawmail", "alice@pawmail.", "al ice@pawmail.com"],
)
def test_rejects_malformed(email):
    with pytest.raises(InvalidInput):
        EmailPolicy().validate(email)


def test_heuristics_are_off_by_default():
    assert EmailPolicy().validate("abcd@pawmail.com") == "abcd@pawmail.com"
    assert EmailPolicy().validate("a@pawmail.com") == "a@pawmail.com"


def test_configured_heuristics():
    policy = EmailPolicy.from_settings(
        EmailPolicySettings(
            min_local_length=3,
            blocked_local_parts=["Test", "admin"],
            blocked_domains=["mailinator.com"],
            reject_sequential_local_parts=True,
        )
    )

    for email in ("ab@pawmail.com", "test@pawmail.com", "bob@mailinator.com", "abcd@pawmail.com", "x1234@pawmail.com"):
        with pytest.raises(InvalidInput):
            policy.validate(email)
    assert policy.validate("alice@pawmail.com") == "alice@pawmail.com"


def test_sequential_runs():
    assert _has_sequential_run("abcd")
    assert _has_sequential_run("zz4321")
    assert not _has_sequential_run("abce")
    assert not _has_sequential_run("alice")


def test_password_policy_bounds():
    policy = PasswordPolicy.from_settings(AuthSettings())

    policy.validate("x" * 8)
    policy.validate("x" * 128)
    for password in ("", "x" * 7, "x" * 129):
        with pytest.raises(InvalidInput):
            policy.validate(password)
