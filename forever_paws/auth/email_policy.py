"""
Client-side email and password checks run before any network call.

Syntax checks use email-validator (no DNS lookups). The extra heuristics
mirror rejections observed from the identity provider's anti-abuse rules;
they are configuration, all off by default, and are not assumed complete.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, Iterable

from email_validator import EmailNotValidError, validate_email

from ..utils.config import AuthSettings, EmailPolicySettings
from ..utils.exceptions import InvalidInput

SEQUENCE_RUN = 4


def _has_sequential_run(text: str, run: int = SEQUENCE_RUN) -> bool:
    """True for runs like 'abcd' or '1234' (ascending or descending)."""
    streak_up = streak_down = 1
    for prev, cur in zip(text, text[1:]):
        step = ord(cur) - ord(prev)
        streak_up = streak_up + 1 if step == 1 else 1
        streak_down = streak_down + 1 if step == -1 else 1
        if streak_up >= run or streak_down >= run:
            return True
    return False


@dataclass(frozen=True)
class EmailPolicy:
    min_local_length: int = 1
    blocked_local_parts: FrozenSet[str] = field(default_factory=frozenset)
    blocked_domains: FrozenSet[str] = field(default_factory=frozenset)
    reject_sequential_local_parts: bool = False

    @classmethod
    def from_settings(cls, settings: EmailPolicySettings) -> "EmailPolicy":
        return cls(
            min_local_length=settings.min_local_length,
            blocked_local_parts=_lowered(settings.blocked_local_parts),
            blocked_domains=_lowered(settings.blocked_domains),
            reject_sequential_local_parts=settings.reject_sequential_local_parts,
        )

    def validate(self, email: str) -> str:
        """
        Return the normalized email, or raise InvalidInput with a user-facing reason.
        """
        candidate = (email or "").strip()
        if not candidate:
            raise InvalidInput("Please enter your email address.")
        local, sep, domain = candidate.rpartition("@")
        if not sep or not local:
            raise InvalidInput("The email address is missing the part before the @.")
        if not domain or "." not in domain.strip("."):
            raise InvalidInput("The email domain must include a top-level domain, like .com.")

        try:
            info = validate_email(candidate, check_deliverability=False)
        except EmailNotValidError as e:
            raise InvalidInput(f"Invalid email address: {e}") from e

        normalized = info.normalized
        local_part = info.local_part.lower()
        domain_part = info.domain.lower()

        if len(local_part) < self.min_local_length:
            raise InvalidInput("The part before the @ is too short.")
        if local_part in self.blocked_local_parts:
            raise InvalidInput("Please use a personal email address.")
        if domain_part in self.blocked_domains:
            raise InvalidInput("Email addresses from this domain are not accepted.")
        if self.reject_sequential_local_parts and _has_sequential_run(local_part):
            raise InvalidInput("Please use a real email address.")
        return normalized


def _lowered(values: Iterable[str]) -> FrozenSet[str]:
    return frozenset(v.strip().lower() for v in values if v and v.strip())


@dataclass(frozen=True)
class PasswordPolicy:
    min_length: int = 8
    max_length: int = 128

    @classmethod
    def from_settings(cls, settings: AuthSettings) -> "PasswordPolicy":
        return cls(min_length=settings.password_min_length, max_length=settings.password_max_length)

    def validate(self, password: str) -> None:
        if not password:
            raise InvalidInput("Please enter a password.")
        if len(password) < self.min_length:
            raise InvalidInput(f"Password must be at least {self.min_length} characters.")
        if len(password) > self.max_length:
            raise InvalidInput(f"Password must be at most {self.max_length} characters.")
