"""API key pool with least-used rotation and failure isolation.

Keys are never logged in full; every log line refers to a key by its last
four characters (``...abcd``).
"""

import logging
import math
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Mapping

from siteprompt.config import Settings
from siteprompt.errors import NoCredentialsAvailableError, NoCredentialsConfiguredError

logger = logging.getLogger(__name__)

RATE_LIMIT_REASON = "Rate limit exceeded"
INVALID_KEY_REASON = "Invalid API key"
PROVIDER_SUSPENDED_REASON = "API key suspended by provider"
GEO_RESTRICTED_REASON = "API key restricted for this geographic location"
BILLING_REASON = "Geographic restriction or billing issue"

# Highest numbered variable probed: PREFIX_1 .. PREFIX_{MAX_NUMBERED_KEYS}
MAX_NUMBERED_KEYS = 20

NO_CREDENTIALS_MESSAGE = (
    "Nu sunt disponibile chei API. Toate cheile sunt suspendate, au restricții "
    "geografice sau au depășit limita de token-uri. Verificați configurația."
)

SUSPENDED_MARKERS = ("consumer_suspended", "suspended")
LOCATION_MARKERS = ("location is not supported", "not supported for the api use")
RATE_LIMIT_MARKERS = ("too many requests", "rate limit", "quota")
OVERLOAD_MARKERS = ("service unavailable", "overloaded")


class FailureKind(str, Enum):
    """What a failed LLM call says about the credential that made it."""

    INVALID_KEY = "invalid_key"
    SUSPENDED = "suspended"
    RATE_LIMITED = "rate_limited"
    GEO_RESTRICTED = "geo_restricted"
    SERVER_ERROR = "server_error"

    @property
    def retryable(self) -> bool:
        """Whether another credential could plausibly succeed."""
        return self is not FailureKind.INVALID_KEY


def key_preview(key: str) -> str:
    return f"...{key[-4:]}"


@dataclass
class CredentialRecord:
    """Usage and health of one API key."""

    key: str
    window_start: float
    quota_used: int = 0
    is_active: bool = True
    is_suspended: bool = False
    has_geo_restriction: bool = False
    suspended_reason: str | None = None
    last_used_at: float = 0.0

    @property
    def preview(self) -> str:
        return key_preview(self.key)

    @property
    def is_rate_limited(self) -> bool:
        return self.is_suspended and self.suspended_reason == RATE_LIMIT_REASON

    def is_eligible(self, token_limit: int) -> bool:
        return (
            self.is_active
            and not self.is_suspended
            and not self.has_geo_restriction
            and self.quota_used < token_limit
        )

    def __repr__(self) -> str:
        return (
            f"CredentialRecord(key={self.preview!r}, quota_used={self.quota_used}, "
            f"is_active={self.is_active}, is_suspended={self.is_suspended}, "
            f"has_geo_restriction={self.has_geo_restriction})"
        )


def load_keys_from_env(prefix: str, environ: Mapping[str, str] | None = None) -> list[str]:
    """Read ``{prefix}_1 .. {prefix}_N`` plus a bare ``{prefix}``.

    Blank values are skipped and duplicates removed, keeping first-seen order.
    """
    environ = os.environ if environ is None else environ
    names = [f"{prefix}_{i}" for i in range(1, MAX_NUMBERED_KEYS + 1)] + [prefix]
    keys: dict[str, None] = {}
    for name in names:
        value = (environ.get(name) or "").strip()
        if value:
            keys[value] = None
    return list(keys)


@dataclass
class CredentialPool:
    """In-memory ledger of API keys.

    Two reset policies run before every selection:

    - Quota window: once ``reset_interval`` has passed since a key's window
      started, its usage is zeroed and every suspension and geo restriction
      is cleared.
    - Rate-limit cooldown: a key suspended for rate limiting comes back once
      ``rate_limit_cooldown`` seconds have passed since it was last used.
    """

    token_limit: int
    reset_interval: float
    rate_limit_cooldown: float
    clock: Callable[[], float] = time.time
    records: list[CredentialRecord] = field(default_factory=list)

    @classmethod
    def from_keys(
        cls,
        keys: Iterable[str],
        token_limit: int,
        reset_interval: float,
        rate_limit_cooldown: float = 60 * 60,
        clock: Callable[[], float] = time.time,
    ) -> "CredentialPool":
        keys = list(dict.fromkeys(k for k in keys if k))
        if not keys:
            raise NoCredentialsConfiguredError("No API keys found in environment variables")
        now = clock()
        pool = cls(
            token_limit=token_limit,
            reset_interval=reset_interval,
            rate_limit_cooldown=rate_limit_cooldown,
            clock=clock,
            records=[CredentialRecord(key=k, window_start=now) for k in keys],
        )
        logger.info(f"Credential pool initialized with {len(keys)} API keys")
        return pool

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        environ: Mapping[str, str] | None = None,
    ) -> "CredentialPool":
        return cls.from_keys(
            load_keys_from_env(settings.credential_env_prefix, environ),
            token_limit=settings.token_limit,
            reset_interval=settings.quota_reset_seconds,
            rate_limit_cooldown=settings.rate_limit_cooldown_seconds,
        )

    def __len__(self) -> int:
        return len(self.records)

    def get(self, key: str) -> CredentialRecord | None:
        for record in self.records:
            if record.key == key:
                return record
        return None

    def apply_resets(self) -> None:
        now = self.clock()
        for record in self.records:
            if now - record.window_start > self.reset_interval:
                record.quota_used = 0
                record.window_start = now
                record.is_active = True
                record.is_suspended = False
                record.has_geo_restriction = False
                record.suspended_reason = None
                logger.info(f"Reset quota window for key {record.preview}")

            if record.is_rate_limited and now - record.last_used_at > self.rate_limit_cooldown:
                record.is_suspended = False
                record.is_active = True
                record.suspended_reason = None
                logger.info(f"Reactivating rate-limited key {record.preview}")

    def select_credential(self, exclude: Iterable[str] = ()) -> str:
        """Return the eligible key with the lowest usage.

        Args:
            exclude: Keys that must not be returned (e.g. the one that just failed)

        Raises:
            NoCredentialsAvailableError: If no key is eligible
        """
        self.apply_resets()
        excluded = set(exclude)
        available = [
            r for r in self.records
            if r.key not in excluded and r.is_eligible(self.token_limit)
        ]

        if not available:
            summary = self.summary()
            logger.error(
                "No available API keys! "
                f"Suspended: {summary['suspended_keys']}, "
                f"Limit exceeded: {summary['limit_exceeded_keys']}, "
                f"Location issues: {summary['location_restricted_keys']}, "
                f"Excluded: {len(excluded)}, Total: {summary['total_keys']}"
            )
            raise NoCredentialsAvailableError(NO_CREDENTIALS_MESSAGE)

        # Stable sort: ties go to the key configured first
        selected = min(available, key=lambda r: r.quota_used)
        selected.last_used_at = self.clock()
        logger.info(
            f"Selected key {selected.preview} ({selected.quota_used}/{self.token_limit} tokens used)"
        )
        return selected.key

    def record_usage(self, key: str, tokens: int) -> None:
        record = self.get(key)
        if record is None:
            logger.warning(f"Usage reported for unknown key {key_preview(key)}")
            return
        record.quota_used += max(0, int(tokens))
        record.last_used_at = self.clock()
        logger.info(
            f"Recorded {tokens} tokens for key {record.preview} "
            f"(total: {record.quota_used}/{self.token_limit})"
        )
        if record.quota_used >= self.token_limit:
            record.is_active = False
            logger.warning(f"Key {record.preview} reached token limit and is now inactive")

    @staticmethod
    def estimate_tokens(text: str) -> int:
        """Rough token count: about four characters per token."""
        return math.ceil(len(text) / 4)

    def mark_suspended(self, key: str, reason: str | None = None) -> None:
        record = self.get(key)
        if record is None:
            return
        record.is_suspended = True
        record.is_active = False
        record.suspended_reason = reason
        logger.error(f"Key {record.preview} marked as SUSPENDED: {reason or 'Unknown reason'}")

    def mark_geo_restricted(self, key: str, reason: str | None = None) -> None:
        record = self.get(key)
        if record is None:
            return
        record.has_geo_restriction = True
        record.is_active = False
        record.suspended_reason = reason
        logger.error(f"Key {record.preview} marked as LOCATION_RESTRICTED: {reason or 'Unknown reason'}")

    def classify_failure(self, key: str, error: BaseException) -> FailureKind | None:
        """Demote ``key`` according to the error it produced.

        Returns:
            The failure kind, or None if the error says nothing about the
            credential (state is left untouched).
        """
        status = getattr(error, "status_code", None) or getattr(error, "status", None)
        message = str(error).lower()

        if status == 401:
            self.mark_suspended(key, INVALID_KEY_REASON)
            return FailureKind.INVALID_KEY

        if any(marker in message for marker in SUSPENDED_MARKERS):
            self.mark_suspended(key, PROVIDER_SUSPENDED_REASON)
            return FailureKind.SUSPENDED

        if any(marker in message for marker in LOCATION_MARKERS):
            self.mark_geo_restricted(key, GEO_RESTRICTED_REASON)
            return FailureKind.GEO_RESTRICTED

        if status == 403:
            self.mark_geo_restricted(key, BILLING_REASON)
            return FailureKind.GEO_RESTRICTED

        if status == 429 or any(marker in message for marker in RATE_LIMIT_MARKERS):
            self.mark_suspended(key, RATE_LIMIT_REASON)
            return FailureKind.RATE_LIMITED

        if (isinstance(status, int) and status >= 500) or any(
            marker in message for marker in OVERLOAD_MARKERS
        ):
            logger.warning(f"Key {key_preview(key)} hit a provider-side error: {error}")
            return FailureKind.SERVER_ERROR

        return None

    def reset_credential(self, key: str) -> bool:
        """Clear all usage and health flags for one key (manual recovery)."""
        record = self.get(key)
        if record is None:
            return False
        record.quota_used = 0
        record.window_start = self.clock()
        record.is_active = True
        record.is_suspended = False
        record.has_geo_restriction = False
        record.suspended_reason = None
        logger.info(f"Manually reset key {record.preview}")
        return True

    def find_by_preview(self, suffix: str) -> str | None:
        """Key whose last four characters equal ``suffix``, if exactly one matches."""
        suffix = suffix.lstrip(".")
        matches = [r.key for r in self.records if r.key[-4:] == suffix]
        return matches[0] if len(matches) == 1 else None

    def stats(self) -> list[dict]:
        """Per-key counters, safe to expose (keys are previewed)."""
        return [
            {
                "key_preview": r.preview,
                "tokens_used": r.quota_used,
                "token_limit": self.token_limit,
                "is_active": r.is_active,
                "is_suspended": r.is_suspended,
                "has_geo_restriction": r.has_geo_restriction,
                "suspended_reason": r.suspended_reason,
                "last_used_at": r.last_used_at or None,
            }
            for r in self.records
        ]

    def summary(self) -> dict:
        return {
            "total_keys": len(self.records),
            "available_keys": sum(1 for r in self.records if r.is_eligible(self.token_limit)),
            "suspended_keys": sum(1 for r in self.records if r.is_suspended),
            "location_restricted_keys": sum(1 for r in self.records if r.has_geo_restriction),
            "limit_exceeded_keys": sum(1 for r in self.records if r.quota_used >= self.token_limit),
            "total_tokens_used": sum(r.quota_used for r in self.records),
        }
