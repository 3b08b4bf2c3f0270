from __future__ import annotations

from collections.abc import Iterable
import hashlib
import hmac
import re
import secrets
import time
from typing import Any, assert_never

from app.core.logging import get_logger
from app.models.identity import (
    ActivityAction,
    ActivityEntry,
    AuditExport,
    IdentityContext,
    IdentityMode,
    IdentityRecord,
    IdentitySummary,
    MemberSpending,
    TeamSpending,
    TrackedIdentity,
    UntrackedIdentity,
)
from app.models.job import JobRecord, JobStatus

WALLET_ADDRESS_REGEX = re.compile(r"^0x[0-9a-fA-F]{40}$")
PII_PATTERNS: dict[str, re.Pattern[str]] = {
    "wallet_address": re.compile(r"\b0x[0-9a-fA-F]{40}\b"),
    "email": re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}"),
    "phone": re.compile(r"(?<![\w+-])\+?\d{1,3}[\s.-]?\(?\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}(?!\d)"),
    "ip_address": re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b"),
    "ssn": re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),
}
REDACTED = "[REDACTED]"
# Routing references written by the service itself, never user supplied.
STRUCTURAL_KEYS = frozenset({"provider_id", "trace_ref"})


class IdentityValidationError(ValueError):
    pass


def hash_identifier(value: str, salt: str) -> str:
    digest = hashlib.sha256(f"{value.strip().lower()}{salt}".encode("utf-8")).hexdigest()
    return f"0x{digest}"


def _same(left: str, right: str) -> bool:
    return hmac.compare_digest(left.encode("utf-8"), right.encode("utf-8"))


def new_audit_id() -> str:
    return f"audit-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def find_pii(value: Any) -> list[str]:
    """Names of the PII patterns found anywhere inside ``value``."""
    if isinstance(value, dict):
        found = [name for key, item in value.items() if key not in STRUCTURAL_KEYS for name in find_pii(item)]
    elif isinstance(value, (list, tuple)):
        found = [name for item in value for name in find_pii(item)]
    elif isinstance(value, str):
        found = [name for name, pattern in PII_PATTERNS.items() if pattern.search(value)]
    else:
        found = []
    return list(dict.fromkeys(found))


def redact_pii(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: item if key in STRUCTURAL_KEYS else redact_pii(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact_pii(item) for item in value]
    if isinstance(value, str):
        for pattern in PII_PATTERNS.values():
            value = pattern.sub(REDACTED, value)
    return value


class IdentityService:
    """
    Audit identities in tracked (full identifiers) or untracked (salted hash) mode.

    Untracked hashes are pseudonymous only: anyone holding the salt can test a
    candidate wallet address against them.
    """

    def __init__(self, salt: str) -> None:
        if not salt:
            raise IdentityValidationError("identity hash salt must not be empty")
        self._salt = salt
        self.logger = get_logger("computerouter.identity")

    def create_identity(self, context: IdentityContext) -> IdentityRecord:
        if not WALLET_ADDRESS_REGEX.match(context.wallet_address):
            raise IdentityValidationError("wallet address must be 0x followed by 40 hex characters")
        match context.mode:
            case IdentityMode.tracked:
                return self._create_tracked(context)
            case IdentityMode.untracked:
                return self._create_untracked(context)
            case _:
                assert_never(context.mode)

    def _create_tracked(self, context: IdentityContext) -> TrackedIdentity:
        if context.team_member_id and not context.organization_id:
            raise IdentityValidationError("team_member_id requires organization_id")
        return TrackedIdentity(
            wallet_address=context.wallet_address.lower(),
            organization_id=context.organization_id,
            team_member_id=context.team_member_id,
            audit_id=new_audit_id(),
        )

    def _create_untracked(self, context: IdentityContext) -> UntrackedIdentity:
        organization_hash = None
        if context.organization_id:
            organization_hash = hash_identifier(context.organization_id, self._salt)
        return UntrackedIdentity(
            wallet_hash=hash_identifier(context.wallet_address, self._salt),
            organization_hash=organization_hash,
            audit_id=new_audit_id(),
        )

    def record_activity(
        self,
        record: IdentityRecord,
        action: ActivityAction,
        job_id: str | None = None,
        amount_usd: float | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> IdentityRecord:
        metadata = dict(metadata or {})
        if isinstance(record, UntrackedIdentity):
            leaked = find_pii(metadata)
            if leaked:
                self.logger.warning(
                    "untracked_activity_contains_pii",
                    extra={"job_id": job_id, "patterns": leaked, "audit_id": record.audit_id, "event": "identity.pii_warning"},
                )
        entry = ActivityEntry(action=action, job_id=job_id, amount_usd=amount_usd, metadata=metadata)
        return record.model_copy(
            update={"activity_log": (*record.activity_log, entry), "last_activity_at": entry.timestamp}
        )

    def export_for_audit(self, record: IdentityRecord) -> AuditExport:
        match record:
            case TrackedIdentity():
                return AuditExport(
                    mode=IdentityMode.tracked,
                    audit_id=record.audit_id,
                    wallet_address=record.wallet_address,
                    organization_id=record.organization_id,
                    team_member_id=record.team_member_id,
                    created_at=record.created_at,
                    last_activity_at=record.last_activity_at,
                    activity_log=list(record.activity_log),
                )
            case UntrackedIdentity():
                return AuditExport(
                    mode=IdentityMode.untracked,
                    audit_id=record.audit_id,
                    wallet_hash=record.wallet_hash,
                    organization_hash=record.organization_hash,
                    created_at=record.created_at,
                    last_activity_at=record.last_activity_at,
                    activity_log=[
                        entry.model_copy(update={"metadata": redact_pii(entry.metadata)})
                        for entry in record.activity_log
                    ],
                )
            case _:
                assert_never(record)

    def verify_ownership(
        self,
        record: IdentityRecord,
        wallet_address: str,
        organization_id: str | None = None,
    ) -> bool:
        match record:
            case TrackedIdentity():
                owner = _same(wallet_address.strip().lower(), record.wallet_address)
                if organization_id is not None:
                    owner = owner and _same(organization_id, record.organization_id or "")
                return owner
            case UntrackedIdentity():
                owner = _same(hash_identifier(wallet_address, self._salt), record.wallet_hash)
                if organization_id is not None:
                    expected = record.organization_hash or ""
                    owner = owner and _same(hash_identifier(organization_id, self._salt), expected)
                return owner
            case _:
                assert_never(record)

    def summary(self, record: IdentityRecord) -> IdentitySummary:
        if isinstance(record, TrackedIdentity):
            address = record.wallet_address
            display_id = f"{address[:6]}...{address[-4:]}"
        else:
            display_id = f"anon-{record.wallet_hash[2:10]}"
        return IdentitySummary(
            mode=IdentityMode(record.mode),
            display_id=display_id,
            audit_id=record.audit_id,
            activity_count=len(record.activity_log),
            created_at=record.created_at,
            last_activity_at=record.last_activity_at,
        )

    def team_spending(self, record: IdentityRecord, jobs: Iterable[JobRecord]) -> TeamSpending | None:
        """Per-member spend across completed jobs of the same organization; ``None`` when unavailable."""
        if not isinstance(record, TrackedIdentity) or not record.organization_id:
            return None

        totals: dict[str, list[float]] = {}
        completed_at = []
        for job in jobs:
            identity = job.identity
            if job.status != JobStatus.completed or not isinstance(identity, TrackedIdentity):
                continue
            if identity.organization_id != record.organization_id:
                continue
            member = identity.team_member_id or identity.wallet_address
            cost = job.actual_cost_usd if job.actual_cost_usd is not None else job.result.total_cost_usd
            totals.setdefault(member, []).append(cost)
            if job.completed_at:
                completed_at.append(job.completed_at)

        members = [
            MemberSpending(
                member_id=member,
                total_spent_usd=round(sum(costs), 4),
                job_count=len(costs),
                average_job_cost_usd=round(sum(costs) / len(costs), 4),
            )
            for member, costs in sorted(totals.items())
        ]
        return TeamSpending(
            organization_id=record.organization_id,
            members=members,
            total_spent_usd=round(sum(member.total_spent_usd for member in members), 4),
            period_start=min(completed_at) if completed_at else None,
            period_end=max(completed_at) if completed_at else None,
        )
