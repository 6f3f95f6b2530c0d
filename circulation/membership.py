"""Members, their profiles, and membership numbers.

Membership numbers look like ``LIB20240042``: the ``LIB`` prefix, the
four-digit year and a zero-padded random four-digit suffix. The suffix alone
does not make a number unique; ``allocate_membership_number`` checks the store
and draws again on a collision.
"""

from __future__ import annotations

import logging
import random
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from circulation import rules
from circulation.errors import ErrorKind, NotFoundError, ValidationFailure
from circulation.models import CENTS, Member, MembershipType, MemberStatus, Profile, Role, utcnow
from circulation.services.store import Join, Store

logger = logging.getLogger(__name__)

MEMBERSHIP_PREFIX = "LIB"

DEFAULT_BORROW_LIMITS = {
    MembershipType.STANDARD: 5,
    MembershipType.PREMIUM: 10,
    MembershipType.STUDENT: 3,
}

MEMBER_JOINS = {"profile": Join("profiles", "profile_id")}


def generate_membership_number(year: int, rng: Optional[random.Random] = None) -> str:
    rng = rng or random.Random()
    return f"{MEMBERSHIP_PREFIX}{year:04d}{rng.randrange(10000):04d}"


def allocate_membership_number(
    store: Store,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
    attempts: int = 10,
) -> str:
    """Draw membership numbers until one is not already taken in the store."""
    year = (now or utcnow()).year
    rng = rng or random.Random()
    for _ in range(attempts):
        candidate = generate_membership_number(year, rng)
        if not store.select("members", {"membership_number": candidate}, limit=1):
            return candidate
        logger.warning(f"Membership number collision: {candidate}")
    raise ValidationFailure(
        f"Could not allocate a free membership number after {attempts} attempts.",
        ErrorKind.MEMBERSHIP_NUMBER_EXHAUSTED,
    )


class MembershipRegistry:
    cas_attempts = 3

    def __init__(
        self,
        store: Store,
        term_days: int = 365,
        number_attempts: int = 10,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.store = store
        self.term_days = term_days
        self.number_attempts = number_attempts
        self.rng = rng or random.Random()

    # ------------------------- Profiles ------------------------- #
    def add_profile(self, full_name: str, email: str, phone: Optional[str] = None, role: Role = Role.MEMBER) -> Profile:
        full_name = (full_name or "").strip()
        email = (email or "").strip().lower()
        if not full_name or not email:
            raise ValidationFailure("Full name and email are required.")
        if "@" not in email:
            raise ValidationFailure(f"Invalid email address: {email}")
        if self.store.select("profiles", {"email": email}, limit=1):
            raise ValidationFailure(f"Email {email} is already registered.", ErrorKind.CONFLICT)
        row = self.store.insert(
            "profiles", {"full_name": full_name, "email": email, "phone": phone or None, "role": Role(role)}
        )
        return Profile.from_dict(row)

    def get_profile(self, profile_id: str) -> Profile:
        row = self.store.select_one("profiles", {"id": profile_id})
        if not row:
            raise NotFoundError(f"Profile {profile_id} not found.")
        return Profile.from_dict(row)

    def unassigned_profiles(self) -> List[Profile]:
        """Member-role profiles that do not have a membership yet."""
        taken = {row["profile_id"] for row in self.store.select("members") if row.get("profile_id")}
        rows = self.store.select("profiles", {"role": Role.MEMBER.value}, order="full_name")
        return [Profile.from_dict(row) for row in rows if row["id"] not in taken]

    # ------------------------- Members ------------------------- #
    def register_member(
        self,
        profile_id: Optional[str] = None,
        membership_type: MembershipType = MembershipType.STANDARD,
        max_books_allowed: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Member:
        now = now or utcnow()
        membership_type = MembershipType(membership_type)
        limit = max_books_allowed if max_books_allowed is not None else DEFAULT_BORROW_LIMITS[membership_type]
        if limit <= 0:
            raise ValidationFailure("Borrowing limit must be a positive number.")
        if profile_id:
            self.get_profile(profile_id)
            if self.store.select("members", {"profile_id": profile_id}, limit=1):
                raise ValidationFailure("This profile already has a membership.", ErrorKind.CONFLICT)

        number = allocate_membership_number(self.store, now, self.rng, self.number_attempts)
        join_date = now.date()
        row = self.store.insert(
            "members",
            {
                "profile_id": profile_id or None,
                "membership_number": number,
                "membership_type": membership_type,
                "status": MemberStatus.ACTIVE,
                "join_date": join_date,
                "expiry_date": join_date + timedelta(days=self.term_days),
                "max_books_allowed": limit,
                "current_books_issued": 0,
                "fine_amount": Decimal("0.00"),
            },
        )
        logger.info(f"Member registered: {number} ({membership_type.value})")
        return self.get(row["id"])

    def get(self, member_id: str) -> Member:
        row = self.store.select_one("members", {"id": member_id}, joins=MEMBER_JOINS)
        if not row:
            raise NotFoundError(f"Member {member_id} not found.")
        return Member.from_dict(row)

    def find_by_number(self, membership_number: str) -> Optional[Member]:
        row = self.store.select_one("members", {"membership_number": membership_number.strip().upper()}, joins=MEMBER_JOINS)
        return Member.from_dict(row) if row else None

    def list_members(self, search: Optional[str] = None, status: Optional[str] = None) -> List[Member]:
        """Newest first; ``search`` matches name, email or membership number."""
        filters = None
        if status:
            try:
                filters = {"status": MemberStatus(status).value}
            except ValueError:
                allowed = ", ".join(s.value for s in MemberStatus)
                raise ValidationFailure(f"Invalid status: {status}. Allowed: {allowed}")
        members = [
            Member.from_dict(row)
            for row in self.store.select("members", filters, joins=MEMBER_JOINS, order="-created_at")
        ]
        if not search:
            return members
        term = search.lower().strip()
        return [
            m
            for m in members
            if term in m.full_name.lower() or term in m.email.lower() or term in m.membership_number.lower()
        ]

    def set_status(self, member_id: str, status: MemberStatus) -> Member:
        member = self.get(member_id)
        status = MemberStatus(status)
        self.store.update("members", {"id": member.id}, {"status": status})
        logger.info(f"Member {member.membership_number} is now {status.value}")
        return self.get(member.id)

    def suspend(self, member_id: str) -> Member:
        return self.set_status(member_id, MemberStatus.SUSPENDED)

    def activate(self, member_id: str, now: Optional[datetime] = None) -> Member:
        member = self.get(member_id)
        if member.expiry_date and rules.is_expired(member.expiry_date, now):
            raise ValidationFailure(
                "Membership has expired; renew it instead of activating.", ErrorKind.INELIGIBLE_MEMBER
            )
        return self.set_status(member_id, MemberStatus.ACTIVE)

    def toggle_suspension(self, member_id: str) -> Member:
        member = self.get(member_id)
        if member.status == MemberStatus.SUSPENDED:
            return self.activate(member_id)
        return self.suspend(member_id)

    def renew_membership(self, member_id: str, now: Optional[datetime] = None) -> Member:
        """Extend by one term from today or from the current expiry, whichever is later."""
        now = now or utcnow()
        member = self.get(member_id)
        start: date = now.date()
        if member.expiry_date and member.expiry_date > start:
            start = member.expiry_date
        patch = {"expiry_date": start + timedelta(days=self.term_days)}
        if member.status == MemberStatus.EXPIRED:
            patch["status"] = MemberStatus.ACTIVE
        self.store.update("members", {"id": member.id}, patch)
        return self.get(member.id)

    def expire_lapsed(self, now: Optional[datetime] = None) -> List[Member]:
        """Mark every member whose expiry date has passed as expired."""
        now = now or utcnow()
        expired = []
        for member in self.list_members():
            if member.status == MemberStatus.EXPIRED or member.expiry_date is None:
                continue
            if rules.is_expired(member.expiry_date, now):
                self.store.update("members", {"id": member.id}, {"status": MemberStatus.EXPIRED})
                expired.append(self.get(member.id))
        if expired:
            logger.info(f"Expired {len(expired)} lapsed memberships")
        return expired

    def expiring_soon(self, now: Optional[datetime] = None) -> List[Member]:
        return [
            m
            for m in self.list_members(status=MemberStatus.ACTIVE.value)
            if m.expiry_date and rules.is_expiring_soon(m.expiry_date, now)
        ]

    # ------------------------- Fines ------------------------- #
    def pay_fine(self, member_id: str, amount: Decimal) -> Member:
        """Record a payment; the balance never drops below zero."""
        amount = Decimal(str(amount)).quantize(CENTS)
        if amount <= 0:
            raise ValidationFailure("Payment amount must be positive.")
        member = self.get(member_id)
        balance = max(Decimal("0.00"), member.fine_amount - amount)
        matched = self.store.update(
            "members", {"id": member.id, "fine_amount": member.fine_amount}, {"fine_amount": balance}
        )
        if matched == 0:
            raise ValidationFailure("Member balance changed while paying; try again.", ErrorKind.CONFLICT)
        return self.get(member.id)

    def add_fine(self, member: Member, amount: Decimal) -> None:
        if amount <= 0:
            return
        for _ in range(self.cas_attempts):
            current = self.get(member.id)
            matched = self.store.update(
                "members",
                {"id": current.id, "fine_amount": current.fine_amount},
                {"fine_amount": current.fine_amount + amount},
            )
            if matched:
                return
        raise ValidationFailure("Member balance kept changing; fine not recorded.", ErrorKind.CONFLICT)
