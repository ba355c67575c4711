"""Seed script — creates dev users, the approval tier catalog and an org-wide budget.

Idempotent: checks for existing records before inserting.
Run: python backend/scripts/seed.py  (with the package installed)

Login lives in the identity service, so the script prints a dev bearer token
for each seeded user instead of a password.
"""
import asyncio
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from reimburse.core.config import settings
from reimburse.core.security import create_access_token
from reimburse.models.approval_tier import ApprovalTier
from reimburse.models.budget import Budget
from reimburse.models.user import User
from reimburse.rules.approval_resolver import validate_tier_catalog

USERS = [
    ("employee@example.com", "Employee", "EMPLOYEE"),
    ("approver@example.com", "Team Lead", "APPROVER"),
    ("senior@example.com", "Department Head", "SUPER_APPROVER"),
    ("finance@example.com", "Finance Officer", "FINANCE"),
    ("ceo@example.com", "Chief Executive", "CEO"),
    ("admin@example.com", "Admin User", "ADMIN"),
]

# Cumulative chain: larger amounts collect every lower tier as well.
TIERS = [
    ("Line manager", 1, Decimal("0"), None, "APPROVER"),
    ("Department head", 2, Decimal("25001"), None, "SUPER_APPROVER"),
    ("Finance review", 3, Decimal("100001"), None, "FINANCE"),
    ("Executive", 4, Decimal("500001"), None, "CEO"),
]


# ─── Upsert helpers ───────────────────────────────────────────────────────────

async def _upsert_user(db: AsyncSession, email: str, name: str, role: str) -> User:
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalars().first()
    if user:
        print(f"  [skip] User {email}")
        return user
    user = User(email=email, name=name, role=role, is_active=True)
    db.add(user)
    await db.flush()
    print(f"  [new]  User {email} ({role})")
    return user


async def _upsert_tier(db: AsyncSession, name: str, tier_order: int,
                       min_amount: Decimal, max_amount: Decimal | None, role: str) -> ApprovalTier:
    result = await db.execute(select(ApprovalTier).where(ApprovalTier.name == name))
    tier = result.scalars().first()
    if tier:
        print(f"  [skip] Tier {name}")
        return tier
    tier = ApprovalTier(
        name=name, tier_order=tier_order, min_amount=min_amount,
        max_amount=max_amount, approver_role=role, is_active=True,
    )
    db.add(tier)
    await db.flush()
    print(f"  [new]  Tier {tier_order}: {name} ({role})")
    return tier


async def _upsert_budget(db: AsyncSession, name: str, total: Decimal, year: int) -> Budget:
    result = await db.execute(select(Budget).where(Budget.name == name))
    budget = result.scalars().first()
    if budget:
        print(f"  [skip] Budget {name}")
        return budget
    budget = Budget(
        name=name, total_amount=total, warning_threshold=Decimal(settings.BUDGET_DEFAULT_WARNING_THRESHOLD),
        enforcement="SOFT_WARNING", start_date=date(year, 1, 1), end_date=date(year, 12, 31),
        is_active=True,
    )
    db.add(budget)
    await db.flush()
    print(f"  [new]  Budget {name}")
    return budget


async def seed():
    engine = create_async_engine(settings.DATABASE_URL)
    SessionLocal = async_sessionmaker(engine, expire_on_commit=False)

    validate_tier_catalog(
        [ApprovalTier(name=n, tier_order=o, min_amount=lo, max_amount=hi, approver_role=r, is_active=True)
         for n, o, lo, hi, r in TIERS]
    )

    async with SessionLocal() as db:
        print("── Users ──")
        users = [await _upsert_user(db, *row) for row in USERS]
        await db.commit()

        print("\n── Approval tiers ──")
        for row in TIERS:
            await _upsert_tier(db, *row)
        await db.commit()

        print("\n── Budgets ──")
        year = date.today().year
        await _upsert_budget(db, f"Company operating budget {year}", Decimal("5000000"), year)
        await db.commit()

    await engine.dispose()
    print("\n✓ Seed complete. Dev bearer tokens:")
    for user in users:
        print(f"  {user.role:<15} {user.email:<24} {create_access_token(str(user.id), user.role)}")


if __name__ == "__main__":
    asyncio.run(seed())
