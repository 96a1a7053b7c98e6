"""Seed idempotent demo data for local/non-production environments."""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass, field
from datetime import time
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tutormarket.core.config import get_settings
from tutormarket.core.database import SessionLocal, close_engine
from tutormarket.core.enums import RoleEnum, TutorApprovalStatusEnum
from tutormarket.core.security import create_access_token
from tutormarket.modules.identity.models import User, UserRelationship
from tutormarket.modules.scheduling.models import AvailabilityWindow
from tutormarket.modules.tutors.models import SessionType, Tutor

DEMO_ADMIN_EMAIL = "demo-admin@tutormarket.dev"
DEMO_TUTOR_EMAIL = "demo-tutor@tutormarket.dev"
DEMO_PARENT_EMAIL = "demo-parent@tutormarket.dev"
DEMO_CHILD_EMAIL = "demo-child@tutormarket.dev"

DEMO_HOURLY_RATE = Decimal("40.00")
# Monday through Friday, 0 = Sunday.
DEMO_WINDOW_DAYS = (1, 2, 3, 4, 5)
DEMO_WINDOW_START = time(hour=9)
DEMO_WINDOW_END = time(hour=17)

DEMO_SESSION_TYPES = (
    ("Trial lesson", 30, Decimal("20.00")),
    ("Exam prep", 90, Decimal("55.00")),
)


@dataclass(slots=True)
class SeedStats:
    users_created: int = 0
    users_updated: int = 0
    tutor_created: bool = False
    windows_created: int = 0
    session_types_created: int = 0
    tokens: dict[str, str] = field(default_factory=dict)


async def _ensure_user(
    session: AsyncSession,
    *,
    email: str,
    full_name: str,
    role: RoleEnum,
    is_child_managed: bool = False,
) -> tuple[User, bool]:
    user = await session.scalar(select(User).where(User.email == email))
    created = False
    if user is None:
        user = User(
            email=email,
            full_name=full_name,
            role=role,
            is_active=True,
            is_child_managed=is_child_managed,
        )
        session.add(user)
        created = True
    else:
        user.full_name = full_name
        user.role = role
        user.is_active = True
        user.is_child_managed = is_child_managed

    await session.flush()
    return user, created


async def _ensure_parent_link(session: AsyncSession, parent: User, child: User) -> None:
    existing = await session.scalar(
        select(UserRelationship).where(
            UserRelationship.parent_user_id == parent.id,
            UserRelationship.child_user_id == child.id,
        ),
    )
    if existing is None:
        session.add(UserRelationship(parent_user_id=parent.id, child_user_id=child.id))
        await session.flush()


async def _ensure_tutor(session: AsyncSession, tutor_user: User) -> tuple[Tutor, bool]:
    tutor = await session.scalar(select(Tutor).where(Tutor.user_id == tutor_user.id))
    created = False
    if tutor is None:
        tutor = Tutor(user_id=tutor_user.id, display_name="Demo Maths Tutor")
        session.add(tutor)
        created = True

    tutor.display_name = "Demo Maths Tutor"
    tutor.bio = "Tutor for demo scenarios. Focus: algebra, geometry and exam preparation."
    tutor.hourly_rate = DEMO_HOURLY_RATE
    tutor.timezone = "UTC"
    tutor.is_active = True
    tutor.approval_status = TutorApprovalStatusEnum.APPROVED
    await session.flush()
    return tutor, created


async def _ensure_windows(session: AsyncSession, tutor: Tutor) -> int:
    created = 0
    for day in DEMO_WINDOW_DAYS:
        existing = await session.scalar(
            select(AvailabilityWindow).where(
                AvailabilityWindow.tutor_id == tutor.id,
                AvailabilityWindow.day_of_week == day,
                AvailabilityWindow.start_time == DEMO_WINDOW_START,
                AvailabilityWindow.end_time == DEMO_WINDOW_END,
            ),
        )
        if existing is not None:
            existing.is_active = True
            continue
        session.add(
            AvailabilityWindow(
                tutor_id=tutor.id,
                day_of_week=day,
                start_time=DEMO_WINDOW_START,
                end_time=DEMO_WINDOW_END,
                is_active=True,
            ),
        )
        created += 1
    await session.flush()
    return created


async def _ensure_session_types(session: AsyncSession, tutor: Tutor) -> int:
    created = 0
    for order, (name, duration, price) in enumerate(DEMO_SESSION_TYPES):
        existing = await session.scalar(
            select(SessionType).where(SessionType.tutor_id == tutor.id, SessionType.name == name),
        )
        if existing is None:
            session.add(
                SessionType(
                    tutor_id=tutor.id,
                    name=name,
                    duration_minutes=duration,
                    price=price,
                    is_active=True,
                    display_order=order,
                ),
            )
            created += 1
        else:
            existing.duration_minutes = duration
            existing.price = price
            existing.is_active = True
    await session.flush()
    return created


async def _run_seed(*, allow_production: bool) -> SeedStats:
    settings = get_settings()
    app_env = settings.app_env.strip().lower()
    if app_env in {"production", "prod"} and not allow_production:
        raise RuntimeError(
            "Refusing to seed demo data in production. "
            "Re-run with --allow-production only if you are absolutely sure.",
        )

    stats = SeedStats()

    async with SessionLocal() as session:
        try:
            admin_user, admin_created = await _ensure_user(
                session,
                email=DEMO_ADMIN_EMAIL,
                full_name="Demo Admin",
                role=RoleEnum.ADMIN,
            )
            tutor_user, tutor_created = await _ensure_user(
                session,
                email=DEMO_TUTOR_EMAIL,
                full_name="Demo Tutor",
                role=RoleEnum.TUTOR,
            )
            parent_user, parent_created = await _ensure_user(
                session,
                email=DEMO_PARENT_EMAIL,
                full_name="Demo Parent",
                role=RoleEnum.PARENT,
            )
            child_user, child_created = await _ensure_user(
                session,
                email=DEMO_CHILD_EMAIL,
                full_name="Demo Child",
                role=RoleEnum.PERSONAL,
                is_child_managed=True,
            )
            stats.users_created = sum([admin_created, tutor_created, parent_created, child_created])
            stats.users_updated = 4 - stats.users_created

            await _ensure_parent_link(session, parent_user, child_user)
            tutor, stats.tutor_created = await _ensure_tutor(session, tutor_user)
            stats.windows_created = await _ensure_windows(session, tutor)
            stats.session_types_created = await _ensure_session_types(session, tutor)

            await session.commit()
        except Exception:
            await session.rollback()
            raise

    for label, user in (
        ("admin", admin_user),
        ("tutor", tutor_user),
        ("parent", parent_user),
        ("child", child_user),
    ):
        stats.tokens[label] = create_access_token(str(user.id), role=user.role.value)
    stats.tokens["tutor_id"] = str(tutor.id)
    return stats


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=(
            "Seed idempotent demo data for TutorMarket (admin, tutor with weekly "
            "availability and session types, parent with a linked child)."
        ),
    )
    parser.add_argument(
        "--allow-production",
        action="store_true",
        help="Allow seeding even when APP_ENV is production/prod.",
    )
    return parser


def _print_summary(stats: SeedStats) -> None:
    print("Demo seed completed.")
    print(f"- Users created: {stats.users_created}")
    print(f"- Users updated: {stats.users_updated}")
    print(f"- Tutor profile created: {stats.tutor_created}")
    print(f"- Availability windows created: {stats.windows_created}")
    print(f"- Session types created: {stats.session_types_created}")
    print(f"- Tutor id: {stats.tokens['tutor_id']}")
    print("")
    print("Demo bearer tokens (non-production only, valid 30 minutes):")
    for label in ("admin", "tutor", "parent", "child"):
        print(f"- {label}: {stats.tokens[label]}")


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()

    try:
        stats = asyncio.run(_run_seed(allow_production=args.allow_production))
    except Exception as exc:
        print(f"Demo seed failed: {exc}")
        return 1
    finally:
        asyncio.run(close_engine())

    _print_summary(stats)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
