"""
Seed the default permissions and roles, and optionally a first super-admin.

Usage:
    python scripts/seed_rbac.py
    python scripts/seed_rbac.py --super-admin-email admin@example.com --password '...'
"""
import argparse
import asyncio
import logging

from app.database import AsyncSessionLocal, engine
from app.services.admin.seeding import ensure_super_admin, seed_rbac


async def main(super_admin_email: str | None = None, password: str | None = None) -> None:
    try:
        async with AsyncSessionLocal() as session:
            report = await seed_rbac(session)
            created_user = False
            if super_admin_email and password:
                created_user = await ensure_super_admin(session, super_admin_email, password)
            await session.commit()
    finally:
        await engine.dispose()

    print("Seeding RBAC defaults...")
    for name in report.permissions_created:
        print(f"  ✓ Created permission: {name}")
    for name in report.roles_created:
        print(f"  ✓ Created role: {name}")
    for role_name, names in report.grants_added.items():
        print(f"  ✓ Granted {len(names)} permissions to '{role_name}'")
    if created_user:
        print(f"  ✓ Created super-admin user: {super_admin_email}")
    if not (report.changed or created_user):
        print("  Nothing to do, defaults already present")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed default RBAC permissions and roles")
    parser.add_argument("--super-admin-email", help="Also create a super-admin user with this email")
    parser.add_argument("--password", help="Password for the super-admin user")
    args = parser.parse_args()
    if bool(args.super_admin_email) != bool(args.password):
        parser.error("--super-admin-email and --password must be given together")
    logging.basicConfig(level=logging.WARNING, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    asyncio.run(main(args.super_admin_email, args.password))
