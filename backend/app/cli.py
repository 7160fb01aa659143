"""
Operator commands for role assignment.

Usage:
    python -m app.cli assign-role USER ROLE [--remove]
    python -m app.cli list-roles [--with-permissions]
    python -m app.cli user-roles [USER] [--all]

USER is a user id or an email address. These commands run as the system
actor: they bypass the policy layer but still go through the services, so
every change is audited and the super-admin role stays protected.
"""
import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from .database import AsyncSessionLocal, engine
from .errors import AppError, NotFoundError
from .services.admin.permission_cache import get_permission_cache
from .services.admin.role_service import RoleService
from .services.admin.user_service import UserService

logger = logging.getLogger("rbac.cli")

EXIT_OK = 0
EXIT_ERROR = 1


def _info(message: str) -> None:
    print(message)


def _warn(message: str) -> None:
    print(f"Warning: {message}")


def _error(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)


def _table(headers: Sequence[str], rows: Sequence[Sequence[object]]) -> None:
    cells = [[str(value) for value in row] for row in rows]
    widths = [
        max([len(header)] + [len(row[index]) for row in cells])
        for index, header in enumerate(headers)
    ]
    print("  ".join(header.ljust(width) for header, width in zip(headers, widths)))
    print("  ".join("-" * width for width in widths))
    for row in cells:
        print("  ".join(value.ljust(width) for value, width in zip(row, widths)))


async def assign_role(session: AsyncSession, user_identifier: str, role_name: str, remove: bool = False) -> int:
    cache = get_permission_cache()
    users = UserService(session, cache=cache)
    roles = RoleService(session, cache=cache)

    try:
        user = await users.get_user_by_identifier(user_identifier)
    except NotFoundError as exc:
        _error(exc.message)
        return EXIT_ERROR

    try:
        role = await roles.get_role_by_name(role_name)
    except NotFoundError:
        _error(f"Role not found: {role_name}")
        _info("Available roles:")
        _table(["ID", "Name"], [(item.id, item.name) for item in await roles.list_roles()])
        return EXIT_ERROR

    label = f"{user.name} ({user.email})"
    if remove:
        outcome = await users.remove_role(user, role)
        if not outcome.changed:
            _warn(f"User {label} does not have the role: {role.name}")
            return EXIT_OK
    else:
        outcome = await users.assign_role(user, role)
        if not outcome.changed:
            _warn(f"User {label} already has the role: {role.name}")
            return EXIT_OK

    await session.commit()
    if cache is not None:
        await cache.invalidate()
    logger.info("Role %s user_id=%s role=%s", outcome.value, user.id, role.name)

    if remove:
        _info(f"Successfully removed role {role.name} from user {label}")
    else:
        _info(f"Successfully assigned role {role.name} to user {label}")

    _info(f"Current roles for user {user.name}:")
    _table(["Role"], [(item.name,) for item in await users.get_roles(user)])
    return EXIT_OK


async def list_roles(session: AsyncSession, with_permissions: bool = False) -> int:
    service = RoleService(session)
    roles = await service.list_roles_with_counts()
    if not roles:
        _info("No roles found in the system.")
        return EXIT_OK

    _info("Available roles:")
    if with_permissions:
        rows = []
        for item in roles:
            names = [permission.name for permission in await service.get_role_permissions(item.role)]
            rows.append((item.role.id, item.role.name, ", ".join(names) or "None", item.users_count))
        _table(["ID", "Name", "Permissions", "Users Count"], rows)
    else:
        _table(
            ["ID", "Name", "Users Count"],
            [(item.role.id, item.role.name, item.users_count) for item in roles],
        )

    _info(f"Total roles: {len(roles)}")
    _info("To assign a role to a user, use:")
    _info("  python -m app.cli assign-role USER ROLE")
    return EXIT_OK


async def user_roles(session: AsyncSession, user_identifier: str | None = None, show_all: bool = False) -> int:
    users = UserService(session)
    roles = RoleService(session)

    if show_all:
        listing = await users.list_users_with_roles(limit=None)
        if not listing:
            _info("No users found in the system.")
            return EXIT_OK
        _info("Users and their roles:")
        _table(
            ["ID", "Name", "Email", "Roles", "Approved"],
            [
                (
                    item.user.id,
                    item.user.name,
                    item.user.email,
                    ", ".join(item.roles) or "None",
                    "Yes" if item.user.is_approved else "No",
                )
                for item in listing
            ],
        )
        _info(f"Total users: {len(listing)}")
        return EXIT_OK

    try:
        user = await users.get_user_by_identifier(user_identifier or "")
    except NotFoundError as exc:
        _error(exc.message)
        return EXIT_ERROR

    _info(f"Roles assigned to {user.name} ({user.email}):")
    assigned = await users.get_roles(user)
    if not assigned:
        _warn("This user has no roles assigned.")
        return EXIT_OK

    rows = []
    for role in assigned:
        names = [permission.name for permission in await roles.get_role_permissions(role)]
        rows.append((role.id, role.name, ", ".join(names) or "None"))
    _table(["ID", "Role", "Permissions"], rows)
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="python -m app.cli", description="Manage roles from the command line")
    commands = parser.add_subparsers(dest="command", required=True)

    assign = commands.add_parser("assign-role", help="Assign a role to a user or remove it")
    assign.add_argument("user", help="The ID or email of the user")
    assign.add_argument("role", help="The name of the role to assign")
    assign.add_argument(
        "--remove",
        action="store_true",
        help="Remove the role from the user instead of assigning it",
    )

    listing = commands.add_parser("list-roles", help="List all roles with their user counts")
    listing.add_argument(
        "--with-permissions",
        action="store_true",
        help="Display permissions for each role",
    )

    show = commands.add_parser("user-roles", help="List roles assigned to a user or all users")
    show.add_argument("user", nargs="?", help="The ID or email of the user")
    show.add_argument("--all", action="store_true", dest="show_all", help="List all users with their roles")

    return parser


async def _run(args: argparse.Namespace) -> int:
    try:
        async with AsyncSessionLocal() as session:
            if args.command == "assign-role":
                return await assign_role(session, args.user, args.role, remove=args.remove)
            if args.command == "list-roles":
                return await list_roles(session, with_permissions=args.with_permissions)
            return await user_roles(session, args.user, show_all=args.show_all)
    finally:
        await engine.dispose()


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "user-roles" and not args.user and not args.show_all:
        parser.error("user-roles requires a USER or --all")

    logging.basicConfig(level=logging.WARNING, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    try:
        return asyncio.run(_run(args))
    except AppError as exc:
        _error(exc.message)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
