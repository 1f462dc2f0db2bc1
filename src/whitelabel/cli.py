"""
Administration command line.

Creates users, roles and permissions and manages the grants between them:

    whitelabel init-db
    whitelabel create-user alice alice@example.com
    whitelabel create-role editor
    whitelabel create-permission catalog.write
    whitelabel grant-permission catalog.write --role editor
    whitelabel grant-role alice editor
    whitelabel permissions alice
"""

import argparse
import getpass
import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger

from .auth import (
    AuthError,
    InvalidInput,
    RegisterUserForm,
    UserManager,
    parse_form,
)
from .config import get_settings


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def _read_password(args: argparse.Namespace) -> str:
    if args.password:
        return args.password
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Confirm password: "):
        raise InvalidInput(["Passwords did not match."])
    return password


def cmd_init_db(manager: UserManager, args: argparse.Namespace) -> None:
    role = manager.bootstrap()
    print(f"Database ready: {manager.db.db_path} (admin role: {role.name})")


def cmd_create_user(manager: UserManager, args: argparse.Namespace) -> None:
    password = _read_password(args)
    form = parse_form(RegisterUserForm, {
        "username": args.username,
        "email": args.email,
        "password": password,
        "password_confirmation": password,
    })
    user = manager.register(form)
    if args.admin:
        role = manager.bootstrap()
        manager.grants.grant_role(user.id, role.id)
    print(f"Created user {user.username} ({user.id})")


def cmd_delete_user(manager: UserManager, args: argparse.Namespace) -> None:
    user = manager.users.get_user_by_username(args.username, include_deleted=args.hard)
    if args.hard:
        manager.users.delete_user(user.id)
        print(f"Deleted user {user.username}")
    else:
        manager.deactivate_user(user.id)
        print(f"Deactivated user {user.username}")


def cmd_list_users(manager: UserManager, args: argparse.Namespace) -> None:
    for user in manager.users.list_users(include_deleted=args.all):
        roles = ", ".join(r.name for r in manager.grants.roles_of_user(user.id))
        marker = " [deleted]" if user.is_deleted else ""
        print(f"{user.id:>5}  {user.username:<24} {user.email:<32} {roles}{marker}")


def cmd_create_role(manager: UserManager, args: argparse.Namespace) -> None:
    role = manager.roles.create(args.name, args.description)
    print(f"Created role {role.name} ({role.id})")


def cmd_create_permission(manager: UserManager, args: argparse.Namespace) -> None:
    permission = manager.permissions.create(args.name, args.description)
    print(f"Created permission {permission.name} ({permission.id})")


def cmd_grant_role(manager: UserManager, args: argparse.Namespace) -> None:
    user = manager.users.get_user_by_username(args.username)
    role = manager.roles.get_by_name(args.role)
    manager.grants.grant_role(user.id, role.id)
    print(f"Granted role {role.name} to {user.username}")


def cmd_revoke_role(manager: UserManager, args: argparse.Namespace) -> None:
    user = manager.users.get_user_by_username(args.username)
    role = manager.roles.get_by_name(args.role)
    manager.grants.revoke_role(user.id, role.id)
    print(f"Revoked role {role.name} from {user.username}")


def cmd_grant_permission(manager: UserManager, args: argparse.Namespace) -> None:
    permission = manager.permissions.get_by_name(args.permission)
    if args.role:
        role = manager.roles.get_by_name(args.role)
        manager.grants.grant_permission_to_role(role.id, permission.id)
        print(f"Granted {permission.name} to role {role.name}")
    else:
        user = manager.users.get_user_by_username(args.user)
        manager.grants.grant_permission_to_user(user.id, permission.id)
        print(f"Granted {permission.name} to {user.username}")


def cmd_revoke_permission(manager: UserManager, args: argparse.Namespace) -> None:
    permission = manager.permissions.get_by_name(args.permission)
    if args.role:
        role = manager.roles.get_by_name(args.role)
        manager.grants.revoke_permission_from_role(role.id, permission.id)
        print(f"Revoked {permission.name} from role {role.name}")
    else:
        user = manager.users.get_user_by_username(args.user)
        manager.grants.revoke_permission_from_user(user.id, permission.id)
        print(f"Revoked {permission.name} from {user.username}")


def cmd_permissions(manager: UserManager, args: argparse.Namespace) -> None:
    user = manager.users.get_user_by_username(args.username)
    for name in sorted(manager.resolver.effective_permissions(user.id)):
        sources = ", ".join(manager.resolver.explain(user.id, name))
        print(f"{name:<32} {sources}")


def cmd_issue_token(manager: UserManager, args: argparse.Namespace) -> None:
    user = manager.users.get_user_by_username(args.username)
    token = manager.tokens.issue_token(user.id, label=args.label)
    print(token.token)


def cmd_cleanup_sessions(manager: UserManager, args: argparse.Namespace) -> None:
    print(f"Removed {manager.sessions.cleanup_expired_sessions()} expired sessions")


def _add_target(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("permission", help="Permission name")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--role", help="Role name")
    target.add_argument("--user", help="Username (direct grant)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="whitelabel", description="White-label access control")
    parser.add_argument("--db", type=Path, help="Database path (overrides WHITELABEL_DATABASE_PATH)")
    parser.add_argument("--log-level", help="Log level (default: from settings)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init-db", help="Create tables and the admin role")
    p.set_defaults(func=cmd_init_db)

    p = sub.add_parser("create-user", help="Register a user")
    p.add_argument("username")
    p.add_argument("email")
    p.add_argument("--password", help="Password (prompted when omitted)")
    p.add_argument("--admin", action="store_true", help="Also grant the admin role")
    p.set_defaults(func=cmd_create_user)

    p = sub.add_parser("delete-user", help="Deactivate (or with --hard, delete) a user")
    p.add_argument("username")
    p.add_argument("--hard", action="store_true", help="Remove the user and everything it owns")
    p.set_defaults(func=cmd_delete_user)

    p = sub.add_parser("list-users", help="List users and their roles")
    p.add_argument("--all", action="store_true", help="Include deactivated users")
    p.set_defaults(func=cmd_list_users)

    for kind, func in (("role", cmd_create_role), ("permission", cmd_create_permission)):
        p = sub.add_parser(f"create-{kind}", help=f"Create a {kind}")
        p.add_argument("name")
        p.add_argument("--description")
        p.set_defaults(func=func)

    p = sub.add_parser("grant-role", help="Give a role to a user")
    p.add_argument("username")
    p.add_argument("role")
    p.set_defaults(func=cmd_grant_role)

    p = sub.add_parser("revoke-role", help="Take a role from a user")
    p.add_argument("username")
    p.add_argument("role")
    p.set_defaults(func=cmd_revoke_role)

    p = sub.add_parser("grant-permission", help="Grant a permission to a role or user")
    _add_target(p)
    p.set_defaults(func=cmd_grant_permission)

    p = sub.add_parser("revoke-permission", help="Revoke a permission from a role or user")
    _add_target(p)
    p.set_defaults(func=cmd_revoke_permission)

    p = sub.add_parser("permissions", help="Show a user's effective permissions")
    p.add_argument("username")
    p.set_defaults(func=cmd_permissions)

    p = sub.add_parser("issue-token", help="Issue a long-lived token")
    p.add_argument("username")
    p.add_argument("--label", help="Client application name")
    p.set_defaults(func=cmd_issue_token)

    p = sub.add_parser("cleanup-sessions", help="Remove expired sessions")
    p.set_defaults(func=cmd_cleanup_sessions)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    settings = get_settings()
    if args.db is not None:
        settings = settings.model_copy(update={"database_path": args.db})
    configure_logging(args.log_level or settings.log_level)

    try:
        manager = UserManager.from_settings(settings)
        args.func(manager, args)
    except AuthError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
