#!/usr/bin/env python3
"""
LevelGate -- operator CLI for the skill-based permission engine.

Talks to the same database and catalog as the API (DATABASE_URL, CATALOG_PATH)
but skips token authorization: shell access to the host already implies
operator trust.

Usage:
  python main.py create-user alice
  python main.py award alice moderation 120
  python main.py set-level alice administration 2
  python main.py progress alice
  python main.py check alice delete_post
  python main.py revoke-all alice
  python main.py purge-sessions
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.errors import LevelGateError
from auth.gateway import AuthGateway
from auth.models import User
from auth.store import AuthStore
from core.catalog import get_catalog
from core.config import get_settings
from core.progression import experience_to_next


def _read_password() -> str:
    password = getpass.getpass("  Password: ")
    if password != getpass.getpass("  Repeat:   "):
        raise ValueError("Passwords do not match.")
    if len(password) < 8:
        raise ValueError("Passwords must be at least 8 characters.")
    return password


def _user(gateway: AuthGateway, username: str) -> User:
    user = gateway.credentials.get_user_by_name(username)
    if user is None:
        raise ValueError(f"No user named {username!r}.")
    return user


def _print_progress(gateway: AuthGateway, user: User) -> None:
    catalog = gateway.ledger.catalog
    print(f"\n  {user.username} (id={user.id})")
    print("  " + "─" * 40)
    for progress in gateway.ledger.get_all_progress(user.id):
        skill = catalog.skills[progress.skill]
        missing = experience_to_next(skill.thresholds, progress.experience)
        nxt = "max" if missing is None else f"{missing} to next"
        print(f"  {progress.skill:<16} level {progress.level}/{skill.max_level}  {progress.experience:>7} xp  ({nxt})")
    actions = gateway.resolver.allowed_actions(user.id)
    print(f"\n  Allowed: {', '.join(actions) if actions else '(none)'}\n")


def run(args: argparse.Namespace, gateway: AuthGateway) -> int:
    """Execute one subcommand. Returns the process exit code."""
    if args.command == "create-user":
        password = args.password if args.password is not None else _read_password()
        user_id = gateway.register(args.username, password)
        print(f"  Created user {gateway.get_user(user_id).username} (id={user_id}).")
        return 0

    if args.command == "purge-sessions":
        print(f"  Purged {gateway.sessions.purge_expired()} dead session(s).")
        return 0

    user = _user(gateway, args.username)

    if args.command == "award":
        progress = gateway.ledger.award_experience(user.id, args.skill, args.amount)
        print(f"  {user.username}: {progress.skill} level {progress.level} ({progress.experience} xp)")
    elif args.command == "set-level":
        progress = gateway.ledger.set_level_directly(user.id, args.skill, args.level)
        print(f"  {user.username}: {progress.skill} level {progress.level} ({progress.experience} xp)")
    elif args.command == "progress":
        _print_progress(gateway, user)
    elif args.command == "check":
        decision = gateway.resolver.check(user.id, args.action)
        verdict = "ALLOWED" if decision.allowed else "DENIED"
        line = f"  {verdict}: {user.username} -> {args.action} ({decision.reason})"
        if decision.skill is not None:
            line += f" [{decision.skill} {decision.current_level}/{decision.required_level}]"
        print(line)
        return 0 if decision.allowed else 1
    elif args.command == "revoke-all":
        print(f"  Revoked {gateway.sessions.revoke_all(user.id)} session(s) for {user.username}.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="levelgate",
        description="Operator CLI for LevelGate users, skills and sessions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user alice
  python main.py award alice publishing 150
  python main.py check alice publish_post
  DATABASE_URL=sqlite:///prod.db python main.py purge-sessions
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND", required=True)

    p = sub.add_parser("create-user", help="Create an account (prompts for the password)")
    p.add_argument("username")
    p.add_argument("--password", default=None, help=argparse.SUPPRESS)

    p = sub.add_parser("award", help="Add experience to a user's skill")
    p.add_argument("username")
    p.add_argument("skill")
    p.add_argument("amount", type=int)

    p = sub.add_parser("set-level", help="Administrative override of a skill level")
    p.add_argument("username")
    p.add_argument("skill")
    p.add_argument("level", type=int)

    p = sub.add_parser("progress", help="Show a user's levels and unlocked actions")
    p.add_argument("username")

    p = sub.add_parser("check", help="Ask whether a user may perform an action (exit 1 if denied)")
    p.add_argument("username")
    p.add_argument("action")

    p = sub.add_parser("revoke-all", help="Revoke every session a user holds")
    p.add_argument("username")

    sub.add_parser("purge-sessions", help="Delete expired and revoked session rows")
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    store = AuthStore(settings.database_url)
    try:
        gateway = AuthGateway.build(store, get_catalog(), settings)
        code = run(args, gateway)
    except (LevelGateError, ValueError) as e:
        print(f"  [!] {e}", file=sys.stderr)
        code = 2
    finally:
        store.close()
    sys.exit(code)


if __name__ == "__main__":
    main()
