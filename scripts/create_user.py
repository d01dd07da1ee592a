"""
Create an account from the command line.

Examples:
    python scripts/create_user.py juanp juan@example.com 'S3cure!pass' --roles administrador auditor
    python scripts/create_user.py acme_ana ana@acme.com 'S3cure!pass' --external --organization-id ORG-1
"""
import argparse
import asyncio
import logging
import sys

from audit_auth.authorization import Role
from audit_auth.config import settings
from audit_auth.database import init_db
from audit_auth.errors import BadRequestError
from audit_auth.models import Account, ExternalProfile, InternalProfile, UserType
from audit_auth.repositories import (AccountRepository,
                                     ExternalProfileRepository,
                                     InternalProfileRepository)
from audit_auth.security import PasswordManager, PasswordValidator

logger = logging.getLogger("create_user")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create an internal or external account")
    parser.add_argument("username")
    parser.add_argument("email")
    parser.add_argument("password")
    parser.add_argument("--full-name", default="")
    parser.add_argument(
        "--roles",
        nargs="+",
        choices=[role.value for role in Role],
        default=[Role.ADMINISTRADOR.value],
        help="Roles of an internal account",
    )
    parser.add_argument("--department")
    parser.add_argument("--external", action="store_true", help="Create an external account")
    parser.add_argument("--organization-id", help="Organization of an external account")
    parser.add_argument("--job-title")
    parser.add_argument("--database-url", default=settings.DATABASE_URL)
    args = parser.parse_args(argv)
    if args.external and not args.organization_id:
        parser.error("--organization-id is required for external accounts")
    return args


async def create_user(args: argparse.Namespace) -> Account:
    PasswordValidator.from_settings().validate_or_raise(args.password)

    database = await init_db(args.database_url)
    try:
        accounts = AccountRepository(database)
        if await accounts.find_by_identifier(args.username) or await accounts.find_by_email(args.email):
            raise BadRequestError("An account with that username or email already exists")

        user_type = UserType.EXTERNAL if args.external else UserType.INTERNAL
        if user_type == UserType.INTERNAL:
            # Validate roles before anything is written
            profile = InternalProfile.create("", args.roles, department=args.department)

        account = Account.create(
            username=args.username,
            email=args.email,
            hashed_password=await PasswordManager().hash(args.password),
            user_type=user_type,
            full_name=args.full_name,
        )
        await accounts.add(account)

        if user_type == UserType.INTERNAL:
            profile.account_id = account.id
            await InternalProfileRepository(database).add(profile)
        else:
            await ExternalProfileRepository(database).add(
                ExternalProfile.create(account.id, args.organization_id, job_title=args.job_title)
            )
        return account
    finally:
        await database.dispose()


def main(argv=None) -> int:
    logging.basicConfig(level=logging.INFO, format=settings.LOG_FORMAT)
    args = parse_args(argv)
    try:
        account = asyncio.run(create_user(args))
    except BadRequestError as e:
        logger.error(e.message)
        return 1
    logger.info(f"Created {account.user_type.value} account {account.username} ({account.id})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
