"""CLI commands for database management."""
import asyncio
import sys

import click
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.core.database import async_session_maker, engine, init_db
from app.models.user import UserRole
from app.repositories.user import UserRepository
from app.services.question_bank_service import QuestionBankService


@click.group()
def cli():
    """Database management commands."""
    pass


@cli.command()
def test_connection():
    """Test database connection."""

    async def _test():
        try:
            async with engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
            click.echo("✓ Database connection successful")
            return True
        except SQLAlchemyError as e:
            click.echo(f"✗ Database connection failed: {e}")
            return False
        finally:
            await engine.dispose()

    success = asyncio.run(_test())
    if not success:
        sys.exit(1)


@cli.command(name="init-db")
def init_db_command():
    """Create all database tables."""

    async def _create():
        try:
            await init_db()
            click.echo("✓ All tables created successfully")
        except SQLAlchemyError as e:
            click.echo(f"✗ Error creating tables: {e}")
            sys.exit(1)
        finally:
            await engine.dispose()

    asyncio.run(_create())


@cli.command()
def seed_questions():
    """Insert the eligibility and preset questionnaire templates that are missing."""

    async def _seed():
        async with async_session_maker() as session:
            inserted = await QuestionBankService(session).seed()
        await engine.dispose()
        click.echo(f"✓ Seeded {inserted} question templates")

    asyncio.run(_seed())


@cli.command()
@click.argument("email")
@click.option("--name", required=True, help="Display name")
@click.option(
    "--role",
    type=click.Choice([role.value for role in UserRole], case_sensitive=False),
    default=UserRole.ASSESSOR.value,
    show_default=True,
)
def create_user(email: str, name: str, role: str):
    """Invite a staff user. The Keycloak subject is linked on first login."""

    async def _create():
        async with async_session_maker() as session:
            users = UserRepository(session)
            if await users.get_by_email(email):
                click.echo(f"✗ User {email} already exists")
                return False
            await users.create(email=email.lower(), name=name, role=role.upper(), is_active=True)
            await session.commit()
        await engine.dispose()
        click.echo(f"✓ Created {role.upper()} {email}")
        return True

    if not asyncio.run(_create()):
        sys.exit(1)


if __name__ == "__main__":
    cli()
