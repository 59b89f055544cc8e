from __future__ import annotations

import click
from flask import Flask

from facilityflow.contexts.procurement.infrastructure.repositories import UserRepository
from facilityflow.db import connect_database
from facilityflow.policies import VALID_ROLES, normalize_role


def register_user_cli(app: Flask) -> None:
    @app.cli.group("users")
    def users_group() -> None:
        """Manage portal identities."""

    @users_group.command("create")
    @click.option("--email", required=True)
    @click.option("--role", required=True, type=click.Choice(sorted(VALID_ROLES), case_sensitive=False))
    @click.option("--first-name", default="")
    @click.option("--last-name", default="")
    @click.option("--company", "company_affiliation", default=None)
    @click.option("--no-portal", is_flag=True, default=False, help="Create without portal access.")
    def users_create(email, role, first_name, last_name, company_affiliation, no_portal) -> None:
        db = connect_database(app.config["DB_PATH"])
        try:
            user_id = UserRepository().create(
                db,
                email=email.strip().lower(),
                role=normalize_role(role),
                first_name=first_name,
                last_name=last_name,
                company_affiliation=company_affiliation,
                portal_access_enabled=not no_portal,
                is_active=True,
            )
        finally:
            db.close()
        click.echo(f"Created user {user_id} ({email}).")

    @users_group.command("token")
    @click.argument("email")
    def users_token(email: str) -> None:
        db = connect_database(app.config["DB_PATH"])
        try:
            user = UserRepository().get_by_email(db, email.strip().lower())
        finally:
            db.close()
        if user is None:
            raise click.ClickException(f"No user with email {email}.")
        identity = app.extensions["facilityflow"]["identity"]
        click.echo(identity.issue_credential(int(user["id"])))
