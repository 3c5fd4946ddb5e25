import click
from flask.cli import with_appcontext
from feedbackkit.billing.plans import TIER_CHOICES
from feedbackkit.errors import ServiceError
from feedbackkit.extensions import db
from feedbackkit.models.user import User
from feedbackkit.models.project import Project
from feedbackkit.models.project_member import ProjectMember, ROLE_CHOICES, ROLE_MEMBER
from feedbackkit.services import projects as project_service
from feedbackkit.services.dispatcher import dispatch_pending


def _user_by_email(email: str) -> User:
    user = db.session.query(User).filter_by(email=email.strip().lower()).one_or_none()
    if not user:
        raise click.ClickException("User not found")
    return user


@click.group()
def bootstrap():
    """Bootstrap helpers."""

@bootstrap.command("owner")
@click.option("--email", required=True)
@click.option("--password", required=True)
@click.option("--name", default=None)
@click.option("--tier", type=click.Choice(TIER_CHOICES), default="free")
@with_appcontext
def bootstrap_owner(email, password, name, tier):
    # fail fast if user exists
    email = email.strip().lower()
    if db.session.query(User).filter_by(email=email).count():
        raise click.ClickException("User already exists")

    user = User(email=email, name=name, is_active=True, subscription_tier=tier)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()

    click.echo(f"Bootstrap complete: user_id={user.id} email={email} tier={tier}")


@click.group()
def users():
    """User management."""

@users.command("set-tier")
@click.option("--email", required=True)
@click.option("--tier", type=click.Choice(TIER_CHOICES), required=True)
@with_appcontext
def users_set_tier(email, tier):
    user = _user_by_email(email)
    old = user.subscription_tier
    user.subscription_tier = tier
    db.session.commit()
    click.echo(f"Tier for {user.email}: {old} -> {tier}")


@click.group()
def projects():
    """Project ops."""

@projects.command("create")
@click.option("--owner-email", required=True)
@click.option("--name", required=True)
@with_appcontext
def projects_create(owner_email, name):
    owner = _user_by_email(owner_email)
    try:
        project = project_service.create_project(owner, name)
    except ServiceError as e:
        raise click.ClickException(e.reason)
    click.echo(f"Project created id={project.id} name={project.name} api_key={project.api_key}")


@click.group()
def members():
    """Project membership ops."""

@members.command("add")
@click.option("--project-id", type=int, required=True)
@click.option("--email", required=True)
@click.option("--role", type=click.Choice(ROLE_CHOICES), default=ROLE_MEMBER)
@with_appcontext
def members_add(project_id, email, role):
    """Operator override: adds the membership without plan checks."""
    project = db.session.get(Project, project_id)
    if not project:
        raise click.ClickException(f"Project id {project_id} not found")
    user = _user_by_email(email)
    if user.id == project.owner_id:
        raise click.ClickException("User owns this project")

    m = db.session.query(ProjectMember).filter_by(project_id=project.id, user_id=user.id).one_or_none()
    if not m:
        m = ProjectMember(project_id=project.id, user_id=user.id, role=role)
        db.session.add(m)
    else:
        m.role = role
    db.session.commit()
    click.echo(f"{email} is {role} on project {project.id}")


@click.group()
def events():
    """Outbox ops."""

@events.command("dispatch")
@click.option("--limit", type=int, default=None, help="Max events to process (default EVENTS_DISPATCH_BATCH)")
@with_appcontext
def events_dispatch(limit):
    report = dispatch_pending(limit)
    click.echo(f"dispatched={report.dispatched} failed={report.failed} emails={report.emails}")
    if report.failed:
        raise SystemExit(1)


def register_cli(app):
    app.cli.add_command(bootstrap)
    app.cli.add_command(users)
    app.cli.add_command(projects)
    app.cli.add_command(members)
    app.cli.add_command(events)
