"""Command-line interface for checking forum export documents."""

import json
import logging
from pathlib import Path

import click

from .config import Settings, load_settings
from .criteria import matches
from .documents import dump_records, load_records, load_usergroups, record_type
from .errors import PredicateTypeError, SchemaError
from .membership import resolve_memberships
from .records import RECORD_TYPES, Comment, User, Usergroup


def _settings(ctx: click.Context) -> Settings:
    return ctx.obj["settings"]


def _select(
    usergroups: list[Usergroup],
    rejected: dict[int, str],
    group_ids: tuple[int, ...],
) -> tuple[list[Usergroup], dict[int, str]]:
    """Filter loaded and rejected usergroups to the requested ids (all if none requested)."""
    if not group_ids:
        return usergroups, rejected
    selected = [g for g in usergroups if g.id in group_ids]
    rejected = {gid: error for gid, error in rejected.items() if gid in group_ids}
    missing = set(group_ids) - {g.id for g in selected} - set(rejected)
    if missing:
        raise click.ClickException(
            f"Usergroup not found: {', '.join(str(i) for i in sorted(missing))}"
        )
    return selected, rejected


def _label(usergroup: Usergroup) -> str:
    return f"{usergroup.id} ({usergroup.name})" if usergroup.name else str(usergroup.id)


def _echo_rejected(rejected: dict[int, str], status: str) -> None:
    for usergroup_id, error in rejected.items():
        click.echo(click.style(f"{usergroup_id}: {status}", fg="red"))
        click.echo(click.style(f"  {error}", fg="red"))


@click.group()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Settings file (default: nearest forum-schema.toml).",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.version_option(package_name="forum-schema")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, verbose: bool) -> None:
    """Tools for forum export documents.

    Validate exported JSON documents and resolve which users belong to
    which usergroups, including implicit membership through criteria.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        settings = load_settings(config_path)
    except SchemaError as e:
        raise click.ClickException(str(e)) from e
    ctx.obj = {"settings": settings}


@cli.command()
@click.argument("kind", type=click.Choice(sorted(RECORD_TYPES)))
@click.argument("path", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Write the normalised records to this file.",
)
@click.pass_context
def validate(ctx: click.Context, kind: str, path: Path, output: Path | None) -> None:
    """Validate a document of KIND records.

    PATH is a JSON file or a directory of JSON files. Usergroup documents
    also have every criterion checked.

    Examples:

        forum-schema validate users export/users.json

        forum-schema validate usergroups export/usergroups/
    """
    try:
        records = load_records(path, record_type(kind), _settings(ctx).date_keys)
    except SchemaError as e:
        raise click.ClickException(str(e)) from e

    click.echo(click.style(f"{len(records)} {kind} OK", fg="green"))

    if kind == "usergroups":
        criteria = sum(len(g.criteria) for g in records)
        click.echo(f"  {criteria} criteria checked")

    if output is not None:
        count = dump_records(records, output)
        click.echo(f"Wrote {count} records to {output}")


@cli.command()
@click.argument("usergroups_path", metavar="USERGROUPS", type=click.Path(exists=True, path_type=Path))
@click.argument("users_path", metavar="USERS", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--comments",
    "comments_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Comments document, used to count comments per user.",
)
@click.option("--group", "-g", "group_ids", type=int, multiple=True, help="Only resolve this usergroup id.")
@click.pass_context
def members(
    ctx: click.Context,
    usergroups_path: Path,
    users_path: Path,
    comments_path: Path | None,
    group_ids: tuple[int, ...],
) -> None:
    """Resolve the members of each usergroup.

    Usergroups with a misconfigured criterion, or whose criteria cannot
    apply to the users' attributes, are reported and skipped; the command
    then exits with an error.
    """
    settings = _settings(ctx)
    try:
        usergroups, rejected = load_usergroups(usergroups_path, settings.date_keys)
        users = load_records(users_path, User)
        comments = load_records(comments_path, Comment) if comments_path else []
    except SchemaError as e:
        raise click.ClickException(str(e)) from e

    usergroups, rejected = _select(usergroups, rejected, group_ids)
    report = resolve_memberships(usergroups, users, comments, settings=settings)
    report.errors.update(rejected)

    for usergroup in usergroups:
        if usergroup.id in report.errors:
            click.echo(click.style(f"{_label(usergroup)}: ABORTED", fg="red"))
            click.echo(click.style(f"  {report.errors[usergroup.id]}", fg="red"))
            continue
        member_ids = report.members[usergroup.id]
        click.echo(click.style(f"{_label(usergroup)}: {len(member_ids)} members", bold=True))
        if member_ids:
            click.echo(f"  {', '.join(str(i) for i in member_ids)}")
    _echo_rejected(rejected, "ABORTED")

    if not report.ok:
        raise click.ClickException(f"{len(report.errors)} usergroup(s) aborted")


@cli.command()
@click.argument("usergroups_path", metavar="USERGROUPS", type=click.Path(exists=True, path_type=Path))
@click.argument("attributes_path", metavar="ATTRIBUTES", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--group", "-g", "group_ids", type=int, multiple=True, help="Only check this usergroup id.")
@click.pass_context
def check(
    ctx: click.Context,
    usergroups_path: Path,
    attributes_path: Path,
    group_ids: tuple[int, ...],
) -> None:
    """Check one user's attributes against usergroup criteria.

    ATTRIBUTES is a JSON object of attribute key to value, e.g.
    {"comments": 2000, "is_member": true}.
    """
    try:
        usergroups, rejected = load_usergroups(usergroups_path, _settings(ctx).date_keys)
        with open(attributes_path, encoding="utf-8") as f:
            attributes = json.load(f)
    except SchemaError as e:
        raise click.ClickException(str(e)) from e
    except json.JSONDecodeError as e:
        raise click.ClickException(f"{attributes_path}: invalid JSON: {e}") from e
    except UnicodeDecodeError as e:
        raise click.ClickException(f"{attributes_path}: not valid UTF-8: {e}") from e

    if not isinstance(attributes, dict):
        raise click.ClickException(f"{attributes_path}: expected a JSON object")

    usergroups, rejected = _select(usergroups, rejected, group_ids)
    _echo_rejected(rejected, "ERROR")
    failed = len(rejected)
    for usergroup in usergroups:
        if not usergroup.criteria:
            click.echo(f"{_label(usergroup)}: no criteria")
            continue
        try:
            matched = matches(attributes, usergroup.criteria)
        except PredicateTypeError as e:
            failed += 1
            click.echo(click.style(f"{_label(usergroup)}: ERROR {e}", fg="red"))
            continue
        status = click.style("match", fg="green") if matched else click.style("no match", fg="yellow")
        click.echo(f"{_label(usergroup)}: {status}")

    if failed:
        raise click.ClickException(f"{failed} usergroup(s) have criteria that cannot apply")
