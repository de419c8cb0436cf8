"""Formgate CLI - serve forms, check schemas, manage stored responses."""

import json
from enum import Enum
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import settings
from .errors import FormgateError
from .services.form_svc import load_form_schema
from .services.storage_svc import ResponseStore

app = typer.Typer(
    name="formgate",
    help="Schema-driven forms with BYOK storage and email",
    no_args_is_help=True,
)
console = Console()

responses_app = typer.Typer(help="Inspect and manage stored responses")
app.add_typer(responses_app, name="responses")

STARTER_SCHEMA = {
    "title": "Contact Us",
    "fields": [
        {"name": "name", "type": "text", "label": "Your Name", "required": True, "maxLength": 100},
        {"name": "email", "type": "email", "label": "Email", "required": True},
        {"name": "message", "type": "textarea", "label": "Message", "required": True, "maxLength": 2000},
    ],
    "submit": {
        "storage": "responses/contact.json",
        "email": "you@example.com",
    },
}


class StorageFormat(str, Enum):
    json = "json"
    csv = "csv"


def _store(storage_dir: str | None) -> ResponseStore:
    return ResponseStore(Path(storage_dir) if storage_dir else settings.storage_path)


def _fail(exc: FormgateError) -> None:
    console.print(f"[red]{exc.message}[/red]")
    for err in exc.errors:
        if err != exc.message:
            console.print(f"  - {err}")
    raise typer.Exit(1)


@app.command("serve")
def serve(
    port: int = typer.Option(3000, "--port", "-p", help="Port to run on"),
    host: str = typer.Option("127.0.0.1", "--host", help="Host to bind to"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
):
    """Launch the submission server."""
    try:
        import uvicorn
    except ImportError:
        console.print("[red]Missing dependencies. Install with: pip install -e '.[server]'[/red]")
        raise typer.Exit(1)

    console.print(f"[bold cyan]Starting Formgate at http://{host}:{port}[/bold cyan]")
    console.print(f"Forms: {settings.forms_path}  Responses: {settings.storage_path}")
    uvicorn.run("formgate.app:app", host=host, port=port, reload=reload)


@app.command("check")
def check(schema_path: Path = typer.Argument(..., help="Form schema JSON file")):
    """Validate a form schema and show its fields."""
    try:
        schema = load_form_schema(schema_path)
    except FormgateError as exc:
        _fail(exc)

    table = Table(title=schema.title)
    table.add_column("Name", style="cyan")
    table.add_column("Type", style="green")
    table.add_column("Label")
    table.add_column("Required", style="yellow")
    for field in schema.fields:
        kind = field.field_type.value
        if kind != field.type:
            kind = f"{kind} ({field.type})"
        table.add_row(field.name, kind, field.label or "", "yes" if field.required else "")
    console.print(table)

    submit = schema.submit
    console.print(f"Storage: {submit.storage or '[dim]none[/dim]'}")
    if submit.email:
        smtp = "per-form smtp" if submit.email.smtp else "global smtp"
        console.print(f"Email: {', '.join(submit.email.to)} ({smtp})")
    else:
        console.print("Email: [dim]none[/dim]")


@app.command("init")
def init(
    directory: Path = typer.Argument(Path("."), help="Project directory"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing starter form"),
):
    """Create a starter contact form schema."""
    target = directory / "forms" / "contact.json"
    if target.exists() and not force:
        console.print(f"[yellow]{target} already exists (use --force to overwrite)[/yellow]")
        raise typer.Exit(1)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(STARTER_SCHEMA, indent=2) + "\n", encoding="utf-8")
    console.print(
        Panel(
            f"Created [bold]{target}[/bold]\n\n"
            "1. Edit the fields and the notification address\n"
            "2. Set FORMGATE_SMTP_* in .env to send email\n"
            "3. Run [bold green]formgate serve[/bold green] and POST to /f/contact/submit",
            title="Formgate",
        )
    )


@responses_app.command("list")
def responses_list(
    form_key: str = typer.Argument(..., help="Form key (storage file name without extension)"),
    fmt: StorageFormat = typer.Option(StorageFormat.json, "--format", "-f", help="Artifact format"),
    storage_dir: str = typer.Option(None, "--storage-dir", help="Override storage directory"),
):
    """Show stored responses for a form."""
    try:
        responses = _store(storage_dir).list(form_key, fmt.value)
    except FormgateError as exc:
        _fail(exc)

    if not responses:
        console.print(f"[dim]No responses for {form_key}[/dim]")
        return

    keys: list[str] = []
    for response in responses:
        keys.extend(k for k in response.data if k not in keys)

    table = Table(title=f"{form_key} ({len(responses)} responses)")
    table.add_column("Timestamp", style="cyan")
    for key in keys:
        table.add_column(key)
    for response in responses:
        row = []
        for key in keys:
            value = response.data.get(key, "")
            row.append(", ".join(value) if isinstance(value, list) else str(value))
        table.add_row(response.timestamp, *row)
    console.print(table)


@responses_app.command("count")
def responses_count(
    form_key: str = typer.Argument(...),
    fmt: StorageFormat = typer.Option(StorageFormat.json, "--format", "-f", help="Artifact format"),
    storage_dir: str = typer.Option(None, "--storage-dir"),
):
    """Print how many responses a form has."""
    try:
        console.print(_store(storage_dir).count(form_key, fmt.value))
    except FormgateError as exc:
        _fail(exc)


@responses_app.command("export")
def responses_export(
    form_key: str = typer.Argument(...),
    fmt: StorageFormat = typer.Option(StorageFormat.csv, "--format", "-f", help="Target format"),
    storage_dir: str = typer.Option(None, "--storage-dir"),
):
    """Re-derive a CSV (or JSON) artifact from the stored responses."""
    try:
        path = _store(storage_dir).export(form_key, fmt.value)
    except FormgateError as exc:
        _fail(exc)
    console.print(f"[green]Exported to {path}[/green]")


@responses_app.command("purge")
def responses_purge(
    form_key: str = typer.Argument(...),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    storage_dir: str = typer.Option(None, "--storage-dir"),
):
    """Delete every stored response for a form."""
    if not yes:
        typer.confirm(f"Delete all responses for {form_key}?", abort=True)
    try:
        removed = _store(storage_dir).purge(form_key)
    except FormgateError as exc:
        _fail(exc)
    console.print(f"Removed {removed} file(s)")


if __name__ == "__main__":
    app()
