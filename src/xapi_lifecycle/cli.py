"""Command-line interface for xapi-lifecycle.

Usage:
    xlc --url https://pool-master snapshot <VM UUID>
    xlc delete <VM UUID> --force
    XAPI_LIFECYCLE_URL=https://pool-master xlc snapshot <VM UUID> -n nightly
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any, NoReturn

import click

from xapi_lifecycle import (
    LifecycleError,
    PolicyRejection,
    VmLifecycle,
    VmRecord,
    XapiClient,
    XapiConnectionError,
    __version__,
)
from xapi_lifecycle._logging import configure_logging
from xapi_lifecycle.settings import Settings

# Exit codes following Unix conventions
EXIT_SUCCESS = 0
EXIT_CLI_ERROR = 2
EXIT_POLICY_REJECTED = 3
EXIT_LIFECYCLE_ERROR = 125


def format_error(title: str, message: str, suggestions: list[str] | None = None) -> str:
    """Format an error message following What → Why → Fix pattern."""
    lines = [
        click.style(f"Error: {title}", fg="red", bold=True),
        "",
        f"  {message}",
    ]

    if suggestions:
        lines.extend(["", "  Suggestions:"])
        lines.extend(f"    • {suggestion}" for suggestion in suggestions)

    return "\n".join(lines)


def format_record_json(record: VmRecord) -> str:
    return json.dumps(record.model_dump(mode="json", by_alias=True), indent=2)


def _client_from_settings(settings: Settings) -> XapiClient:
    if not settings.url:
        raise click.UsageError("No pool master URL. Pass --url or set XAPI_LIFECYCLE_URL.")
    return XapiClient(
        settings.url,
        settings.username,
        settings.password.get_secret_value(),
        ignore_ssl=settings.ignore_ssl,
        trace_calls=settings.trace_calls,
    )


async def run_operation(settings: Settings, operation: str, vm_uuid: str, **kwargs: Any) -> int:
    """Connect, resolve the VM and run one lifecycle operation.

    Returns:
        Exit code to return from CLI
    """
    client = _client_from_settings(settings)
    try:
        async with client:
            lifecycle = VmLifecycle(client)
            vm = await lifecycle.get_vm_by_uuid(vm_uuid)
            if operation == "snapshot":
                snapshot = await lifecycle.snapshot_vm(vm, kwargs.get("name_label"))
                click.echo(format_record_json(snapshot))
            else:
                await lifecycle.delete_vm(vm, **kwargs)
                click.echo(f"Deleted VM {vm_uuid}", err=True)
        return EXIT_SUCCESS

    except PolicyRejection as e:
        click.echo(
            format_error(
                "Operation refused",
                e.message,
                ["Use --force to delete a VM whose destroy operation is blocked", "Use --allow-default-template for default templates"],
            ),
            err=True,
        )
        return EXIT_POLICY_REJECTED

    except XapiConnectionError as e:
        click.echo(
            format_error("Cannot reach pool master", e.message, ["Check --url and network access", "Use --ignore-ssl for self-signed certificates"]),
            err=True,
        )
        return EXIT_LIFECYCLE_ERROR

    except LifecycleError as e:
        click.echo(format_error(f"{operation.capitalize()} failed", e.message), err=True)
        return EXIT_LIFECYCLE_ERROR


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--url", help="Pool master URL [env: XAPI_LIFECYCLE_URL]")
@click.option("-u", "--username", help="Login user [env: XAPI_LIFECYCLE_USERNAME]")
@click.option("-p", "--password", help="Login password [env: XAPI_LIFECYCLE_PASSWORD]")
@click.option("--ignore-ssl", is_flag=True, default=None, help="Accept self-signed certificates")
@click.option("-v", "--verbose", count=True, help="Increase log verbosity (-vv traces every call)")
@click.option("-q", "--quiet", is_flag=True, help="Only log errors")
@click.version_option(__version__, "-V", "--version", prog_name="xapi-lifecycle")
@click.pass_context
def main(
    ctx: click.Context,
    url: str | None,
    username: str | None,
    password: str | None,
    ignore_ssl: bool | None,
    verbose: int,
    quiet: bool,
) -> None:
    """Safely delete and snapshot VMs on a XenServer / XCP-ng pool."""
    overrides: dict[str, Any] = {
        "url": url,
        "username": username,
        "password": password,
        "ignore_ssl": ignore_ssl,
    }
    if verbose >= 2:
        overrides["trace_calls"] = True
    ctx.obj = Settings(**{key: value for key, value in overrides.items() if value is not None})

    configure_logging(
        level=logging.DEBUG if verbose >= 2 else logging.INFO if verbose else logging.WARNING,
        quiet=quiet,
    )


@main.command()
@click.argument("vm_uuid")
@click.option("-n", "--name-label", help="Snapshot name (defaults to the VM name)")
@click.pass_obj
def snapshot(settings: Settings, vm_uuid: str, name_label: str | None) -> NoReturn:
    """Snapshot a VM, quiesced when the guest supports it."""
    sys.exit(asyncio.run(run_operation(settings, "snapshot", vm_uuid, name_label=name_label)))


@main.command()
@click.argument("vm_uuid")
@click.option("--keep-disks", is_flag=True, help="Keep the VM's disks")
@click.option("--force", is_flag=True, help="Delete even if destroy is blocked")
@click.option("--allow-default-template", is_flag=True, help="Allow deleting a default template")
@click.pass_obj
def delete(
    settings: Settings,
    vm_uuid: str,
    keep_disks: bool,
    force: bool,
    allow_default_template: bool,
) -> NoReturn:
    """Delete a VM with its snapshots and unshared disks."""
    sys.exit(
        asyncio.run(
            run_operation(
                settings,
                "delete",
                vm_uuid,
                delete_disks=not keep_disks,
                force=force,
                allow_deleting_default_template=allow_default_template,
            )
        )
    )


if __name__ == "__main__":
    main()
