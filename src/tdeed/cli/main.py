#!/usr/bin/env python3
"""
T-Deed CLI - inspect and modify deeds on the T-Deed registry

Commands:
- networks / abi: show supported networks and contract interfaces
- binding / permission / roles: resolve who may modify a token
- trait-get / set-trait / remove-trait / validate: read and write deed state
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Any

import click
from rich import box
from rich.console import Console
from rich.table import Table
from web3 import Web3

from tdeed import __version__
from tdeed.core import config
from tdeed.core.abi_loader import get_default_loader
from tdeed.core.exceptions import DeedEngineError
from tdeed.core.execution import DirectSigner, ExecutionContext, JsonRpcTransport, RelayProvider
from tdeed.core.logging_config import setup_logging
from tdeed.core.networks import DEED_NFT, NETWORKS, get_network
from tdeed.core.operations import DeedOperations, OperationResult
from tdeed.core.permissions import list_caller_roles, resolve_permission
from tdeed.core.traits import TraitValueType

logger = logging.getLogger(__name__)
console = Console()

VALUE_TYPES = click.Choice([t.name.lower() for t in TraitValueType], case_sensitive=False)


def _handle_cli_error(exc: Exception, exit_code: int = 1) -> None:
    """Centralized CLI error handler for consistent messaging/exit codes."""
    logger.error("CLI error: %s", exc, exc_info=True)
    console.print(f"[bold red]Error:[/] {exc}")
    sys.exit(exit_code)


def _build_context(ctx: click.Context) -> ExecutionContext:
    """Connect to the selected network as a direct signer or through a relay."""
    network = ctx.obj["network"]
    rpc_url = ctx.obj["rpc_url"] or network.rpc_endpoint
    account = ctx.obj["account"]
    if ctx.obj["relay"]:
        if not account:
            raise click.UsageError("--account is required with --relay")
        return RelayProvider(JsonRpcTransport(rpc_url), account, network.chain_id)
    w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": config.RPC_TIMEOUT_SECONDS}))
    if not account:
        accounts = w3.eth.accounts
        if not accounts:
            raise click.UsageError("No --account given and the node manages no accounts")
        account = accounts[0]
    return DirectSigner(w3, account)


def _operations(ctx: click.Context) -> DeedOperations:
    return DeedOperations(ctx.obj["network"], _build_context(ctx))


def _print_result(ctx: click.Context, result: OperationResult) -> None:
    if ctx.obj["json_output"]:
        click.echo(json.dumps(result.to_dict(), indent=2))
    elif result.succeeded:
        console.print(f"[bold green]{result.message}[/]")
        console.print(f"Transaction: [cyan]{result.tx_id}[/]")
        if result.decision is not None:
            console.print(f"[dim]Authorized via {result.decision.source.value}[/]")
    else:
        console.print(f"[bold red]{result.message}[/]")
    if not result.succeeded:
        sys.exit(1)


@click.group()
@click.version_option(__version__, prog_name="tdeed")
@click.option("--chain-id", default=config.DEFAULT_CHAIN_ID, type=int, show_default=True, help="Target chain ID")
@click.option("--rpc-url", default=None, help="RPC endpoint (defaults to the network's best endpoint)")
@click.option("--account", default=None, help="Caller address")
@click.option("--relay", is_flag=True, help="Send requests through a JSON-RPC wallet relay")
@click.option("--json-output", is_flag=True, help="Output raw JSON")
@click.option("--log-level", default=None, help="Override TDEED_LOG_LEVEL")
@click.pass_context
def cli(
    ctx: click.Context,
    chain_id: int,
    rpc_url: str | None,
    account: str | None,
    relay: bool,
    json_output: bool,
    log_level: str | None,
):
    """T-Deed registry interaction tool."""
    setup_logging(log_file=config.LOG_FILE, level=log_level or config.LOG_LEVEL)
    ctx.ensure_object(dict)
    ctx.obj.update(
        chain_id=chain_id,
        rpc_url=rpc_url,
        account=account,
        relay=relay,
        json_output=json_output,
    )
    try:
        ctx.obj["network"] = get_network(chain_id)
    except DeedEngineError as exc:
        _handle_cli_error(exc)


@cli.command("networks")
@click.pass_context
def networks_cmd(ctx: click.Context):
    """List supported networks and their deployment status."""
    rows = [
        {
            "chain_id": n.chain_id,
            "name": n.name,
            "deployed": n.contract_address(DEED_NFT) is not None,
            "registry": n.contracts.get(DEED_NFT),
        }
        for n in NETWORKS.values()
    ]
    if ctx.obj["json_output"]:
        click.echo(json.dumps(rows, indent=2))
        return

    table = Table(title="Supported Networks", box=box.ROUNDED)
    table.add_column("Chain ID", style="cyan")
    table.add_column("Name")
    table.add_column("Registry")
    table.add_column("Deployed")
    for row in rows:
        table.add_row(
            str(row["chain_id"]),
            row["name"],
            row["registry"] if row["deployed"] else "-",
            "[green]yes[/]" if row["deployed"] else "[dim]no[/]",
        )
    console.print(table)


@cli.command("abi")
@click.argument("contract_name", type=click.Choice(["DeedNFT", "Validator", "MetadataRenderer"]))
@click.pass_context
def abi_cmd(ctx: click.Context, contract_name: str):
    """Show the functions of a contract interface."""
    try:
        abi = get_default_loader().load(ctx.obj["chain_id"], contract_name)
    except DeedEngineError as exc:
        _handle_cli_error(exc)
        return

    if ctx.obj["json_output"]:
        click.echo(json.dumps(abi.as_list(), indent=2))
        return

    table = Table(title=f"{contract_name} ({abi.network})", box=box.ROUNDED)
    table.add_column("Function", style="cyan")
    table.add_column("Selector")
    for entry in abi.entries:
        if entry.get("type") != "function":
            continue
        arg_count = len(entry.get("inputs", []))
        table.add_row(
            abi.signature(entry["name"], arg_count),
            "0x" + abi.selector(entry["name"], arg_count).hex(),
        )
    console.print(table)


@cli.command("binding")
@click.argument("token_id")
@click.pass_context
def binding_cmd(ctx: click.Context, token_id: str):
    """Show the validator contract bound to a token."""
    try:
        binding = _operations(ctx).get_validator_binding(token_id)
    except DeedEngineError as exc:
        _handle_cli_error(exc)
        return
    if ctx.obj["json_output"]:
        click.echo(json.dumps({"token_id": token_id, "validator": binding}))
    elif binding:
        console.print(f"Token {token_id} is bound to validator [cyan]{binding}[/]")
    else:
        console.print(f"[dim]Token {token_id} has no validator binding[/]")


@cli.command("permission")
@click.argument("token_id", type=int)
@click.option("--caller", default=None, help="Address to check (defaults to --account)")
@click.pass_context
def permission_cmd(ctx: click.Context, token_id: int, caller: str | None):
    """Check whether a caller may modify a token."""
    try:
        context = _build_context(ctx)
        decision = resolve_permission(token_id, caller or context.account, ctx.obj["network"], context)
    except DeedEngineError as exc:
        _handle_cli_error(exc)
        return

    if ctx.obj["json_output"]:
        payload: dict[str, Any] = {
            "granted": decision.granted,
            "source": decision.source.value,
            "status": decision.status.value,
            "probes": {p.source.value: p.outcome.value for p in decision.probes},
        }
        click.echo(json.dumps(payload, indent=2))
        return

    table = Table(title=f"Permission for token {token_id}", box=box.ROUNDED)
    table.add_column("Source", style="cyan")
    table.add_column("Outcome")
    for probe in decision.probes:
        table.add_row(probe.source.value, probe.outcome.value)
    console.print(table)
    if decision.granted:
        console.print(f"[bold green]Granted[/] via {decision.source.value}")
    else:
        console.print(f"[bold red]Not granted[/] ({decision.status.value})")


@cli.command("roles")
@click.option("--caller", default=None, help="Address to check (defaults to --account)")
@click.pass_context
def roles_cmd(ctx: click.Context, caller: str | None):
    """List registry roles held by a caller."""
    try:
        context = _build_context(ctx)
        roles = list_caller_roles(caller or context.account, ctx.obj["network"], context)
    except DeedEngineError as exc:
        _handle_cli_error(exc)
        return
    if ctx.obj["json_output"]:
        click.echo(json.dumps(roles))
    elif roles:
        for role in roles:
            console.print(f"[green]*[/] {role}")
    else:
        console.print("[dim]No roles[/]")


@cli.command("trait-get")
@click.argument("token_id")
@click.argument("trait_name")
@click.option("--type", "value_type", type=VALUE_TYPES, default="string", show_default=True)
@click.pass_context
def trait_get_cmd(ctx: click.Context, token_id: str, trait_name: str, value_type: str):
    """Read a trait value."""
    try:
        value = _operations(ctx).get_trait_value(token_id, trait_name, value_type)
    except DeedEngineError as exc:
        _handle_cli_error(exc)
        return
    if ctx.obj["json_output"]:
        click.echo(json.dumps({"token_id": token_id, "trait": trait_name, "value": value}))
    elif value is None:
        console.print(f"[dim]{trait_name} is not set[/]")
    else:
        console.print(f"{trait_name}: [cyan]{value}[/]")


@cli.command("set-trait")
@click.argument("token_id")
@click.argument("trait_name")
@click.argument("trait_value")
@click.option("--type", "value_type", type=VALUE_TYPES, default="string", show_default=True)
@click.pass_context
def set_trait_cmd(ctx: click.Context, token_id: str, trait_name: str, trait_value: str, value_type: str):
    """Set or overwrite a trait on a token."""
    with console.status("[bold cyan]Submitting setTrait..."):
        result = _operations(ctx).set_trait(token_id, trait_name, trait_value, value_type)
    _print_result(ctx, result)


@cli.command("remove-trait")
@click.argument("token_id")
@click.argument("trait_name")
@click.pass_context
def remove_trait_cmd(ctx: click.Context, token_id: str, trait_name: str):
    """Remove a trait from a token."""
    with console.status("[bold cyan]Submitting removeTrait..."):
        result = _operations(ctx).remove_trait(token_id, trait_name)
    _print_result(ctx, result)


@cli.command("validate")
@click.argument("token_id")
@click.option("--valid/--invalid", "is_valid", default=True, help="Validation status to record")
@click.pass_context
def validate_cmd(ctx: click.Context, token_id: str, is_valid: bool):
    """Record a token's validation status on its validator contract."""
    with console.status("[bold cyan]Updating validation status..."):
        result = _operations(ctx).update_validation_status(token_id, is_valid)
    _print_result(ctx, result)


def main() -> None:
    try:
        cli(obj={})
    except DeedEngineError as exc:
        _handle_cli_error(exc)


if __name__ == "__main__":
    main()
