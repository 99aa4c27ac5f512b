"""
ado-tools - Command-line interface.

Runs the MCP server and covers the session chores around it: signing in
and out, choosing the organization and toggling readonly mode.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastmcp import FastMCP

from ado_tools import __version__
from ado_tools.client import AzureDevOpsClient
from ado_tools.config import AdoToolsConfig
from ado_tools.credentials import (
    AuthMethod,
    AuthPrompter,
    AzureCliSessionProvider,
    ConfiguredPrompter,
    ConsolePrompter,
    CredentialManager,
    DeviceCodeConfig,
    DeviceCodeProvider,
    EncryptedFileStorage,
)
from ado_tools.errors import AdoToolsError, AuthenticationCancelledError
from ado_tools.organization import (
    NOT_CONFIGURED_MESSAGE,
    OrganizationContext,
    normalize_organization_url,
    validate_organization_url,
)
from ado_tools.tools import register_all_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "azure-devops"


@dataclass
class Services:
    """Everything one process needs, built once by build_services()."""

    config: AdoToolsConfig
    organization: OrganizationContext
    credentials: CredentialManager
    client: AzureDevOpsClient

    async def aclose(self) -> None:
        await self.client.aclose()
        await self.credentials.device_code.aclose()


def build_services(
    config: AdoToolsConfig,
    prompter: AuthPrompter | None = None,
    interactive: bool = True,
) -> Services:
    """
    Composition root: construct the services and wire them together.

    Args:
        config: Loaded configuration
        prompter: Presentation layer for interactive sign-in. Defaults to
            answering with the configured auth method, which suits hosts
            that cannot show a menu.
        interactive: Let ordinary client calls start a sign-in when there is
            no session. The server passes False; it signs in only through
            the ado_login tool, which can show the device code to the user.
    """
    tenant = config.tenant if config.tenant not in ("organizations", "common") else None
    credentials = CredentialManager(
        storage=EncryptedFileStorage(config.home_dir),
        host_session=AzureCliSessionProvider(tenant=tenant),
        device_code=DeviceCodeProvider(DeviceCodeConfig(client_id=config.client_id, tenant=config.tenant)),
        prompter=prompter or ConfiguredPrompter(method=config.auth_method),
    )
    organization = OrganizationContext(config.organization_url)
    client = AzureDevOpsClient(credentials, organization, config, interactive=interactive)
    return Services(config=config, organization=organization, credentials=credentials, client=client)


def server_lifespan(services: Services):
    """Lifespan that closes the HTTP clients when the server shuts down."""

    @asynccontextmanager
    async def lifespan(server: FastMCP) -> AsyncIterator[None]:
        try:
            yield
        finally:
            await services.aclose()
            logger.info("Azure DevOps clients closed")

    return lifespan


def create_server(services: Services) -> FastMCP:
    """FastMCP server with every Azure DevOps tool registered."""
    mcp = FastMCP(SERVER_NAME, lifespan=server_lifespan(services))
    tools = register_all_tools(mcp, client=services.client, credentials=services.credentials)
    logger.info(f"Registered {len(tools)} tools")
    return mcp


def register_commands(subparsers: argparse._SubParsersAction) -> None:
    """Register the ado-tools commands."""

    # serve command
    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the MCP server over stdio",
        description="Expose the Azure DevOps tools to an MCP host over stdio.",
    )
    serve_parser.set_defaults(func=cmd_serve)

    # login command
    login_parser = subparsers.add_parser(
        "login",
        help="Sign in to Azure DevOps",
        description="Sign in and cache the access token. Without --method you are asked to choose.",
    )
    login_parser.add_argument(
        "--method",
        "-m",
        choices=[m.value for m in AuthMethod],
        default=None,
        help="Sign-in method: host_session (Azure CLI) or device_code",
    )
    login_parser.set_defaults(func=cmd_login)

    # logout command
    logout_parser = subparsers.add_parser(
        "logout",
        help="Sign out of Azure DevOps",
        description="Delete the cached token and forget device code accounts.",
    )
    logout_parser.set_defaults(func=cmd_logout)

    # status command
    status_parser = subparsers.add_parser(
        "status",
        help="Show sign-in, organization and readonly status",
    )
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    # set-organization command
    org_parser = subparsers.add_parser(
        "set-organization",
        help="Set the Azure DevOps organization URL",
        description="Persist the organization, e.g. https://dev.azure.com/yourorganization",
    )
    org_parser.add_argument("url", type=str, help="Organization URL")
    org_parser.set_defaults(func=cmd_set_organization)

    # readonly command
    readonly_parser = subparsers.add_parser(
        "readonly",
        help="Turn readonly mode on or off",
        description="In readonly mode every create, update, delete and comment call is refused.",
    )
    readonly_parser.add_argument(
        "state",
        choices=["on", "off", "toggle"],
        nargs="?",
        default="toggle",
        help="New state (default: toggle)",
    )
    readonly_parser.set_defaults(func=cmd_readonly)

    # test-connection command
    test_parser = subparsers.add_parser(
        "test-connection",
        help="Check that the organization is reachable with the current credentials",
    )
    test_parser.set_defaults(func=cmd_test_connection)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ado-tools",
        description="Azure DevOps work item tools for AI assistants (MCP)",
    )
    parser.add_argument("--version", action="version", version=f"ado-tools {__version__}")
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show detailed logs (overrides ADO_LOG_LEVEL)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    register_commands(subparsers)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        config = AdoToolsConfig.load()
    except AdoToolsError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    # stdout carries MCP traffic when serving, so logs always go to stderr
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    return args.func(args, config)


# --- Commands ---


def cmd_serve(args: argparse.Namespace, config: AdoToolsConfig) -> int:
    services = build_services(config, interactive=False)
    if services.organization.get() is None:
        logger.warning(f"{NOT_CONFIGURED_MESSAGE} Run 'ado-tools set-organization <url>'.")
    if config.readonly:
        logger.info("Readonly mode is enabled")

    mcp = create_server(services)
    mcp.run()
    return 0


def cmd_login(args: argparse.Namespace, config: AdoToolsConfig) -> int:
    services = build_services(config, prompter=ConsolePrompter())

    async def _login() -> None:
        try:
            if args.method == AuthMethod.DEVICE_CODE.value:
                await services.credentials.get_token_device_code()
            elif args.method == AuthMethod.HOST_SESSION.value:
                await services.credentials.get_token_host_session()
            else:
                await services.credentials.get_token(interactive=True)
        finally:
            await services.aclose()

    try:
        asyncio.run(_login())
    except AuthenticationCancelledError:
        print("Authentication cancelled.", file=sys.stderr)
        return 1
    except AdoToolsError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print("Successfully authenticated with Azure DevOps.")
    return 0


def cmd_logout(args: argparse.Namespace, config: AdoToolsConfig) -> int:
    services = build_services(config)

    async def _logout() -> None:
        try:
            await services.credentials.sign_out()
        finally:
            await services.aclose()

    asyncio.run(_logout())
    print("Signed out of Azure DevOps.")
    return 0


def cmd_status(args: argparse.Namespace, config: AdoToolsConfig) -> int:
    services = build_services(config)

    async def _status() -> dict:
        try:
            authenticated = await services.credentials.is_authenticated()
            organization = services.organization.get()
            connected = None
            if authenticated and organization:
                connected = await services.client.test_connection()
            return {
                "authenticated": authenticated,
                "organization": organization,
                "readonly": config.readonly,
                "connected": connected,
            }
        finally:
            await services.aclose()

    status = asyncio.run(_status())

    if args.json:
        print(json.dumps(status, indent=2))
        return 0

    print(f"Authenticated: {'yes' if status['authenticated'] else 'no'}")
    print(f"Organization:  {status['organization'] or 'not set'}")
    print(f"Readonly:      {'on' if status['readonly'] else 'off'}")
    if status["connected"] is not None:
        print(f"Connection:    {'ok' if status['connected'] else 'failed'}")
    return 0


def cmd_set_organization(args: argparse.Namespace, config: AdoToolsConfig) -> int:
    try:
        validate_organization_url(args.url)
    except AdoToolsError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    url = normalize_organization_url(args.url)
    try:
        config.save_organization(url)
    except OSError as e:
        print(f"Error saving settings: {e}", file=sys.stderr)
        return 1

    print(f"Organization set to: {url}")
    return 0


def cmd_readonly(args: argparse.Namespace, config: AdoToolsConfig) -> int:
    if args.state == "toggle":
        readonly = not config.readonly
    else:
        readonly = args.state == "on"

    try:
        config.save_readonly(readonly)
    except OSError as e:
        print(f"Error saving settings: {e}", file=sys.stderr)
        return 1

    print(f"Readonly mode {'enabled' if readonly else 'disabled'}.")
    if os.environ.get("ADO_READONLY"):
        print("Note: ADO_READONLY is set in the environment and takes precedence.", file=sys.stderr)
    return 0


def cmd_test_connection(args: argparse.Namespace, config: AdoToolsConfig) -> int:
    services = build_services(config, prompter=ConsolePrompter())
    if services.organization.get() is None:
        print(f"Error: {NOT_CONFIGURED_MESSAGE}", file=sys.stderr)
        return 1

    async def _test() -> bool:
        try:
            return await services.client.test_connection()
        finally:
            await services.aclose()

    if asyncio.run(_test()):
        print(f"Connected to {services.organization.get()}.")
        return 0
    print("Failed to connect to Azure DevOps. Check the organization URL and your sign-in.", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
