"""
User-facing prompts used during interactive sign-in.

The credential manager only depends on the AuthPrompter protocol; the
concrete prompter depends on where the process runs (terminal vs. a tool
host talking over stdio).
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import Protocol

from .models import AuthMethod, DeviceCodeChallenge

logger = logging.getLogger(__name__)

_METHOD_LABELS = {
    AuthMethod.HOST_SESSION: "Microsoft Account (Azure CLI) - reuse your existing 'az login' session",
    AuthMethod.DEVICE_CODE: "Device Code Flow - sign in with a code in your browser",
}


class AuthPrompter(Protocol):
    """Presentation layer for interactive sign-in."""

    async def choose_method(self) -> AuthMethod | None:
        """Ask which sign-in method to use; None means the user cancelled."""
        ...

    async def show_device_code(self, challenge: DeviceCodeChallenge) -> None:
        """Show the verification URL and user code."""
        ...


class ConsolePrompter:
    """Prompts on the terminal: menus on stderr, answers from stdin."""

    def __init__(self, stream=None):
        self._stream = stream or sys.stderr

    async def choose_method(self) -> AuthMethod | None:
        methods = list(_METHOD_LABELS)
        self._stream.write("Choose authentication method for Azure DevOps:\n")
        for index, method in enumerate(methods, start=1):
            self._stream.write(f"  {index}. {_METHOD_LABELS[method]}\n")
        self._stream.flush()

        try:
            answer = await asyncio.to_thread(input, "Selection [1-2, empty to cancel]: ")
        except EOFError:
            return None

        answer = answer.strip()
        if answer in ("1", "2"):
            return methods[int(answer) - 1]
        return None

    async def show_device_code(self, challenge: DeviceCodeChallenge) -> None:
        self._stream.write("\n=== Azure DevOps Device Code Authentication ===\n")
        self._stream.write(challenge.instructions() + "\n")
        self._stream.write("Keep this window open until authentication is complete.\n\n")
        self._stream.flush()


class ConfiguredPrompter:
    """
    Non-interactive prompter for tool hosts.

    Always answers with the configured method. The device code goes to the
    log and, when a notifier is given, to the tool host as well.
    """

    def __init__(
        self,
        method: AuthMethod = AuthMethod.DEVICE_CODE,
        notify: Callable[[str], Awaitable[None]] | None = None,
    ):
        self.method = method
        self._notify = notify

    async def choose_method(self) -> AuthMethod | None:
        return self.method

    async def show_device_code(self, challenge: DeviceCodeChallenge) -> None:
        message = challenge.instructions()
        logger.warning(message)
        if self._notify is not None:
            await self._notify(message)
