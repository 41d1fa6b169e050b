"""
Interactive terminal chat with a replica.

Features:
- Resolves the email to a user id through check-or-create
- Loads web chat history into a ChatSession before the first prompt
- Command shortcuts (/help, /exit, /history, /switch, /reload)
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from rich.console import Console
from rich.panel import Panel

from replicachat.constants import PROJECT_DISPLAY_NAME, PROJECT_VERSION
from replicachat.core.models import Message
from replicachat.core.reconciler import ReconciliationService
from replicachat.core.session import ChatSession
from replicachat.memory.user_cache import UserCache
from replicachat.upstream.api import ReplicaAPI
from replicachat.upstream.client import UpstreamClient, normalize_collection
from replicachat.upstream.errors import UpstreamError, UpstreamTimeout
from replicachat.utils.logging import get_logger

logger = get_logger("terminal_chat")

console = Console()

CHAT_COMMANDS = {
    "/help": "Show available commands",
    "/exit": "Exit the chat",
    "/quit": "Exit the chat",
    "/history": "Show recent messages",
    "/replicas": "List your replicas",
    "/switch": "Switch to another replica: /switch <uuid>",
    "/reload": "Reload history from the server",
    "/clear": "Clear this conversation locally",
}


class TerminalChat:
    """Chat loop driving a ChatSession against the upstream platform."""

    def __init__(self, config: Any, email: str, replica_uuid: str):
        self.config = config
        self.email = email
        self.replica_uuid = replica_uuid
        self.session = ChatSession()

    async def run(self) -> None:
        async with UpstreamClient.from_config(self.config) as client:
            api = ReplicaAPI(client)
            reconciler = ReconciliationService(
                api=api,
                cache=UserCache(self.config.cache.user_cache_path),
                user_policy=self.config.retry.user_policy,
                replica_policy=self.config.retry.replica_policy,
            )

            with console.status("Signing in..."):
                result = await reconciler.check_or_create_user(self.email)
            self.session.set_user(result.user)
            if not result.confirmed:
                console.print("[yellow]Upstream unavailable; using a local identity for now.[/]")

            await self._load_replicas(api)
            await self._select(api, self.replica_uuid)

            console.print(
                Panel(
                    f"[bold green]{PROJECT_DISPLAY_NAME} v{PROJECT_VERSION}[/]\n"
                    f"Signed in as [cyan]{result.user.id}[/]\n"
                    "[dim]Type your message and press Enter. Type /help for commands.[/]",
                    border_style="green",
                )
            )
            self._print_messages(self.session.messages[-10:])
            await self._chat_loop(api)

    async def _chat_loop(self, api: ReplicaAPI) -> None:
        while True:
            try:
                user_input = console.input("\n[bold cyan]You:[/] ").strip()
            except EOFError:
                break
            except KeyboardInterrupt:
                console.print("\n[dim]Use /exit to quit.[/]")
                continue

            if not user_input:
                continue
            if user_input.startswith("/"):
                if not await self._handle_command(user_input, api):
                    break
                continue

            await self._send(api, user_input)

    async def _send(self, api: ReplicaAPI, content: str) -> None:
        uuid_ = self.session.current_uuid
        self.session.add_message(_local_message(content, "user"))
        self.session.is_loading = True
        try:
            with console.status("Thinking..."):
                response = await api.chat_completion(
                    uuid_,
                    content,
                    user_id=self.session.user.id if self.session.user else None,
                    timeout=self.config.upstream.chat_timeout_seconds,
                )
        except UpstreamTimeout:
            console.print("[red]The replica took too long to answer. Try again.[/]")
            return
        except UpstreamError as e:
            console.print(f"[red]Error: {e}[/]")
            return
        finally:
            self.session.is_loading = False

        if not response.ok:
            error = response.body.get("error") if isinstance(response.body, dict) else response.body
            console.print(f"[red]Error {response.status_code}: {error}[/]")
            return

        reply = response.body.get("content", "") if isinstance(response.body, dict) else ""
        self.session.add_message(_local_message(reply, "assistant"))
        console.print(f"[bold green]{self._replica_name()}:[/] {reply}")

    async def _handle_command(self, command: str, api: ReplicaAPI) -> bool:
        """Handle a chat command. Returns False if the loop should exit."""
        parts = command.split()
        cmd = parts[0].lower()

        if cmd in ("/exit", "/quit"):
            console.print("[dim]Goodbye![/]")
            return False

        elif cmd == "/help":
            table_str = "\n".join(f"  [cyan]{k}[/]  {v}" for k, v in CHAT_COMMANDS.items())
            console.print(f"\n[bold]Available commands:[/]\n{table_str}\n")

        elif cmd == "/history":
            self._print_messages(self.session.messages[-20:])

        elif cmd == "/replicas":
            await self._load_replicas(api)
            for replica in self.session.replicas:
                marker = "*" if replica.get("uuid") == self.session.current_uuid else " "
                console.print(f"  {marker} [cyan]{replica.get('uuid')}[/]  {replica.get('name', '')}")

        elif cmd == "/switch":
            if len(parts) < 2:
                console.print("  [yellow]Usage: /switch <uuid>[/]")
            else:
                await self._select(api, parts[1])
                console.print(f"  Now chatting with [cyan]{self._replica_name()}[/]")
                self._print_messages(self.session.messages[-10:])

        elif cmd == "/reload":
            await self._reload(api)
            self._print_messages(self.session.messages[-10:])

        elif cmd == "/clear":
            self.session.clear_messages()
            if self.session.current_uuid:
                self.session.set_history(self.session.current_uuid, [])
            console.print("  [dim]Conversation cleared.[/]")

        else:
            console.print(f"  [yellow]Unknown command: {cmd}. Type /help for commands.[/]")

        return True

    async def _load_replicas(self, api: ReplicaAPI) -> None:
        owner = self.session.user.id if self.session.user else None
        try:
            response = await api.list_replicas(owner_id=owner)
            if response.ok:
                self.session.set_replicas(normalize_collection(response.body, keys=("items",)))
        except UpstreamError as e:
            logger.warning("replica_list_failed", error=str(e))

    async def _select(self, api: ReplicaAPI, replica_uuid: str) -> None:
        self.session.select_replica(replica_uuid)
        if not self.session.history.get(replica_uuid):
            await self._reload(api)

    async def _reload(self, api: ReplicaAPI) -> None:
        if not self.session.user or not self.session.current_uuid:
            return
        loaded = await self.session.load_history(
            api, self.session.current_uuid, self.session.user.id
        )
        if not loaded:
            console.print("[yellow]Could not load chat history.[/]")

    def _replica_name(self) -> str:
        replica = self.session.current_replica or {}
        return replica.get("name") or "Replica"

    def _print_messages(self, messages: list[Message]) -> None:
        for msg in messages:
            color = "cyan" if msg.role == "user" else "green"
            console.print(f"  [{color}]{msg.role}:[/] {msg.content[:200]}")


def _local_message(content: str, role: str) -> Message:
    return Message(
        id=uuid.uuid4().hex,
        content=content,
        role=role,
        timestamp=datetime.now(UTC),
        source="cli",
    )
