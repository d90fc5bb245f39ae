"""
Command Line Interface for Chat Memory.

This module provides a terminal chat client on top of the chat manager,
with slash commands for managing sessions and the memory store.
"""

import asyncio
import json
import logging
import os
from datetime import datetime
from typing import List, Optional

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table
from rich.text import Text

from .chat_manager import ChatManager
from .log_buffer import LogBuffer
from .memory.models import Message, Role

logger = logging.getLogger("cli")

# Rich console for pretty terminal output
console = Console()


def format_timestamp(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


class CommandLineInterface:
    """
    Terminal chat client.

    Plain input is sent as a chat message in the current session; input
    starting with / is a command.
    """

    HELP_TEXT = """
    Chat Memory CLI - Available Commands:

    /help                - Show this help message
    /new [title]         - Start a new session
    /list                - List sessions
    /load <id>           - Load a session
    /rename <title>      - Rename the current session
    /delete [id]         - Delete a session (the current one by default)
    /retry               - Regenerate the reply to your last message
    /search <query>      - Search earlier messages by meaning
    /context             - Show the context rules
    /context set <text>  - Replace the context rules and turn them on
    /context on|off      - Turn the context rules on or off
    /context clear       - Remove the context rules
    /stats               - Show store statistics
    /cleanup             - Apply the retention policy now
    /export <file>       - Export all sessions to a JSON file
    /import <file>       - Replace all sessions with a JSON export
    /logs [n]            - Show recent log records
    /exit                - Exit the application

    For any other input, just type your message to chat.
    """

    def __init__(self, chat_manager: ChatManager, log_buffer: Optional[LogBuffer] = None):
        """
        Initialize the CLI.

        Args:
            chat_manager: Manager for conversations and the memory store
            log_buffer: Optional buffer backing the /logs command
        """
        self.chat_manager = chat_manager
        self.store = chat_manager.store
        self.log_buffer = log_buffer
        self.running = False

    async def start(self) -> None:
        """Start the CLI and process user input until exit."""
        self.running = True

        console.print(Panel.fit(
            "[bold blue]Chat Memory[/bold blue] - [italic]Offline chat history with semantic recall[/italic]",
            border_style="blue"
        ))
        console.print("Type [bold green]/help[/bold green] for available commands or start chatting!")
        console.print()

        while self.running:
            try:
                user_input = await asyncio.to_thread(Prompt.ask, "[bold green]You[/bold green]")
            except (KeyboardInterrupt, EOFError):
                break

            try:
                await self.handle_input(user_input)
            except Exception as e:
                logger.error(f"Error in CLI: {str(e)}")
                console.print(f"[bold red]Error:[/bold red] {str(e)}", style="red")

        await self.shutdown()

    async def shutdown(self) -> None:
        """Shut down the CLI gracefully."""
        self.running = False
        console.print("\n[bold yellow]Shutting down...[/bold yellow]")
        await self.chat_manager.shutdown()

    async def handle_input(self, user_input: str) -> None:
        user_input = user_input.strip()
        if not user_input:
            return
        if user_input.startswith('/'):
            await self._handle_command(user_input)
        else:
            await self._handle_message(user_input)

    async def _handle_command(self, command: str) -> None:
        """
        Handle a command (starting with /).

        Args:
            command: The command string
        """
        parts = command.split(maxsplit=1)
        cmd = parts[0].lower()
        args = parts[1].strip() if len(parts) > 1 else ""

        if cmd == '/help':
            console.print(Markdown(self.HELP_TEXT))

        elif cmd == '/exit':
            self.running = False

        elif cmd == '/new':
            session = await self.chat_manager.new_session(args or None)
            console.print(f"[bold blue]Started session {session.id}[/bold blue]")

        elif cmd == '/list':
            await self._list_sessions()

        elif cmd == '/load':
            if not args:
                console.print("[bold red]Error:[/bold red] Please specify a session ID", style="red")
            else:
                messages = await self.chat_manager.load_session(args)
                console.print(f"[bold blue]Loaded session: {args}[/bold blue]")
                self._show_messages(messages)

        elif cmd == '/rename':
            if not args:
                console.print("[bold red]Error:[/bold red] Please specify a title", style="red")
            else:
                await self.chat_manager.rename_session(args)
                console.print(f"[bold blue]Renamed session to: {args}[/bold blue]")

        elif cmd == '/delete':
            await self.chat_manager.delete_session(args or None)
            console.print("[bold blue]Session deleted[/bold blue]")

        elif cmd == '/retry':
            await self._retry_last()

        elif cmd == '/search':
            if not args:
                console.print("[bold red]Error:[/bold red] Please specify a query", style="red")
            else:
                await self._search(args)

        elif cmd == '/context':
            await self._handle_context(args)

        elif cmd == '/stats':
            await self._show_stats()

        elif cmd == '/cleanup':
            with console.status("[bold blue]Cleaning up...[/bold blue]", spinner="dots"):
                ran = await self.chat_manager.retention_manager.run_cleanup()
            console.print("[bold blue]Cleanup complete[/bold blue]" if ran else "[italic]Cleanup already running[/italic]")

        elif cmd == '/export':
            if not args:
                console.print("[bold red]Error:[/bold red] Please specify a file path", style="red")
            else:
                await self._export(args)

        elif cmd == '/import':
            if not args:
                console.print("[bold red]Error:[/bold red] Please specify a file path", style="red")
            else:
                await self._import(args)

        elif cmd == '/logs':
            self._show_logs(int(args) if args.isdigit() else 50)

        else:
            console.print(f"[bold red]Unknown command:[/bold red] {cmd}", style="red")
            console.print("Type [bold green]/help[/bold green] for available commands.")

    async def _handle_message(self, message: str) -> None:
        """
        Handle a user message (not a command).

        Args:
            message: The user's message
        """
        with console.status("[bold blue]Thinking...[/bold blue]", spinner="dots"):
            user_message, reply = await self.chat_manager.send_message(message)

        if user_message is None:
            return
        if reply is not None:
            self._show_reply(reply)
        elif self.chat_manager.provider is not None:
            console.print("[bold red]No response from the model.[/bold red] Use /retry to try again.", style="red")

    async def _retry_last(self) -> None:
        session_id = self.chat_manager.current_session_id
        if session_id is None:
            console.print("[italic]No session selected[/italic]")
            return

        messages = await self.store.get_messages(session_id)
        last_user = next((m for m in reversed(messages) if m.role == Role.USER), None)
        if last_user is None:
            console.print("[italic]Nothing to retry[/italic]")
            return

        with console.status("[bold blue]Thinking...[/bold blue]", spinner="dots"):
            reply = await self.chat_manager.retry_message(last_user.id)
        if reply is None:
            console.print("[bold red]No response from the model.[/bold red]", style="red")
        else:
            self._show_reply(reply)

    def _show_reply(self, reply: Message) -> None:
        console.print("[bold purple]Assistant[/bold purple]")
        console.print(Markdown(reply.content))

    def _show_messages(self, messages: List[Message]) -> None:
        """Display a session's messages."""
        if not messages:
            console.print("[italic]No messages in this session[/italic]")
            return

        for message in messages:
            if message.role == Role.USER:
                console.print("[bold green]You[/bold green]")
                console.print(message.content)
            else:
                console.print(f"[bold purple]{message.role.value.capitalize()}[/bold purple]")
                console.print(Markdown(message.content))
            console.print()

    async def _list_sessions(self) -> None:
        """List sessions, most recent first."""
        sessions = await self.store.get_all_sessions()

        if not sessions:
            console.print("[italic]No sessions available[/italic]")
            return

        table = Table(title="Sessions")
        table.add_column("ID", style="cyan")
        table.add_column("Title", style="green")
        table.add_column("Messages", style="magenta")
        table.add_column("Last Updated", style="yellow")
        table.add_column("Preview", style="blue")

        for session in sessions:
            marker = "* " if session.id == self.chat_manager.current_session_id else ""
            table.add_row(
                marker + session.id,
                session.title,
                str(session.message_count),
                format_timestamp(session.updated_at),
                session.preview,
            )

        console.print(table)

    async def _search(self, query: str) -> None:
        """
        Search earlier messages related to a query.

        Args:
            query: The search query
        """
        with console.status("[bold blue]Searching memory...[/bold blue]", spinner="dots"):
            results = await self.store.search_similar_messages(query, limit=5)

        if not results:
            console.print("[italic]No related messages found[/italic]")
            return

        console.print(f"[bold blue]Found {len(results)} related messages:[/bold blue]")
        for i, result in enumerate(results, 1):
            message = result.message
            content = message.content[:300] + ("..." if len(message.content) > 300 else "")
            console.print(Panel(
                Text(content, style="white", no_wrap=False),
                title=f"[bold]{i}. {message.role.value}[/bold] ({result.similarity:.2f})",
                subtitle=f"Session: {message.session_id} | {format_timestamp(message.timestamp)}",
                border_style="blue"
            ))

    async def _handle_context(self, args: str) -> None:
        """
        Show or change the context rules.

        Args:
            args: Empty, "set <text>", "on", "off" or "clear"
        """
        rules_store = self.chat_manager.context_rules
        if rules_store is None:
            console.print("[italic]Context rules are not available[/italic]")
            return

        parts = args.split(maxsplit=1)
        action = parts[0].lower() if parts else ""
        text = parts[1].strip() if len(parts) > 1 else ""

        if not action:
            rules = await rules_store.get_rules()
        elif action == "set":
            if not text:
                console.print("[bold red]Error:[/bold red] Please specify the rules text", style="red")
                return
            rules = await rules_store.update(text=text, enabled=True)
        elif action in ("on", "off"):
            rules = await rules_store.update(enabled=action == "on")
        elif action == "clear":
            rules = await rules_store.update(text="", enabled=False)
        else:
            console.print(f"[bold red]Unknown context action:[/bold red] {action}", style="red")
            return

        status = "[bold green]on[/bold green]" if rules.enabled else "[bold yellow]off[/bold yellow]"
        console.print(Panel(
            Text(rules.text) if rules.text else Text("(no rules)", style="italic"),
            title=f"Context rules ({status})",
            border_style="blue"
        ))

    async def _show_stats(self) -> None:
        stats = await self.store.get_stats()

        table = Table(title="Memory Store")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Sessions", str(stats.total_sessions))
        table.add_row("Messages", str(stats.total_messages))
        table.add_row("Storage used", f"{stats.storage_used / 1024:.1f} KB")
        table.add_row("Oldest session", format_timestamp(stats.oldest_session))
        last_cleanup = self.chat_manager.retention_manager.last_cleanup_time
        table.add_row("Last cleanup", datetime.fromtimestamp(last_cleanup).strftime("%Y-%m-%d %H:%M:%S") if last_cleanup else "never")
        console.print(table)

    async def _export(self, file_path: str) -> None:
        file_path = os.path.expanduser(file_path)
        data = await self.store.export_data()
        with open(file_path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        console.print(f"[bold green]Exported {len(data.get('sessions', []))} sessions to:[/bold green] {file_path}")

    async def _import(self, file_path: str) -> None:
        file_path = os.path.expanduser(file_path)
        if not os.path.exists(file_path):
            console.print(f"[bold red]Error:[/bold red] File not found: {file_path}", style="red")
            return

        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        await self.store.import_data(data)
        self.chat_manager.current_session_id = None
        console.print(f"[bold green]Imported sessions from:[/bold green] {file_path}")

    def _show_logs(self, limit: int) -> None:
        if self.log_buffer is None:
            console.print("[italic]Log capture is disabled[/italic]")
            return

        text = self.log_buffer.format_logs(limit=limit)
        console.print(Text(text) if text else "[italic]No log records[/italic]")
