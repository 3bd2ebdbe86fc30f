"""CLI interface for operating the memory engine."""

import asyncio
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from prompt_toolkit import PromptSession
from prompt_toolkit.history import FileHistory

from ..clients.exceptions import LLMError
from ..memory.exceptions import StoreError
from ..memory.manager import MemoryManager
from ..memory.types import Memory, MemoryType, TriggerType
from ..config import config


console = Console()


class MemoryCLI:
    """
    CLI for inspecting and maintaining the memory store.

    Plain text is treated as a conversational turn: the retrieval gate
    decides whether memories are surfaced, and explicit "remember" style
    utterances are turned into memories.

    Commands:
    - /quit, /exit - Exit
    - /help - Show available commands
    - /recall TEXT - Show memories relevant to TEXT
    - /remember TEXT - Store TEXT as a factual memory
    - /list [core|factual] - List memories
    - /show ID - Show one memory with its relations
    - /forget ID - Delete a memory
    - /review - Review memories that are due
    - /organize - Resolve conflicting memories now
    - /reset-counter - Reset the consolidation counter
    - /status - Show consolidation status
    - /history - Show review sessions
    - /stats - Show memory statistics
    """

    def __init__(self, manager: MemoryManager):
        self.manager = manager

        # Setup prompt with history
        history_path = config.paths.history
        history_path.parent.mkdir(parents=True, exist_ok=True)
        self.session = PromptSession(
            history=FileHistory(str(history_path))
        )

    async def run(self):
        """Main CLI loop."""
        await self.manager.start()

        console.print(Panel(
            "[bold cyan]Recall memory engine[/bold cyan]\n"
            "Type a message or /help for commands\n"
            f"Model: [bright_white]{self.manager.llm.get_model_name()}[/bright_white]\n"
            f"Database: {self.manager.store.db_path}",
            title="Welcome",
            border_style="cyan",
        ))

        try:
            while True:
                try:
                    user_input = await asyncio.to_thread(
                        self.session.prompt, "You: "
                    )

                    if not user_input.strip():
                        continue

                    if user_input.startswith("/"):
                        should_exit = await self._handle_command(user_input)
                        if should_exit:
                            break
                        continue

                    await self._turn(user_input)

                except KeyboardInterrupt:
                    console.print("\n[yellow]Interrupted. Type /quit to exit.[/yellow]")
                except EOFError:
                    break
                except (StoreError, LLMError) as e:
                    console.print(f"[red]Error: {e}[/red]")
        finally:
            await self.manager.close()

        console.print("[green]Goodbye![/green]")

    async def _turn(self, message: str):
        """Run retrieval (and creation) for one conversational turn."""
        context = await self.manager.smart_retrieve(message)
        if context:
            console.print(Panel(context, title="Memory context", border_style="green"))
        else:
            console.print("[dim]No memory context for this message.[/dim]")

        if self.manager.should_create_memory(message):
            memory = await self.manager.create_memory(message, context="cli")
            console.print(f"[green]Remembered as memory #{memory.id}[/green]")

    async def _handle_command(self, command: str) -> bool:
        """
        Handle a command.

        Returns:
            True if should exit, False otherwise
        """
        parts = command.split(maxsplit=1)
        cmd = parts[0].lower()
        args = parts[1].strip() if len(parts) > 1 else ""

        if cmd in ["/quit", "/exit", "/q"]:
            return True

        elif cmd == "/help":
            self._show_help()

        elif cmd == "/recall":
            await self._recall(args)

        elif cmd == "/remember":
            await self._remember(args)

        elif cmd == "/list":
            await self._list(args)

        elif cmd == "/show":
            await self._show(args)

        elif cmd == "/forget":
            await self._forget(args)

        elif cmd == "/review":
            await self._review()

        elif cmd == "/organize":
            await self._organize()

        elif cmd == "/reset-counter":
            if await self.manager.reset_memory_counter():
                console.print("[green]Memory counter reset.[/green]")
            else:
                console.print("[red]Could not reset memory counter.[/red]")

        elif cmd == "/status":
            await self._show_status()

        elif cmd == "/history":
            await self._show_history()

        elif cmd == "/stats":
            await self._show_stats()

        else:
            console.print(f"[red]Unknown command: {cmd}[/red]")
            console.print("Type /help for available commands.")

        return False

    def _show_help(self):
        """Display help information."""
        help_table = Table(title="Available Commands", show_header=True)
        help_table.add_column("Command", style="cyan")
        help_table.add_column("Description")

        commands = [
            ("/quit, /exit, /q", "Exit"),
            ("/help", "Show this help message"),
            ("/recall TEXT", "Show memories relevant to TEXT"),
            ("/remember TEXT", "Store TEXT as a factual memory"),
            ("/list [core|factual]", "List stored memories"),
            ("/show ID", "Show a memory and its related memories"),
            ("/forget ID", "Delete a memory"),
            ("/review", "Review memories that are due now"),
            ("/organize", "Resolve conflicting memories now"),
            ("/reset-counter", "Reset the consolidation counter"),
            ("/status", "Show consolidation status"),
            ("/history", "Show recent review sessions"),
            ("/stats", "Show memory statistics"),
        ]

        for cmd, desc in commands:
            help_table.add_row(cmd, desc)

        console.print(help_table)

    def _memory_table(self, title: str, memories: list[Memory], relevance: bool = False) -> Table:
        table = Table(title=title, show_header=True)
        table.add_column("ID", style="cyan")
        table.add_column("Type")
        table.add_column("Level")
        table.add_column("Importance", justify="right")
        table.add_column("Content")
        if relevance:
            table.add_column("Relevance", justify="right")

        for memory in memories:
            row = [
                str(memory.id),
                memory.memory_type.value,
                memory.importance_level.value,
                f"{memory.importance:.2f}",
                memory.content[:60] + ("..." if len(memory.content) > 60 else ""),
            ]
            if relevance:
                row.append(f"{memory.relevance_score:.2f}")
            table.add_row(*row)
        return table

    def _parse_id(self, args: str):
        try:
            memory_id = int(args)
        except ValueError:
            memory_id = 0
        if memory_id <= 0:
            console.print(f"[red]Invalid memory id: {args or '(missing)'}[/red]")
            return None
        return memory_id

    async def _recall(self, text: str):
        if not text:
            console.print("[yellow]Usage: /recall TEXT[/yellow]")
            return

        memories = await self.manager.get_relevant_memories(
            text, config.memory.retrieval_threshold, config.memory.retrieval_max_count
        )
        if not memories:
            console.print("[dim]No relevant memories.[/dim]")
            return

        console.print(self._memory_table(f"Memories for: {text}", memories, relevance=True))

    async def _remember(self, text: str):
        if not text:
            console.print("[yellow]Usage: /remember TEXT[/yellow]")
            return
        memory = await self.manager.create_memory(text, context="cli")
        console.print(f"[green]Stored memory #{memory.id} ({memory.importance_level.value})[/green]")

    async def _list(self, args: str):
        memory_type = None
        if args:
            try:
                memory_type = MemoryType(args.lower())
            except ValueError:
                console.print("[yellow]Usage: /list [core|factual][/yellow]")
                return

        memories = await self.manager.list_memories(memory_type=memory_type)
        if not memories:
            console.print("[dim]No memories stored.[/dim]")
            return
        console.print(self._memory_table("Memories", memories))

    async def _show(self, args: str):
        memory_id = self._parse_id(args)
        if memory_id is None:
            return

        found = await self.manager.get_memory(memory_id)
        if found is None:
            console.print(f"[red]Memory {memory_id} not found.[/red]")
            return

        memory, related = found
        table = Table(title=f"Memory #{memory.id}", show_header=False)
        table.add_column("Field", style="cyan")
        table.add_column("Value", style="green")

        table.add_row("Content", memory.content)
        table.add_row("Keywords", memory.keywords or "-")
        table.add_row("Context", memory.context or "-")
        table.add_row("Type", memory.memory_type.value)
        table.add_row("Subtype", memory.memory_subtype.value if memory.memory_subtype else "-")
        table.add_row("Importance", f"{memory.importance:.2f} ({memory.importance_level.value})")
        table.add_row("Strength", f"{memory.strength:.2f}")
        table.add_row("Pinned", "yes" if memory.is_pinned else "no")
        table.add_row("Created", memory.created_at.isoformat())
        table.add_row("Related", ", ".join(f"#{m.id}" for m in related) or "-")
        console.print(table)

    async def _forget(self, args: str):
        memory_id = self._parse_id(args)
        if memory_id is None:
            return

        if await self.manager.delete_memory(memory_id):
            console.print(f"[green]Memory {memory_id} deleted.[/green]")
        else:
            console.print(f"[red]Memory {memory_id} not found.[/red]")

    async def _review(self):
        with console.status("Reviewing memories..."):
            result = await self.manager.review_memories(TriggerType.MANUAL)

        if result.total == 0:
            console.print("[dim]Nothing was due for review.[/dim]")
            return
        console.print(
            f"[green]Reviewed {result.total} memories:[/green] "
            f"{result.reviewed} reinforced, {result.forgotten} forgotten, "
            f"{result.unchanged} unchanged"
        )

    async def _organize(self):
        with console.status("Organizing memories..."):
            result = await self.manager.organize_memories()

        style = "green" if result.success else "red"
        console.print(f"[{style}]{result.message}[/{style}]")
        if result.deleted_ids:
            console.print(f"Deleted: {', '.join(str(i) for i in result.deleted_ids)}")

    async def _show_status(self):
        status = await self.manager.get_organization_status()

        table = Table(title="Consolidation Status", show_header=False)
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")

        table.add_row("Counter", f"{status['current_counter']}/{status['threshold']}")
        table.add_row("Last organization", status["last_organization_time"] or "never")
        hours = status["next_organization_in_seconds"] / 3600
        table.add_row("Time trigger in", f"{hours:.1f}h")
        table.add_row("Review running", "yes" if self.manager.scheduler.running else "no")

        console.print(table)

    async def _show_history(self):
        sessions = await self.manager.get_review_history(limit=10)
        if not sessions:
            console.print("[dim]No review sessions yet.[/dim]")
            return

        table = Table(title="Review Sessions", show_header=True)
        table.add_column("When", style="cyan")
        table.add_column("Trigger")
        table.add_column("Reinforced", justify="right")
        table.add_column("Forgotten", justify="right")
        table.add_column("Unchanged", justify="right")

        for session in sessions:
            table.add_row(
                session.timestamp.strftime("%Y-%m-%d %H:%M"),
                session.trigger_type,
                str(session.reviewed_count),
                str(session.forgotten_count),
                str(session.unchanged_count),
            )
        console.print(table)

    async def _show_stats(self):
        stats = await self.manager.get_stats()

        table = Table(title="Memory Statistics", show_header=False)
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green")

        table.add_row("Total", str(stats["total"]))
        table.add_row("Core", str(stats["core"]))
        table.add_row("Factual", str(stats["factual"]))
        for level, count in stats["by_level"].items():
            table.add_row(f"  {level}", str(count))
        table.add_row("Due for review", str(stats["due_for_review"]))
        table.add_row("Memory counter", str(stats["memory_counter"]))

        console.print(table)
