#!/usr/bin/env python3
"""Interactive chat CLI for the chat service."""

import json
import sys

import httpx
from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.text import Text


class ChatCLI:
    """Interactive chat interface streaming replies from the chat service."""

    def __init__(self, base_url: str = "http://localhost:8000", model: str | None = None):
        """Initialize chat CLI."""
        self.base_url = base_url
        self.model = model
        self.conversation_id: str | None = None
        self.tool_calling_enabled = True
        self.console = Console()
        self.client = httpx.Client(timeout=httpx.Timeout(300.0, connect=10.0))

    def start(self) -> None:
        """Start the interactive chat session."""
        self.console.print(
            Panel.fit(
                "[bold blue]💬 Private Chat Hub - Interactive Chat[/bold blue]\n"
                "Type your messages to chat with the model.\n"
                "Commands: /help, /new, /tools, /quit",
                border_style="blue",
            )
        )

        # Test connection
        if not self._test_connection():
            self.console.print(f"[red]❌ Cannot connect to the service at {self.base_url}.[/red]")
            return

        self.console.print("[green]✅ Connected to chat service[/green]\n")

        if not self.model:
            self.model = self._choose_model()
            if not self.model:
                return

        # Main chat loop
        try:
            while True:
                user_input = Prompt.ask("\n[bold cyan]You[/bold cyan]")

                if user_input.lower() in ["/quit", "/exit", "quit", "exit"]:
                    break
                elif user_input.lower() == "/help":
                    self._show_help()
                    continue
                elif user_input.lower() == "/new":
                    self.conversation_id = None
                    self.console.print("[yellow]🔄 Started a new conversation[/yellow]")
                    continue
                elif user_input.lower() == "/tools":
                    self._toggle_tools()
                    continue
                elif user_input.strip() == "":
                    continue

                self._send_message(user_input)

        except KeyboardInterrupt:
            pass
        finally:
            self.console.print("\n[yellow]👋 Goodbye![/yellow]")
            self.client.close()

    def _test_connection(self) -> bool:
        """Test connection to the service."""
        try:
            response = self.client.get(f"{self.base_url}/health")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    def _choose_model(self) -> str | None:
        """List installed models and let the user pick one."""
        response = self.client.get(f"{self.base_url}/models")
        if response.status_code != 200:
            self.console.print(f"[red]❌ Could not list models: {response.text}[/red]")
            return None

        models = response.json()
        if not models:
            self.console.print("[red]❌ No models installed on the server.[/red]")
            return None

        for index, model in enumerate(models, start=1):
            caps = model["capabilities"]
            flags = [label for key, label in (("supports_tools", "tools"), ("supports_vision", "vision")) if caps[key]]
            self.console.print(f"  {index}. {model['name']} [dim]{', '.join(flags)}[/dim]")

        choice = Prompt.ask("Model", choices=[str(i) for i in range(1, len(models) + 1)], default="1")
        return models[int(choice) - 1]["name"]

    def _ensure_conversation(self) -> str | None:
        if self.conversation_id:
            return self.conversation_id

        response = self.client.post(
            f"{self.base_url}/conversations",
            json={"model": self.model, "tool_calling_enabled": self.tool_calling_enabled},
        )
        if response.status_code != 201:
            self.console.print(f"[red]❌ API Error: {response.status_code} - {response.text}[/red]")
            return None

        self.conversation_id = response.json()["id"]
        return self.conversation_id

    def _toggle_tools(self) -> None:
        """Flip tool calling for the current and future conversations."""
        self.tool_calling_enabled = not self.tool_calling_enabled
        if self.conversation_id:
            self.client.patch(
                f"{self.base_url}/conversations/{self.conversation_id}",
                json={"tool_calling_enabled": self.tool_calling_enabled},
            )
        state = "enabled" if self.tool_calling_enabled else "disabled"
        self.console.print(f"[yellow]🛠️ Tool calling {state}[/yellow]")

    def _send_message(self, message: str) -> None:
        """Send message and render streamed snapshots."""
        conversation_id = self._ensure_conversation()
        if not conversation_id:
            return

        reply: dict | None = None
        try:
            with (
                self.client.stream(
                    "POST", f"{self.base_url}/conversations/{conversation_id}/messages", json={"text": message}
                ) as response,
                Live(Text("💭 Thinking...", style="dim"), console=self.console, refresh_per_second=8) as live,
            ):
                if response.status_code != 200:
                    response.read()
                    live.update(Text(f"❌ API Error: {response.status_code} - {response.text}", style="red"))
                    return

                for line in response.iter_lines():
                    if not line.strip():
                        continue
                    reply = json.loads(line)["messages"][-1]
                    live.update(self._render(reply))
        except httpx.HTTPError as e:
            self.console.print(f"[red]❌ Connection error: {e}[/red]")
            return

        if reply and reply.get("references"):
            refs = "\n".join(f"• {url}" for url in reply["references"])
            self.console.print(Panel(refs, title="[dim]🔗 Sources[/dim]", border_style="dim"))

    def _render(self, reply: dict) -> Panel | Text:
        """Render the in-flight assistant message."""
        if reply.get("role") != "assistant":
            return Text("💭 Thinking...", style="dim")
        if reply.get("is_error"):
            return Panel(reply.get("error_message") or "Unknown error", title="[red]❌ Error[/red]", border_style="red")
        if reply.get("status_message") and not reply.get("content"):
            return Text(reply["status_message"], style="dim")
        return Panel(
            Markdown(reply.get("content") or "…"),
            title="[bold green]🤖 Assistant[/bold green]",
            border_style="green",
            padding=(1, 2),
        )

    def _show_help(self) -> None:
        """Show help information."""
        help_text = """
[bold]Available Commands:[/bold]
• /help - Show this help message
• /new - Start a new conversation
• /tools - Toggle tool calling (web search, time, calculator)
• /quit or /exit - Exit the chat

[bold]Tips:[/bold]
• Ask about recent events to see web search in action
• Tool calling needs a model that supports tools (e.g. llama3.1, qwen2.5)
        """

        self.console.print(Panel(help_text.strip(), title="[cyan]❓ Help[/cyan]", border_style="cyan"))


def main():
    """Main entry point for the chat CLI."""
    base_url = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8000"
    model = sys.argv[2] if len(sys.argv) > 2 else None

    chat = ChatCLI(base_url, model)
    chat.start()


if __name__ == "__main__":
    main()
