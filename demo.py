"""
Demo of streaming a chat response through AdapterFactory and RichStreamPrinter.

API keys are read from the environment or a local .env file
(OPENAI_API_KEY, ANTHROPIC_API_KEY, GOOGLE_API_KEY).
"""
import asyncio
import sys
from typing import List

from rich.console import Console

from chatbridge import (
    AdapterFactory,
    ChatMessage,
    EnvCredentialStore,
    ReasoningEffort,
    ServiceError,
    Settings,
    get_model,
)
from chatbridge.http import aclose_all
from chatbridge.log import configure_logging
from chatbridge.printer import RichStreamPrinter

console = Console()


async def demo_stream(model_id: str):
    """Stream one answer into a live panel."""
    console.print(f"[bold cyan]=== Stream Demo ({model_id}) ===")

    factory = AdapterFactory(EnvCredentialStore(), Settings.from_env())
    model = get_model(model_id)
    adapter = factory.for_model(model)
    if not adapter.is_configured():
        console.print(f"[yellow]No API key for {model.provider.value}, skipping[/yellow]")
        return

    messages: List[ChatMessage] = [
        ChatMessage.text("system", "You are a concise assistant."),
        ChatMessage.text("user", "introduce yourself in one sentence using markdown syntax."),
    ]

    printer = RichStreamPrinter(title="Markdown Demo", provider=model.provider.display_name, code_theme="dracula")
    async with adapter.stream_message(messages, model, reasoning_effort=ReasoningEffort.LOW) as stream:
        await printer.print_stream(stream)


async def demo_chat(model_id: str):
    """Non-streaming call."""
    model = get_model(model_id)
    adapter = AdapterFactory(EnvCredentialStore()).for_model(model)
    try:
        text = await adapter.send_message([ChatMessage.text("user", "Say hi in three words.")], model)
    except ServiceError as e:
        console.print(f"[bold red]{e.kind.value}:[/bold red] {e}")
        return
    console.print(text)


async def main():
    configure_logging()
    model_id = sys.argv[1] if len(sys.argv) > 1 else "gpt-4.1-mini"
    try:
        await demo_stream(model_id)
        await demo_chat(model_id)
    except KeyboardInterrupt:
        console.print("\n[yellow]Demo interrupted by user[/yellow]")
    finally:
        await aclose_all()


if __name__ == "__main__":
    asyncio.run(main())
