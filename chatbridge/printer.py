"""
Rich stream printer for displaying streaming responses in a terminal.
"""
from typing import Any, AsyncIterator, Optional

from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.text import Text

from .errors import ServiceError
from .types import StreamEvent


class RichStreamPrinter:
    """
    Live terminal display of a ``MessageStream``.

    Attributes:
        title: Title for the display panel
        provider: Provider name shown next to the title
        code_theme: Theme for code blocks
        refresh_rate: Refresh rate for Live display
        border_style: Border style while streaming
    """

    def __init__(
        self,
        title: str = "Streaming Response",
        provider: Optional[str] = None,
        code_theme: str = "coffee",
        refresh_rate: int = 30,
        border_style: str = "blue",
        console: Optional[Console] = None,
    ):
        self.title = title
        self.provider = provider
        self.code_theme = code_theme
        self.refresh_rate = refresh_rate
        self.border_style = border_style
        self.console = console or Console()
        self._full_text = ""
        self._error: Optional[ServiceError] = None

    async def print_stream(self, events: AsyncIterator[StreamEvent]) -> str:
        """
        Render events as they arrive.

        Args:
            events: A ``MessageStream`` or any async iterator of stream events.

        Returns:
            The text received, including any partial text before a failure.
        """
        self._full_text = ""
        self._error = None

        with Live(self._panel(is_final=False), refresh_per_second=self.refresh_rate, console=self.console) as live:
            async for event in events:
                if event.type == "delta":
                    self._full_text += event.text
                    live.update(self._panel(is_final=False))
                elif event.type == "failed":
                    self._error = event.error
                    live.update(self._panel(is_final=True))
                else:
                    live.update(self._panel(is_final=True))

        return self._full_text

    def _panel(self, is_final: bool) -> Panel:
        if self._error is not None:
            border = "red"
        elif is_final:
            border = "green"
        else:
            border = self.border_style
        return Panel(self._build_content(), title=self._build_title(is_final), border_style=border, padding=(1, 2))

    def _build_title(self, is_final: bool) -> str:
        title_parts = ["[bold]Final Response[/bold]" if is_final else f"[bold]{self.title}[/bold]"]
        if self.provider:
            title_parts.append(f"[dim]({self.provider})[/dim]")
        return " ".join(title_parts)

    def _build_content(self) -> Any:
        if self._error is not None:
            body = Text()
            if self._full_text:
                body.append(self._full_text + "\n\n")
            body.append(str(self._error), style="bold red")
            return body
        if not self._full_text.strip():
            return Text("(waiting for response...)", style="dim italic")
        return Markdown(self._full_text, code_theme=self.code_theme)

    def get_full_text(self) -> str:
        return self._full_text

    def get_error(self) -> Optional[ServiceError]:
        return self._error
