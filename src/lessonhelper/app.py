# /lessonhelper/app.py
"""
Command-line front end for the lesson helper.
Lets a student pick a textbook, look up a task (strict or smart) or ask a free
question, and prints the tutor's explanation in the terminal.
"""
import asyncio
import sys

import httpx
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import IntPrompt, Prompt
from rich.table import Table, box

from .ai_gateway import AIGateway
from .books import BookStore
from .config import Settings, console
from .observability import configure_logging, get_logger
from .pdf_text import BookNotFoundError, PageOutOfRangeError
from .task_service import BadRequestError, TaskNotFoundError, TaskService

logger = get_logger(__name__)


# --- UI & Formatting Functions ---

def display_welcome_banner(settings: Settings):
    """Displays the application's welcome banner."""
    console.print(Panel(
        "[bold magenta]Lesson Helper - Textbook Task Explainer[/bold magenta]",
        subtitle=f"[cyan]{settings.ai_provider} / {settings.default_model}[/cyan]",
        expand=False
    ))
    if not settings.api_key:
        console.print(f"[yellow]{settings.api_key_env_name} is not set; AI answers will be unavailable.[/yellow]")


def list_books(store: BookStore) -> list[dict]:
    """Displays a table of the available books and returns them."""
    books = store.list_books()
    if not books:
        console.print(f"[yellow]No PDF books found in {store.root}[/yellow]")
        return books

    table = Table(title="Books", border_style="blue", header_style="bold", box=box.SQUARE)
    table.add_column("#", style="cyan")
    table.add_column("File", style="magenta")
    table.add_column("Title", style="white")
    for idx, book in enumerate(books, start=1):
        table.add_row(str(idx), book["filename"], book["title"])
    console.print(table)
    return books


def render_result(result: dict):
    """Prints a lookup/chat payload: fragment first, then the explanation."""
    if result.get("fragment"):
        console.print(Panel(
            result["fragment"],
            title=f"Page {result.get('pageIndex')} ({result.get('mode')})",
            border_style="cyan",
        ))
    border = "green" if result.get("aiOk", True) else "red"
    console.print(Panel(Markdown(result.get("aiResponse", "")), title="Explanation", border_style=border))


def _choose_book(store: BookStore) -> str | None:
    books = list_books(store)
    if not books:
        return None
    choice = IntPrompt.ask("Book number", default=1)
    if choice < 1 or choice > len(books):
        console.print("[bold red]No such book.[/bold red]")
        return None
    return books[choice - 1]["filename"]


async def _with_service(settings: Settings, store: BookStore, action):
    async with httpx.AsyncClient(timeout=settings.request_timeout_s) as client:
        service = TaskService(settings, store, AIGateway(settings, client))
        return await action(service)


def run_action(settings: Settings, store: BookStore, action):
    """Runs one service call and prints its outcome; lookup errors are reported, not raised."""
    try:
        with console.status("[cyan]Thinking...[/cyan]"):
            result = asyncio.run(_with_service(settings, store, action))
    except (BadRequestError, BookNotFoundError, PageOutOfRangeError, TaskNotFoundError) as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        return None
    render_result(result)
    return result


def handle_strict_lookup(settings: Settings, store: BookStore):
    book = _choose_book(store)
    if book is None:
        return
    page = IntPrompt.ask("Page")
    task_number = IntPrompt.ask("Task number")
    details = Prompt.ask("Extra details (optional)", default="")
    run_action(settings, store, lambda svc: svc.strict_lookup(book, page, task_number, details=details))


def handle_smart_lookup(settings: Settings, store: BookStore):
    book = _choose_book(store)
    if book is None:
        return
    task_number = IntPrompt.ask("Task number")
    details = Prompt.ask("Extra details (optional)", default="")
    run_action(settings, store, lambda svc: svc.smart_lookup(book, task_number, details=details))


def handle_question(settings: Settings, store: BookStore):
    question = Prompt.ask("Your question")
    run_action(settings, store, lambda svc: svc.chat(question))


def main():
    """Main application loop."""
    settings = Settings.from_env()
    configure_logging(settings.log_path or (settings.logs_dir / "cli.log"))
    store = BookStore(settings.books_dir)
    display_welcome_banner(settings)

    while True:
        try:
            console.print("\n[bold]Main Menu:[/bold]")
            console.print("[cyan]1. List Books[/cyan]")
            console.print("[green]2. Find Task on a Page (strict)[/green]")
            console.print("[green]3. Find Task in the Whole Book (smart)[/green]")
            console.print("[blue]4. Ask a Question[/blue]")
            console.print("[red]5. Exit[/red]")

            choice = Prompt.ask("Choose an option", choices=["1", "2", "3", "4", "5"])

            if choice == "1":
                list_books(store)
            elif choice == "2":
                handle_strict_lookup(settings, store)
            elif choice == "3":
                handle_smart_lookup(settings, store)
            elif choice == "4":
                handle_question(settings, store)
            elif choice == "5":
                break
        except KeyboardInterrupt:
            break

    console.print("\n[bold magenta]Goodbye! Good luck with your homework.[/bold magenta]")
    sys.exit(0)


if __name__ == "__main__":
    main()
