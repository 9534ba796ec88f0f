import argparse
import asyncio
import sys

from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from mailmirror.app import MailMirrorApp
from mailmirror.core.models import FolderName
from mailmirror.security.credentials import KeyringCredentialProvider
from mailmirror.utils.errors import MailMirrorError, format_error_message

console = Console()


class ConsoleNotifier:
    """Prints new-mail notifications to the terminal."""

    def notify(self, account: str, new_count: int, message: str) -> None:
        console.print(f"[bold green]{account}[/]: {message}")


def display_messages(messages, folder: FolderName, new_keys=frozenset()):
    table = Table(title=folder.value)

    table.add_column("#", justify="right", style="cyan", no_wrap=True)
    table.add_column("From", style="magenta")
    table.add_column("Subject", style="green")
    table.add_column("Received", justify="right", style="yellow")

    for index, message in enumerate(messages, start=1):
        received = message.received_date
        subject = message.subject or "(No subject)"
        if not message.read:
            subject = f"[bold]{subject}[/]"
        table.add_row(
            str(index),
            message.sender or "N/A",
            subject,
            received.strftime("%Y-%m-%d %H:%M") if received else "Unknown Date",
        )

    console.print(table)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mailmirror",
        description="Local mail mirror: poll IMAP accounts and keep an offline copy.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("run", help="Poll every account until interrupted")
    subparsers.add_parser("check", help="Check every account once")

    folders_parser = subparsers.add_parser("folders", help="List server folders")
    folders_parser.add_argument("email", help="Account email")

    list_parser = subparsers.add_parser("list", help="List mirrored messages")
    list_parser.add_argument("email", help="Account email")
    list_parser.add_argument("--folder", default="INBOX", help="INBOX, Sent, Drafts, Trash or Junk")
    list_parser.add_argument("--limit", type=int, default=20, help="Number of messages to display")

    trash_parser = subparsers.add_parser("empty-trash", help="Empty the local Trash")
    trash_parser.add_argument("email", help="Account email")

    password_parser = subparsers.add_parser("set-password", help="Store an account password in the keyring")
    password_parser.add_argument("email", help="Account email")

    return parser


async def _check(app: MailMirrorApp) -> None:
    results = await app.poller.check_now()
    if not results:
        console.print("[yellow]No account could be checked.[/]")
        return
    for account, count in results.items():
        console.print(f"[cyan]{account}[/]: {count} new message(s)")


async def _folders(app: MailMirrorApp, email: str) -> None:
    account = await app.credentials.account(email)
    for name in await app.connector.list_folders(account):
        console.print(name)


def _list(app: MailMirrorApp, email: str, folder_name: str, limit: int) -> None:
    folder = FolderName.from_string(folder_name)
    messages = app.store.load(email, folder)
    display_messages(messages[:limit], folder)


def _set_password(app: MailMirrorApp, email: str) -> None:
    if not isinstance(app.credentials, KeyringCredentialProvider):
        console.print("[red]Passwords can only be stored in the system keyring.[/]")
        return
    app.config_manager.get_account(email)
    password = Prompt.ask(f"Password for {email}", password=True)
    asyncio.run(app.credentials.store_password(email, password))
    console.print("[green]Password saved.[/]")


def main(argv=None) -> int:
    args = _build_parser().parse_args(argv)

    try:
        app = MailMirrorApp(notifier=ConsoleNotifier())

        if args.command == "run":
            console.print("[bold cyan]Polling for new mail, press Ctrl+C to stop...[/]")
            try:
                asyncio.run(app.run_forever())
            except KeyboardInterrupt:
                console.print("[cyan]Stopped.[/]")

        elif args.command == "check":
            asyncio.run(_check(app))

        elif args.command == "folders":
            asyncio.run(_folders(app, args.email))

        elif args.command == "list":
            _list(app, args.email, args.folder, args.limit)

        elif args.command == "empty-trash":
            removed = app.store.empty_trash(args.email)
            console.print(f"[green]Removed {removed} message(s) from Trash.[/]")

        elif args.command == "set-password":
            _set_password(app, args.email)

    except MailMirrorError as e:
        console.print(f"[red]{format_error_message(e)}[/]")
        return 1

    except ValueError as e:
        console.print(f"[red]{e}[/]")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
