"""
Storage Inspection
==================

Debug dump of everything a session has stored: decoded values, expiration
deadlines and the bindings attached to each key. `print_storage` renders it
with rich.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .binding import BindingState
from .errors import StoreIOError
from .gateway import EXPIRATION_SUFFIX

if TYPE_CHECKING:
    from .session import StorageSession

_PREVIEW_LIMIT = 60


@dataclass
class StorageEntry:
    """One stored key as seen through the gateway."""

    key: str
    value: Any
    expires_at: Optional[int] = None
    remaining_ms: Optional[int] = None
    binding_state: BindingState = BindingState.UNBOUND

    @property
    def expired(self) -> bool:
        return self.remaining_ms is not None and self.remaining_ms < 0

    @property
    def value_type(self) -> str:
        return type(self.value).__name__


def format_duration(ms: int) -> str:
    """Human-readable duration: ``1d 2h``, ``3h 4m``, ``5m 6s`` or ``7s``."""
    seconds = max(int(ms // 1000), 0)
    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)
    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def describe_storage(session: "StorageSession") -> List[StorageEntry]:
    """
    List every stored key with its decoded value.

    Expiration records are folded into the entry they belong to; a record
    whose value is gone is listed on its own.
    """
    keys = sorted(session.keys())
    key_set = set(keys)
    now = session.now()
    entries = []

    for key in keys:
        if key.endswith(EXPIRATION_SUFFIX) and key[: -len(EXPIRATION_SUFFIX)] in key_set:
            continue
        try:
            value = session.gateway.read(key)
        except StoreIOError as e:
            value = f"<unreadable: {e}>"

        deadline = session.get_expiration(key)
        entries.append(
            StorageEntry(
                key=key,
                value=value,
                expires_at=deadline,
                remaining_ms=deadline - now if deadline is not None else None,
                binding_state=session.engine.state(key),
            )
        )
    return entries


def _preview(value: Any) -> str:
    text = repr(value)
    if len(text) > _PREVIEW_LIMIT:
        return text[: _PREVIEW_LIMIT - 3] + "..."
    return text


def build_storage_table(entries: List[StorageEntry]) -> Table:
    table = Table(title="Stored Values")
    table.add_column("Key", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Value", style="green")
    table.add_column("Expires", style="yellow", justify="right")
    table.add_column("Binding", style="blue")

    for entry in entries:
        if entry.remaining_ms is None:
            expires = "-"
        elif entry.expired:
            expires = "[red]expired[/red]"
        else:
            expires = f"in {format_duration(entry.remaining_ms)}"
        table.add_row(
            escape(entry.key),
            entry.value_type,
            escape(_preview(entry.value)),
            expires,
            entry.binding_state.value,
        )
    return table


def print_storage(session: "StorageSession", console: Optional[Console] = None) -> None:
    """Print every stored key, its value and expiration as a rich table."""
    console = console or Console()
    entries = describe_storage(session)

    if not entries:
        console.print(Panel("Storage is empty", title="persynx", border_style="blue"))
        return

    bound = sum(1 for e in entries if e.binding_state is not BindingState.UNBOUND)
    header = Panel(
        f"{len(entries)} keys, {bound} bound\n"
        f"Encryption: {'on' if session.gateway.encrypted else 'off'}",
        title="persynx storage",
        border_style="blue",
    )
    console.print(header)
    console.print(build_storage_table(entries))


__all__ = [
    "StorageEntry",
    "describe_storage",
    "print_storage",
    "format_duration",
    "build_storage_table",
]
