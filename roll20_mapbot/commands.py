"""Chat command registry.

Commands arrive as raw message text (``%map``, ``%sheet Aragorn``) from a
channel already routed to one Roll20 instance. The registry is built once at
startup and is read-only afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Awaitable, Callable, Mapping, Optional

from .errors import NotFound, NotReady

if TYPE_CHECKING:
    from .session_manager.instance import Roll20Instance

PREFIX = "%"


@dataclass(frozen=True)
class CommandReply:
    """What the chat layer should post back to the channel."""

    text: str = ""
    attachment: Optional[bytes] = None
    filename: Optional[str] = None


Handler = Callable[["Roll20Instance", str], Awaitable[Optional[CommandReply]]]


# ── Handlers ─────────────────────────────────────────────────────────────────


async def _ping(instance: Roll20Instance, args: str) -> CommandReply:
    return CommandReply(text="Pong!")


async def _map(instance: Roll20Instance, args: str) -> CommandReply:
    return CommandReply(attachment=instance.get_map(), filename="map.jpg")


async def _map_hd(instance: Roll20Instance, args: str) -> CommandReply:
    return CommandReply(attachment=instance.get_map(hd=True), filename="map.jpg")


async def _sheets(instance: Roll20Instance, args: str) -> CommandReply:
    names = instance.list_character_sheets()
    if not names:
        return CommandReply(text="No character sheets found.")
    return CommandReply(text="\n".join(names))


async def _sheet(instance: Roll20Instance, args: str) -> CommandReply:
    name = args.strip()
    if not name:
        return CommandReply(text=f"Usage: {PREFIX}sheet <character name>")
    return CommandReply(attachment=instance.get_character_sheet(name), filename=f"{name}.pdf")


async def _status(instance: Roll20Instance, args: str) -> CommandReply:
    status = instance.status()
    return CommandReply(
        text=(
            f"{status.target} ({status.game}): session {status.state.value}, "
            f"map {'ready' if status.map_ready else 'not ready'}, "
            f"{status.sheet_count} character sheets"
        )
    )


async def _roll(instance: Roll20Instance, args: str) -> None:
    # Dice rolling is reserved; nothing is posted.
    return None


# ── Registry ─────────────────────────────────────────────────────────────────


class CommandRegistry:
    """Immutable mapping of command names (and aliases) to handlers."""

    def __init__(self, handlers: Mapping[str, Handler], aliases: Optional[Mapping[str, str]] = None):
        table = {name.lower(): handler for name, handler in handlers.items()}
        for alias, target in (aliases or {}).items():
            if target.lower() not in table:
                raise ValueError(f"alias {alias!r} points at unknown command {target!r}")
            table[alias.lower()] = table[target.lower()]
        self._handlers: Mapping[str, Handler] = MappingProxyType(table)

    @classmethod
    def default(cls) -> CommandRegistry:
        return cls(
            {
                "ping": _ping,
                "map": _map,
                "maphd": _map_hd,
                "sheets": _sheets,
                "sheet": _sheet,
                "status": _status,
                "roll": _roll,
            },
            aliases={"m": "map", "r": "roll"},
        )

    @property
    def names(self) -> list[str]:
        return sorted(self._handlers)

    @staticmethod
    def parse(content: str) -> Optional[tuple[str, str]]:
        """Split ``%name args`` into ``(name, args)``; None if not a command."""
        if not content or not content.startswith(PREFIX):
            return None
        command, _, args = content[len(PREFIX):].partition(" ")
        if not command:
            return None
        return command.lower(), args.strip()

    async def dispatch(self, instance: Roll20Instance, content: str) -> Optional[CommandReply]:
        """Run the command in ``content`` against ``instance``.

        Returns None for non-commands, unknown commands and commands with
        nothing to post. Cache misses become plain-text replies.
        """
        parsed = self.parse(content)
        if parsed is None:
            return None
        command, args = parsed

        handler = self._handlers.get(command)
        if handler is None:
            return None

        try:
            return await handler(instance, args)
        except NotReady as e:
            return CommandReply(text=f"Not ready yet: {e}")
        except NotFound as e:
            return CommandReply(text=f"Not found: {e}")
