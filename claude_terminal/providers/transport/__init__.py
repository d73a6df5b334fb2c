"""Hook transport: localhost server, CLI-side client and settings installer."""

from claude_terminal.providers.transport.hook_client import send_hook_event
from claude_terminal.providers.transport.hook_server import HookEventServer
from claude_terminal.providers.transport.messages import HookMessage

__all__ = ["HookEventServer", "HookMessage", "send_hook_event"]
