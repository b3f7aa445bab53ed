"""Widget exports for gateway_console UI."""

from .conversation import ConversationView, ConversationViewport
from .input_box import InputBox
from .message import MessageBubble
from .status_bar import StatusBar

__all__ = [
    "ConversationView",
    "ConversationViewport",
    "InputBox",
    "MessageBubble",
    "StatusBar",
]
