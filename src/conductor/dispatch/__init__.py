from conductor.dispatch.base import DispatchEventHook, Dispatcher, NullDispatcher
from conductor.dispatch.tmux import ROLE_WINDOWS, TmuxDispatcher, TmuxSession

__all__ = [
    "DispatchEventHook",
    "Dispatcher",
    "NullDispatcher",
    "ROLE_WINDOWS",
    "TmuxDispatcher",
    "TmuxSession",
]
