"""Process entry point composing the OSC side and the video relay."""

from .master import BridgeApp, main, main_async, parse_args

__all__ = ["BridgeApp", "main", "main_async", "parse_args"]
