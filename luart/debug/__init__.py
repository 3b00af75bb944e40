from .traceback import format_frame, format_lua_error, format_traceback

__all__ = ["format_frame", "format_lua_error", "format_traceback"]
