from .async_helpers import disconnect, next_frame, open_stream, wait_until

__all__ = ["disconnect", "next_frame", "open_stream", "wait_until"]
