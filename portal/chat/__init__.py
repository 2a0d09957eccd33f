"""Chat: conversations, realtime fan-out and client session state."""
