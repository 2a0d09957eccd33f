"""Portal backend: projects, chat, notifications and billing."""

__version__ = "0.1.0"
