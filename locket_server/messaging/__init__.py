"""Messaging core: conversations, messages, read tracking and the side-effect outbox."""
