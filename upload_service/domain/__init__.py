"""Persistence contracts for upload sessions, viewer grants and attachments."""
