"""Server-sent events fanout."""
