"""tooltrace: redacted, append-only audit ledger for agent tool calls.

Host lifecycle hooks are sanitized, joined start-to-done, labelled with
session identity, appended to a JSONL ledger and pushed to live SSE
observers.
"""

__version__ = "0.1.0"
