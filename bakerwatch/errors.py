"""
Error types for bakerwatch.

Only configuration errors are allowed to stop a run before polling starts.
Everything else is captured as a value by the component that hit it and
turned into a bad round or a probe severity.
"""

from typing import Optional


class BakerwatchError(Exception):
    """Base class for all bakerwatch errors"""


class ConfigError(BakerwatchError):
    """Invalid network name, tunable or command line argument"""


class FetchError(BakerwatchError):
    """An RPC endpoint could not be read"""

    def __init__(self, endpoint: str, reason: str):
        super().__init__(f"{endpoint}: {reason}")
        self.endpoint = endpoint
        self.reason = reason


class EvalError(BakerwatchError):
    """Lag could not be evaluated for a round"""

    MISSING_DATA = "missing_data"

    def __init__(self, kind: str, detail: Optional[str] = None):
        super().__init__(detail or kind)
        self.kind = kind
        self.detail = detail


class NodeQueryError(BakerwatchError):
    """A node query (RPC, disk, process table, client) failed"""
