from __future__ import annotations


class SyncInProgressError(RuntimeError):
    """Raised when a sync operation is started while another one runs for the same source."""

    def __init__(self, source_id: str):
        super().__init__(f"A sync operation is already running for source: {source_id}")
        self.source_id = source_id
