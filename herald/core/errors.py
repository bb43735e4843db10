from __future__ import annotations


class HeraldError(Exception):
    """Base error for Herald."""


class QueueStoreUnavailableError(HeraldError):
    """Queue document could not be loaded or persisted; nothing was written."""


class ReceiptStoreError(HeraldError):
    """Receipt store read/write failure."""


class QueueLockUnavailableError(HeraldError):
    """Processing lock backend could not be reached; the pass did not run."""
