"""Exception types shared by the extraction, reconciliation and service layers.

Nothing raised from narrator-supplied content is fatal: ``BlockDecodeError``
triggers the narrative fallback and ``PerkValidationError`` drops a single
candidate entry. The ``*NotFound`` errors surface through the HTTP layer as 404s.
"""


class ForgeError(Exception):
    """Base class for all forge ledger errors."""


class BlockDecodeError(ForgeError):
    """A structured block was present but could not be decoded into a snapshot."""


class PerkValidationError(ForgeError):
    """An extracted perk or amount fell outside plausible bounds."""


class ThreadNotFound(ForgeError):
    pass


class CheckpointNotFound(ForgeError):
    pass


class PerkNotFound(ForgeError):
    pass


class ArchiveEntryNotFound(ForgeError):
    pass
