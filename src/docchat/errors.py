"""Exception hierarchy shared across DocChat."""

from __future__ import annotations


class DocChatError(Exception):
    """Base class for errors raised by DocChat."""


class InputError(DocChatError):
    """A document could not be turned into chunks."""


class ProviderError(DocChatError):
    """An embedding or completion provider call failed."""


class StoreError(DocChatError):
    """The persistence backend failed."""
