"""Exceptions raised by the memory engine."""


class RecallError(Exception):
    """Base class for memory engine errors."""


class StoreError(RecallError):
    """A memory store operation failed."""


class MemoryNotFoundError(StoreError):
    """The referenced memory row does not exist."""

    def __init__(self, memory_id: int):
        self.memory_id = memory_id
        super().__init__(f"Memory {memory_id} does not exist")


class InvalidMemoryIdError(StoreError):
    """The memory id is not a positive integer."""

    def __init__(self, memory_id: object):
        self.memory_id = memory_id
        super().__init__(f"Invalid memory id: {memory_id!r}")
