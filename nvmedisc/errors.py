"""Exceptions raised by the NVMe discovery code."""


class NvmeError(Exception):
    """Base class for NVMe protocol errors."""


class ParserError(NvmeError):
    """A command could not be parsed; carries the NVMe status to report."""

    def __init__(self, status, message):
        super().__init__(message)
        self.status = status
        self.message = message


class CompletionError(NvmeError):
    """A completion queue entry reported a non-success status."""

    def __init__(self, completion):
        self.completion = completion
        self.status = completion.status
        self.command_id = completion.command_id
        super().__init__(
            f"nvme completion failed: id: {self.command_id:#04x}, "
            f"Status: {self.status:#02x}"
        )