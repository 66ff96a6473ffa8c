"""NVMe over TCP discovery host: wire structures, command builders, scatter lists and a discovery client."""

__version__ = "0.1.0"
__all__ = [
    "constants",
    "errors",
    "sgl",
    "netutil",
    "structs",
    "requests",
    "host_queue",
    "host_client",
]