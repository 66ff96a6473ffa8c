"""Network address helpers."""

import ipaddress
import socket


def adjust_traddr(traddr):
    """Return an IP address as is, or resolve a host name to its first address."""
    try:
        ipaddress.ip_address(traddr)
    except ValueError:
        pass
    else:
        return traddr
    if not traddr:
        raise socket.gaierror(socket.EAI_NONAME, "empty address")
    infos = socket.getaddrinfo(traddr, None)
    if not infos:
        raise socket.gaierror(socket.EAI_NONAME, f"no address found for {traddr}")
    return infos[0][4][0]