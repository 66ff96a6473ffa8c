"""NVMe/TCP discovery client.

The client connects to a discovery controller, brings the admin queue up,
reads the discovery log page and, when a keep-alive timeout is requested,
keeps the connection open to receive asynchronous event notifications.
"""

import logging
import queue
import re
import socket
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path

from nvmedisc.errors import NvmeError
from nvmedisc.host_queue import HostQueue

log = logging.getLogger(__name__)

HOST_ID_PATH = "/etc/nvme/hostid"
DIALER_TIMEOUT = 1.0
CC_SHUTDOWN = 0x464001
_JOIN_TIMEOUT = 5.0

_HEX32 = re.compile(r"[0-9a-fA-F]{32}")
_DECIMAL = re.compile(r"[+-]?[0-9]+")


def remove_dash(value):
    """Drop every dash and surrounding whitespace from ``value``."""
    return value.replace("-", "").strip()


def is_valid_uuid(value):
    """True when ``value`` is a UUID in one of its usual textual forms."""
    if len(value) == 45 and value[:9].lower() == "urn:uuid:":
        value = value[9:]
    elif len(value) == 38 and value.startswith("{") and value.endswith("}"):
        value = value[1:-1]
    if len(value) == 36:
        if any(value[pos] != "-" for pos in (8, 13, 18, 23)):
            return False
        value = value[:8] + value[9:13] + value[14:18] + value[19:23] + value[24:]
    elif len(value) != 32:
        return False
    return _HEX32.fullmatch(value) is not None


def _service_id(text):
    if _DECIMAL.fullmatch(text) is None:
        log.error("failed to parse entry service id %r", text)
        return 0
    return int(text) & 0xFFFF


@dataclass
class DiscoverRequest:
    """Where and as whom to discover; ``kato`` is in seconds, 0 for one-shot."""

    transport: str
    traddr: str
    trsvcid: int
    hostnqn: str
    hostaddr: str = ""
    kato: float = 0.0


@dataclass
class DiscoveryEntry:
    """One subsystem reported by the discovery controller."""

    port_id: int
    cntl_id: int
    trsvcid: int
    subnqn: str
    traddr: str
    subtype: int


class TCPClient:
    """Discovery client over NVMe/TCP.

    Asynchronous event completions are put on ``aen_events``; after
    ``stop`` a final ``None`` marks the end of the stream.
    """

    def __init__(self, log_page_pagination_enabled=False, host_id_path=HOST_ID_PATH):
        self.log_page_pagination_enabled = log_page_pagination_enabled
        self.host_id_path = Path(host_id_path)
        self.remote_address = None
        self.aen_events = queue.Queue()
        self._queue = None
        self._stop_event = threading.Event()
        self._threads = []
        self._stopped = False

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.stop()

    @property
    def keep_alive_done(self):
        """Event set when the keep-alive loop ends."""
        if self._queue is None:
            raise NvmeError("client is not connected")
        return self._queue.keep_alive_done

    def host_id(self):
        """Read the host id, creating the file with a fresh UUID when missing or empty."""
        try:
            content = self.host_id_path.read_bytes().decode("utf-8", "replace")
        except OSError:
            content = ""
        if content:
            return remove_dash(content)
        new_id = f"{uuid.uuid4()}\n"
        log.debug("creating hostID file at %s", self.host_id_path)
        self.host_id_path.parent.mkdir(parents=True, exist_ok=True)
        self.host_id_path.write_text(new_id)
        return remove_dash(new_id)

    def _start_thread(self, target, *args):
        thread = threading.Thread(target=target, args=args, daemon=True)
        self._threads.append(thread)
        thread.start()

    def _receive(self, host_queue):
        err = host_queue.receive_loop(self._stop_event)
        if err is not None:
            log.debug("receive loop ended: %s", err)

    def _poll_aen(self, host_queue):
        while not self._stop_event.is_set():
            try:
                request = host_queue.handle_aen(self._stop_event)
            except NvmeError as err:
                log.debug("async event request failed: %s", err)
                continue
            if request is None:
                return
            log.debug("got AEN, request: %s", request)
            self.aen_events.put(request)

    def discover(self, request):
        """Connect, read the discovery log page and return its entries."""
        self.remote_address = request.traddr
        host_id = self.host_id()
        if not is_valid_uuid(host_id):
            raise ValueError("invalid host id")

        sock = socket.create_connection(
            (request.traddr, request.trsvcid), timeout=DIALER_TIMEOUT
        )
        sock.settimeout(None)
        host_queue = HostQueue(1, sock)
        self._queue = host_queue
        self._start_thread(self._receive, host_queue)

        host_queue.send_init_connection()
        host_queue.send_connect_request(request.hostnqn, host_id)
        host_queue.set_properties()
        host_queue.send_identify_request()
        host_queue.send_async_event_set_feature()
        entries = host_queue.get_log_page_entries(self.log_page_pagination_enabled)

        response = [
            DiscoveryEntry(
                port_id=entry.portid,
                cntl_id=entry.cntlid,
                trsvcid=_service_id(entry.trsvcid),
                subnqn=entry.subnqn,
                traddr=entry.traddr,
                subtype=entry.subtype,
            )
            for entry in entries
        ]

        if request.kato > 0:
            log.debug("started routines")
            self._start_thread(self._poll_aen, host_queue)
            self._start_thread(host_queue.keep_alive, request.kato, self._stop_event)
        return response

    def stop(self):
        """Disable the controller, close the connection and end all threads."""
        if self._stopped:
            return
        self._stopped = True
        host_queue = self._queue
        if host_queue is not None:
            try:
                host_queue.set_controller_configuration(CC_SHUTDOWN)
            except (NvmeError, OSError) as err:
                log.debug("failed to set ctrl back (stop receiving commands): %s", err)
        self._stop_event.set()
        if host_queue is not None:
            host_queue.close()
            self._queue = None
        while True:
            try:
                self.aen_events.get_nowait()
            except queue.Empty:
                break
        for thread in self._threads:
            thread.join(_JOIN_TIMEOUT)
        self._threads.clear()
        self.aen_events.put(None)