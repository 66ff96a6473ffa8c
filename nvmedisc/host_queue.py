"""Host side of an NVMe/TCP admin queue to a discovery controller.

The queue writes commands to a connected socket and matches the target's
response PDUs to outstanding requests. A receive loop, normally run in its
own thread, reads PDUs and hands completed requests to the waiting callers.
"""

import logging
import queue
import socket
import threading
import time

from nvmedisc import constants as c
from nvmedisc.errors import NvmeError
from nvmedisc.requests import (
    AdminConnectRequest,
    AsyncEventRequest,
    FeaturesRequest,
    GetDiscoveryLogPageRequest,
    IdentifyRequest,
    KeepAliveRequest,
    PropertyGetRequest,
    PropertySetRequest,
)
from nvmedisc.sgl import ScatterList, ScatterListWriter
from nvmedisc.structs import (
    Completion,
    ConnectData,
    DiscRspPageEntry,
    DiscRspPageHdr,
    ICReqPDU,
    ICRespPDU,
    IDCtrl,
    TCPDataPDU,
    TCPHeader,
)

log = logging.getLogger(__name__)

WAIT_FOR_REPLY_TIMEOUT = 5.0
CC_ENABLE = 0x460001
_POLL_INTERVAL = 0.05

_PDU_SIZES = {
    c.NVME_TCP_ICRESP: c.NVME_TCP_ICRESP_PDU_SIZE,
    c.NVME_TCP_RSP: c.NVME_TCP_RSP_PDU_SIZE,
    c.NVME_TCP_C2H_DATA: c.NVME_TCP_DATA_PDU_SIZE,
}


def pdu_size(pdu_type):
    """Header length of a PDU type the host can receive."""
    try:
        return _PDU_SIZES[pdu_type]
    except KeyError:
        raise ValueError(f"unexpected pdu type {pdu_type}") from None


def pdu_valid(pdu_type):
    """True for the PDU types a host accepts from the target."""
    return pdu_type in _PDU_SIZES


def create_tcp_header(is_connect):
    """Header of a command capsule; a connect carries its data in-capsule."""
    data_length = c.NVMF_CONNECT_DATA_SIZE if is_connect else 0
    return TCPHeader(
        pdu_type=c.NVME_TCP_CMD,
        flags=0,
        hlen=c.NVME_TCP_CMD_PDU_SIZE,
        plen=c.NVME_TCP_CMD_PDU_SIZE + data_length,
    )


class HostQueue:
    """An NVMe/TCP admin queue from the host to a discovery controller."""

    def __init__(self, queue_id, sock):
        self.queue_id = queue_id
        self.sock = sock
        self.reply_timeout = WAIT_FOR_REPLY_TIMEOUT
        self.outstanding = {}
        self.keep_alive_done = threading.Event()
        self._command_id = 1
        self._lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._completed = queue.Queue()
        self._completed_aen = queue.Queue()
        self._closed = threading.Event()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        """Shut the connection down; pending waits are aborted."""
        self._closed.set()
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.sock.close()

    # -- low-level I/O -------------------------------------------------

    def _next_command_id(self):
        with self._lock:
            command_id = self._command_id
            self._command_id = (command_id + 1) & 0xFFFF
        return command_id

    def _send(self, data):
        with self._send_lock:
            self.sock.sendall(data)

    def _recv_exact(self, size):
        chunks = []
        while size > 0:
            chunk = self.sock.recv(size)
            if not chunk:
                raise EOFError("connection closed by peer")
            chunks.append(chunk)
            size -= len(chunk)
        return b"".join(chunks)

    def _send_request(self, request):
        is_connect = isinstance(request, AdminConnectRequest)
        payload = create_tcp_header(is_connect).pack() + request.pack_command()
        if is_connect:
            payload += request.data.getvalue()
        with self._lock:
            self.outstanding[request.command_id] = request
        self._send(payload)

    def _wait_for_response(self):
        deadline = time.monotonic() + self.reply_timeout
        while True:
            if self._closed.is_set():
                raise NvmeError("aborted")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError("timed out waiting for a response")
            try:
                return self._completed.get(timeout=min(remaining, _POLL_INTERVAL))
            except queue.Empty:
                continue

    def _execute(self, request):
        self._send_request(request)
        return self._wait_for_response()

    # -- connection setup ----------------------------------------------

    def send_init_connection(self):
        """Send the NVMe/TCP initialize-connection request."""
        header = TCPHeader(
            pdu_type=c.NVME_TCP_ICREQ,
            flags=0,
            hlen=c.NVME_TCP_ICREQ_PDU_SIZE,
            pdo=0,
            plen=c.NVME_TCP_ICREQ_PDU_SIZE,
        )
        icreq = ICReqPDU(pfv=c.NVME_TCP_PFV_1_0, maxr2t=0, hpda=0, digest=0)
        self._send(header.pack() + icreq.pack())

    def _recv_init_conn_response(self, pdu):
        icresp = ICRespPDU.unpack(pdu)
        if icresp.pfv != c.NVME_TCP_PFV_1_0:
            raise NvmeError(f"queue {self.queue_id}: bad pfv returned {icresp.pfv}")
        if icresp.cpda != 0:
            raise NvmeError(f"queue {self.queue_id}: unsupported cpda returned {icresp.cpda}")
        return icresp

    def send_connect_request(self, hostnqn, host_id):
        """Connect to the discovery subsystem as ``hostnqn`` with a hex host id."""
        connect_data = ConnectData(
            hostid=bytes.fromhex(host_id),
            cntlid=0xFFFF,
            subsysnqn=c.DISCOVERY_SUBSYS_NAME,
            hostnqn=hostnqn,
        )
        request = AdminConnectRequest(self._next_command_id(), 0, connect_data)
        return self._execute(request)

    def _get_property(self, offset):
        return self._execute(PropertyGetRequest(self._next_command_id(), offset))

    def _set_property(self, offset, value):
        return self._execute(PropertySetRequest(self._next_command_id(), offset, value))

    def set_controller_configuration(self, value):
        """Write CC and read back the controller status."""
        self._set_property(c.NVME_REG_CC, value)
        return self._get_property(c.NVME_REG_CSTS)

    def set_properties(self):
        """Enable the controller the way a host initialises a discovery controller."""
        self._get_property(c.NVME_REG_CAP)
        self.set_controller_configuration(CC_ENABLE)
        self._get_property(c.NVME_REG_VS)
        self._get_property(c.NVME_REG_CAP)

    def send_identify_request(self):
        """Identify the controller and check it is a discovery controller."""
        completed = self._execute(IdentifyRequest(self._next_command_id()))
        if completed.data is None:
            raise NvmeError("no identify data received")
        identify = IDCtrl.unpack(completed.data.getvalue())
        if identify.subnqn != c.NVME_DISC_SUBSYS_NAME:
            raise NvmeError(f"subNqn must equal {c.NVME_DISC_SUBSYS_NAME!r}")
        return identify

    def send_async_event_set_feature(self):
        """Enable discovery-log-change asynchronous events."""
        return self._execute(FeaturesRequest.async_event(self._next_command_id()))

    # -- discovery log page --------------------------------------------

    def _recv_log_page_entries(self, data, offset, num_rec):
        entries = []
        size = DiscRspPageEntry.SIZE
        index = offset // c.NVMF_DISC_RSP_PAGE_ENTRY_SIZE
        pos = 0
        while index < num_rec and len(data) - pos >= size:
            log.debug("recovering entry number %d of %d", index, num_rec)
            entries.append(DiscRspPageEntry.unpack(data[pos:pos + size]))
            pos += size
            index += 1
        return entries

    def _send_disc_log_page_request(self, size, offset, nsid, num):
        request = GetDiscoveryLogPageRequest(self._next_command_id(), size, offset, nsid)
        completed = self._execute(request)
        if completed.data is None or completed.data.capacity == 0:
            return 0, 0, []
        data = completed.data.getvalue()
        header = DiscRspPageHdr.unpack(data)
        entries = self._recv_log_page_entries(data[DiscRspPageHdr.SIZE:], offset, num)
        return header.numrec, header.genctr, entries

    def get_log_page_entries(self, pagination):
        """Read every discovery log page entry, checking the generation counter."""
        num_rec, genctr, _ = self._send_disc_log_page_request(
            c.NVMF_DISC_RSP_PAGE_HDR_SIZE, 0, 0xFFFFFFFF, 0
        )
        result = []
        if pagination:
            offset = 0
            while len(result) < num_rec:
                _, _, entries = self._send_disc_log_page_request(4096, offset, 0, num_rec)
                if not entries:
                    break
                result.extend(entries)
                offset = len(result) * c.NVMF_DISC_RSP_PAGE_ENTRY_SIZE
        else:
            size = DiscRspPageHdr.SIZE + num_rec * DiscRspPageEntry.SIZE
            _, _, result = self._send_disc_log_page_request(size, 0, 0, num_rec)

        if len(result) != num_rec:
            log.error("expected %d entries, received %d entries", num_rec, len(result))
            raise NvmeError("number of obtained entries differs from numRec")

        _, new_genctr, _ = self._send_disc_log_page_request(
            c.NVMF_DISC_RSP_PAGE_HDR_SIZE, 0, 0, 0
        )
        if genctr != new_genctr:
            raise NvmeError("genCtr changed during GetLogPage. issue another discover request")
        return result

    # -- keep alive and asynchronous events ----------------------------

    def send_keep_alive(self):
        """Send one keep-alive; command id 0 is never reused by other commands."""
        return self._execute(KeepAliveRequest(0))

    def keep_alive(self, kato, stop_event):
        """Send keep-alives every ``kato / 2`` seconds until stopped or failing."""
        try:
            while not stop_event.wait(kato / 2):
                try:
                    self.send_keep_alive()
                except (NvmeError, OSError) as err:
                    log.error("keep alive received error, end: %s", err)
                    return
            log.info("keep alive stopped")
        finally:
            self.keep_alive_done.set()

    def handle_aen(self, stop_event):
        """Post an async event request and wait for it; None when stopped."""
        try:
            self._send_request(AsyncEventRequest(self._next_command_id()))
        except OSError as err:
            raise NvmeError("failed calling async event request") from err
        while not stop_event.is_set() and not self._closed.is_set():
            try:
                return self._completed_aen.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                continue
        return None

    # -- receiving -----------------------------------------------------

    def _recv_tcp_header(self):
        header = TCPHeader.unpack(self._recv_exact(c.NVME_TCP_HDR_SIZE))
        if not pdu_valid(header.pdu_type):
            raise NvmeError(f"unexpected pdu type {header.pdu_type}")
        if header.hlen != pdu_size(header.pdu_type):
            raise NvmeError(f"pdu type {header.pdu_type} bad hlen {header.hlen}")
        if header.plen < c.NVME_TCP_HDR_SIZE:
            raise NvmeError(f"pdu type {header.pdu_type} bad plen {header.plen}")
        return header

    def receive_loop(self, stop_event):
        """Receive PDUs until stopped; return the error that ended the loop."""
        while not stop_event.is_set():
            try:
                self.handle_receive()
            except (NvmeError, OSError, EOFError, ValueError) as err:
                return err
        return None

    def handle_receive(self):
        """Read one PDU and dispatch the request it completes, if any."""
        header = self._recv_tcp_header()
        pdu = self._recv_exact(header.plen - c.NVME_TCP_HDR_SIZE)
        request = self.parse_response(header.pdu_type, pdu)
        if request is None or request.completion is None:
            return request
        if isinstance(request, AsyncEventRequest):
            self._completed_aen.put(request)
        else:
            self._completed.put(request)
        return request

    def parse_response(self, pdu_type, pdu):
        """Apply a received PDU body to its outstanding request and return it."""
        if pdu_type == c.NVME_TCP_ICRESP:
            self._recv_init_conn_response(pdu)
            return None
        if pdu_type == c.NVME_TCP_RSP:
            cqe = Completion.unpack(pdu)
            if cqe.status != c.NVME_SC_SUCCESS:
                log.warning(
                    "nvme completion failed: id: %#04x, Status: %#02x",
                    cqe.command_id,
                    cqe.status,
                )
            with self._lock:
                request = self.outstanding.pop(cqe.command_id, None)
            if request is None:
                return None
            request.completion = cqe
            return request
        if pdu_type == c.NVME_TCP_C2H_DATA:
            data_pdu = TCPDataPDU.unpack(pdu)
            with self._lock:
                request = self.outstanding.get(data_pdu.command_id)
            if request is None:
                return None
            chunk = min(1024, data_pdu.data_length)
            request.data = ScatterList(data_pdu.data_length, chunk)
            ScatterListWriter(request.data).write(pdu[TCPDataPDU.SIZE:])
            return request
        raise ValueError(f"unexpected pdu type {pdu_type}")