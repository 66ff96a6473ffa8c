import socket
import threading
import time

import pytest

from nvmedisc import constants as c
from nvmedisc.errors import NvmeError
from nvmedisc.host_queue import (
    CC_ENABLE,
    HostQueue,
    create_tcp_header,
    pdu_size,
    pdu_valid,
)
from nvmedisc.requests import AsyncEventRequest, KeepAliveRequest
from nvmedisc.structs import (
    Completion,
    ConnectCommand,
    ConnectData,
    DiscRspPageEntry,
    DiscRspPageHdr,
    GetLogPageCommand,
    ICReqPDU,
    ICRespPDU,
    IDCtrl,
    PropertyGetCommand,
    PropertySetCommand,
    SubsystemType,
    TCPDataPDU,
    TCPHeader,
)

HOST_ID = "00112233445566778899aabbccddeeff"
HOST_NQN = "nqn.2014-08.com.example:host-test"


def _command_id(cmd):
    return int.from_bytes(cmd[2:4], "little")


def rsp_pdu(command_id, status=0, result=None):
    completion = Completion.create(command_id, 0, status)
    if result is not None:
        completion.set_result_u32(result)
    header = TCPHeader(
        pdu_type=c.NVME_TCP_RSP, hlen=c.NVME_TCP_RSP_PDU_SIZE, plen=c.NVME_TCP_RSP_PDU_SIZE
    )
    return header.pack() + completion.pack()


def c2h_pdu(command_id, data):
    header = TCPHeader(
        pdu_type=c.NVME_TCP_C2H_DATA,
        flags=c.NVME_TCP_F_DATA_LAST,
        hlen=c.NVME_TCP_DATA_PDU_SIZE,
        pdo=c.NVME_TCP_DATA_PDU_SIZE,
        plen=c.NVME_TCP_DATA_PDU_SIZE + len(data),
    )
    body = TCPDataPDU(command_id=command_id, data_length=len(data))
    return header.pack() + body.pack() + data


def aen_result():
    return (
        c.NVME_AER_TYPE_NOTICE
        | (c.NVME_AER_NOTICE_DISC_CHANGED << 8)
        | (c.NVME_LOG_DISC << 16)
    )


def make_entries(count):
    return [
        DiscRspPageEntry(
            trtype=3,
            adrfam=1,
            subtype=SubsystemType.NVME,
            portid=index,
            cntlid=0xFFFF,
            trsvcid="4420",
            subnqn=f"nqn.2016-01.com.example:subsys-{index}",
            traddr=f"192.0.2.{index + 10}",
        )
        for index in range(count)
    ]


def default_handler(cmd, data):
    cid = _command_id(cmd)
    if cmd[0] == c.NVME_ADMIN_ASYNC_EVENT:
        return [rsp_pdu(cid, result=aen_result())]
    return [rsp_pdu(cid)]


def silent_handler(cmd, data):
    return []


def discovery_handler(entries, genctrs=None, subnqn=c.DISCOVERY_SUBSYS_NAME):
    gens = iter(genctrs) if genctrs else None

    def handler(cmd, data):
        cid = _command_id(cmd)
        if cmd[0] == c.NVME_ADMIN_IDENTIFY:
            return [c2h_pdu(cid, IDCtrl(subnqn=subnqn).pack()), rsp_pdu(cid)]
        if cmd[0] == c.NVME_ADMIN_GET_LOG_PAGE:
            command = GetLogPageCommand.unpack(cmd)
            genctr = next(gens) if gens else 1
            page = DiscRspPageHdr(genctr=genctr, numrec=len(entries)).pack()
            page += b"".join(entry.pack() for entry in entries)
            offset = command.log_page_offset()
            chunk = page[offset:offset + command.log_page_length()]
            return [c2h_pdu(cid, chunk), rsp_pdu(cid)]
        return default_handler(cmd, data)

    return handler


class FakeTarget:
    def __init__(self, sock, handler):
        self.sock = sock
        self.handler = handler
        self.commands = []
        self.icreqs = []
        self.thread = threading.Thread(target=self._run, daemon=True)
        self.thread.start()

    def _recv(self, size):
        chunks = []
        while size > 0:
            chunk = self.sock.recv(size)
            if not chunk:
                return None
            chunks.append(chunk)
            size -= len(chunk)
        return b"".join(chunks)

    def _run(self):
        try:
            while True:
                raw = self._recv(c.NVME_TCP_HDR_SIZE)
                if raw is None:
                    return
                header = TCPHeader.unpack(raw)
                body = self._recv(header.plen - c.NVME_TCP_HDR_SIZE)
                if body is None:
                    return
                if header.pdu_type == c.NVME_TCP_ICREQ:
                    self.icreqs.append((header, ICReqPDU.unpack(body)))
                    reply = TCPHeader(
                        pdu_type=c.NVME_TCP_ICRESP,
                        hlen=c.NVME_TCP_ICRESP_PDU_SIZE,
                        plen=c.NVME_TCP_ICRESP_PDU_SIZE,
                    )
                    self.sock.sendall(reply.pack() + ICRespPDU(maxdata=0x10000).pack())
                    continue
                split = header.hlen - c.NVME_TCP_HDR_SIZE
                cmd, data = body[:split], body[split:]
                self.commands.append((header, cmd, data))
                for pdu in self.handler(cmd, data):
                    self.sock.sendall(pdu)
        except OSError:
            return


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def session():
    opened = []

    def make(handler=default_handler):
        host_sock, target_sock = socket.socketpair()
        host = HostQueue(1, host_sock)
        target = FakeTarget(target_sock, handler)
        stop = threading.Event()
        threading.Thread(target=host.receive_loop, args=(stop,), daemon=True).start()
        opened.append((host, target_sock, stop))
        return host, target

    yield make
    for host, target_sock, stop in opened:
        stop.set()
        host.close()
        target_sock.close()


@pytest.fixture
def bare():
    host_sock, target_sock = socket.socketpair()
    host = HostQueue(1, host_sock)
    yield host, target_sock
    host.close()
    target_sock.close()


def test_create_tcp_header_for_connect_and_plain_commands():
    connect = create_tcp_header(True)
    plain = create_tcp_header(False)
    assert connect.pdu_type == c.NVME_TCP_CMD
    assert connect.hlen == c.NVME_TCP_CMD_PDU_SIZE
    assert connect.plen == c.NVME_TCP_CMD_PDU_SIZE + c.NVMF_CONNECT_DATA_SIZE
    assert plain.plen == c.NVME_TCP_CMD_PDU_SIZE


def test_pdu_sizes_and_validity():
    assert pdu_size(c.NVME_TCP_ICRESP) == c.NVME_TCP_ICRESP_PDU_SIZE
    assert pdu_size(c.NVME_TCP_RSP) == c.NVME_TCP_RSP_PDU_SIZE
    assert pdu_size(c.NVME_TCP_C2H_DATA) == c.NVME_TCP_DATA_PDU_SIZE
    assert pdu_valid(c.NVME_TCP_RSP)
    assert not pdu_valid(c.NVME_TCP_CMD)
    with pytest.raises(ValueError):
        pdu_size(c.NVME_TCP_ICREQ)


def test_send_init_connection(session):
    host, target = session()
    host.send_init_connection()
    assert wait_for(lambda: target.icreqs)
    header, icreq = target.icreqs[0]
    assert header.pdu_type == c.NVME_TCP_ICREQ
    assert header.hlen == c.NVME_TCP_ICREQ_PDU_SIZE
    assert header.plen == c.NVME_TCP_ICREQ_PDU_SIZE
    assert icreq.pfv == c.NVME_TCP_PFV_1_0
    assert icreq.hpda == 0


def test_send_connect_request(session):
    host, target = session()
    completed = host.send_connect_request(HOST_NQN, HOST_ID)
    header, cmd, data = target.commands[0]
    command = ConnectCommand.unpack(cmd)
    connect_data = ConnectData.unpack(data)
    assert header.plen == c.NVME_TCP_CMD_PDU_SIZE + c.NVMF_CONNECT_DATA_SIZE
    assert command.opcode == c.NVME_FABRICS_COMMAND
    assert command.fctype == c.NVME_FABRICS_TYPE_CONNECT
    assert command.command_id == 1
    assert connect_data.hostid == bytes.fromhex(HOST_ID)
    assert connect_data.hostnqn == HOST_NQN
    assert connect_data.subsysnqn == c.DISCOVERY_SUBSYS_NAME
    assert connect_data.cntlid == 0xFFFF
    assert completed.completion.status == 0
    assert host.outstanding == {}


def _properties(target):
    result = []
    for _, cmd, _ in target.commands:
        if cmd[4] == c.NVME_FABRICS_TYPE_PROPERTY_SET:
            command = PropertySetCommand.unpack(cmd)
            result.append((command.fctype, command.offset, command.value))
        else:
            command = PropertyGetCommand.unpack(cmd)
            result.append((command.fctype, command.offset, None))
    return result


def test_set_properties_sequence(session):
    host, target = session()
    host.set_properties()
    get, put = c.NVME_FABRICS_TYPE_PROPERTY_GET, c.NVME_FABRICS_TYPE_PROPERTY_SET
    assert _properties(target) == [
        (get, c.NVME_REG_CAP, None),
        (put, c.NVME_REG_CC, CC_ENABLE),
        (get, c.NVME_REG_CSTS, None),
        (get, c.NVME_REG_VS, None),
        (get, c.NVME_REG_CAP, None),
    ]
    assert [_command_id(cmd) for _, cmd, _ in target.commands] == [1, 2, 3, 4, 5]


def test_set_controller_configuration(session):
    host, target = session()
    completed = host.set_controller_configuration(0x464001)
    get, put = c.NVME_FABRICS_TYPE_PROPERTY_GET, c.NVME_FABRICS_TYPE_PROPERTY_SET
    assert _properties(target) == [
        (put, c.NVME_REG_CC, 0x464001),
        (get, c.NVME_REG_CSTS, None),
    ]
    assert completed.command.offset == c.NVME_REG_CSTS


def test_identify_accepts_discovery_controller(session):
    host, target = session(discovery_handler([]))
    identify = host.send_identify_request()
    assert identify.subnqn == c.DISCOVERY_SUBSYS_NAME
    assert target.commands[0][1][0] == c.NVME_ADMIN_IDENTIFY


def test_identify_rejects_other_subsystem(session):
    host, _ = session(discovery_handler([], subnqn="nqn.2016-01.com.example:other"))
    with pytest.raises(NvmeError, match="subNqn"):
        host.send_identify_request()


def test_async_event_set_feature(session):
    host, target = session()
    host.send_async_event_set_feature()
    cmd = target.commands[0][1]
    assert cmd[0] == c.NVME_ADMIN_SET_FEATURES
    assert int.from_bytes(cmd[40:44], "little") == c.NVME_FEAT_ASYNC_EVENT
    assert int.from_bytes(cmd[44:48], "little") == c.NVME_AEN_CFG_DISC_CHANGE


@pytest.mark.parametrize("pagination", [False, True])
def test_get_log_page_entries(session, pagination):
    entries = make_entries(2)
    host, target = session(discovery_handler(entries))
    result = host.get_log_page_entries(pagination)
    assert result == entries
    first = GetLogPageCommand.unpack(target.commands[0][1])
    assert first.nsid == 0xFFFFFFFF
    assert first.log_page_length() == c.NVMF_DISC_RSP_PAGE_HDR_SIZE
    assert first.lid == c.NVME_LOG_DISC


def test_get_log_page_entries_without_records(session):
    host, target = session(discovery_handler([]))
    assert host.get_log_page_entries(False) == []
    assert all(cmd[0] == c.NVME_ADMIN_GET_LOG_PAGE for _, cmd, _ in target.commands)


def test_get_log_page_entries_detects_generation_change(session):
    host, _ = session(discovery_handler(make_entries(1), genctrs=[1, 1, 2]))
    with pytest.raises(NvmeError, match="genCtr changed"):
        host.get_log_page_entries(False)


def test_wait_times_out_without_response(session):
    host, target = session(silent_handler)
    host.reply_timeout = 0.2
    with pytest.raises(TimeoutError):
        host.send_async_event_set_feature()
    assert len(host.outstanding) == 1


def test_handle_aen_returns_completed_request(session):
    host, _ = session()
    request = host.handle_aen(threading.Event())
    assert isinstance(request, AsyncEventRequest)
    assert request.completion.result[:4] == aen_result().to_bytes(4, "little")


def test_handle_aen_returns_none_when_stopped(session):
    host, target = session(silent_handler)
    stop = threading.Event()
    stop.set()
    assert host.handle_aen(stop) is None
    assert wait_for(lambda: target.commands)
    assert target.commands[0][1][0] == c.NVME_ADMIN_ASYNC_EVENT


def test_keep_alive_sends_until_stopped(session):
    host, target = session()
    stop = threading.Event()
    thread = threading.Thread(target=host.keep_alive, args=(0.1, stop), daemon=True)
    thread.start()
    assert wait_for(lambda: len(target.commands) >= 2)
    stop.set()
    thread.join(timeout=2)
    assert host.keep_alive_done.is_set()
    assert all(cmd[0] == c.NVME_ADMIN_KEEP_ALIVE for _, cmd, _ in target.commands)
    assert all(_command_id(cmd) == 0 for _, cmd, _ in target.commands)


def test_keep_alive_ends_on_error(session):
    host, _ = session(silent_handler)
    host.reply_timeout = 0.1
    stop = threading.Event()
    thread = threading.Thread(target=host.keep_alive, args=(0.05, stop), daemon=True)
    thread.start()
    thread.join(timeout=2)
    assert host.keep_alive_done.is_set()
    assert not stop.is_set()


def test_send_keep_alive_round_trip(session):
    host, target = session()
    completed = host.send_keep_alive()
    assert isinstance(completed, KeepAliveRequest)
    assert completed.completion.command_id == 0


def test_parse_response_icresp(bare):
    host, _ = bare
    assert host.parse_response(c.NVME_TCP_ICRESP, ICRespPDU().pack()) is None
    with pytest.raises(NvmeError, match="bad pfv"):
        host.parse_response(c.NVME_TCP_ICRESP, ICRespPDU(pfv=1).pack())
    with pytest.raises(NvmeError, match="cpda"):
        host.parse_response(c.NVME_TCP_ICRESP, ICRespPDU(cpda=2).pack())


def test_parse_response_completion_with_error_status(bare):
    host, _ = bare
    request = KeepAliveRequest(7)
    host.outstanding[7] = request
    cqe = Completion.create(7, 0, c.NVME_SC_INVALID_FIELD)
    parsed = host.parse_response(c.NVME_TCP_RSP, cqe.pack())
    assert parsed is request
    assert request.completion.status == c.NVME_SC_INVALID_FIELD << 1
    assert 7 not in host.outstanding


def test_parse_response_unknown_command_is_ignored(bare):
    host, _ = bare
    cqe = Completion.create(9, 0, 0)
    assert host.parse_response(c.NVME_TCP_RSP, cqe.pack()) is None


def test_parse_response_data_pdu_fills_request(bare):
    host, _ = bare
    request = AsyncEventRequest(3)
    host.outstanding[3] = request
    payload = bytes(range(200)) * 10
    body = TCPDataPDU(command_id=3, data_length=len(payload)).pack() + payload
    parsed = host.parse_response(c.NVME_TCP_C2H_DATA, body)
    assert parsed is request
    assert request.data.getvalue() == payload
    assert request.completion is None
    assert 3 in host.outstanding


def test_parse_response_unknown_type(bare):
    host, _ = bare
    with pytest.raises(ValueError):
        host.parse_response(c.NVME_TCP_CMD, b"")


def test_handle_receive_completes_request(bare):
    host, target_sock = bare
    request = KeepAliveRequest(0)
    host.outstanding[0] = request
    target_sock.sendall(rsp_pdu(0))
    assert host.handle_receive() is request
    assert request.completion.command_id == 0


def test_receive_loop_reports_bad_pdu_type(bare):
    host, target_sock = bare
    target_sock.sendall(create_tcp_header(False).pack())
    err = host.receive_loop(threading.Event())
    assert isinstance(err, NvmeError)
    assert "unexpected pdu type" in str(err)


def test_receive_loop_reports_bad_hlen(bare):
    host, target_sock = bare
    target_sock.sendall(TCPHeader(pdu_type=c.NVME_TCP_RSP, hlen=30, plen=30).pack())
    err = host.receive_loop(threading.Event())
    assert "bad hlen" in str(err)


def test_receive_loop_ends_at_eof(bare):
    host, target_sock = bare
    target_sock.close()
    err = host.receive_loop(threading.Event())
    assert isinstance(err, EOFError)
    assert "closed" in str(err)


def test_receive_loop_returns_none_when_stopped(bare):
    host, _ = bare
    stop = threading.Event()
    stop.set()
    assert host.receive_loop(stop) is None