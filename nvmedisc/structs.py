"""Wire layouts of NVMe, NVMe over Fabrics and NVMe/TCP structures.

Every structure is a dataclass whose ``pack`` method yields its exact
little-endian wire form and whose ``unpack`` class method reads one from
the start of a bytes-like object. Reserved areas are written as zeros and
skipped when reading.
"""

import enum
import struct
from dataclasses import dataclass, field
from typing import ClassVar

from nvmedisc import constants as c


class SubsystemType(enum.IntEnum):
    """Type of the NVM subsystem described by a discovery log page entry."""

    DISC = c.NVME_NQN_DISC
    NVME = c.NVME_NQN_NVME


def _subsystem_type(value):
    try:
        return SubsystemType(value)
    except ValueError:
        return value


class _Int:
    def __init__(self, fmt, convert=int):
        self._struct = struct.Struct("<" + fmt)
        self.size = self._struct.size
        self._convert = convert

    def pack(self, value):
        return self._struct.pack(value)

    def unpack(self, data):
        return self._convert(self._struct.unpack(data)[0])


class _Bytes:
    def __init__(self, size):
        self.size = size

    def pack(self, value):
        value = bytes(value)
        if len(value) > self.size:
            raise ValueError(f"{len(value)} bytes do not fit in a {self.size}-byte field")
        return value.ljust(self.size, b"\0")

    def unpack(self, data):
        return bytes(data)


class _Str(_Bytes):
    def pack(self, value):
        return super().pack(value.encode("utf-8"))

    def unpack(self, data):
        return bytes(data).rstrip(b"\0").decode("utf-8", "replace")


class _Reserved:
    def __init__(self, size):
        self.size = size

    def pack(self, value):
        return bytes(self.size)


class _Nested:
    def __init__(self, struct_class):
        self._class = struct_class
        self.size = struct_class.SIZE

    def pack(self, value):
        return value.pack()

    def unpack(self, data):
        return self._class.unpack(data)


_U8 = _Int("B")
_U16 = _Int("H")
_U32 = _Int("I")
_U64 = _Int("Q")
_S32 = _Int("i")


class _Struct:
    """Base of the wire structures; subclasses declare ``_LAYOUT``."""

    _LAYOUT: ClassVar[tuple] = ()
    SIZE: ClassVar[int] = 0

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        cls.SIZE = sum(kind.size for _, kind in cls._LAYOUT)

    def _pack_fields(self):
        parts = []
        for name, kind in self._LAYOUT:
            value = getattr(self, name) if name else None
            try:
                parts.append(kind.pack(value))
            except (struct.error, ValueError) as err:
                raise ValueError(f"{type(self).__name__}.{name}: {err}") from err
        return b"".join(parts)

    @classmethod
    def _unpack_fields(cls, data):
        view = memoryview(data)
        if len(view) < cls.SIZE:
            raise ValueError(
                f"{cls.__name__} needs {cls.SIZE} bytes, got {len(view)}"
            )
        values = {}
        pos = 0
        for name, kind in cls._LAYOUT:
            if name:
                values[name] = kind.unpack(view[pos:pos + kind.size])
            pos += kind.size
        return cls(**values)


@dataclass
class TCPHeader(_Struct):
    """Common NVMe/TCP PDU header."""

    pdu_type: int = 0
    flags: int = 0
    hlen: int = 0
    pdo: int = 0
    plen: int = 0

    _LAYOUT = (
        ("pdu_type", _U8),
        ("flags", _U8),
        ("hlen", _U8),
        ("pdo", _U8),
        ("plen", _U32),
    )

    def pack(self):
        """Return the header's wire bytes."""
        return self._pack_fields()

    @classmethod
    def unpack(cls, data):
        """Read a header from the start of ``data``."""
        return cls._unpack_fields(data)


@dataclass
class ICReqPDU(_Struct):
    """Body of an initialize-connection request PDU."""

    pfv: int = 0
    maxr2t: int = 0
    hpda: int = 0
    digest: int = 0

    _LAYOUT = (
        ("pfv", _U16),
        ("maxr2t", _S32),
        ("hpda", _U8),
        ("digest", _U8),
        (None, _Reserved(112)),
    )

    def pack(self):
        """Return the PDU body's wire bytes."""
        return self._pack_fields()

    @classmethod
    def unpack(cls, data):
        """Read a PDU body from the start of ``data``."""
        return cls._unpack_fields(data)


@dataclass
class ICRespPDU(_Struct):
    """Body of an initialize-connection response PDU."""

    pfv: int = 0
    cpda: int = 0
    digest: int = 0
    maxdata: int = 0

    _LAYOUT = (
        ("pfv", _U16),
        ("cpda", _U8),
        ("digest", _U8),
        ("maxdata", _S32),
        (None, _Reserved(112)),
    )

    def pack(self):
        """Return the PDU body's wire bytes."""
        return self._pack_fields()

    @classmethod
    def unpack(cls, data):
        """Read a PDU body from the start of ``data``."""
        return cls._unpack_fields(data)


@dataclass
class TCPDataPDU(_Struct):
    """Body of a data transfer PDU header."""

    command_id: int = 0
    ttag: int = 0
    data_offset: int = 0
    data_length: int = 0

    _LAYOUT = (
        ("command_id", _U16),
        ("ttag", _U16),
        ("data_offset", _U32),
        ("data_length", _U32),
        (None, _Reserved(4)),
    )

    def pack(self):
        """Return the PDU body's wire bytes."""
        return self._pack_fields()

    @classmethod
    def unpack(cls, data):
        """Read a PDU body from the start of ``data``."""
        return cls._unpack_fields(data)


@dataclass
class DataPtr(_Struct):
    """Data pointer of a command, holding an SGL descriptor."""

    part1: int = 0
    part2: bytes = bytes(8)

    _LAYOUT = (
        ("part1", _U64),
        ("part2", _Bytes(8)),
    )

    def pack(self):
        """Return the data pointer's wire bytes."""
        return self._pack_fields()

    @classmethod
    def unpack(cls, data):
        """Read a data pointer from the start of ``data``."""
        return cls._unpack_fields(data)

    def _set_descriptor(self, length, sgl_type):
        self.part1 = 0
        self.part2 = length.to_bytes(4, "little") + bytes(self.part2[4:7]) + bytes([sgl_type])

    def set_sg_host_data(self, length):
        """Describe ``length`` bytes of transport data held by the host."""
        self._set_descriptor(
            length, (c.NVME_TRANSPORT_SGL_DATA_DESC << 4) | c.NVME_SGL_FMT_TRANSPORT_A
        )

    def set_sg_inline(self, length):
        """Describe ``length`` bytes of in-capsule data."""
        self._set_descriptor(length, (c.NVME_SGL_FMT_DATA_DESC << 4) | c.NVME_SGL_FMT_OFFSET)


@dataclass
class Completion(_Struct):
    """Completion queue entry."""

    result: bytes = bytes(8)
    sq_head: int = 0
    sq_id: int = 0
    command_id: int = 0
    status: int = 0

    _LAYOUT = (
        ("result", _Bytes(8)),
        ("sq_head", _U16),
        ("sq_id", _U16),
        ("command_id", _U16),
        ("status", _U16),
    )

    def pack(self):
        """Return the completion's wire bytes."""
        return self._pack_fields()

    @classmethod
    def unpack(cls, data):
        """Read a completion from the start of ``data``."""
        return cls._unpack_fields(data)

    @classmethod
    def create(cls, command_id, sq_id, status):
        """Build a completion; the status code lands above the phase bit."""
        return cls(command_id=command_id, sq_id=sq_id, status=(status << 1) & 0xFFFF)

    def set_result_u16(self, value):
        """Store a 16-bit result in the first two result bytes."""
        self.result = value.to_bytes(2, "little") + bytes(self.result[2:])

    def set_result_u32(self, value):
        """Store a 32-bit result in the first four result bytes."""
        self.result = value.to_bytes(4, "little") + bytes(self.result[4:])

    def set_result_u64(self, value):
        """Store a 64-bit result in all eight result bytes."""
        self.result = value.to_bytes(8, "little")


@dataclass
class CommonCommand(_Struct):
    """Generic admin/NVM command layout."""

    opcode: int = 0
    flags: int = 0
    command_id: int = 0
    nsid: int = 0
    cdw2: int = 0
    cdw3: int = 0
    metadata: int = 0
    dptr: DataPtr = field(default_factory=DataPtr)
    cdw10: int = 0
    cdw11: int = 0
    cdw12: int = 0
    cdw13: int = 0
    cdw14: int = 0
    cdw15: int = 0

    _LAYOUT = (
        ("opcode", _U8),
        ("flags", _U8),
        ("command_id", _U16),
        ("nsid", _U32),
        ("cdw2", _U32),
        ("cdw3", _U32),
        ("metadata", _U64),
        ("dptr", _Nested(DataPtr)),
        ("cdw10", _U32),
        ("cdw11", _U32),
        ("cdw12", _U32),
        ("cdw13", _U32),
        ("cdw14", _U32),
        ("cdw15", _U32),
    )

    def pack(self):
        """Return the command's wire bytes."""
        return self._pack_fields()

    @classmethod
    def unpack(cls, data):
        """Read a command from the start of ``data``."""
        return cls._unpack_fields(data)


@dataclass
class ConnectCommand(_Struct):
    """Fabrics connect command."""

    opcode: int = 0
    resv1: int = 0
    command_id: int = 0
    fctype: int = 0
    dptr: DataPtr = field(default_factory=DataPtr)
    recfmt: int = 0
    qid: int = 0
    sqsize: int = 0
    cattr: int = 0
    kato: int = 0

    _LAYOUT = (
        ("opcode", _U8),
        ("resv1", _U8),
        ("command_id", _U16),
        ("fctype", _U8),
        (None, _Reserved(19)),
        ("dptr", _Nested(DataPtr)),
        ("recfmt", _U16),
        ("qid", _U16),
        ("sqsize", _U16),
        ("cattr", _U8),
        (None, _Reserved(1)),
        ("kato", _U32),
        (None, _Reserved(12)),
    )

    def pack(self):
        """Return the command's wire bytes."""
        return self._pack_fields()

    @classmethod
    def unpack(cls, data):
        """Read a command from the start of ``data``."""
        return cls._unpack_fields(data)


@dataclass
class ConnectData(_Struct):
    """Data sent along with a connect command."""

    hostid: bytes = bytes(16)
    cntlid: int = 0
    subsysnqn: str = ""
    hostnqn: str = ""

    _LAYOUT = (
        ("hostid", _Bytes(16)),
        ("cntlid", _U16),
        (None, _Reserved(238)),
        ("subsysnqn", _Str(256)),
        ("hostnqn", _Str(256)),
        (None, _Reserved(256)),
    )

    def pack(self):
        """Return the connect data's wire bytes."""
        return self._pack_fields()

    @classmethod
    def unpack(cls, data):
        """Read connect data from the start of ``data``."""
        return cls._unpack_fields(data)


@dataclass
class IdentifyCommand(_Struct):
    """Identify admin command."""

    opcode: int = 0
    flags: int = 0
    command_id: int = 0
    nsid: int = 0
    dptr: DataPtr = field(default_factory=DataPtr)
    cns: int = 0
    rsvd3: int = 0
    ctrlid: int = 0

    _LAYOUT = (
        ("opcode", _U8),
        ("flags", _U8),
        ("command_id", _U16),
        ("nsid", _U32),
        (None, _Reserved(16)),
        ("dptr", _Nested(DataPtr)),
        ("cns", _U8),
        ("rsvd3", _U8),
        ("ctrlid", _U16),
        (None, _Reserved(20)),
    )

    def pack(self):
        """Return the command's wire bytes."""
        return self._pack_fields()

    @classmethod
    def unpack(cls, data):
        """Read a command from the start of ``data``."""
        return cls._unpack_fields(data)


@dataclass
class GetLogPageCommand(_Struct):
    """Get Log Page admin command."""

    opcode: int = 0
    flags: int = 0
    command_id: int = 0
    nsid: int = 0
    dptr: DataPtr = field(default_factory=DataPtr)
    lid: int = 0
    lsp: int = 0
    numdl: int = 0
    numdu: int = 0
    lpol: int = 0
    lpou: int = 0

    _LAYOUT = (
        ("opcode", _U8),
        ("flags", _U8),
        ("command_id", _U16),
        ("nsid", _U32),
        (None, _Reserved(16)),
        ("dptr", _Nested(DataPtr)),
        ("lid", _U8),
        ("lsp", _U8),
        ("numdl", _U16),
        ("numdu", _U16),
        (None, _Reserved(2)),
        ("lpol", _U32),
        ("lpou", _U32),
        (None, _Reserved(8)),
    )

    def pack(self):
        """Return the command's wire bytes."""
        return self._pack_fields()

    @classmethod
    def unpack(cls, data):
        """Read a command from the start of ``data``."""
        return cls._unpack_fields(data)

    def log_page_length(self):
        """Requested length in bytes (NUMD is a zero-based dword count)."""
        numd = (self.numdu << 16) + self.numdl
        return ((numd + 1) * 4) & 0xFFFFFFFF

    def log_page_offset(self):
        """Requested offset into the log page in bytes."""
        return (self.lpou << 32) + self.lpol


@dataclass
class PropertySetCommand(_Struct):
    """Fabrics Property Set command."""

    opcode: int = 0
    resv1: int = 0
    command_id: int = 0
    fctype: int = 0
    rsvd2: bytes = bytes(35)
    attrib: int = 0
    offset: int = 0
    value: int = 0

    _LAYOUT = (
        ("opcode", _U8),
        ("resv1", _U8),
        ("command_id", _U16),
        ("fctype", _U8),
        ("rsvd2", _Bytes(35)),
        ("attrib", _U8),
        (None, _Reserved(3)),
        ("offset", _U32),
        ("value", _U64),
        (None, _Reserved(8)),
    )

    def pack(self):
        """Return the command's wire bytes."""
        return self._pack_fields()

    @classmethod
    def unpack(cls, data):
        """Read a command from the start of ``data``."""
        return cls._unpack_fields(data)


@dataclass
class PropertyGetCommand(_Struct):
    """Fabrics Property Get command."""

    opcode: int = 0
    resv1: int = 0
    command_id: int = 0
    fctype: int = 0
    rsvd2: bytes = bytes(35)
    attrib: int = 0
    offset: int = 0

    _LAYOUT = (
        ("opcode", _U8),
        ("resv1", _U8),
        ("command_id", _U16),
        ("fctype", _U8),
        ("rsvd2", _Bytes(35)),
        ("attrib", _U8),
        (None, _Reserved(3)),
        ("offset", _U32),
        (None, _Reserved(16)),
    )

    def pack(self):
        """Return the command's wire bytes."""
        return self._pack_fields()

    @classmethod
    def unpack(cls, data):
        """Read a command from the start of ``data``."""
        return cls._unpack_fields(data)


@dataclass
class IDCtrl(_Struct):
    """Identify Controller data structure."""

    vid: int = 0
    ssvid: int = 0
    sn: bytes = bytes(20)
    mn: bytes = bytes(40)
    fr: str = ""
    rab: int = 0
    ieee: bytes = bytes(3)
    cmic: int = 0
    mdts: int = 0
    cntlid: int = 0
    ver: int = 0
    rtd3r: int = 0
    rtd3e: int = 0
    oaes: int = 0
    ctratt: int = 0
    oacs: int = 0
    acl: int = 0
    arel: int = 0
    frmw: int = 0
    lpa: int = 0
    elpe: int = 0
    npss: int = 0
    avscc: int = 0
    apsta: int = 0
    wctemp: int = 0
    cctemp: int = 0
    mtfa: int = 0
    hmpre: int = 0
    hmmin: int = 0
    tnvmcap: bytes = bytes(16)
    unvmcap: bytes = bytes(16)
    rpmbs: int = 0
    edstt: int = 0
    dsto: int = 0
    fwug: int = 0
    kas: int = 0
    hctma: int = 0
    mntmt: int = 0
    mxtmt: int = 0
    sancap: int = 0
    hmminds: int = 0
    hmmaxd: int = 0
    anatt: int = 0
    anacap: int = 0
    anagrpmax: int = 0
    anagrpid: int = 0
    sqes: int = 0
    cqes: int = 0
    maxcmd: int = 0
    nn: int = 0
    oncs: int = 0
    fuses: int = 0
    fna: int = 0
    vwc: int = 0
    awun: int = 0
    awupf: int = 0
    nvscc: int = 0
    nwpc: int = 0
    acwu: int = 0
    sgls: int = 0
    mnan: int = 0
    subnqn: str = ""
    ioccsz: int = 0
    iorcsz: int = 0
    icdoff: int = 0
    ctrattr: int = 0
    msdbd: int = 0
    psd: bytes = bytes(1024)
    vs: bytes = bytes(1024)

    _LAYOUT = (
        ("vid", _U16),
        ("ssvid", _U16),
        ("sn", _Bytes(20)),
        ("mn", _Bytes(40)),
        ("fr", _Str(8)),
        ("rab", _U8),
        ("ieee", _Bytes(3)),
        ("cmic", _U8),
        ("mdts", _U8),
        ("cntlid", _U16),
        ("ver", _U32),
        ("rtd3r", _U32),
        ("rtd3e", _U32),
        ("oaes", _U32),
        ("ctratt", _U32),
        (None, _Reserved(156)),
        ("oacs", _U16),
        ("acl", _U8),
        ("arel", _U8),
        ("frmw", _U8),
        ("lpa", _U8),
        ("elpe", _U8),
        ("npss", _U8),
        ("avscc", _U8),
        ("apsta", _U8),
        ("wctemp", _U16),
        ("cctemp", _U16),
        ("mtfa", _U16),
        ("hmpre", _U32),
        ("hmmin", _U32),
        ("tnvmcap", _Bytes(16)),
        ("unvmcap", _Bytes(16)),
        ("rpmbs", _U32),
        ("edstt", _U16),
        ("dsto", _U8),
        ("fwug", _U8),
        ("kas", _U16),
        ("hctma", _U16),
        ("mntmt", _U16),
        ("mxtmt", _U16),
        ("sancap", _U32),
        ("hmminds", _U32),
        ("hmmaxd", _U16),
        (None, _Reserved(4)),
        ("anatt", _U8),
        ("anacap", _U8),
        ("anagrpmax", _U32),
        ("anagrpid", _U32),
        (None, _Reserved(160)),
        ("sqes", _U8),
        ("cqes", _U8),
        ("maxcmd", _U16),
        ("nn", _U32),
        ("oncs", _U16),
        ("fuses", _U16),
        ("fna", _U8),
        ("vwc", _U8),
        ("awun", _U16),
        ("awupf", _U16),
        ("nvscc", _U8),
        ("nwpc", _U8),
        ("acwu", _U16),
        (None, _Reserved(2)),
        ("sgls", _U32),
        ("mnan", _U32),
        (None, _Reserved(224)),
        ("subnqn", _Str(256)),
        (None, _Reserved(768)),
        ("ioccsz", _U32),
        ("iorcsz", _U32),
        ("icdoff", _U16),
        ("ctrattr", _U8),
        ("msdbd", _U8),
        (None, _Reserved(244)),
        ("psd", _Bytes(1024)),
        ("vs", _Bytes(1024)),
    )

    def pack(self):
        """Return the identify data's wire bytes."""
        return self._pack_fields()

    @classmethod
    def unpack(cls, data):
        """Read identify data from the start of ``data``."""
        return cls._unpack_fields(data)


@dataclass
class DiscRspPageHdr(_Struct):
    """Header of the discovery log page."""

    genctr: int = 0
    numrec: int = 0
    recfmt: int = 0

    _LAYOUT = (
        ("genctr", _U64),
        ("numrec", _U64),
        ("recfmt", _U16),
        (None, _Reserved(1006)),
    )

    def pack(self):
        """Return the header's wire bytes."""
        return self._pack_fields()

    @classmethod
    def unpack(cls, data):
        """Read a header from the start of ``data``."""
        return cls._unpack_fields(data)


@dataclass
class DiscRspPageEntry(_Struct):
    """One entry of the discovery log page."""

    trtype: int = 0
    adrfam: int = 0
    subtype: int = 0
    treq: int = 0
    portid: int = 0
    cntlid: int = 0
    asqsz: int = 0
    trsvcid: str = ""
    subnqn: str = ""
    traddr: str = ""
    tsas: bytes = bytes(c.NVMF_TSAS_SIZE)

    _LAYOUT = (
        ("trtype", _U8),
        ("adrfam", _U8),
        ("subtype", _Int("B", _subsystem_type)),
        ("treq", _U8),
        ("portid", _U16),
        ("cntlid", _U16),
        ("asqsz", _U16),
        (None, _Reserved(22)),
        ("trsvcid", _Str(c.NVMF_TRSVCID_SIZE)),
        (None, _Reserved(192)),
        ("subnqn", _Str(256)),
        ("traddr", _Str(256)),
        ("tsas", _Bytes(c.NVMF_TSAS_SIZE)),
    )

    def pack(self):
        """Return the entry's wire bytes."""
        return self._pack_fields()

    @classmethod
    def unpack(cls, data):
        """Read an entry from the start of ``data``."""
        return cls._unpack_fields(data)