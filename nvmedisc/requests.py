"""Host-side NVMe admin and fabrics requests.

A request couples a wire command with the bookkeeping the host needs
while it is outstanding: its command id, the length of data it moves,
the data itself and, once the target has answered, its completion.
"""

from nvmedisc import constants as c
from nvmedisc.constants import opcode_name, register_name
from nvmedisc.sgl import ScatterList, ScatterListWriter
from nvmedisc.structs import (
    CommonCommand,
    ConnectCommand,
    DataPtr,
    GetLogPageCommand,
    IdentifyCommand,
    PropertyGetCommand,
    PropertySetCommand,
)

_U32_MASK = 0xFFFFFFFF


def bytes_to_numd(length):
    """Convert a byte length to NVMe's zero-based dword count."""
    return ((length >> 2) - 1) & _U32_MASK


def upper_32_bits(n):
    """Return bits 32-63 of ``n``."""
    return (n >> 32) & _U32_MASK


def lower_32_bits(n):
    """Return bits 0-31 of ``n``."""
    return n & _U32_MASK


def _milliseconds(seconds):
    return int(seconds * 1000)


class Request:
    """A command sent by the host, with its data and eventual completion."""

    #: Whether the command's data pointer is meaningful for this request.
    has_dptr = True

    def __init__(self, command_id, command, data_length=0):
        self.command_id = command_id
        self.command = command
        self.data_length = data_length
        self.completion = None
        self.data = None

    @property
    def dptr(self):
        """The command's data pointer, or None when the request has none."""
        if not self.has_dptr:
            return None
        return getattr(self.command, "dptr", None)

    def pack_command(self):
        """Return the command's wire bytes."""
        return self.command.pack()

    def is_write(self):
        """True when the request carries data from host to controller."""
        return False

    def _status_text(self):
        if self.completion is None:
            return "not completed"
        return f"{self.completion.status >> 1:#02x}"

    def _describe(self):
        opcode = self.command.opcode
        return (
            f"{type(self).__name__}, id: {self.command.command_id:#04x}. "
            f"opcode: {opcode_name(opcode)}({opcode:#04x}). "
            f'status: "{self._status_text()}"'
        )

    def __str__(self):
        return self._describe()


class AdminConnectRequest(Request):
    """Fabrics connect to the discovery controller, carrying connect data in-capsule."""

    def __init__(self, command_id, kato, connect_data):
        command = ConnectCommand(
            opcode=c.NVME_FABRICS_COMMAND,
            fctype=c.NVME_FABRICS_TYPE_CONNECT,
            resv1=0x40,
            recfmt=0,
            kato=_milliseconds(kato),
            sqsize=c.NVME_AQ_DEPTH - 1,
            command_id=command_id,
        )
        super().__init__(command_id, command, c.NVMF_CONNECT_DATA_SIZE)
        self.connect_data = connect_data
        self.data = ScatterList(c.NVMF_CONNECT_DATA_SIZE, 1024)
        ScatterListWriter(self.data).write(connect_data.pack())
        self.command.dptr.set_sg_inline(self.data_length)

    def is_write(self):
        return True

    def __str__(self):
        return (
            f"{self._describe()}, fcType: {self.command.fctype:#02x}, "
            f"kato: {self.command.kato}"
        )


class PropertySetRequest(Request):
    """Fabrics Property Set of a controller register."""

    has_dptr = False

    def __init__(self, command_id, offset, value):
        rsvd2 = bytearray(35)
        rsvd2[34] = 90
        command = PropertySetCommand(
            opcode=c.NVME_FABRICS_COMMAND,
            resv1=0x40,
            command_id=command_id,
            fctype=c.NVME_FABRICS_TYPE_PROPERTY_SET,
            rsvd2=bytes(rsvd2),
            attrib=0,
            offset=offset,
            value=value,
        )
        super().__init__(command_id, command, c.NVMF_PROPERTY_SET_COMMAND_SIZE)

    def _status_text(self):
        if self.completion is None:
            return "not completed"
        return f"{self.completion.status:#02x}"

    def __str__(self):
        offset = self.command.offset
        return (
            f"{self._describe()}. property - {register_name(offset)}({offset:#04x}), "
            f"Value: {self.command.value:#08x}"
        )


class PropertyGetRequest(Request):
    """Fabrics Property Get of a controller register."""

    has_dptr = False

    def __init__(self, command_id, offset):
        rsvd2 = bytearray(35)
        rsvd2[34] = 90
        command = PropertyGetCommand(
            opcode=c.NVME_FABRICS_COMMAND,
            resv1=0x40,
            command_id=command_id,
            fctype=c.NVME_FABRICS_TYPE_PROPERTY_GET,
            rsvd2=bytes(rsvd2),
            attrib=1 if offset == c.NVME_REG_CAP else 0,
            offset=offset,
        )
        super().__init__(command_id, command, c.NVMF_PROPERTY_GET_COMMAND_SIZE)

    def __str__(self):
        offset = self.command.offset
        return f"{self._describe()}. property - {register_name(offset)}({offset:#04x})"


class IdentifyRequest(Request):
    """Identify Controller admin command."""

    def __init__(self, command_id):
        command = IdentifyCommand(
            opcode=c.NVME_ADMIN_IDENTIFY,
            flags=c.REQ_FAILFAST_DRIVER,
            command_id=command_id,
            nsid=0,
            cns=c.NVME_ID_CNS_CTRL,
            rsvd3=0,
            ctrlid=0,
        )
        super().__init__(command_id, command)


class GetDiscoveryLogPageRequest(Request):
    """Get Log Page for the discovery log."""

    def __init__(self, command_id, size, offset, nsid):
        numd = bytes_to_numd(size)
        command = GetLogPageCommand(
            opcode=c.NVME_ADMIN_GET_LOG_PAGE,
            flags=c.REQ_FAILFAST_DRIVER,
            command_id=command_id,
            nsid=nsid,
            dptr=DataPtr(part1=0, part2=bytes([16, 0, 0, 0, 0, 0, 0, 90])),
            lid=c.NVME_LOG_DISC,
            lsp=c.NVME_NO_LOG_LSP,
            lpol=lower_32_bits(offset),
            lpou=upper_32_bits(offset),
            numdl=numd & 0xFFFF,
            numdu=numd >> 16,
        )
        super().__init__(command_id, command)


class FeaturesRequest(Request):
    """Set Features admin command."""

    has_dptr = False

    @classmethod
    def async_event(cls, command_id):
        """Enable the discovery-log-change asynchronous event."""
        command = CommonCommand(
            opcode=c.NVME_ADMIN_SET_FEATURES,
            flags=c.REQ_FAILFAST_DRIVER,
            command_id=command_id,
            cdw10=c.NVME_FEAT_ASYNC_EVENT,
            cdw11=0x80000000,
        )
        return cls(command_id, command)

    @classmethod
    def keep_alive_timeout(cls, command_id, kato):
        """Set the keep-alive timeout to ``kato`` seconds."""
        command = CommonCommand(
            opcode=c.NVME_ADMIN_SET_FEATURES,
            flags=c.REQ_FAILFAST_DRIVER,
            command_id=command_id,
            cdw10=c.NVME_FEAT_KATO,
            cdw11=_milliseconds(kato),
        )
        return cls(command_id, command)

    def __str__(self):
        cmd = self.command
        return (
            f"{self._describe()}, cdw10: {cmd.cdw10:#02x}, cdw11: {cmd.cdw11:#02x}, "
            f"cdw12: {cmd.cdw12:#02x}, cdw13: {cmd.cdw13:#02x}"
        )


class KeepAliveRequest(Request):
    """Keep Alive admin command."""

    has_dptr = False

    def __init__(self, command_id):
        command = CommonCommand(
            opcode=c.NVME_ADMIN_KEEP_ALIVE,
            flags=c.REQ_FAILFAST_DRIVER,
            command_id=command_id,
        )
        super().__init__(command_id, command)


class AsyncEventRequest(Request):
    """Asynchronous Event Request admin command."""

    def __init__(self, command_id):
        command = CommonCommand(
            opcode=c.NVME_ADMIN_ASYNC_EVENT,
            flags=c.REQ_FAILFAST_DRIVER,
            command_id=command_id,
        )
        super().__init__(command_id, command)