"""NVMe, NVMe over Fabrics and NVMe/TCP protocol constants."""

DISCOVERY_SUBSYS_NAME = "nqn.2014-08.org.nvmexpress.discovery"
NVME_DISC_SUBSYS_NAME = DISCOVERY_SUBSYS_NAME
NVME_NO_LOG_LSP = 0x0
REQ_FAILFAST_DRIVER = 0x40

# Admin command opcodes
NVME_ADMIN_GET_LOG_PAGE = 0x02
NVME_ADMIN_IDENTIFY = 0x06
NVME_ADMIN_SET_FEATURES = 0x09
NVME_ADMIN_GET_FEATURES = 0x0A
NVME_ADMIN_ASYNC_EVENT = 0x0C
NVME_ADMIN_KEEP_ALIVE = 0x18

# Fabrics commands
NVME_FABRICS_COMMAND = 0x7F
NVME_FABRICS_TYPE_PROPERTY_SET = 0x00
NVME_FABRICS_TYPE_CONNECT = 0x01
NVME_FABRICS_TYPE_PROPERTY_GET = 0x04

# Controller registers
NVME_REG_CAP = 0x0000
NVME_REG_VS = 0x0008
NVME_REG_INTMS = 0x000C
NVME_REG_INTMC = 0x0010
NVME_REG_CC = 0x0014
NVME_REG_CSTS = 0x001C
NVME_REG_NSSR = 0x0020
NVME_REG_AQA = 0x0024
NVME_REG_ASQ = 0x0028
NVME_REG_ACQ = 0x0030
NVME_REG_CMBLOC = 0x0038
NVME_REG_CMBSZ = 0x003C
NVME_REG_DBS = 0x1000

# Controller configuration fields
NVME_CC_EN_SHIFT = 0
NVME_CC_CSS_SHIFT = 4
NVME_CC_MPS_SHIFT = 7
NVME_CC_AMS_SHIFT = 11
NVME_CC_SHN_SHIFT = 14
NVME_CC_IOSQES_SHIFT = 16
NVME_CC_IOCQES_SHIFT = 20
NVME_NVM_IOSQES = 6
NVME_NVM_IOCQES = 4

# Controller status
NVME_CSTS_RDY = 1 << 0
NVME_CSTS_CFS = 1 << 1
NVME_CSTS_SHST_CMPLT = 2 << 2

# Log pages
NVME_LOG_ERROR = 0x01
NVME_LOG_SMART = 0x02
NVME_LOG_FW_SLOT = 0x03
NVME_LOG_CHANGED_NS = 0x04
NVME_LOG_CMD_EFFECTS = 0x05
NVME_LOG_ANA = 0x0C
NVME_LOG_DISC = 0x70
NVME_LOG_RESERVATION = 0x80

# Features
NVME_FEAT_ASYNC_EVENT = 0x0B
NVME_FEAT_KATO = 0x0F

# Asynchronous events
NVME_AER_TYPE_NOTICE = 2
NVME_AER_NOTICE_DISC_CHANGED = 0xF0
NVME_AEN_BIT_DISC_CHANGE = 31
NVME_AEN_CFG_DISC_CHANGE = 1 << NVME_AEN_BIT_DISC_CHANGE

# Identify
NVME_ID_CNS_CTRL = 0x01
NVME_IDENTIFY_DATA_SIZE = 4096

# Status codes
NVME_SC_SUCCESS = 0x0
NVME_SC_INVALID_OPCODE = 0x1
NVME_SC_INVALID_FIELD = 0x2
NVME_SC_INTERNAL = 0x6
NVME_SC_SGL_INVALID_DATA = 0x11
NVME_SC_SGL_INVALID_OFFSET = 0x16
NVME_SC_ASYNC_LIMIT = 0x105
NVME_SC_INVALID_LOG_PAGE = 0x109
NVME_SC_CONNECT_FORMAT = 0x180
NVME_SC_CONNECT_CTRL_BUSY = 0x181
NVME_SC_CONNECT_INVALID_PARAM = 0x182
NVME_SC_DNR = 0x4000

# Command flags
NVME_CMD_FUSE_FIRST = 1 << 0
NVME_CMD_FUSE_SECOND = 1 << 1
NVME_CMD_SGL_METABUF = 1 << 6
NVME_CMD_SGL_METASEG = 1 << 7
NVME_CMD_SGL_ALL = NVME_CMD_SGL_METABUF | NVME_CMD_SGL_METASEG
NVME_CONNECT_DISABLE_SQFLOW = 1 << 2

# SGL descriptor types
NVME_SGL_FMT_DATA_DESC = 0x00
NVME_SGL_FMT_OFFSET = 0x01
NVME_SGL_FMT_TRANSPORT_A = 0x0A
NVME_TRANSPORT_SGL_DATA_DESC = 0x5

# Discovery
NVME_CNTLID_DYNAMIC = 0xFFFF
NVME_AQ_DEPTH = 32
NVMF_TRSVCID_SIZE = 32
NVMF_TSAS_SIZE = 256
NVME_NQN_DISC = 1
NVME_NQN_NVME = 2
NVMF_CONNECT_DATA_SIZE = 1024
NVMF_DISC_RSP_PAGE_ENTRY_SIZE = 1024
NVMF_DISC_RSP_PAGE_HDR_SIZE = 1024
NVMF_PROPERTY_SET_COMMAND_SIZE = 64
NVMF_PROPERTY_GET_COMMAND_SIZE = 64

# NVMe/TCP PDU types
NVME_TCP_ICREQ = 0x0
NVME_TCP_ICRESP = 0x1
NVME_TCP_H2C_TERM = 0x2
NVME_TCP_C2H_TERM = 0x3
NVME_TCP_CMD = 0x4
NVME_TCP_RSP = 0x5
NVME_TCP_H2C_DATA = 0x6
NVME_TCP_C2H_DATA = 0x7
NVME_TCP_R2T = 0x9

# NVMe/TCP PDU sizes
NVME_TCP_HDR_SIZE = 8
NVME_TCP_ICREQ_PDU_SIZE = 128
NVME_TCP_ICRESP_PDU_SIZE = 128
NVME_TCP_CMD_PDU_SIZE = 72
NVME_TCP_RSP_PDU_SIZE = 24
NVME_TCP_DATA_PDU_SIZE = 24

NVME_TCP_PFV_1_0 = 0x0
NVME_TCP_F_DATA_LAST = 1 << 2

# Target-side limits
NVMET_QUEUE_SIZE = 1024
NVMET_MAX_CMD = 1024
NVMET_DISCOVERY_KATO_SECONDS = 120.0
MAX_PENDING_ASYNC_EVENT_REQUESTS = 4

_OPCODE_NAMES = {
    NVME_ADMIN_IDENTIFY: "nvme_admin_identify",
    NVME_ADMIN_GET_LOG_PAGE: "nvme_admin_get_log_page",
    NVME_ADMIN_KEEP_ALIVE: "nvme_admin_keep_alive",
    NVME_ADMIN_SET_FEATURES: "nvme_admin_set_features",
    NVME_ADMIN_GET_FEATURES: "nvme_admin_get_features",
    NVME_ADMIN_ASYNC_EVENT: "nvme_admin_async_event",
    NVME_FABRICS_TYPE_PROPERTY_GET: "nvme_fabrics_type_property_get",
    NVME_FABRICS_TYPE_PROPERTY_SET: "nvme_fabrics_type_property_set",
    NVME_FABRICS_COMMAND: "nvme_fabrics_command",
}

_REGISTER_NAMES = {
    NVME_REG_CAP: "ControllerCapabilities",
    NVME_REG_VS: "ControllerVersion",
    NVME_REG_INTMS: "Interrupt Mask Set",
    NVME_REG_INTMC: "Interrupt Mask Clear",
    NVME_REG_CC: "ControllerConfiguration",
    NVME_REG_CSTS: "ControllerStatus",
    NVME_REG_NSSR: "NVM Subsystem Reset",
    NVME_REG_AQA: "Admin Queue Attributes",
    NVME_REG_ASQ: "Admin SQ Base Address",
    NVME_REG_ACQ: "Admin CQ Base Address",
    NVME_REG_CMBLOC: "Controller Memory Buffer Location",
    NVME_REG_CMBSZ: "Controller Memory Buffer Size",
    NVME_REG_DBS: "SQ 0 Tail Doorbell",
}

_LOG_PAGE_NAMES = {
    NVME_LOG_ERROR: "Error Information",
    NVME_LOG_SMART: "SMART / Health Information",
    NVME_LOG_FW_SLOT: "Firmware Slot Information",
    NVME_LOG_CHANGED_NS: "Changed Namespace List",
    NVME_LOG_CMD_EFFECTS: "Commands Supported and Effects",
    NVME_LOG_ANA: "Asymmetric Namespace Access",
    NVME_LOG_RESERVATION: "I/O Command Set Specific",
    NVME_LOG_DISC: "Discovery",
}


def nvme_vs(major, minor, tertiary):
    """Encode an NVMe version number as the VS register holds it."""
    return (major << 16) | (minor << 8) | tertiary


def opcode_name(opcode):
    """Return the symbolic name of a command opcode, or "UNKNOWN"."""
    return _OPCODE_NAMES.get(opcode, "UNKNOWN")


def register_name(reg):
    """Return the descriptive name of a controller register offset."""
    return _REGISTER_NAMES.get(reg, "UNKNOWN register name")


def log_page_name(log_id):
    """Return the descriptive name of a log page identifier."""
    return _LOG_PAGE_NAMES.get(log_id, "UNKNOWN")