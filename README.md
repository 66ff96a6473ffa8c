# nvmedisc

An NVMe over TCP discovery host written in plain Python, with no
dependencies outside the standard library. It connects to an NVMe-oF
discovery controller, performs the initialize-connection exchange, the
fabrics connect and the property handshake, identifies the controller,
reads the discovery log page and, if asked to, keeps the association alive
to receive asynchronous event notifications.

## Installation

```
pip install .
```

Running the tests:

```
pip install ".[test]"
pytest
```

## Discovering subsystems

```python
from nvmedisc.host_client import DiscoverRequest, TCPClient

client = TCPClient(log_page_pagination_enabled=True, host_id_path="/etc/nvme/hostid")
request = DiscoverRequest(
    transport="tcp",
    traddr="192.0.2.10",
    trsvcid=8009,
    hostnqn="nqn.2014-08.org.nvmexpress:uuid:00000000-0000-0000-0000-000000000000",
    kato=0,
)
try:
    for entry in client.discover(request):
        print(entry.subnqn, entry.traddr, entry.trsvcid, entry.port_id, entry.subtype)
finally:
    client.stop()
```

`TCPClient` can also be used as a context manager; leaving the block calls
`stop()`.

`discover()` returns a list of `DiscoveryEntry` objects with the fields
`port_id`, `cntl_id`, `trsvcid`, `subnqn`, `traddr` and `subtype`.
A service id that is not a decimal number is reported as 0.

The host id is read from `host_id_path` (default `/etc/nvme/hostid`). If
the file is missing or empty it is created, along with its directory, holding
a fresh UUID. A host id that is not a valid UUID makes `discover()` raise
`ValueError`. `remove_dash()` and `is_valid_uuid()` are the helpers used for
this.

With `log_page_pagination_enabled` the log page is read 4 KiB at a time;
otherwise it is read in one request sized for all records. In both cases
the generation counter is read again afterwards and an `NvmeError` is raised
if it changed or if the number of entries does not match the header.

### Keeping the association open

A `DiscoverRequest` with `kato` (seconds) greater than zero keeps the
connection open after `discover()` returns: a keep-alive command is sent
every `kato / 2` seconds and an asynchronous event request is kept
outstanding. Each completed asynchronous event request is put on
`client.aen_events`, a `queue.Queue`; after `stop()` a final `None` is put
there to mark the end. `client.keep_alive_done` is a `threading.Event` that
is set when the keep-alive loop ends, for instance because the target stopped
answering.

`stop()` writes the shutdown value to the controller configuration register,
closes the connection and joins the background threads.

## Building blocks

- `nvmedisc.structs` – little-endian wire structures (`TCPHeader`,
  `ICReqPDU`, `ICRespPDU`, `TCPDataPDU`, `DataPtr`, `Completion`,
  `CommonCommand`, `ConnectCommand`, `ConnectData`, `IdentifyCommand`,
  `GetLogPageCommand`, `PropertySetCommand`, `PropertyGetCommand`, `IDCtrl`,
  `DiscRspPageHdr`, `DiscRspPageEntry`) as dataclasses with `pack()` and
  the class method `unpack()`, plus the `SubsystemType` enum.
- `nvmedisc.requests` – command builders: `AdminConnectRequest`,
  `PropertySetRequest`, `PropertyGetRequest`, `IdentifyRequest`,
  `GetDiscoveryLogPageRequest`, `FeaturesRequest.async_event()`,
  `FeaturesRequest.keep_alive_timeout()`, `KeepAliveRequest` and
  `AsyncEventRequest`, and the helpers `bytes_to_numd`, `upper_32_bits` and
  `lower_32_bits`.
- `nvmedisc.sgl` – `ScatterList` with `ScatterListWriter` and
  `ScatterListReader`; a write that does not fit raises `ShortBufferError`.
- `nvmedisc.host_queue` – `HostQueue`, which drives the protocol over a
  connected socket, and the helpers `create_tcp_header`, `pdu_size` and
  `pdu_valid`.
- `nvmedisc.constants` – protocol constants and `nvme_vs`, `opcode_name`,
  `register_name` and `log_page_name`.
- `nvmedisc.netutil` – `adjust_traddr` returns an IP address unchanged and
  resolves a host name to its first address.
- `nvmedisc.errors` – `NvmeError`, the base of the package's protocol
  errors, and `ParserError` and `CompletionError`.

Besides `NvmeError`, the client and queue let socket errors (`OSError`)
through, and a request that gets no response within five seconds raises
`TimeoutError`. A completion with a non-success status is logged and handed
back to the caller with its `status` field as received.

## What it does not do

This package is the host side only. It does not serve a discovery
controller, accept connections or keep a registry of subsystems, and it has
no command-line program. Header and data digests are not supported, and only
the admin queue to the discovery controller is set up; no I/O queues are
created.