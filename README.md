# gattkit

`gattkit` models the Generic Attribute Profile (GATT) of Bluetooth Low Energy
in plain Python, with no dependencies outside the standard library.

- `gattkit.uuids`: Bluetooth UUIDs as `uuid.UUID` values. `uuid16` and
  `uuid32` expand short UUIDs against the Bluetooth base UUID. `uuid_to_le`
  and `le_to_uuid` convert to and from little-endian wire form. It also
  provides constants such as `PRIMARY_SERVICE`, `CHARACTERISTIC` and
  `CLIENT_CHARAC_CFG`.
- `gattkit.protocol`: the `Opcode` and `ErrorCode` enums, `parse_error` for
  error-response bodies, and the abstract `AttTransport` that procedures send
  through.
- `gattkit.attribute`: `Service` and `Attribute`. An attribute holds either a
  stored value or deferred read/write handlers.
- `gattkit.db`: `GattDb`, an ordered set of services keyed by handle, with
  the lookups an ATT server needs.
- `gattkit.results`: `GattResult`, which collects response PDUs and decodes
  them into `ServiceEntry`, `CharacteristicEntry`, `DescriptorEntry` and
  `IncludedEntry` tuples.
- `gattkit.helpers`: client-side procedures. These are MTU exchange,
  primary, secondary and included service discovery, characteristic and
  descriptor discovery, and read by type.

## Installation

```
pip install gattkit
```

## Building a database

```python
from gattkit.db import GattDb
from gattkit.uuids import uuid16

db = GattDb()
service = db.add_service(uuid16(0x180F), True, 4).service   # Battery Service
level = service.add_characteristic(uuid16(0x2A19), 0, 0x12, None, None, None)
service.add_descriptor(uuid16(0x2902), 0, None, None, None)
service.set_active(True)

for attr in db.find_information(0x0001, 0xFFFF):
    print(hex(attr.handle), attr.uuid)
```

`add_service` and `insert_service` return the service declaration attribute.
Its `.service` is the `Service`.

A service that overlaps an existing one raises `GattDbError`, unless it is the
very same service. In that case its declaration is returned. A service that
no longer fits its handle range also raises `GattDbError`.

These lookups only consider active services:

- `read_by_group_type`
- `read_by_type`
- `find_by_type`
- `find_by_type_value`
- `find_information`

Listeners registered with `GattDb.register(service_added, service_removed)`
are called with a service declaration at these points:

- `service_added` runs when a service becomes active.
- `service_removed` runs when an active service becomes inactive or is
  removed.

### Stored values and deferred handlers

`Attribute.read(offset, opcode, att, func)` and
`Attribute.write(offset, value, opcode, att, func)` work on the stored value
directly. The exception is an attribute created with a `read_func` or
`write_func`. That handler receives a request id, and the outcome is reported
later with `read_result(request_id, err, value)` or
`write_result(request_id, err)`.

A deferred request that gets no result within `Attribute.timeout` seconds
(5 by default) completes with `-errno.ETIMEDOUT`. Requests still pending when
their service is removed complete with `-errno.ECANCELED`.

## Discovering a remote database

Subclass `AttTransport` and implement `send` and `cancel`. `get_mtu` and
`set_mtu` are provided. `send` returns a positive request id and raises
`ConnectionError` if the PDU cannot be queued. Responses are delivered by
calling the callback given to `send` with the response opcode and the PDU
body, without the opcode byte.

```python
import struct

from gattkit.helpers import discover_all_primary_services
from gattkit.protocol import AttTransport, Opcode


class Recorder(AttTransport):
    def __init__(self):
        super().__init__()
        self.sent = []

    def send(self, opcode, pdu, callback):
        self.sent.append((opcode, pdu, callback))
        return len(self.sent)

    def cancel(self, request_id):
        return True


def on_done(success, att_ecode, result):
    if success:
        for entry in result.iter_services():
            print(entry)


transport = Recorder()
request = discover_all_primary_services(transport, None, on_done)

# Answer the Read By Group Type request with one service at 0x0001-0xffff.
_, _, deliver = transport.sent[-1]
deliver(Opcode.READ_BY_GRP_TYPE_RSP, bytes([6]) + struct.pack("<HHH", 1, 0xFFFF, 0x180F))
```

Every procedure returns a `GattRequest` and keeps sending follow-up requests
until the range is covered. It then calls `callback(success, att_ecode,
result)`, where `result` is `None` on failure.

If a procedure ends with "attribute not found" after collecting some data,
it counts as a success. `request.cancel()` cancels the outstanding request,
and the callback is then not called.

`exchange_mtu(att, client_rx_mtu, callback)` returns the request id. On a
valid response it sets the transport MTU to the smaller of the two receive
MTUs.

## What this package does not do

`gattkit` does not talk to a radio, socket or operating-system Bluetooth
stack. You supply the `AttTransport`.

It also lacks two higher-level pieces:

- There is no client that keeps a `GattDb` in step with a remote device.
  Such a client would also handle notifications, indications and Service
  Changed events, and run long or reliable writes.
- There is no ATT server that answers requests from a `GattDb`.

The procedures and the database are the building blocks for both.

## Running the tests

```
pip install -e .[test]
pytest
```