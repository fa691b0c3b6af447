# modemlink

A pure-Python link layer for cellular modems. It sits between a byte
stream (a serial device, a TCP socket bridged to a serial line, or any
file descriptor) and your application.

## What it provides

- **DTE** (`modemlink.dte.DTE`): sends commands on a terminal and hands
  received data to a callback that returns a `CommandResult` (`OK`,
  `FAIL`, or `TIMEOUT` to keep waiting). `DTE.set_mode` switches the link
  between the `ModemMode` values: command, data, CMUX and the manual CMUX
  transitions (enter, exit, swap). `create_vfs_dte` builds a DTE over a
  file descriptor.
- **CMUX** (`modemlink.cmux.CMux`, `CMuxInstance`): a frame multiplexer.
  `CMux.init` opens the control channel and two virtual terminals, and
  `CMux.deinit` closes them. `CMux.write` splits data into frames of at
  most 127 bytes. The parser recovers after lost start flags. With
  `defragment=True` (the default) it delivers each frame's payload in one
  piece. `fcs_crc` computes the frame check sequence.
- **Terminals** (`modemlink.terminal`): the abstract `Terminal`, and
  `FdTerminal`, which watches a file descriptor on a background thread.
  Use `create_vfs_terminal` to get a started one.
- **Link setup** (`modemlink.vfs`): `vfs_create_socket` connects to an
  IPv4 host and port. `vfs_create_uart` opens a serial device and sets it
  to raw 115200 baud 8N1 (see `configure_uart`). Both return a
  `VfsTermConfig` holding a non-blocking descriptor.
- **Network glue** (`modemlink.netif`): `Netif` passes bytes between a DTE
  and an `EspNetif` once started. It watches PPP status events on an
  `EventLoop` and waits for PPP to exit with `wait_until_ppp_exits`.
- **Supporting pieces**:
  - thread primitives: `SignalGroup`, `Task`, `delay` and `relinquish`
    in `modemlink.primitives`
  - error codes and `EspError` in `modemlink.errors`
  - tagged coloured logging in `modemlink.log`
  - IP address values in `modemlink.ipaddr`
  - an event registry with `EventLoop.register`, `unregister` and `post`
    in `modemlink.events`

## Installation

```
pip install .
```

## Usage

```python
from modemlink.vfs import SocketCreatorConfig, vfs_create_socket
from modemlink.dte import CommandResult, ModemMode, create_vfs_dte

vfs_config = vfs_create_socket(SocketCreatorConfig(host_name="localhost", port=2222))
dte = create_vfs_dte(vfs_config, 1000)

dte.set_mode(ModemMode.COMMAND_MODE)

def on_line(data: bytes) -> CommandResult:
    if b"OK" in data:
        return CommandResult.OK
    if b"ERROR" in data:
        return CommandResult.FAIL
    return CommandResult.TIMEOUT

result = dte.command("AT\r", on_line, 1000, "\n")
print(result)
```

To multiplex the link, call `dte.set_mode(ModemMode.CMUX_MODE)`. Commands
then go over the first virtual terminal and data over the second.
`dte.set_mode(ModemMode.COMMAND_MODE)` closes the virtual channels and
gives the physical link back to the DTE.

Lower layers raise `modemlink.errors.EspError` to report errors. Each one
carries an `ErrorCode`.

## What it does not do

- There is no modem-specific command set. The package does not parse
  signal quality, PIN state or operator names. You write the command
  strings and the reply callbacks yourself.
- There is no PPP protocol implementation. `EspNetif` only passes bytes to
  its `on_receive` callback, or queues them for `take_received`, and sends
  bytes through whatever `transmit` is attached.
- There is no command-line program. The package is a library.

## Running the tests

```
pip install .[test]
pytest
```