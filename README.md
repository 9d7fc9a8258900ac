# espflasher

A host-side library for talking to the ROM bootloader of ESP chips
(ESP8266, ESP32, ESP32-S2, ESP32-S3, ESP32-C2, ESP32-C3, ESP32-C6,
ESP32-H2, ESP32-H4). It connects to the target, detects which chip is
attached, writes images to flash, loads programs into RAM, reads and
writes registers, changes the target's baud rate and verifies flash
contents with MD5.

Over UART, commands are sent as SLIP frames (`espflasher.uart.UartProtocol`).
Over SPI, they go through the target's SPI slave buffers
(`espflasher.spi.SpiProtocol`).

## Installation

```
pip install espflasher
```

## Providing a port

The library does not open serial devices or drive GPIOs itself. You
subclass `espflasher.io.Port` and do the hardware work there.

You must implement these methods:

- `write(data, timeout)` writes bytes to the link.
- `read(size, timeout)` returns exactly `size` bytes, or raises
  `espflasher.common.LoaderTimeout`.
- `enter_bootloader()` asserts the boot pins and toggles reset.
- `reset_target()` toggles reset.

These methods already have working defaults:

- `start_timer(ms)` and `remaining_time()` keep a monotonic deadline.
  The timeouts passed to `write` and `read` come from `remaining_time()`.
- `delay_ms(ms)` sleeps.
- `debug_print(text)` does nothing.
- `change_transmission_rate(rate)` and `set_cs(level)` raise
  `UnsupportedFuncError`. Override `set_cs` for SPI links.

```python
from espflasher.io import Port


class MyPort(Port):
    def write(self, data, timeout):
        ...

    def read(self, size, timeout):
        ...

    def enter_bootloader(self):
        ...

    def reset_target(self):
        ...
```

## Flashing an image

```python
from espflasher.common import ConnectArgs, Interface, TargetChip
from espflasher.loader import EspLoader

loader = EspLoader(MyPort(), Interface.UART, 3)
loader.connect(ConnectArgs(sync_timeout=100, trials=10))
print(loader.target)          # e.g. TargetChip.ESP32

with open("app.bin", "rb") as f:
    image = f.read()
block = 1024
loader.flash_start(0x10000, len(image), block)
for start in range(0, len(image), block):
    loader.flash_write(image[start:start + block])
loader.flash_verify()
loader.flash_finish(True)     # True reboots the target
```

`connect()` enters the bootloader and syncs with the target. It then
identifies the chip from its magic register. Over UART it also attaches
the SPI flash, using the pin configuration read from the chip's eFuses.
The ESP8266 sends a flash-begin command instead. The third argument of
`EspLoader` sets how many times a data block is sent before its error is
raised.

`flash_start` tries to detect the flash size. If detection works and the
image does not fit, it raises `ImageSizeError`. If detection fails, it
carries on without the size check. For the ESP8266 it adjusts the erase
size to work around that chip's ROM erase bug.

`flash_write` pads a short block with `0xFF` up to the block size. If the
block is longer than the block size, it raises `InvalidParamError`.

`flash_verify` compares the MD5 of the data written with the MD5 that
the target reports. A mismatch raises `InvalidMd5Error`.

Every failure raises a subclass of `espflasher.common.LoaderError`:

- `LoaderTimeout`
- `ImageSizeError`
- `InvalidMd5Error`
- `InvalidParamError`
- `InvalidTargetError`
- `UnsupportedChipError`
- `UnsupportedFuncError`
- `InvalidResponseError`

## Loading into RAM

```python
loader.mem_start(0x40080000, len(program), 1024)
for start in range(0, len(program), 1024):
    loader.mem_write(program[start:start + 1024])
loader.mem_finish(entrypoint)   # 0 stays in the loader
```

## Registers and baud rate

```python
loader.write_register(0x60002028, 55)
value = loader.read_register(0x60002028)

loader.change_transmission_rate(921600)
```

`change_transmission_rate` switches only the target. Switch the host
side of your port yourself afterwards. The ESP8266 does not support this
and raises `UnsupportedFuncError`.

## Lower-level pieces

- `espflasher.slip` has the SLIP framing: `encode`, `send`,
  `send_delimiter`, `receive_data` and `receive_packet`.
- `espflasher.protocol` has the command codes (`Command`), the ROM error
  codes (`RomError`), `compute_checksum`, and the `Protocol` base class.
  `Protocol` builds every loader command.
- `espflasher.targets` describes each chip. It has the chip's registers,
  eFuse base and magic values. It also provides `target_info`,
  `detect_chip`, `read_spi_config` and `encryption_in_begin_flash_cmd`.

## What it does not do

- There is no command-line tool. The package is a library only.
- There is no serial or SPI driver. You must supply a `Port`.
- Over SPI, only RAM loading and register access are available:
  - Flash operations (`flash_start`, `flash_write`, `flash_finish`) raise
    `UnsupportedFuncError`.
  - MD5 requests raise `UnsupportedFuncError`.
  - `connect()` does not attach the SPI flash.
- Images are sent uncompressed. The compressed-flash command codes are
  listed in `Command` but are never sent.
- Image files are not parsed. You pass raw bytes and addresses.

## Running the tests

```
pip install -e ".[test]"
pytest
```