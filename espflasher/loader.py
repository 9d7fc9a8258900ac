"""High-level flashing and RAM-loading operations on top of the loader protocol."""

from __future__ import annotations

import hashlib
import struct

from espflasher.common import (
    ConnectArgs,
    ImageSizeError,
    InvalidMd5Error,
    InvalidParamError,
    LoaderError,
    LoaderTimeout,
    TargetChip,
    UnsupportedChipError,
    UnsupportedFuncError,
    Interface,
)
from espflasher.spi import SpiProtocol
from espflasher.targets import (
    detect_chip,
    encryption_in_begin_flash_cmd,
    read_spi_config,
)
from espflasher.uart import UartProtocol

DEFAULT_TIMEOUT = 1000
DEFAULT_FLASH_TIMEOUT = 3000
"""Timeout in milliseconds for most flash operations, and the floor of all others."""

LOAD_RAM_TIMEOUT_PER_MB = 2_000_000
ERASE_REGION_TIMEOUT_PER_MB = 10_000
MD5_TIMEOUT_PER_MB = 800

DEFAULT_WRITE_BLOCK_RETRIES = 3

SPI_FLASH_READ_ID = 0x9F

_SPI_USR_CMD = 1 << 31
_SPI_USR_MISO = 1 << 28
_SPI_USR_MOSI = 1 << 27
_SPI_CMD_USR = 1 << 18
_CMD_LEN_SHIFT = 28
_SPI_CMD_POLL_TRIALS = 10

_MIN_FLASH_SIZE_ID = 0x12
_MAX_FLASH_SIZE_ID = 0x18

_PADDING = 0xFF


def timeout_per_mb(size_bytes, time_per_mb):
    """Scale ``time_per_mb`` milliseconds by the size, never below the flash default."""
    timeout = int(time_per_mb * (size_bytes / 1e6))
    return max(timeout, DEFAULT_FLASH_TIMEOUT)


def calc_erase_size(target, offset, image_size):
    """Size to request for erasing, compensating for the ESP8266 ROM erase bug."""
    if target != TargetChip.ESP8266:
        return image_size

    sectors_per_block = 16
    sector_size = 4096

    num_sectors = (image_size + sector_size - 1) // sector_size
    start_sector = offset // sector_size
    head_sectors = sectors_per_block - (start_sector % sectors_per_block)

    # The ROM erases num_sectors extra if the region stays within one block,
    # and head_sectors extra if it crosses a block boundary.
    if num_sectors <= head_sectors:
        return ((num_sectors + 1) // 2) * sector_size
    return (num_sectors - head_sectors) * sector_size


class EspLoader:
    """Drives the ROM loader of an attached chip through a port."""

    def __init__(self, port, interface=Interface.UART,
                 write_block_retries=DEFAULT_WRITE_BLOCK_RETRIES):
        self.port = port
        self.interface = Interface(interface)
        self.write_block_retries = max(1, write_block_retries)
        if self.interface is Interface.UART:
            self._protocol = UartProtocol(port)
        else:
            self._protocol = SpiProtocol(port)
        self._info = None
        self._flash_write_size = 0
        self._start_address = 0
        self._image_size = 0
        self._md5 = hashlib.md5(usedforsecurity=False)

    @property
    def target(self):
        """The chip detected by the last successful connect, or UNKNOWN."""
        return self._info.chip if self._info is not None else TargetChip.UNKNOWN

    @property
    def _regs(self):
        if self._info is None:
            raise LoaderError("no target connected")
        return self._info.regs

    def _require_uart(self, operation):
        if self.interface is not Interface.UART:
            raise UnsupportedFuncError(f"{operation} is only available over UART")

    def connect(self, connect_args=None):
        """Enter the boot loader, synchronise and identify the chip."""
        if connect_args is None:
            connect_args = ConnectArgs()
        self.port.enter_bootloader()
        self._protocol.initialize_conn(connect_args)
        self._info = detect_chip(self.read_register)

        if self.interface is Interface.UART:
            if self._info.chip == TargetChip.ESP8266:
                self._protocol.flash_begin(0, 0, 0, 0, False)
            else:
                config = read_spi_config(self._info.chip, self.read_register)
                self.port.start_timer(DEFAULT_TIMEOUT)
                self._protocol.spi_attach(config)

    def read_register(self, address):
        """Return the value of the register at ``address``."""
        self.port.start_timer(DEFAULT_TIMEOUT)
        return self._protocol.read_reg(address)

    def write_register(self, address, value):
        """Write ``value`` to the register at ``address``."""
        self.port.start_timer(DEFAULT_TIMEOUT)
        self._protocol.write_reg(address, value, 0xFFFFFFFF, 0)

    def _spi_set_data_lengths(self, mosi_bits, miso_bits):
        regs = self._regs
        if self.target == TargetChip.ESP8266:
            mosi_mask = mosi_bits - 1 if mosi_bits else 0
            miso_mask = miso_bits - 1 if miso_bits else 0
            self.write_register(regs.usr1, (miso_mask << 8) | (mosi_mask << 17))
            return
        if mosi_bits > 0:
            self.write_register(regs.mosi_dlen, mosi_bits - 1)
        if miso_bits > 0:
            self.write_register(regs.miso_dlen, miso_bits - 1)

    def _spi_flash_command(self, command, data=b"", miso_bits=0):
        """Run a command on the SPI flash and return up to 32 bits of its reply."""
        data = bytes(data)
        if miso_bits > 32:
            raise InvalidParamError("cannot read more than 32 bits from a flash command")
        if len(data) > 64:
            raise InvalidParamError("cannot send more than 64 bytes with one flash command")
        mosi_bits = len(data) * 8
        regs = self._regs

        old_usr = self.read_register(regs.usr)
        old_usr2 = self.read_register(regs.usr2)

        self._spi_set_data_lengths(mosi_bits, miso_bits)

        usr = _SPI_USR_CMD
        if miso_bits > 0:
            usr |= _SPI_USR_MISO
        if mosi_bits > 0:
            usr |= _SPI_USR_MOSI
        self.write_register(regs.usr, usr)
        self.write_register(regs.usr2, (7 << _CMD_LEN_SHIFT) | command)

        if not data:
            # Clear the data register before it is read back.
            self.write_register(regs.w0, 0)
        else:
            padded = data + bytes(-len(data) % 4)
            for index, (word,) in enumerate(struct.iter_unpack("<I", padded)):
                self.write_register(regs.w0 + 4 * index, word)

        self.write_register(regs.cmd, _SPI_CMD_USR)

        for _ in range(_SPI_CMD_POLL_TRIALS):
            if self.read_register(regs.cmd) & _SPI_CMD_USR == 0:
                break
        else:
            raise LoaderTimeout("SPI flash command did not complete")

        result = self.read_register(regs.w0)

        self.write_register(regs.usr, old_usr)
        self.write_register(regs.usr2, old_usr2)
        return result

    def _detect_flash_size(self):
        flash_id = self._spi_flash_command(SPI_FLASH_READ_ID, miso_bits=24)
        size_id = flash_id >> 16
        if not _MIN_FLASH_SIZE_ID <= size_id <= _MAX_FLASH_SIZE_ID:
            raise UnsupportedChipError(f"unknown flash size id 0x{size_id:02x}")
        return 1 << size_id

    def flash_start(self, offset, image_size, block_size):
        """Prepare to write ``image_size`` bytes at ``offset`` in blocks of ``block_size``."""
        self._require_uart("flashing")
        if block_size <= 0:
            raise InvalidParamError("block size must be positive")
        self._flash_write_size = block_size

        try:
            flash_size = self._detect_flash_size()
        except LoaderError:
            self.port.debug_print("Flash size detection failed, falling back to default")
        else:
            if image_size > flash_size:
                raise ImageSizeError(
                    f"image of {image_size} bytes exceeds flash of {flash_size} bytes"
                )
            self.port.start_timer(DEFAULT_TIMEOUT)
            self._protocol.spi_parameters(flash_size)

        self._start_address = offset
        self._image_size = image_size
        self._md5 = hashlib.md5(usedforsecurity=False)

        encryption = encryption_in_begin_flash_cmd(self.target)
        erase_size = calc_erase_size(self.target, offset, image_size)
        blocks_to_write = (image_size + block_size - 1) // block_size

        self.port.start_timer(timeout_per_mb(erase_size, ERASE_REGION_TIMEOUT_PER_MB))
        self._protocol.flash_begin(offset, erase_size, block_size, blocks_to_write, encryption)

    def _send_with_retries(self, timeout, send, data):
        for attempt in range(1, self.write_block_retries + 1):
            self.port.start_timer(timeout)
            try:
                return send(data)
            except LoaderError:
                if attempt == self.write_block_retries:
                    raise

    def flash_write(self, payload):
        """Write one block; a short block is padded with 0xFF to the block size."""
        self._require_uart("flashing")
        payload = bytes(payload)
        size = len(payload)
        if size > self._flash_write_size:
            raise InvalidParamError(
                f"block of {size} bytes exceeds block size {self._flash_write_size}"
            )
        block = payload + bytes([_PADDING]) * (self._flash_write_size - size)
        self._md5.update(block[: (size + 3) & ~3])
        self._send_with_retries(DEFAULT_TIMEOUT, self._protocol.flash_data, block)

    def flash_finish(self, reboot):
        """End the flash operation, rebooting the target if ``reboot``."""
        self._require_uart("flashing")
        self.port.start_timer(DEFAULT_TIMEOUT)
        self._protocol.flash_end(not reboot)

    def mem_start(self, offset, size, block_size):
        """Prepare to load ``size`` bytes into RAM at ``offset``."""
        if block_size <= 0:
            raise InvalidParamError("block size must be positive")
        blocks_to_write = (size + block_size - 1) // block_size
        self.port.start_timer(timeout_per_mb(size, LOAD_RAM_TIMEOUT_PER_MB))
        self._protocol.mem_begin(offset, size, blocks_to_write, block_size)

    def mem_write(self, payload):
        """Load one block of data into RAM."""
        payload = bytes(payload)
        timeout = timeout_per_mb(len(payload), LOAD_RAM_TIMEOUT_PER_MB)
        self._send_with_retries(timeout, self._protocol.mem_data, payload)

    def mem_finish(self, entrypoint):
        """Finish loading into RAM and jump to ``entrypoint`` (0 stays in the loader)."""
        self.port.start_timer(DEFAULT_TIMEOUT)
        self._protocol.mem_end(entrypoint)

    def change_transmission_rate(self, rate):
        """Switch the target's baud rate; the host port must follow separately."""
        if self.target == TargetChip.ESP8266:
            raise UnsupportedFuncError("ESP8266 cannot change its baud rate")
        self.port.start_timer(DEFAULT_TIMEOUT)
        self._protocol.change_baudrate(rate)

    def flash_verify(self):
        """Compare the MD5 of the data written with the MD5 the target reports."""
        if self.target == TargetChip.ESP8266:
            raise UnsupportedFuncError("ESP8266 cannot report flash MD5")

        actual = self._md5.copy().hexdigest().encode("ascii")
        self.port.start_timer(timeout_per_mb(self._image_size, MD5_TIMEOUT_PER_MB))
        received = bytes(self._protocol.md5(self._start_address, self._image_size))

        if received != actual:
            self.port.debug_print("Error: MD5 checksum does not match:\n")
            self.port.debug_print("Expected:\n")
            self.port.debug_print(received.decode("ascii", "replace") + "\n")
            self.port.debug_print("Actual:\n")
            self.port.debug_print(actual.decode("ascii") + "\n")
            raise InvalidMd5Error(
                f"MD5 mismatch: target {received!r}, local {actual!r}"
            )

    def reset_target(self):
        """Toggle the target's reset line."""
        self.port.reset_target()