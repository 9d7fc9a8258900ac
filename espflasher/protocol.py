"""Command packets understood by the ROM loader, independent of the link."""

from __future__ import annotations

import abc
import enum
import struct

from espflasher.common import InvalidParamError

WRITE_DIRECTION = 0
READ_DIRECTION = 1

STATUS_SUCCESS = 0
STATUS_FAILURE = 1

MD5_SIZE = 32

HEADER_SIZE = 8
"""Size of the direction/command/size/checksum header of every packet."""

RESPONSE_SIZE = 10
"""Size of a plain response: header plus the two status bytes."""

MD5_RESPONSE_SIZE = HEADER_SIZE + MD5_SIZE + 2
"""Size of the ROM's reply to an MD5 request."""

DATA_HEADER_SIZE = 16
"""Size of the fields that precede the payload of a data command."""

SYNC_SEQUENCE = bytes([0x07, 0x07, 0x12, 0x20]) + bytes([0x55]) * 32

_HEADER = struct.Struct("<BBHI")


class Command(enum.IntEnum):
    """Command codes of the ROM loader protocol."""

    FLASH_BEGIN = 0x02
    FLASH_DATA = 0x03
    FLASH_END = 0x04
    MEM_BEGIN = 0x05
    MEM_END = 0x06
    MEM_DATA = 0x07
    SYNC = 0x08
    WRITE_REG = 0x09
    READ_REG = 0x0A
    SPI_SET_PARAMS = 0x0B
    SPI_ATTACH = 0x0D
    CHANGE_BAUDRATE = 0x0F
    FLASH_DEFL_BEGIN = 0x10
    FLASH_DEFL_DATA = 0x11
    FLASH_DEFL_END = 0x12
    SPI_FLASH_MD5 = 0x13


class RomError(enum.IntEnum):
    """Error codes reported in the status of a failed response."""

    RESPONSE_OK = 0x00
    INVALID_COMMAND = 0x05
    COMMAND_FAILED = 0x06
    INVALID_CRC = 0x07
    FLASH_WRITE_ERR = 0x08
    FLASH_READ_ERR = 0x09
    READ_LENGTH_ERR = 0x0A
    DEFLATE_ERROR = 0x0B


def compute_checksum(data):
    """XOR of all bytes of ``data`` seeded with 0xEF."""
    checksum = 0xEF
    for byte in data:
        checksum ^= byte
    return checksum


def log_internal_error(port, error):
    """Report a ROM error code through the port's debug output."""
    try:
        code = RomError(error)
    except ValueError:
        code = None
    name = code.name if code not in (None, RomError.RESPONSE_OK) else "UNKNOWN ERROR"
    port.debug_print("Error: ")
    port.debug_print(name)
    port.debug_print("\n")


def _pack(fmt, *values):
    try:
        return struct.pack(fmt, *values)
    except struct.error as exc:
        raise InvalidParamError(f"value out of range for packet field: {exc}") from exc


def _packet(command, body, checksum=0, size=None):
    """Prefix ``body`` with a write-direction header for ``command``."""
    if size is None:
        size = len(body)
    return _pack("<BBHI", WRITE_DIRECTION, command, size, checksum) + body


def packet_command(packet):
    """Command code carried by a packet built by this module."""
    return packet[1]


class Protocol(abc.ABC):
    """Builds loader commands and hands them to a link-specific transport."""

    def __init__(self, port):
        self.port = port
        self._sequence = 0

    @abc.abstractmethod
    def initialize_conn(self, connect_args):
        """Establish communication with the ROM loader."""

    @abc.abstractmethod
    def send_cmd(self, packet):
        """Send a command packet and return the value field of its response."""

    @abc.abstractmethod
    def send_cmd_with_data(self, packet, data):
        """Send a command packet followed by its payload."""

    @abc.abstractmethod
    def send_cmd_md5(self, packet):
        """Send an MD5 request and return the 32 hex digits the target reports."""

    def _next_sequence(self):
        sequence = self._sequence
        self._sequence += 1
        return sequence

    def _data_command(self, command, data):
        data = bytes(data)
        body = _pack("<IIII", len(data), self._next_sequence(), 0, 0)
        packet = _packet(
            command,
            body,
            checksum=compute_checksum(data),
            size=len(body) + len(data),
        )
        return self.send_cmd_with_data(packet, data)

    def flash_begin(self, offset, erase_size, block_size, blocks_to_write, encryption):
        """Start a flash write; the encryption field is sent only if ``encryption``."""
        body = _pack("<IIIII", erase_size, blocks_to_write, block_size, offset, 0)
        if not encryption:
            body = body[:-4]
        self._sequence = 0
        return self.send_cmd(_packet(Command.FLASH_BEGIN, body))

    def flash_data(self, data):
        """Send one block of flash data."""
        return self._data_command(Command.FLASH_DATA, data)

    def flash_end(self, stay_in_loader):
        """Finish a flash write, optionally staying in the loader."""
        body = _pack("<I", int(bool(stay_in_loader)))
        return self.send_cmd(_packet(Command.FLASH_END, body))

    def mem_begin(self, offset, size, blocks_to_write, block_size):
        """Start loading a program into RAM."""
        body = _pack("<IIII", size, blocks_to_write, block_size, offset)
        self._sequence = 0
        return self.send_cmd(_packet(Command.MEM_BEGIN, body))

    def mem_data(self, data):
        """Send one block of RAM data."""
        return self._data_command(Command.MEM_DATA, data)

    def mem_end(self, entrypoint):
        """Finish loading into RAM; an entrypoint of 0 stays in the loader."""
        body = _pack("<II", int(entrypoint == 0), entrypoint)
        return self.send_cmd(_packet(Command.MEM_END, body))

    def sync(self):
        """Send the synchronisation command."""
        return self.send_cmd(_packet(Command.SYNC, SYNC_SEQUENCE))

    def write_reg(self, address, value, mask, delay_us):
        """Write ``value`` under ``mask`` to the register at ``address``."""
        body = _pack("<IIII", address, value, mask, delay_us)
        return self.send_cmd(_packet(Command.WRITE_REG, body))

    def read_reg(self, address):
        """Return the value of the register at ``address``."""
        body = _pack("<I", address)
        return self.send_cmd(_packet(Command.READ_REG, body))

    def spi_attach(self, config):
        """Attach the SPI flash with the given pin configuration."""
        body = _pack("<II", config, 0)
        return self.send_cmd(_packet(Command.SPI_ATTACH, body))

    def change_baudrate(self, baudrate):
        """Ask the loader to switch to ``baudrate``."""
        body = _pack("<II", baudrate, 0)
        return self.send_cmd(_packet(Command.CHANGE_BAUDRATE, body))

    def md5(self, address, size):
        """Return the target's hex MD5 of ``size`` flash bytes at ``address``."""
        body = _pack("<IIII", address, size, 0, 0)
        return self.send_cmd_md5(_packet(Command.SPI_FLASH_MD5, body))

    def spi_parameters(self, total_size):
        """Tell the loader the geometry of the attached flash."""
        body = _pack("<IIIIII", 0, total_size, 64 * 1024, 4 * 1024, 0x100, 0xFFFF)
        return self.send_cmd(_packet(Command.SPI_SET_PARAMS, body, size=24))