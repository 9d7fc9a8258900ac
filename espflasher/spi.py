"""Loader protocol carried over the SPI slave interface of the target."""

from __future__ import annotations

import enum
import struct
from contextlib import contextmanager

from espflasher.common import (
    InvalidParamError,
    InvalidResponseError,
    UnsupportedFuncError,
)
from espflasher.protocol import (
    READ_DIRECTION,
    RESPONSE_SIZE,
    Protocol,
    log_internal_error,
    packet_command,
)


class TransactionCommand(enum.IntEnum):
    """First byte of every SPI slave transaction."""

    WRBUF = 0x01
    RDBUF = 0x02
    WRDMA = 0x03
    RDDMA = 0x04
    SEG_DONE = 0x05
    ENQPI = 0x06
    WR_DONE = 0x07
    CMD8 = 0x08
    CMD9 = 0x09
    CMDA = 0x0A
    EXQPI = 0xDD


class SlaveRegister(enum.IntEnum):
    """Shared registers of the slave protocol."""

    VER = 0
    RXSTA = 4
    TXSTA = 8
    CMD = 12


class SlaveCommand(enum.IntEnum):
    """Values exchanged through the slave command register."""

    IDLE = 0xAA
    READY = 0xA5
    REBOOT = 0xFE
    COMM_REINIT = 0x5A
    DONE = 0x55


_STA_TOGGLE_BIT = 0x01
_STA_INIT_BIT = 0x02
_STA_BUF_LENGTH_POS = 2

_STATE_INIT = _STA_TOGGLE_BIT | _STA_INIT_BIT
_STATE_FIRST_PACKET = _STA_INIT_BIT

_RETRY_DELAY_MS = 100


def _preamble(command, address=0):
    return bytes([command, address, 0])


class SpiProtocol(Protocol):
    """Sends loader commands through the target's SPI slave buffers."""

    def __init__(self, port):
        super().__init__(port)
        self._sequence_state = {SlaveRegister.RXSTA: 0, SlaveRegister.TXSTA: 0}

    @contextmanager
    def _selected(self):
        self.port.set_cs(0)
        yield
        self.port.set_cs(1)

    def _write(self, data):
        self.port.write(bytes(data), self.port.remaining_time())

    def _read(self, size):
        return self.port.read(size, self.port.remaining_time())

    def _read_slave_reg(self, address, size):
        with self._selected():
            self._write(_preamble(TransactionCommand.RDBUF, address))
            return self._read(size)

    def _write_slave_reg(self, address, data):
        with self._selected():
            self._write(_preamble(TransactionCommand.WRBUF, address))
            self._write(data)

    def _poll_slave_state(self, status_reg):
        """Return the slave's buffer size once it is ready, else None."""
        status = struct.unpack("<I", self._read_slave_reg(status_reg, 4))[0]
        state = status & (_STA_TOGGLE_BIT | _STA_INIT_BIT)

        if state == _STATE_INIT:
            self._write_slave_reg(status_reg, bytes(4))
            return None
        if state == _STATE_FIRST_PACKET:
            self._sequence_state[status_reg] = state & _STA_TOGGLE_BIT
            return status >> _STA_BUF_LENGTH_POS

        new_seq = state & _STA_TOGGLE_BIT
        if new_seq != self._sequence_state[status_reg]:
            self._sequence_state[status_reg] = new_seq
            return status >> _STA_BUF_LENGTH_POS
        return None

    def _wait_ready(self, status_reg):
        while True:
            buf_size = self._poll_slave_state(status_reg)
            if buf_size is not None:
                return buf_size

    def _wait_for_cmd_value(self, expected, message, trials):
        for _ in range(trials):
            flag = self._read_slave_reg(SlaveRegister.CMD, 1)[0]
            if flag == expected:
                return
            self.port.debug_print(message)
            self.port.delay_ms(_RETRY_DELAY_MS)

    def initialize_conn(self, connect_args):
        """Wait for the slave to go idle, then signal that the host is ready."""
        self._wait_for_cmd_value(
            SlaveCommand.IDLE, "Waiting for Slave to be idle...\n", connect_args.trials
        )
        self._write_slave_reg(SlaveRegister.CMD, bytes([SlaveCommand.READY]))
        self._wait_for_cmd_value(
            SlaveCommand.READY, "Waiting for Slave to be ready...\n", connect_args.trials
        )

    def _transmit(self, *parts):
        buf_size = self._wait_ready(SlaveRegister.RXSTA)
        if sum(len(part) for part in parts) > buf_size:
            raise InvalidParamError(
                f"command of {sum(len(p) for p in parts)} bytes exceeds slave buffer of {buf_size}"
            )
        with self._selected():
            self._write(_preamble(TransactionCommand.WRDMA))
            for part in parts:
                self._write(part)
        with self._selected():
            self._write(_preamble(TransactionCommand.WR_DONE))

    def _check_response(self, command):
        buf_size = self._wait_ready(SlaveRegister.TXSTA)
        if RESPONSE_SIZE > buf_size:
            raise InvalidParamError(
                f"response of {RESPONSE_SIZE} bytes exceeds slave buffer of {buf_size}"
            )
        with self._selected():
            self._write(_preamble(TransactionCommand.RDDMA))
            response = self._read(RESPONSE_SIZE)
        with self._selected():
            self._write(_preamble(TransactionCommand.CMD8))

        if response[0] != READ_DIRECTION or response[1] != command:
            raise InvalidResponseError(
                f"unexpected response to command 0x{command:02x}"
            )
        failed, error = response[-2], response[-1]
        if failed:
            log_internal_error(self.port, error)
            raise InvalidResponseError(
                f"command 0x{command:02x} failed with code 0x{error:02x}"
            )
        return struct.unpack_from("<I", response, 4)[0]

    def send_cmd(self, packet):
        """Send ``packet`` and return the value field of its response."""
        command = packet_command(packet)
        self._transmit(packet)
        return self._check_response(command)

    def send_cmd_with_data(self, packet, data):
        """Send ``packet`` and its payload in one transfer and await the reply."""
        command = packet_command(packet)
        self._transmit(packet, bytes(data))
        self._check_response(command)

    def send_cmd_md5(self, packet):
        """MD5 requests are not available over the SPI interface."""
        raise UnsupportedFuncError("MD5 verification is not supported over SPI")