"""Loader protocol carried in SLIP frames over a serial line."""

from __future__ import annotations

import struct

from espflasher import slip
from espflasher.common import InvalidResponseError, LoaderTimeout
from espflasher.protocol import (
    HEADER_SIZE,
    MD5_RESPONSE_SIZE,
    MD5_SIZE,
    READ_DIRECTION,
    RESPONSE_SIZE,
    Command,
    Protocol,
    log_internal_error,
    packet_command,
)

_SYNC_RESPONSES = 8
_RETRY_DELAY_MS = 100


class UartProtocol(Protocol):
    """Sends loader commands as SLIP frames and parses the replies."""

    def initialize_conn(self, connect_args):
        """Sync with the loader, retrying on timeout up to ``connect_args.trials``."""
        trials = connect_args.trials
        while True:
            self.port.start_timer(connect_args.sync_timeout)
            try:
                self.sync()
            except LoaderTimeout:
                trials -= 1
                if trials == 0:
                    raise
                self.port.delay_ms(_RETRY_DELAY_MS)
            else:
                return

    def _send_frame(self, *parts):
        slip.send_delimiter(self.port)
        for part in parts:
            slip.send(self.port, part)
        slip.send_delimiter(self.port)

    def _check_response(self, command, size):
        while True:
            response = slip.receive_packet(self.port, size)
            if response[0] == READ_DIRECTION and response[1] == command:
                break
        failed, error = response[-2], response[-1]
        if failed:
            log_internal_error(self.port, error)
            raise InvalidResponseError(f"command 0x{command:02x} failed with code 0x{error:02x}")
        return response

    def send_cmd(self, packet):
        """Send ``packet`` and return the value field of its response."""
        command = packet_command(packet)
        self._send_frame(packet)
        responses = _SYNC_RESPONSES if command == Command.SYNC else 1
        value = 0
        for _ in range(responses):
            response = self._check_response(command, RESPONSE_SIZE)
            value = struct.unpack_from("<I", response, 4)[0]
        return value

    def send_cmd_with_data(self, packet, data):
        """Send ``packet`` and its payload in one frame and await the reply."""
        command = packet_command(packet)
        self._send_frame(packet, data)
        self._check_response(command, RESPONSE_SIZE)

    def send_cmd_md5(self, packet):
        """Send an MD5 request and return the 32 hex digits from the reply."""
        command = packet_command(packet)
        self._send_frame(packet)
        response = self._check_response(command, MD5_RESPONSE_SIZE)
        return response[HEADER_SIZE:HEADER_SIZE + MD5_SIZE]