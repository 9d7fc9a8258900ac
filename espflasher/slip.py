"""SLIP framing of loader packets over a port."""

from __future__ import annotations

from espflasher.common import InvalidResponseError

DELIMITER = 0xC0
ESCAPE = 0xDB
ESCAPED_DELIMITER = 0xDC
ESCAPED_ESCAPE = 0xDD

_DELIMITER_BYTE = bytes([DELIMITER])


def encode(data):
    """Escape delimiter and escape bytes in ``data``; no framing is added."""
    return (
        bytes(data)
        .replace(bytes([ESCAPE]), bytes([ESCAPE, ESCAPED_ESCAPE]))
        .replace(_DELIMITER_BYTE, bytes([ESCAPE, ESCAPED_DELIMITER]))
    )


def _read_byte(port):
    return port.read(1, port.remaining_time())[0]


def send(port, data):
    """Write ``data`` SLIP-escaped to ``port``."""
    if data:
        port.write(encode(data), port.remaining_time())


def send_delimiter(port):
    """Write a single frame delimiter to ``port``."""
    port.write(_DELIMITER_BYTE, port.remaining_time())


def receive_data(port, size):
    """Read and unescape ``size`` bytes of payload from ``port``."""
    decoded = bytearray()
    while len(decoded) < size:
        ch = _read_byte(port)
        if ch == ESCAPE:
            escaped = _read_byte(port)
            if escaped == ESCAPED_DELIMITER:
                decoded.append(DELIMITER)
            elif escaped == ESCAPED_ESCAPE:
                decoded.append(ESCAPE)
            else:
                raise InvalidResponseError(
                    f"invalid SLIP escape sequence 0xdb 0x{escaped:02x}"
                )
        else:
            decoded.append(ch)
    return bytes(decoded)


def receive_packet(port, size):
    """Read one framed packet of ``size`` payload bytes from ``port``.

    Bytes before the opening delimiter are discarded, as are repeated
    delimiters, which the boot loader emits after a baud rate change.
    Anything after the payload up to the closing delimiter is dropped.
    """
    while _read_byte(port) != DELIMITER:
        pass

    first = _read_byte(port)
    while first == DELIMITER:
        first = _read_byte(port)

    packet = bytes([first]) + receive_data(port, size - 1)

    while _read_byte(port) != DELIMITER:
        pass

    return packet