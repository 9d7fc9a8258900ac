import struct

import pytest

from espflasher import slip
from espflasher.common import InvalidResponseError, LoaderTimeout
from espflasher.io import Port

TEST_SLIP_PACKET = bytes([0xDB]) + b"abc" + bytes([0xC0, 0xDB]) + b"de" + bytes([0xC0]) + b"f" + bytes([0xDB])
SLIP_ENCODED_PACKET = (
    bytes([0xDB, 0xDD]) + b"abc" + bytes([0xDB, 0xDC, 0xDB, 0xDD]) + b"de"
    + bytes([0xDB, 0xDC]) + b"f" + bytes([0xDB, 0xDD])
)


class BufferPort(Port):
    def __init__(self, incoming=b""):
        self.incoming = bytearray(incoming)
        self.written = bytearray()
        self.write_timeouts = []

    def queue_frame(self, payload):
        self.incoming += bytes([0xC0]) + slip.encode(payload) + bytes([0xC0])

    def write(self, data, timeout):
        self.written += data
        self.write_timeouts.append(timeout)

    def read(self, size, timeout):
        if len(self.incoming) < size:
            raise LoaderTimeout("no data")
        chunk = bytes(self.incoming[:size])
        del self.incoming[:size]
        return chunk

    def enter_bootloader(self):
        self.written += b""

    def reset_target(self):
        self.written += b""


def read_reg_response(value):
    return struct.pack("<BBHIBB", 1, 0x0A, 16, value, 0, 0)


def test_encode_matches_reference_packet():
    assert slip.encode(TEST_SLIP_PACKET) == SLIP_ENCODED_PACKET


def test_encode_leaves_plain_bytes_alone():
    assert slip.encode(b"hello") == b"hello"


def test_send_writes_encoded_bytes():
    port = BufferPort()
    slip.send(port, TEST_SLIP_PACKET)
    assert bytes(port.written) == SLIP_ENCODED_PACKET


def test_send_uses_remaining_time_as_timeout():
    port = BufferPort()
    slip.send(port, b"x")
    assert port.write_timeouts == [port.remaining_time()]


def test_send_delimiter():
    port = BufferPort()
    slip.send_delimiter(port)
    assert bytes(port.written) == bytes([0xC0])


def test_framed_send_matches_reference():
    port = BufferPort()
    slip.send_delimiter(port)
    slip.send(port, TEST_SLIP_PACKET)
    slip.send_delimiter(port)
    assert bytes(port.written) == bytes([0xC0]) + SLIP_ENCODED_PACKET + bytes([0xC0])


def test_receive_data_decodes_escapes():
    port = BufferPort(SLIP_ENCODED_PACKET)
    assert slip.receive_data(port, len(TEST_SLIP_PACKET)) == TEST_SLIP_PACKET
    assert port.incoming == bytearray()


def test_receive_data_rejects_bad_escape():
    port = BufferPort(bytes([0xDB, 0x01]))
    with pytest.raises(InvalidResponseError):
        slip.receive_data(port, 1)


def test_receive_packet_decodes_response_with_escaped_value():
    response = read_reg_response(0xC0BD)
    port = BufferPort()
    port.queue_frame(response)
    packet = slip.receive_packet(port, len(response))
    assert packet == response
    assert struct.unpack_from("<I", packet, 4)[0] == 0xC0BD


def test_receive_packet_skips_noise_and_extra_delimiters():
    response = read_reg_response(55)
    port = BufferPort(b"\x01\x02" + bytes([0xC0, 0xC0]))
    port.queue_frame(response)
    assert slip.receive_packet(port, len(response)) == response


def test_receive_packet_reads_consecutive_frames():
    first = read_reg_response(1)
    second = read_reg_response(2)
    port = BufferPort()
    port.queue_frame(first)
    port.queue_frame(second)
    assert slip.receive_packet(port, len(first)) == first
    assert slip.receive_packet(port, len(second)) == second


def test_receive_packet_times_out_without_data():
    port = BufferPort()
    with pytest.raises(LoaderTimeout):
        slip.receive_packet(port, 10)


def test_receive_packet_times_out_on_truncated_frame():
    port = BufferPort(bytes([0xC0, 0x01, 0x0A]))
    with pytest.raises(LoaderTimeout):
        slip.receive_packet(port, 10)


@pytest.mark.parametrize("payload", [b"", b"\xc0", b"\xdb", bytes(range(256))])
def test_encode_then_receive_round_trip(payload):
    port = BufferPort(slip.encode(payload))
    assert slip.receive_data(port, len(payload)) == payload
    assert port.incoming == bytearray()