import struct

import pytest

from espflasher.common import InvalidParamError
from espflasher.io import Port
from espflasher.protocol import (
    SYNC_SEQUENCE,
    Command,
    Protocol,
    RomError,
    compute_checksum,
    log_internal_error,
)

TEST_SLIP_PACKET = bytes([0xDB]) + b"abc" + bytes([0xC0, 0xDB]) + b"de" + bytes([0xC0]) + b"f" + bytes([0xDB])


class DebugPort(Port):
    def __init__(self):
        self.messages = []

    def write(self, data, timeout):
        pass

    def read(self, size, timeout):
        return bytes(size)

    def enter_bootloader(self):
        pass

    def reset_target(self):
        pass

    def debug_print(self, text):
        self.messages.append(text)


class Recorder(Protocol):
    def __init__(self, reply=0):
        super().__init__(DebugPort())
        self.reply = reply
        self.sent = []

    def initialize_conn(self, connect_args):
        self.sent.append(("init", connect_args))

    def send_cmd(self, packet):
        self.sent.append((packet, None))
        return self.reply

    def send_cmd_with_data(self, packet, data):
        self.sent.append((packet, data))

    def send_cmd_md5(self, packet):
        self.sent.append((packet, None))
        return b"0123456789abcdef" * 2


def header(packet):
    return struct.unpack_from("<BBHI", packet)


def test_checksum_of_test_packet():
    assert compute_checksum(TEST_SLIP_PACKET) == 0x33


def test_checksum_of_empty_data_is_seed():
    assert compute_checksum(b"") == 0xEF


def test_sync_packet_bytes():
    proto = Recorder()
    Protocol.sync(proto)
    packet, _ = proto.sent[0]
    assert packet == bytes([0x00, 0x08, 36, 0, 0, 0, 0, 0]) + SYNC_SEQUENCE


def test_write_reg_packet():
    proto = Recorder()
    Protocol.write_reg(proto, 0x1000, 55, 0xFFFFFFFF, 0)
    packet, _ = proto.sent[0]
    assert header(packet) == (0, Command.WRITE_REG, 16, 0)
    assert struct.unpack_from("<IIII", packet, 8) == (0x1000, 55, 0xFFFFFFFF, 0)


def test_read_reg_returns_reply():
    proto = Recorder(reply=55)
    assert Protocol.read_reg(proto, 0) == 55
    packet, _ = proto.sent[0]
    assert header(packet)[1] == Command.READ_REG
    assert len(packet) == 12


@pytest.mark.parametrize("encryption", [True, False])
def test_flash_begin_encryption_field(encryption):
    proto = Recorder()
    Protocol.flash_begin(proto, 0x10000, 4096, 1024, 4, encryption)
    packet, _ = proto.sent[0]
    direction, command, size, _ = header(packet)
    assert command == Command.FLASH_BEGIN
    assert len(packet) == 8 + size
    assert size == (20 if encryption else 16)
    assert struct.unpack_from("<IIII", packet, 8) == (4096, 4, 1024, 0x10000)


def test_flash_data_header_and_sequence():
    proto = Recorder()
    Protocol.flash_data(proto, TEST_SLIP_PACKET)
    Protocol.flash_data(proto, b"xy")
    first, data = proto.sent[0]
    second, _ = proto.sent[1]
    assert data == TEST_SLIP_PACKET
    assert header(first) == (0, Command.FLASH_DATA, 16 + len(TEST_SLIP_PACKET), 0x33)
    assert struct.unpack_from("<IIII", first, 8) == (len(TEST_SLIP_PACKET), 0, 0, 0)
    assert struct.unpack_from("<II", second, 8) == (2, 1)


def test_begin_resets_sequence():
    proto = Recorder()
    Protocol.mem_data(proto, b"a")
    Protocol.mem_data(proto, b"b")
    Protocol.mem_begin(proto, 0, 2, 2, 1)
    Protocol.mem_data(proto, b"c")
    last, _ = proto.sent[-1]
    assert header(last)[1] == Command.MEM_DATA
    assert struct.unpack_from("<I", last, 12)[0] == 0


@pytest.mark.parametrize("entrypoint, stay", [(0, 1), (0x40080000, 0)])
def test_mem_end_stay_in_loader(entrypoint, stay):
    proto = Recorder()
    Protocol.mem_end(proto, entrypoint)
    packet, _ = proto.sent[0]
    assert struct.unpack_from("<II", packet, 8) == (stay, entrypoint)


def test_flash_end_flag():
    proto = Recorder()
    Protocol.flash_end(proto, True)
    packet, _ = proto.sent[0]
    assert header(packet)[1:3] == (Command.FLASH_END, 4)
    assert struct.unpack_from("<I", packet, 8)[0] == 1


def test_spi_parameters_packet():
    proto = Recorder()
    Protocol.spi_parameters(proto, 4 * 1024 * 1024)
    packet, _ = proto.sent[0]
    assert header(packet)[2] == 24
    assert struct.unpack_from("<IIIIII", packet, 8) == (
        0, 4 * 1024 * 1024, 64 * 1024, 4 * 1024, 0x100, 0xFFFF,
    )


def test_md5_returns_reported_digest():
    proto = Recorder()
    assert Protocol.md5(proto, 0x10000, 1024) == b"0123456789abcdef" * 2
    packet, _ = proto.sent[0]
    assert header(packet)[1] == Command.SPI_FLASH_MD5
    assert struct.unpack_from("<II", packet, 8) == (0x10000, 1024)


def test_attach_and_baudrate_packets():
    proto = Recorder()
    Protocol.spi_attach(proto, 7)
    Protocol.change_baudrate(proto, 921600)
    attach, _ = proto.sent[0]
    baud, _ = proto.sent[1]
    assert struct.unpack_from("<II", attach, 8) == (7, 0)
    assert struct.unpack_from("<II", baud, 8) == (921600, 0)


def test_out_of_range_value_raises():
    proto = Recorder()
    with pytest.raises(InvalidParamError):
        Protocol.write_reg(proto, 1 << 32, 0, 0xFFFFFFFF, 0)
    assert proto.sent == []


@pytest.mark.parametrize(
    "error, name",
    [(RomError.INVALID_CRC, "INVALID_CRC"), (RomError.DEFLATE_ERROR, "DEFLATE_ERROR"),
     (RomError.RESPONSE_OK, "UNKNOWN ERROR"), (0x42, "UNKNOWN ERROR")],
)
def test_log_internal_error(error, name):
    port = DebugPort()
    log_internal_error(port, error)
    assert "".join(port.messages) == f"Error: {name}\n"