import pytest

from espflasher.common import (
    ConnectArgs,
    ImageSizeError,
    Interface,
    InvalidMd5Error,
    InvalidParamError,
    InvalidResponseError,
    InvalidTargetError,
    LoaderError,
    LoaderTimeout,
    TargetChip,
    UnsupportedChipError,
    UnsupportedFuncError,
)


def test_connect_args_defaults():
    args = ConnectArgs()
    assert args.sync_timeout == 100
    assert args.trials == 10


def test_connect_args_can_be_changed():
    args = ConnectArgs(sync_timeout=10, trials=1)
    args.trials = 5
    assert (args.sync_timeout, args.trials) == (10, 5)


@pytest.mark.parametrize(
    "value, chip",
    [
        (0, TargetChip.ESP8266),
        (1, TargetChip.ESP32),
        (2, TargetChip.ESP32S2),
        (3, TargetChip.ESP32C3),
        (4, TargetChip.ESP32S3),
        (5, TargetChip.ESP32C2),
        (6, TargetChip.ESP32H4),
        (7, TargetChip.ESP32H2),
        (8, TargetChip.ESP32C6),
        (9, TargetChip.UNKNOWN),
    ],
)
def test_target_chip_lookup_by_value(value, chip):
    assert TargetChip(value) is chip


def test_target_chip_rejects_unknown_value():
    with pytest.raises(ValueError):
        TargetChip(42)


def test_interface_lookup():
    assert Interface("uart") is Interface.UART
    assert Interface("spi") is Interface.SPI


@pytest.mark.parametrize(
    "error_type",
    [
        LoaderTimeout,
        ImageSizeError,
        InvalidMd5Error,
        InvalidParamError,
        InvalidTargetError,
        UnsupportedChipError,
        UnsupportedFuncError,
        InvalidResponseError,
    ],
)
def test_specific_errors_are_loader_errors(error_type):
    error = error_type("boom")
    assert isinstance(error, LoaderError)
    assert error.args == ("boom",)
    assert str(error) == "boom"