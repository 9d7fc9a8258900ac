"""Error types, chip identifiers and connection settings shared by the loader."""

from __future__ import annotations

import enum
from dataclasses import dataclass


class LoaderError(Exception):
    """Unspecified failure while talking to the target's ROM loader."""


class LoaderTimeout(LoaderError):
    """A timeout elapsed before the target answered."""


class ImageSizeError(LoaderError):
    """The image to flash is larger than the target's flash."""


class InvalidMd5Error(LoaderError):
    """The MD5 computed locally does not match the one reported by the target."""


class InvalidParamError(LoaderError):
    """An invalid parameter was passed to a loader function."""


class InvalidTargetError(LoaderError):
    """The connected target could not be identified."""


class UnsupportedChipError(LoaderError):
    """The attached chip is not supported."""


class UnsupportedFuncError(LoaderError):
    """The requested function is not supported on the attached target."""


class InvalidResponseError(LoaderError):
    """The target sent a malformed or failing response."""


class TargetChip(enum.IntEnum):
    """Chip models the loader knows how to talk to."""

    ESP8266 = 0
    ESP32 = 1
    ESP32S2 = 2
    ESP32C3 = 3
    ESP32S3 = 4
    ESP32C2 = 5
    ESP32H4 = 6
    ESP32H2 = 7
    ESP32C6 = 8
    UNKNOWN = 9


class Interface(enum.Enum):
    """Physical link used to reach the ROM loader."""

    UART = "uart"
    SPI = "spi"


@dataclass
class ConnectArgs:
    """Timing parameters used while connecting to the target.

    ``sync_timeout`` is the time in milliseconds to wait for each sync
    response; ``trials`` is how many times to try before giving up.
    """

    sync_timeout: int = 100
    trials: int = 10