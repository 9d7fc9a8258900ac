"""Per-chip register layout, chip detection and SPI pin configuration."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from espflasher.common import InvalidTargetError, TargetChip, UnsupportedFuncError

CHIP_DETECT_MAGIC_REG_ADDR = 0x40001000
"""ROM address whose value differs between chip models."""

ESP8266_SPI_REG_BASE = 0x60000200
ESP32S2_SPI_REG_BASE = 0x3F402000
ESP32C6_SPI_REG_BASE = 0x60003000
ESP32XX_SPI_REG_BASE = 0x60002000
ESP32_SPI_REG_BASE = 0x3FF42000


@dataclass(frozen=True)
class TargetRegisters:
    """Addresses of the SPI controller registers used for flash commands."""

    cmd: int
    usr: int
    usr1: int
    usr2: int
    w0: int
    mosi_dlen: int
    miso_dlen: int


@dataclass(frozen=True)
class TargetInfo:
    """Everything the loader needs to know about one chip model.

    ``fixed_spi_pins`` marks chips whose SPI flash pins cannot be
    reconfigured; their pin configuration is always the default, 0.
    """

    chip: TargetChip
    regs: TargetRegisters
    efuse_base: int
    magic_values: tuple
    spi_config: Optional[Callable[[int, Callable[[int], int]], int]]
    encryption_in_begin_flash_cmd: bool
    fixed_spi_pins: bool = False


def _efuse_word_addr(efuse_base, n):
    return efuse_base + n * 4


def _adjust_pin_number(num):
    # 30 -> GPIO32, 31 -> GPIO33
    return num + 2 if num >= 30 else num


def _spi_config_esp32(efuse_base, read_register):
    reg5 = read_register(_efuse_word_addr(efuse_base, 5))
    reg3 = read_register(_efuse_word_addr(efuse_base, 3))

    pins = reg5 & 0xFFFFF
    if pins in (0, 0xFFFFF):
        return 0

    clk = _adjust_pin_number(pins & 0x1F)
    q = _adjust_pin_number((pins >> 5) & 0x1F)
    d = _adjust_pin_number((pins >> 10) & 0x1F)
    cs = _adjust_pin_number((pins >> 15) & 0x1F)
    hd = _adjust_pin_number((reg3 >> 4) & 0x1F)

    if clk in (cs, d, q) or q in (cs, d):
        return 0

    return (hd << 24) | (cs << 18) | (d << 12) | (q << 6) | clk


def _spi_config_esp32xx(efuse_base, read_register):
    reg1 = read_register(_efuse_word_addr(efuse_base, 18))
    reg2 = read_register(_efuse_word_addr(efuse_base, 19))

    pins = ((reg1 >> 16) | ((reg2 & 0xFFFFF) << 16)) & 0x3FFFFFFF
    if pins in (0, 0xFFFFFFFF):
        return 0
    return pins


def _esp32xx_registers(base):
    return TargetRegisters(
        cmd=base + 0x00,
        usr=base + 0x18,
        usr1=base + 0x1C,
        usr2=base + 0x20,
        w0=base + 0x58,
        mosi_dlen=base + 0x24,
        miso_dlen=base + 0x28,
    )


# Unused magic-value slots hold 0, as in the ROM detection table.
_TARGETS = {
    info.chip: info
    for info in (
        TargetInfo(
            chip=TargetChip.ESP8266,
            regs=TargetRegisters(
                cmd=ESP8266_SPI_REG_BASE + 0x00,
                usr=ESP8266_SPI_REG_BASE + 0x1C,
                usr1=ESP8266_SPI_REG_BASE + 0x20,
                usr2=ESP8266_SPI_REG_BASE + 0x24,
                w0=ESP8266_SPI_REG_BASE + 0x40,
                mosi_dlen=0,
                miso_dlen=0,
            ),
            efuse_base=0,
            magic_values=(0xFFF0C101, 0),
            spi_config=None,
            encryption_in_begin_flash_cmd=False,
        ),
        TargetInfo(
            chip=TargetChip.ESP32,
            regs=TargetRegisters(
                cmd=ESP32_SPI_REG_BASE + 0x00,
                usr=ESP32_SPI_REG_BASE + 0x1C,
                usr1=ESP32_SPI_REG_BASE + 0x20,
                usr2=ESP32_SPI_REG_BASE + 0x24,
                w0=ESP32_SPI_REG_BASE + 0x80,
                mosi_dlen=ESP32_SPI_REG_BASE + 0x28,
                miso_dlen=ESP32_SPI_REG_BASE + 0x2C,
            ),
            efuse_base=0x3FF5A000,
            magic_values=(0x00F01D83, 0),
            spi_config=_spi_config_esp32,
            encryption_in_begin_flash_cmd=False,
        ),
        TargetInfo(
            chip=TargetChip.ESP32S2,
            regs=_esp32xx_registers(ESP32S2_SPI_REG_BASE),
            efuse_base=0x3F41A000,
            magic_values=(0x000007C6, 0),
            spi_config=_spi_config_esp32xx,
            encryption_in_begin_flash_cmd=True,
        ),
        TargetInfo(
            chip=TargetChip.ESP32C3,
            regs=_esp32xx_registers(ESP32XX_SPI_REG_BASE),
            efuse_base=0x60008800,
            magic_values=(0x6921506F, 0x1B31506F),
            spi_config=_spi_config_esp32xx,
            encryption_in_begin_flash_cmd=True,
        ),
        TargetInfo(
            chip=TargetChip.ESP32S3,
            regs=_esp32xx_registers(ESP32XX_SPI_REG_BASE),
            efuse_base=0x60007000,
            magic_values=(0x00000009, 0),
            spi_config=_spi_config_esp32xx,
            encryption_in_begin_flash_cmd=True,
        ),
        TargetInfo(
            chip=TargetChip.ESP32C2,
            regs=_esp32xx_registers(ESP32XX_SPI_REG_BASE),
            efuse_base=0x60008800,
            magic_values=(0x6F51306F, 0x7C41A06F),
            spi_config=_spi_config_esp32xx,
            encryption_in_begin_flash_cmd=True,
        ),
        TargetInfo(
            chip=TargetChip.ESP32H4,
            regs=_esp32xx_registers(ESP32XX_SPI_REG_BASE),
            efuse_base=0x6001A000,
            magic_values=(0xCA26CC22, 0x6881B06F),
            spi_config=_spi_config_esp32xx,
            encryption_in_begin_flash_cmd=True,
        ),
        TargetInfo(
            chip=TargetChip.ESP32H2,
            regs=_esp32xx_registers(ESP32XX_SPI_REG_BASE),
            efuse_base=0x6001A000,
            magic_values=(0xD7B73E80, 0),
            spi_config=_spi_config_esp32xx,
            encryption_in_begin_flash_cmd=True,
        ),
        TargetInfo(
            chip=TargetChip.ESP32C6,
            regs=_esp32xx_registers(ESP32C6_SPI_REG_BASE),
            efuse_base=0x600B0800,
            magic_values=(0x2CE0806F, 0),
            spi_config=None,
            encryption_in_begin_flash_cmd=True,
            fixed_spi_pins=True,
        ),
    )
}


def target_info(chip):
    """Return the description of ``chip``; raise InvalidTargetError if unknown."""
    try:
        return _TARGETS[TargetChip(chip)]
    except (KeyError, ValueError):
        raise InvalidTargetError(f"no target description for chip {chip!r}") from None


def detect_chip(read_register):
    """Identify the attached chip from its magic register value.

    ``read_register`` takes an address and returns the register's value.
    """
    magic_value = read_register(CHIP_DETECT_MAGIC_REG_ADDR)
    for info in _TARGETS.values():
        if magic_value in info.magic_values:
            return info
    raise InvalidTargetError(f"unknown chip magic value 0x{magic_value:08x}")


def read_spi_config(chip, read_register):
    """Return the SPI flash pin configuration burnt into the chip's eFuses."""
    info = target_info(chip)
    if info.fixed_spi_pins:
        return 0
    if info.spi_config is None:
        raise UnsupportedFuncError(f"{info.chip.name} has no SPI pin configuration")
    return info.spi_config(info.efuse_base, read_register)


def encryption_in_begin_flash_cmd(chip):
    """Whether the flash-begin command of ``chip`` carries an encryption field."""
    return target_info(chip).encryption_in_begin_flash_cmd