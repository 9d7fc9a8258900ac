"""Host-side library for the ROM bootloader of ESP chips: connect, flash, load into RAM, verify."""

__version__ = "0.1.0"

__all__ = ["common", "io", "slip", "protocol", "uart", "spi", "targets", "loader"]