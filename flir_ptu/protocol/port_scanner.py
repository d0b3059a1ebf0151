"""
Serial port enumeration.

Lists local ports for the ``--list-ports`` CLI option. Network-attached
units are reached by URL and never show up here.
"""

import logging
from dataclasses import dataclass
from typing import List

import serial.tools.list_ports


logger = logging.getLogger(__name__)

# USB-serial bridges commonly found in PTU controller cables
_USB_SERIAL_HINTS = ("ftdi", "pl2303", "prolific", "cp210", "ch340", "usb serial")


@dataclass
class PortInfo:
    """Information about an available serial port."""

    name: str
    description: str
    hardware_id: str
    is_usb_serial: bool = False


def list_available_ports() -> List[PortInfo]:
    """
    List serial ports on this machine.

    Returns:
        Ports sorted by name.
    """
    ports = []

    for port in serial.tools.list_ports.comports():
        description = port.description or "Unknown"
        hwid = port.hwid or ""
        haystack = f"{description} {hwid} {port.manufacturer or ''}".lower()
        is_usb_serial = any(hint in haystack for hint in _USB_SERIAL_HINTS)

        ports.append(PortInfo(
            name=port.device,
            description=description,
            hardware_id=hwid,
            is_usb_serial=is_usb_serial,
        ))

    ports.sort(key=lambda p: p.name)
    logger.debug(f"Found {len(ports)} serial ports")
    return ports
