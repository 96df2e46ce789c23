from __future__ import annotations


CUSTOM_COMMAND = "custom"

READ_COMMANDS: tuple[str, ...] = (
    "accinfo",
    "authid",
    "banned",
    "caninfo",
    "cansinfo",
    "coords",
    "enginevolt",
    "get3g",
    "getapn",
    "getcfg",
    "getdinmode",
    "getgfwver",
    "getio",
    "getioparam",
    "getlog",
    "getnetw",
    "getsd",
    "gsminfo",
    "imei",
    "info",
    "iqfinfo",
    "lastchange",
    "modrev",
    "plockinfo",
    "snapshot",
    "ssl status",
    "tacho",
    "tachostatus",
    "uptime",
    "version",
    "webcoords",
)

WRITE_COMMANDS: tuple[str, ...] = (
    "accreset",
    "ahj-on",
    "ahj-off",
    "clear dtc",
    "clear obd",
    "connect",
    "delrecords",
    "dfota",
    "dmpfconnect",
    "doutreset",
    "econnect",
    "forward",
    "neconnect",
    "nreset",
    "optiver",
    "plock",
    "reset",
    "set3g",
    "setcfg",
    "setconnection",
    "setdinmode",
    "setio",
    "setioparam",
    "setiotime",
    "setlcv",
    "setlock",
    "setnetw",
    "setvalue",
    "switchip",
    "ussd",
)

COMMAND_DESCRIPTIONS: dict[str, str] = {
    "accinfo": "Account information",
    "authid": "Authentication identifiers",
    "banned": "Check ban status",
    "coords": "Current GPS coordinates",
    "enginevolt": "Engine voltage reading",
    "getlog": "Retrieve current device logs",
    "imei": "Retrieve device IMEI",
    "info": "General device information",
    "snapshot": "Take a quick snapshot",
    "version": "Firmware version",
    "ssl status": "SSL tunnel status",
    "accreset": "Reset account linkage",
    "clear dtc": "Clear diagnostic trouble codes",
    "connect": "Initiate network connection",
    "reset": "Soft reset the device",
    "setcfg": "Update configuration profile",
    "ussd": "Send USSD command",
    CUSTOM_COMMAND: "Send a custom SMS command",
}

ALL_COMMANDS: frozenset[str] = frozenset(READ_COMMANDS) | frozenset(WRITE_COMMANDS) | {CUSTOM_COMMAND}

_WRITE_SET = frozenset(WRITE_COMMANDS)
_READ_SET = frozenset(READ_COMMANDS)


def is_write_command(command: str) -> bool:
    return command in _WRITE_SET


def is_read_command(command: str) -> bool:
    return command in _READ_SET


def is_supported_command(command: str) -> bool:
    return command in ALL_COMMANDS


def wire_command(command: str, text: str | None) -> tuple[str, str]:
    """Return the ``(command, payload)`` pair sent to the device.

    Catalog commands carry their own name as payload, which is what the
    device firmware parses. ``custom`` sends the operator's text for both.
    """
    if command == CUSTOM_COMMAND:
        literal = (text or "").strip()
        return literal, literal
    return command, command


def catalog_entries() -> list[tuple[str, str, str]]:
    """``(command, access, description)`` rows, read commands first."""
    rows = [(name, "read", COMMAND_DESCRIPTIONS.get(name, "")) for name in READ_COMMANDS]
    rows += [(name, "write", COMMAND_DESCRIPTIONS.get(name, "")) for name in WRITE_COMMANDS]
    rows.append((CUSTOM_COMMAND, "custom", COMMAND_DESCRIPTIONS[CUSTOM_COMMAND]))
    return rows
