"""
Cleanup of text received from game servers.

Chat lines are published as plain strings, so colour and control
sequences are stripped before they reach subscribers: ANSI escapes,
telnet IAC negotiation, bells, carriage returns and legacy section-sign
formatting codes (e.g. "§aHello").
"""

import re

# Standard ANSI escape sequence pattern (colors, formatting)
ANSI_ESCAPE_PATTERN = re.compile(r'\x1b\[[0-9;]*m')

# Extended ANSI (cursor movement, etc.)
ANSI_EXTENDED_PATTERN = re.compile(r'\x1b\[[0-9;?]*[A-Za-z]')

# Telnet IAC sequences (0xFF followed by command bytes)
TELNET_PATTERN = re.compile(r'\xff[\xfb-\xfe].|\xff\xff|\xff[\xf0-\xfa]')

# Section-sign colour and style codes
FORMATTING_CODE_PATTERN = re.compile(r'§[0-9a-fk-orx]', re.IGNORECASE)

CONTROL_PATTERN = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]')


def strip_ansi(text: str) -> str:
    """Remove all ANSI escape sequences from text."""
    text = ANSI_ESCAPE_PATTERN.sub('', text)
    return ANSI_EXTENDED_PATTERN.sub('', text)


def strip_telnet_codes(text: str) -> str:
    """Remove telnet IAC/negotiation sequences."""
    return TELNET_PATTERN.sub('', text)


def strip_formatting_codes(text: str) -> str:
    """Remove section-sign formatting codes."""
    return FORMATTING_CODE_PATTERN.sub('', text)


def clean_line(text: str) -> str:
    """
    Fully clean one received line for publishing as chat.

    Escape sequences are removed before other control characters so the
    ESC byte of a colour code does not leave its parameters behind.
    """
    text = strip_telnet_codes(text)
    text = strip_ansi(text)
    text = strip_formatting_codes(text)
    text = text.replace('\r', '')
    text = CONTROL_PATTERN.sub('', text)
    return text.rstrip()
