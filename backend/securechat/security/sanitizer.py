"""
Input sanitization for user-supplied chat fields.

Rejects:
- Null bytes and control characters (newlines/tabs allowed in message text)
- Path traversal in attachment names
- Script/XSS payloads in single-line fields (usernames, room names)
"""
import re
from typing import Optional


class InputSanitizer:
    """Validates and sanitizes user input. Raises ValueError on rejection."""

    NULL_BYTE_PATTERN = re.compile(r'\x00')
    CONTROL_CHAR_PATTERN = re.compile(r'[\x00-\x08\x0b-\x0c\x0e-\x1f\x7f]')  # Except \t=0x09, \n=0x0a, \r=0x0d
    NEWLINE_PATTERN = re.compile(r'[\r\n\t]')
    USERNAME_PATTERN = re.compile(r'^[a-zA-Z0-9_\-]+$')
    SCRIPT_PATTERN = re.compile(r'<script|javascript:|onerror|onclick|<iframe|<embed', re.IGNORECASE)

    MAX_USERNAME = 64
    MAX_ROOM_NAME = 100
    MAX_BODY = 50000

    @staticmethod
    def sanitize_string(value: str, max_length: Optional[int] = None, allow_newlines: bool = False) -> str:
        if not isinstance(value, str):
            raise ValueError("Input must be string")

        if InputSanitizer.NULL_BYTE_PATTERN.search(value):
            raise ValueError("Null bytes not allowed")

        if InputSanitizer.CONTROL_CHAR_PATTERN.search(value):
            raise ValueError("Control characters not allowed")

        if not allow_newlines and InputSanitizer.NEWLINE_PATTERN.search(value):
            raise ValueError("Line breaks not allowed")

        if max_length and len(value) > max_length:
            raise ValueError(f"Input exceeds max length of {max_length}")

        return value

    @staticmethod
    def sanitize_username(value: str) -> str:
        """Alphanumeric + underscore/dash, 3-64 chars. Case is preserved."""
        if not isinstance(value, str) or len(value.strip()) < 3:
            raise ValueError("Username must be at least 3 characters")

        sanitized = InputSanitizer.sanitize_string(value.strip(), max_length=InputSanitizer.MAX_USERNAME)

        if not InputSanitizer.USERNAME_PATTERN.match(sanitized):
            raise ValueError("Username must contain only alphanumeric, dash, underscore")

        return sanitized

    @staticmethod
    def sanitize_room_name(value: str) -> str:
        sanitized = InputSanitizer.sanitize_string(value, max_length=InputSanitizer.MAX_ROOM_NAME).strip()
        if not sanitized:
            raise ValueError("Room name cannot be empty")
        if InputSanitizer.SCRIPT_PATTERN.search(sanitized):
            raise ValueError("Script/XSS patterns not allowed")
        return sanitized

    @staticmethod
    def sanitize_body(value: str) -> str:
        """Message text. Newlines kept, trailing whitespace per line trimmed."""
        sanitized = InputSanitizer.sanitize_string(value, max_length=InputSanitizer.MAX_BODY, allow_newlines=True)
        lines = [line.rstrip() for line in sanitized.split('\n')]
        return '\n'.join(lines)

    @staticmethod
    def sanitize_filename(filename: str) -> str:
        """Prevent path traversal in attachment names."""
        if not filename or len(filename) > 255:
            raise ValueError("Invalid filename length")

        # Keep only the last path component
        filename = filename.replace('\\', '/').split('/')[-1]

        if '..' in filename:
            raise ValueError("Path traversal not allowed")

        filename = re.sub(r'[^a-zA-Z0-9._\-() ]', '', filename)
        filename = re.sub(r'[ ]{2,}', ' ', filename)
        filename = re.sub(r'[.]{2,}', '.', filename)

        if not filename:
            raise ValueError("Filename becomes empty after sanitization")

        return filename
