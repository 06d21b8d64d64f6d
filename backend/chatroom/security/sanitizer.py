"""
Input sanitization for display names and message text.

Prevents:
- Null bytes in strings
- Control characters (except newlines/tabs in message text)
- Names that only differ from others by surrounding whitespace
"""
import re
from typing import Optional


class InputSanitizer:
    """Validates and sanitizes user input."""

    NULL_BYTE_PATTERN = re.compile(r'\x00')
    CONTROL_CHAR_PATTERN = re.compile(r'[\x00-\x08\x0b-\x0c\x0e-\x1f\x7f]')  # Except \t=0x09, \n=0x0a, \r=0x0d
    LINE_BREAK_PATTERN = re.compile(r'[\t\r\n]')

    @staticmethod
    def sanitize_string(value: str, max_length: Optional[int] = None, allow_newlines: bool = False) -> str:
        """
        Sanitize string input.

        Args:
            value: Input string
            max_length: Optional max length after sanitization
            allow_newlines: Allow \\n, \\r and \\t characters (for message text)

        Returns:
            Sanitized string

        Raises:
            ValueError: If input contains dangerous patterns
        """
        if not isinstance(value, str):
            raise ValueError("Input must be string")

        if InputSanitizer.NULL_BYTE_PATTERN.search(value):
            raise ValueError("Null bytes not allowed")

        if InputSanitizer.CONTROL_CHAR_PATTERN.search(value):
            raise ValueError("Control characters not allowed")

        if not allow_newlines and InputSanitizer.LINE_BREAK_PATTERN.search(value):
            raise ValueError("Line breaks not allowed")

        if max_length and len(value) > max_length:
            raise ValueError(f"Input exceeds max length of {max_length}")

        return value

    @staticmethod
    def sanitize_display_name(value: str, min_length: int = 2, max_length: int = 20) -> str:
        """Trim and validate a chat display name."""
        if not isinstance(value, str):
            raise ValueError("Input must be string")
        trimmed = value.strip()
        if len(trimmed) < min_length or len(trimmed) > max_length:
            raise ValueError(f"Username must be {min_length}-{max_length} characters")
        return InputSanitizer.sanitize_string(trimmed, max_length=max_length)

    @staticmethod
    def sanitize_message_text(value: str, max_length: Optional[int] = None) -> str:
        """Trim message text (newlines allowed). Empty result means nothing to send."""
        if not isinstance(value, str):
            raise ValueError("Input must be string")
        return InputSanitizer.sanitize_string(value.strip(), max_length=max_length, allow_newlines=True)
