"""
Data Sanitization Module
Masks secrets, signatures and contact details before they reach a log line
"""

import re
import json
import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class DataSanitizer:
    """Sanitization for gateway payloads, webhook bodies and player profiles"""

    EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")

    # Sensitive field names to mask in dictionaries
    SENSITIVE_FIELDS = {
        "api_key",
        "apikey",
        "secret",
        "secret_key",
        "sign",
        "signature",
        "x-signature",
        "authorization",
        "email",
    }

    @classmethod
    def _is_sensitive(cls, key: Any) -> bool:
        key_lower = str(key).lower()
        return key_lower in cls.SENSITIVE_FIELDS or any(
            field in key_lower for field in ("secret", "api_key", "signature")
        )

    @classmethod
    def sanitize_text(cls, text: str) -> str:
        """Mask e-mail addresses embedded in free text"""
        return cls.EMAIL_PATTERN.sub(lambda match: cls.mask_email(match.group(0)), text)

    @classmethod
    def sanitize_dict(cls, data: Dict[str, Any], deep: bool = True) -> Dict[str, Any]:
        """
        Sanitize dictionary by masking sensitive fields

        Args:
            data: Dictionary to sanitize
            deep: Whether to recursively sanitize nested structures

        Returns:
            Sanitized copy, the input is never modified
        """
        if not isinstance(data, dict):
            return data

        sanitized = {}
        for key, value in data.items():
            if cls._is_sensitive(key):
                if isinstance(value, str) and len(value) > 8:
                    sanitized[key] = f"[REDACTED:{value[:2]}***{value[-2:]}]"
                else:
                    sanitized[key] = "[REDACTED]"
            elif deep and isinstance(value, dict):
                sanitized[key] = cls.sanitize_dict(value, deep=True)
            elif deep and isinstance(value, list):
                sanitized[key] = cls.sanitize_list(value)
            elif isinstance(value, str):
                sanitized[key] = cls.sanitize_text(value)
            else:
                sanitized[key] = value
        return sanitized

    @classmethod
    def sanitize_list(cls, data: List[Any]) -> List[Any]:
        result = []
        for item in data:
            if isinstance(item, dict):
                result.append(cls.sanitize_dict(item, deep=True))
            elif isinstance(item, list):
                result.append(cls.sanitize_list(item))
            elif isinstance(item, str):
                result.append(cls.sanitize_text(item))
            else:
                result.append(item)
        return result

    @classmethod
    def mask_email(cls, email: Optional[str]) -> str:
        if not email:
            return "[NO_EMAIL]"
        local, _, domain = email.partition("@")
        if not domain:
            return "[REDACTED]"
        return f"{local[:1]}***@{domain}"

    @classmethod
    def mask_api_key(cls, api_key: Optional[str], show_chars: int = 2) -> str:
        """
        Safely mask API key for logging

        Args:
            api_key: API key to mask
            show_chars: Number of characters to show at start/end

        Returns:
            Masked API key safe for logging
        """
        if not api_key:
            return "[NO_API_KEY]"

        if len(api_key) <= show_chars * 2:
            return "[REDACTED]"

        return f"[API_KEY:{api_key[:show_chars]}***{api_key[-show_chars:]}]"


# Global instance for application use
data_sanitizer = DataSanitizer()


def sanitize_for_log(data: Any) -> str:
    """Sanitize any data for safe logging"""
    if isinstance(data, dict):
        return json.dumps(data_sanitizer.sanitize_dict(data), default=str)
    elif isinstance(data, list):
        return json.dumps(data_sanitizer.sanitize_list(data), default=str)
    else:
        return data_sanitizer.sanitize_text(str(data))


def mask_api_key_safe(api_key: Optional[str]) -> str:
    """Safely mask API key for any logging"""
    return data_sanitizer.mask_api_key(api_key)


def mask_signature(signature: Optional[str]) -> str:
    if not signature:
        return "[NO_SIGNATURE]"
    return f"{signature[:6]}…" if len(signature) > 6 else "[REDACTED]"
