"""
Input Validation Utilities.

Validation rules for everything a caller can write into the gallery. The same
rules run on the server (before any insert) and in the client library (before
any network call), so an upload that would be rejected never leaves the
client.

Key Components:
- `InputValidator`: Static validators for strings, person names, http(s)
  URLs, image data URIs and the combined `generated_image` field.
- `MAX_IMAGE_BYTES`: Upload size limit (5 MB of decoded image data).

All failures raise `core.exceptions.ValidationError`.
"""

import re
import base64
import binascii
from typing import List
from urllib.parse import urlparse

from core.logging_config import get_logger
from core.exceptions import ValidationError

logger = get_logger(__name__)

MAX_IMAGE_BYTES = 5 * 1024 * 1024
MAX_PERSON_NAME_LENGTH = 100


class InputValidator:
    """Input validation for gallery writes"""

    DATA_URI_PATTERN = re.compile(
        r"^data:(?P<mime>image/[a-zA-Z0-9.+-]+);base64,(?P<payload>[A-Za-z0-9+/=\s]*)$"
    )

    XSS_PATTERNS = [
        re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL),
        re.compile(r"javascript:", re.IGNORECASE),
        re.compile(r"on\w+\s*=", re.IGNORECASE),
        re.compile(r"<iframe[^>]*>", re.IGNORECASE),
    ]

    @staticmethod
    def sanitize_string(value: str, field: str = "input", max_length: int = 1000) -> str:
        """Trim and check a free-text string"""
        if not isinstance(value, str):
            raise ValidationError(field, value, "Must be a string")

        value = value.strip()

        if len(value) > max_length:
            raise ValidationError(
                field, value, f"Must be no more than {max_length} characters"
            )

        for pattern in InputValidator.XSS_PATTERNS:
            if pattern.search(value):
                logger.warning(f"Potential XSS attempt detected: {value[:100]}")
                raise ValidationError(
                    field, value, "Contains potentially dangerous content"
                )

        return value

    @staticmethod
    def validate_person_name(name: str) -> str:
        """Validate the display name of the photo's subject"""
        name = InputValidator.sanitize_string(
            name, field="personName", max_length=MAX_PERSON_NAME_LENGTH
        )
        if not name:
            raise ValidationError("personName", name, "Person name is required")
        return name

    @staticmethod
    def validate_url(url: str, allowed_schemes: List[str] = None) -> str:
        """Validate an absolute http(s) URL"""
        if allowed_schemes is None:
            allowed_schemes = ["http", "https"]

        parsed = urlparse(url)
        if parsed.scheme not in allowed_schemes:
            raise ValidationError(
                "generatedImage",
                url,
                f"URL scheme must be one of: {', '.join(allowed_schemes)}",
            )
        if not parsed.netloc:
            raise ValidationError("generatedImage", url, "URL must include a valid domain")
        return url

    @staticmethod
    def validate_data_uri(data_uri: str, max_bytes: int = MAX_IMAGE_BYTES) -> str:
        """Validate an inline base64 image and its decoded size"""
        match = InputValidator.DATA_URI_PATTERN.match(data_uri)
        if not match:
            raise ValidationError(
                "generatedImage", data_uri, "Must be a base64 encoded image data URI"
            )

        payload = re.sub(r"\s", "", match.group("payload"))
        # Cheap upper bound before decoding anything large
        if len(payload) * 3 // 4 > max_bytes + 2:
            raise ValidationError(
                "generatedImage", data_uri, f"Image must not exceed {max_bytes} bytes"
            )

        try:
            decoded = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValidationError("generatedImage", data_uri, f"Invalid base64 data: {e}")

        if not decoded:
            raise ValidationError("generatedImage", data_uri, "Image data is empty")
        if len(decoded) > max_bytes:
            raise ValidationError(
                "generatedImage", data_uri, f"Image must not exceed {max_bytes} bytes"
            )

        return data_uri

    @staticmethod
    def validate_generated_image(value: str) -> str:
        """Accept either a remote image URL or an inline data URI"""
        if not isinstance(value, str) or not value.strip():
            raise ValidationError("generatedImage", value, "Generated image is required")

        value = value.strip()
        if value.startswith("data:"):
            return InputValidator.validate_data_uri(value)
        return InputValidator.validate_url(value)
