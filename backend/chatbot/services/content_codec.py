"""Reversible obfuscation of stored message bodies.

Each UTF-16 code unit of the text is XORed with the secret's code units
(repeated cyclically); the scrambled text is UTF-8 encoded and
base64-encoded so it stores as plain ASCII. Working on code units rather
than UTF-8 bytes keeps the stored format identical to rows written by the
web client's own encryption helper, so both decode each other's rows.

This only hides content from casual inspection of the table; the secret is
static and shared, so it offers no confidentiality against anyone who can
read the process configuration.
"""

import base64
import binascii

import structlog

from chatbot.config import settings

logger = structlog.get_logger()


def _code_units(text: str) -> list[int]:
    data = text.encode("utf-16-le", "surrogatepass")
    return [int.from_bytes(data[i:i + 2], "little") for i in range(0, len(data), 2)]


def _from_code_units(units: list[int]) -> str:
    data = b"".join(unit.to_bytes(2, "little") for unit in units)
    return data.decode("utf-16-le", "surrogatepass")


def _xor(units: list[int], key: list[int]) -> list[int]:
    key_length = len(key)
    return [unit ^ key[i % key_length] for i, unit in enumerate(units)]


class ContentCodec:
    """Encode/decode message content. Never raises: failures pass the input through."""

    def __init__(self, secret: str | None = None) -> None:
        self.secret = settings.message_secret_key if secret is None else secret

    def _key(self) -> list[int]:
        key = _code_units(self.secret)
        if not key:
            raise ValueError("secret key is empty")
        return key

    def encode(self, plaintext: str) -> str:
        if not plaintext:
            return plaintext
        try:
            plaintext.encode("utf-8")  # lone surrogates are not storable text
            scrambled = _from_code_units(_xor(_code_units(plaintext), self._key()))
            # XOR can split a surrogate pair; surrogatepass keeps those units intact
            return base64.b64encode(scrambled.encode("utf-8", "surrogatepass")).decode("ascii")
        except (ValueError, UnicodeError) as e:
            logger.error("content_codec_encode_failed", error=str(e))
            return plaintext

    def decode(self, token: str) -> str:
        if not token:
            return token
        try:
            raw = base64.b64decode(token.encode("ascii"), validate=True)
            scrambled = raw.decode("utf-8", "surrogatepass")
            plaintext = _from_code_units(_xor(_code_units(scrambled), self._key()))
            plaintext.encode("utf-8")  # a wrong key can leave unpaired surrogates
            return plaintext
        except (ValueError, UnicodeError, binascii.Error) as e:
            # Rows written before obfuscation was enabled come back as-is
            logger.warning("content_codec_decode_failed", error=str(e))
            return token
