"""
Payload codecs.

A codec is any callable turning record bytes into a payload. Failures are
reported as DecodeError so the consumer loop can treat them uniformly.
Encoders are the inverse and are used when writing snapshots.
"""

import json
from typing import Any, Callable, Optional, Type

from cryptography.fernet import Fernet, InvalidToken

from streamstate.core.errors import DecodeError

Codec = Callable[[bytes], Any]
Encoder = Callable[[Any], bytes]


def bytes_codec(data: bytes) -> bytes:
    return data


def text_codec(data: bytes) -> str:
    """Decode UTF-8 text."""
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecodeError(f"Payload is not valid UTF-8: {e}") from e


def json_codec(data: bytes) -> Any:
    """Decode a UTF-8 JSON document."""
    try:
        return json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError(f"Payload is not valid JSON: {e}") from e


def bytes_encoder(value: bytes) -> bytes:
    return value


def text_encoder(value: str) -> bytes:
    return value.encode("utf-8")


def json_encoder(value: Any) -> bytes:
    return json.dumps(value, separators=(",", ":"), sort_keys=True).encode("utf-8")


def codec_for(payload_type: Optional[Type] = None) -> Codec:
    """
    Pick a codec for a payload type.

    Args:
        payload_type: str for text, bytes for raw payloads, anything else
            (or None) for JSON

    Returns:
        Codec
    """
    if payload_type is str:
        return text_codec
    if payload_type is bytes:
        return bytes_codec
    return json_codec


def encoder_for(payload_type: Optional[Type] = None) -> Encoder:
    """
    Pick the encoder matching codec_for(payload_type).

    With no payload type, str values are written as text and everything else
    as JSON, so a repository of JSON strings round-trips through text_codec.
    """
    if payload_type is str:
        return text_encoder
    if payload_type is bytes:
        return bytes_encoder
    if payload_type is None:
        return _infer_encoder
    return json_encoder


def encoder_matching(codec: Codec) -> Encoder:
    """
    Pick the encoder that is the inverse of a built-in codec.

    An EncryptedCodec gets an EncryptingEncoder with the same key around the
    inverse of its inner codec. Unknown codecs get the inferring encoder.
    """
    if isinstance(codec, EncryptedCodec):
        return EncryptingEncoder(codec.key, inner=encoder_matching(codec.inner))
    if codec is json_codec:
        return json_encoder
    if codec is text_codec:
        return text_encoder
    if codec is bytes_codec:
        return bytes_encoder
    return _infer_encoder


def _infer_encoder(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    if isinstance(value, str):
        return value.encode("utf-8")
    return json_encoder(value)


class EncryptedCodec:
    """
    Codec for Fernet-encrypted payloads.

    Decrypts the record bytes and hands the plaintext to an inner codec.
    """

    def __init__(self, key: bytes, inner: Codec = json_codec):
        """
        Args:
            key: Fernet key (urlsafe base64, 32 bytes)
            inner: Codec applied to the decrypted bytes
        """
        self.key = key
        self.inner = inner
        self._fernet = Fernet(key)

    def __call__(self, data: bytes) -> Any:
        try:
            plaintext = self._fernet.decrypt(data)
        except InvalidToken as e:
            raise DecodeError("Payload could not be decrypted") from e
        return self.inner(plaintext)

    def encrypt(self, data: bytes) -> bytes:
        return self._fernet.encrypt(data)


class EncryptingEncoder:
    """Encoder producing payloads readable by EncryptedCodec."""

    def __init__(self, key: bytes, inner: Encoder = json_encoder):
        self._fernet = Fernet(key)
        self._inner = inner

    def __call__(self, value: Any) -> bytes:
        return self._fernet.encrypt(self._inner(value))
