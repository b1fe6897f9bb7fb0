"""Transfer message codec

Two renditions of the same envelope:

- binary channels: the envelope is CBOR-encoded with cbor2, so chunk data
  stays native `bytes`.
- structured-only channels: the envelope is kept as a dict, and every
  `bytes` value is replaced by a list of byte values. The receiver turns
  `data` lists back into `bytes`.
"""

from typing import Any, Dict

import cbor2

BINARY_FIELDS = frozenset({"data"})


class CodecError(Exception):
    """Base error for the transfer codec"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class EncodeError(CodecError):
    pass


class DecodeError(CodecError):
    pass


def _to_numeric(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return list(bytes(value))
    if isinstance(value, dict):
        return {key: _to_numeric(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_numeric(item) for item in value]
    return value


def _from_numeric(value: Any) -> Any:
    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            if key in BINARY_FIELDS and isinstance(item, list):
                try:
                    result[key] = bytes(item)
                except (TypeError, ValueError) as e:
                    raise DecodeError(f"invalid byte array in '{key}': {e}")
            else:
                result[key] = _from_numeric(item)
        return result
    if isinstance(value, list):
        return [_from_numeric(item) for item in value]
    return value


def encode_message(message: Dict[str, Any], binary: bool) -> Any:
    """Encode an envelope for the channel

    Args:
        message: the envelope dict
        binary: whether the channel carries raw bytes

    Returns:
        CBOR bytes when `binary`, otherwise a JSON-compatible dict

    Raises:
        EncodeError: if the message cannot be encoded
    """
    if binary:
        try:
            return cbor2.dumps(message)
        except Exception as e:
            raise EncodeError(f"CBOR encoding failed: {e}")
    return _to_numeric(message)


def decode_message(payload: Any) -> Dict[str, Any]:
    """Decode a channel payload produced by `encode_message`

    Raises:
        DecodeError: if the payload is not a valid envelope
    """
    if isinstance(payload, (bytes, bytearray, memoryview)):
        try:
            message = cbor2.loads(bytes(payload))
        except Exception as e:
            raise DecodeError(f"CBOR decoding failed: {e}")
    else:
        message = _from_numeric(payload)
    if not isinstance(message, dict):
        raise DecodeError("expected map")
    return message
