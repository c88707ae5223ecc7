"""Wire codec for the stored note collection.

The collection is stored as compact JSON (an array of note records). Large
payloads are zlib-compressed; there is no format flag, readers discover
compression by trying to inflate first.
"""
import json
import logging
import zlib
from typing import List, Sequence, Tuple

from stickynotes.exceptions import CompressionError, DecodeError, EncodeError
from stickynotes.models.schema import Note

logger = logging.getLogger(__name__)

COMPRESSION_LEVEL = 6


def encode_notes(notes: Sequence[Note]) -> bytes:
    """Serialize notes to compact UTF-8 JSON.

    Raises:
        EncodeError: If any note cannot be serialized
    """
    try:
        records = [note.to_record() for note in notes]
        return json.dumps(records, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    except (TypeError, ValueError, UnicodeError) as e:
        raise EncodeError(
            "Failed to encode note collection", note_count=len(notes), original_error=e
        )


def encode_notes_best_effort(notes: Sequence[Note]) -> Tuple[bytes, int]:
    """Serialize whatever notes can be serialized.

    Returns:
        The encoded payload and the number of notes that had to be dropped.
    """
    records = []
    dropped = 0
    for note in notes:
        try:
            record = note.to_record()
            json.dumps(record, ensure_ascii=False).encode("utf-8")
        except (TypeError, ValueError, UnicodeError) as e:
            dropped += 1
            logger.warning(f"Dropping unencodable note {getattr(note, 'id', '?')}: {e}")
            continue
        records.append(record)
    payload = json.dumps(records, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return payload, dropped


def compress(data: bytes) -> bytes:
    """zlib-compress a payload.

    Raises:
        CompressionError: If zlib rejects the input
    """
    try:
        return zlib.compress(data, COMPRESSION_LEVEL)
    except (zlib.error, MemoryError) as e:
        raise CompressionError(
            "Failed to compress payload", byte_size=len(data), original_error=e
        )


def compress_if_needed(data: bytes, threshold: int) -> bytes:
    """Compress ``data`` if it is larger than ``threshold`` bytes.

    Compression failures are logged and the raw bytes are returned.
    """
    if len(data) <= threshold:
        return data
    try:
        compressed = compress(data)
    except CompressionError as e:
        logger.warning(f"Compression skipped: {e}")
        return data
    logger.info(f"Compressed payload: {len(data)} -> {len(compressed)} bytes")
    return compressed


def decode_notes(data: bytes) -> List[Note]:
    """Decode an uncompressed payload into notes.

    Raises:
        DecodeError: If the payload is not a JSON array of note records
    """
    try:
        payload = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError("Stored payload is not valid JSON", byte_size=len(data), original_error=e)
    if not isinstance(payload, list):
        raise DecodeError(
            f"Stored payload must be a JSON array, got {type(payload).__name__}",
            byte_size=len(data),
        )
    try:
        return [Note.from_record(record) for record in payload]
    except ValueError as e:
        raise DecodeError("Stored payload has an invalid note record", byte_size=len(data), original_error=e)


def decode_payload(data: bytes) -> List[Note]:
    """Decode stored bytes, trying the compressed form first.

    Step one inflates and decodes; if the bytes are not compressed (or the
    inflated bytes do not decode) the raw bytes are decoded instead.

    Raises:
        DecodeError: If neither form decodes
    """
    try:
        inflated = zlib.decompress(data)
    except zlib.error:
        inflated = None
    if inflated is not None:
        try:
            return decode_notes(inflated)
        except DecodeError as e:
            logger.debug(f"Inflated payload did not decode, trying raw bytes: {e}")
    return decode_notes(data)
