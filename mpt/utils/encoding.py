"""
Nibble, hex-prefix and RLP encoding for Merkle Patricia Tries.
"""
import rlp
from rlp.exceptions import RLPException


def bytes_to_nibbles(b: bytes) -> tuple[int, ...]:
    """Convert a byte string into a nibble tuple."""
    res = []
    for byte in b:
        res.append(byte >> 4)
        res.append(byte & 15)
    return tuple(res)


def nibbles_to_bytes(nibbles: tuple[int, ...]) -> bytes:
    """Convert a nibble tuple into a byte string."""
    if len(nibbles) % 2:
        raise ValueError("Nibbles must be of even length")
    if any(n < 0 or n > 15 for n in nibbles):
        raise ValueError("Nibbles must be in range 0..15")
    res = bytearray()
    for i in range(0, len(nibbles), 2):
        res.append((nibbles[i] << 4) + nibbles[i + 1])
    return bytes(res)


def common_prefix_length(a: tuple[int, ...], b: tuple[int, ...]) -> int:
    """Length of the longest shared prefix of two nibble tuples."""
    length = 0
    for x, y in zip(a, b):
        if x != y:
            break
        length += 1
    return length


def hex_prefix_encode(nibbles: tuple[int, ...], is_leaf: bool) -> bytes:
    """
    Hex-prefix encode a nibble array.
    The flag indicates if the node is a leaf (terminator) node.
    """
    flag = (2 if is_leaf else 0) + (len(nibbles) % 2)

    if flag % 2 == 1:  # Odd number of nibbles
        prefixed_nibbles = (flag,) + tuple(nibbles)
    else:  # Even number of nibbles
        prefixed_nibbles = (flag, 0) + tuple(nibbles)

    return nibbles_to_bytes(prefixed_nibbles)


def hex_prefix_decode(encoded_bytes: bytes) -> tuple[tuple[int, ...], bool]:
    """
    Decode a hex-prefix encoded byte string.
    Returns a tuple of (nibbles, is_leaf).

    Raises ValueError for empty input, a flag nibble above 3 or a
    non-zero padding nibble.
    """
    if not encoded_bytes:
        raise ValueError("Hex-prefix data is empty")

    nibbles = bytes_to_nibbles(encoded_bytes)
    flag = nibbles[0]
    if flag > 3:
        raise ValueError(f"Invalid hex-prefix flag nibble: {flag}")

    is_leaf = flag >= 2

    if flag % 2 == 1:  # Odd number of nibbles
        return nibbles[1:], is_leaf
    if nibbles[1] != 0:
        raise ValueError("Non-zero padding nibble in even-length path")
    return nibbles[2:], is_leaf


def rlp_encode(item) -> bytes:
    """RLP-encode a byte string or a (nested) list of byte strings."""
    return rlp.encode(item)


def rlp_decode(data: bytes):
    """
    Strictly decode RLP data into a byte string or nested lists.

    Raises ValueError if the data is not a single canonical RLP item.
    """
    try:
        return rlp.decode(data, strict=True)
    except RLPException as e:
        raise ValueError(f"Invalid RLP data: {e}") from e
