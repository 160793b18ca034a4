from __future__ import annotations
from typing import Optional

BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
MAX_KEY = 36 * 36 - 1  # "ZZ"

def decode_key(token: Optional[str]) -> int:
    """
    Two-char base-36 token -> key (0..1295), case-insensitive.
    Anything that is not exactly two alphanumerics decodes to 0, which the
    format treats as a placeholder.
    """
    if not token or len(token) != 2 or not token.isascii():
        return 0
    hi = BASE36.find(token[0].upper())
    lo = BASE36.find(token[1].upper())
    if hi < 0 or lo < 0:
        return 0
    return hi * 36 + lo

def encode_key(key: int) -> str:
    if not 0 <= key <= MAX_KEY:
        raise ValueError(f"key out of range: {key}")
    return BASE36[key // 36] + BASE36[key % 36]
