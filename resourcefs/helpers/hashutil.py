from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING, BinaryIO

if TYPE_CHECKING:
    from hashlib._hashlib import HASH

BUFFER_SIZE = 32768


def _hash(fh: BinaryIO, ctx: HASH | list[HASH]) -> tuple[str]:
    if not isinstance(ctx, list):
        ctx = [ctx]

    ctx = [c() for c in ctx]
    data = fh.read(BUFFER_SIZE)
    while data:
        for c in ctx:
            c.update(data)
        data = fh.read(BUFFER_SIZE)

    return tuple(c.hexdigest() for c in ctx)


def sha256(fh: BinaryIO) -> str:
    return _hash(fh, hashlib.sha256)[0]
