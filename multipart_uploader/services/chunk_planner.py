# services/chunk_planner.py
import math
from typing import List

from ..models.upload_models import PartDescriptor


def count_parts(file_size: int, part_size: int) -> int:
    if file_size < 0:
        raise ValueError(f"file_size must be >= 0, got {file_size}")
    if part_size <= 0:
        raise ValueError(f"part_size must be > 0, got {part_size}")
    return math.ceil(file_size / part_size)


def plan(file_size: int, part_size: int) -> List[PartDescriptor]:
    """Split ``file_size`` bytes into ordered parts of ``part_size`` bytes.

    Part numbers start at 1 and the ranges tile the file with no gaps; only
    the last part may be shorter. A zero-byte file yields no parts.
    """
    total_parts = count_parts(file_size, part_size)
    parts = []
    for index in range(total_parts):
        offset = index * part_size
        parts.append(PartDescriptor(
            part_number=index + 1,
            byte_offset=offset,
            byte_length=min(part_size, file_size - offset),
        ))
    return parts


def read_part(path: str, part: PartDescriptor) -> bytes:
    """Read the bytes of ``part`` from the file at ``path``"""
    with open(path, "rb") as f:
        f.seek(part.byte_offset)
        data = f.read(part.byte_length)
    if len(data) != part.byte_length:
        raise ValueError(
            f"Short read for part {part.part_number}: expected {part.byte_length} bytes, got {len(data)}"
        )
    return data
