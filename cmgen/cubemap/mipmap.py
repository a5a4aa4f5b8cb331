"""Box-filtered cubemap mip chain."""

from __future__ import annotations

from cmgen.cubemap.cubemap import Cubemap, Face, create_cubemap


def downsample_box_filter(dst: Cubemap, src: Cubemap) -> None:
    """Average 2x2 texel blocks of each ``src`` face into ``dst``.

    Works face by face; seams are restored by ``make_seamless()``.
    """
    dim = dst.dim
    assert src.dim == 2 * dim, f"cannot box filter {src.dim} down to {dim}"
    for face in Face:
        block = src.face(face).reshape(dim, 2, dim, 2, 3)
        dst.face(face)[...] = block.mean(axis=(1, 3), dtype="float64")


def generate_mipmaps(base: Cubemap) -> list[Cubemap]:
    """Return ``[base, base/2, ..., 1x1]``; every new level is made seamless."""
    levels = [base]
    dim = base.dim
    while dim > 1:
        dim >>= 1
        dst = create_cubemap(dim)
        downsample_box_filter(dst, levels[-1])
        dst.make_seamless()
        levels.append(dst)
    return levels
