"""Cubemap view over a single cross-layout raster.

The raster is a horizontal cross of ``(dim + 2)``-sized cells::

          +----+
          | PY |
     +----+----+----+----+
     | NX | PZ | PX | NZ |
     +----+----+----+----+
          | NY |
          +----+

Each face is the ``dim x dim`` interior of its cell. The one-texel ring
around it belongs to the face too and is written by ``make_seamless()``
with the neighbouring faces' edge texels, so that bilinear filtering is
continuous across seams. The raster owns the pixels; faces are numpy
views into it.
"""

from __future__ import annotations

import enum

import numpy as np

from cmgen.errors import InputError


class Face(enum.IntEnum):
    PX = 0
    NX = 1
    PY = 2
    NY = 3
    PZ = 4
    NZ = 5


_FACE_NAMES = ("px", "nx", "py", "ny", "pz", "nz")

# OpenGL cubemap convention: direction = forward + s * u + t * v,
# s in [-1, 1] left to right, t in [-1, 1] bottom to top.
_FORWARD = np.array([
    [1, 0, 0], [-1, 0, 0],
    [0, 1, 0], [0, -1, 0],
    [0, 0, 1], [0, 0, -1],
], dtype=np.float64)

_U = np.array([
    [0, 0, -1], [0, 0, 1],
    [1, 0, 0], [1, 0, 0],
    [1, 0, 0], [-1, 0, 0],
], dtype=np.float64)

_V = np.array([
    [0, 1, 0], [0, 1, 0],
    [0, 0, -1], [0, 0, 1],
    [0, 1, 0], [0, 1, 0],
], dtype=np.float64)

# (column, row) of each face's cell in the cross
_CROSS_CELLS = {
    Face.PX: (2, 1),
    Face.NX: (0, 1),
    Face.PY: (1, 0),
    Face.NY: (1, 2),
    Face.PZ: (1, 1),
    Face.NZ: (3, 1),
}


def is_power_of_two(n: int) -> bool:
    return n > 0 and (n & (n - 1)) == 0


def face_name(face: Face) -> str:
    """Short name used in output file names (``px``, ``nx``, ...)."""
    return _FACE_NAMES[int(face)]


def _face_for_forward(vec: np.ndarray) -> Face:
    for f in Face:
        if np.array_equal(_FORWARD[f], vec):
            return f
    raise AssertionError(f"no cubemap face looks along {vec}")


class Cubemap:
    """Six-face view over a raster it does not own."""

    def __init__(self, raster: np.ndarray, dim: int):
        cell = dim + 2
        if raster.shape != (3 * cell, 4 * cell, 3):
            raise ValueError(
                f"raster of shape {raster.shape} cannot hold a cubemap of dimension {dim}"
            )
        self.raster = raster
        self.dim = dim
        self._origins = {
            f: (col * cell, row * cell) for f, (col, row) in _CROSS_CELLS.items()
        }
        # face index -> raster origin of its cell, for vectorized gathers
        self._origin_x = np.array([self._origins[f][0] for f in Face], dtype=np.int64)
        self._origin_y = np.array([self._origins[f][1] for f in Face], dtype=np.int64)

    # ------------------------------------------------------------------ #
    # Face access
    # ------------------------------------------------------------------ #

    def face(self, face: Face) -> np.ndarray:
        """Writable ``(dim, dim, 3)`` view of a face's interior."""
        ox, oy = self._origins[Face(face)]
        return self.raster[oy + 1:oy + 1 + self.dim, ox + 1:ox + 1 + self.dim]

    def face_with_border(self, face: Face) -> np.ndarray:
        """``(dim + 2, dim + 2, 3)`` view including the seam border."""
        ox, oy = self._origins[Face(face)]
        cell = self.dim + 2
        return self.raster[oy:oy + cell, ox:ox + cell]

    def faces(self) -> np.ndarray:
        """Copy of all faces stacked as ``(6, dim, dim, 3)``."""
        return np.stack([self.face(f) for f in Face])

    def set_faces(self, data: np.ndarray) -> None:
        for f in Face:
            self.face(f)[...] = data[f]

    # ------------------------------------------------------------------ #
    # Direction <-> texel mapping
    # ------------------------------------------------------------------ #

    def direction_for(self, face: Face, x, y) -> np.ndarray:
        """Unit direction through continuous texel coordinates ``(x, y)``.

        ``x`` and ``y`` are measured in texels from the top-left corner of
        the face, so the center of texel ``(i, j)`` is ``(i + 0.5, j + 0.5)``.
        Accepts scalars or broadcastable arrays.
        """
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        s = x * (2.0 / self.dim) - 1.0
        t = 1.0 - y * (2.0 / self.dim)
        d = (_FORWARD[face]
             + s[..., np.newaxis] * _U[face]
             + t[..., np.newaxis] * _V[face])
        return d / np.linalg.norm(d, axis=-1, keepdims=True)

    def texel_directions(self, face: Face) -> np.ndarray:
        """Directions through every texel center of a face, ``(dim, dim, 3)``."""
        c = np.arange(self.dim, dtype=np.float64) + 0.5
        xx, yy = np.meshgrid(c, c)
        return self.direction_for(face, xx, yy)

    def address_for(self, directions: np.ndarray):
        """Continuous ``(face, x, y)`` address of each direction.

        Faces are selected by the major axis; ``x, y`` are in ``[0, dim]``.
        """
        d = np.asarray(directions, dtype=np.float64)
        ax, ay, az = np.abs(d[..., 0]), np.abs(d[..., 1]), np.abs(d[..., 2])
        x_major = (ax > ay) & (ax > az)
        y_major = ~x_major & (ay > az)
        face = np.where(
            x_major, np.where(d[..., 0] > 0, int(Face.PX), int(Face.NX)),
            np.where(y_major, np.where(d[..., 1] > 0, int(Face.PY), int(Face.NY)),
                     np.where(d[..., 2] > 0, int(Face.PZ), int(Face.NZ))),
        ).astype(np.int64)
        x, y = self._project(d, face)
        return face, x, y

    def _project(self, d: np.ndarray, face: np.ndarray):
        ma = np.sum(d * _FORWARD[face], axis=-1)
        s = np.sum(d * _U[face], axis=-1) / ma
        t = np.sum(d * _V[face], axis=-1) / ma
        x = (s + 1.0) * (0.5 * self.dim)
        y = (1.0 - t) * (0.5 * self.dim)
        return x, y

    def texel_for(self, directions: np.ndarray):
        """Nearest texel ``(face, x, y)`` for each direction."""
        face, x, y = self.address_for(directions)
        last = self.dim - 1
        ix = np.clip(np.floor(x), 0, last).astype(np.int64)
        iy = np.clip(np.floor(y), 0, last).astype(np.int64)
        return face, ix, iy

    # ------------------------------------------------------------------ #
    # Sampling
    # ------------------------------------------------------------------ #

    def _gather(self, face, x, y) -> np.ndarray:
        # x, y are face-local and may address the border (-1 and dim)
        return self.raster[self._origin_y[face] + 1 + y, self._origin_x[face] + 1 + x]

    def sample_at(self, directions: np.ndarray) -> np.ndarray:
        """Point-sample the cubemap, returns ``(..., 3)``."""
        face, ix, iy = self.texel_for(directions)
        return self._gather(face, ix, iy)

    def filter_at(self, directions: np.ndarray) -> np.ndarray:
        """Bilinear sample; expects ``make_seamless()`` to have been run."""
        face, x, y = self.address_for(directions)
        fx = np.clip(x - 0.5, -0.5, self.dim - 0.5)
        fy = np.clip(y - 0.5, -0.5, self.dim - 0.5)
        x0 = np.floor(fx).astype(np.int64)
        y0 = np.floor(fy).astype(np.int64)
        wx = (fx - x0)[..., np.newaxis]
        wy = (fy - y0)[..., np.newaxis]
        c00 = self._gather(face, x0, y0)
        c10 = self._gather(face, x0 + 1, y0)
        c01 = self._gather(face, x0, y0 + 1)
        c11 = self._gather(face, x0 + 1, y0 + 1)
        top = c00 * (1 - wx) + c10 * wx
        bottom = c01 * (1 - wx) + c11 * wx
        return top * (1 - wy) + bottom * wy

    # ------------------------------------------------------------------ #
    # Seams
    # ------------------------------------------------------------------ #

    def make_seamless(self) -> None:
        """Fill every face's border ring from the neighbouring faces.

        Only interior texels are read, so running it again is a no-op.
        """
        dim = self.dim
        along = (np.arange(dim, dtype=np.float64) + 0.5) * (2.0 / dim) - 1.0
        last = dim - 1
        for f in Face:
            ox, oy = self._origins[f]
            fwd, u, v = _FORWARD[f], _U[f], _V[f]
            edges = (
                # (seam points, neighbour forward, raster rows, raster cols)
                (fwd - u + (-along)[:, None] * v, -u,
                 oy + 1 + np.arange(dim), np.full(dim, ox)),
                (fwd + u + (-along)[:, None] * v, u,
                 oy + 1 + np.arange(dim), np.full(dim, ox + dim + 1)),
                (fwd + along[:, None] * u + v, v,
                 np.full(dim, oy), ox + 1 + np.arange(dim)),
                (fwd + along[:, None] * u - v, -v,
                 np.full(dim, oy + dim + 1), ox + 1 + np.arange(dim)),
            )
            for seam, neighbour_axis, rows, cols in edges:
                g = np.full(dim, int(_face_for_forward(neighbour_axis)), dtype=np.int64)
                gx, gy = self._project(seam, g)
                ix = np.clip(np.floor(gx), 0, last).astype(np.int64)
                iy = np.clip(np.floor(gy), 0, last).astype(np.int64)
                self.raster[rows, cols] = self._gather(g, ix, iy)

            # each border corner meets two border texels and one interior texel
            r = self.raster
            for cy, cx, iy, ix in (
                (oy, ox, oy + 1, ox + 1),
                (oy, ox + dim + 1, oy + 1, ox + dim),
                (oy + dim + 1, ox, oy + dim, ox + 1),
                (oy + dim + 1, ox + dim + 1, oy + dim, ox + dim),
            ):
                r[cy, cx] = (r[iy, ix] + r[cy, ix] + r[iy, cx]) / 3.0


def create_cubemap(dim: int) -> Cubemap:
    """Allocate a zeroed cross raster and return a cubemap over it."""
    if not is_power_of_two(dim):
        raise InputError(f"cubemap size must be a power of two, got {dim}")
    cell = dim + 2
    raster = np.zeros((3 * cell, 4 * cell, 3), dtype=np.float32)
    return Cubemap(raster, dim)


def solid_angle(dim: int) -> np.ndarray:
    """Solid angle subtended by each texel of a face, ``(dim, dim)``.

    Integrates the cube-to-sphere Jacobian over the texel footprint; the
    six faces together cover exactly 4*pi.
    """
    inv = 1.0 / dim
    c = (np.arange(dim, dtype=np.float64) + 0.5) * 2.0 * inv - 1.0
    s, t = np.meshgrid(c, c)
    x0, y0 = s - inv, t - inv
    x1, y1 = s + inv, t + inv

    def area(x, y):
        return np.arctan2(x * y, np.sqrt(x * x + y * y + 1.0))

    return area(x0, y0) - area(x0, y1) - area(x1, y0) + area(x1, y1)
