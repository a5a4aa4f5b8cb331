"""Writing cubemap-derived images in the configured output layout.

Every stage hands its cubemap to ``emit_cubemap``, which is the only place
that branches on ``OutputType``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from cmgen.codec.image_io import save_image
from cmgen.codec.rgbm import encode_rgbm
from cmgen.config import OutputType, PipelineConfig
from cmgen.container.compression import CompressionConfig, compress_texture
from cmgen.container.ktx import RGBA, KtxBlobIndex, KtxBundle
from cmgen.cubemap.cubemap import Cubemap, Face, face_name
from cmgen.cubemap.layouts import cubemap_to_equirectangular, cubemap_to_octahedron


def new_cubemap_bundle(num_mips: int, dim: int) -> KtxBundle:
    """Empty cubemap container for RGBM ``UNSIGNED_BYTE``/``RGBA`` faces."""
    bundle = KtxBundle(num_mips, 1, True)
    bundle.info.gl_type_size = 4
    bundle.info.pixel_width = dim
    bundle.info.pixel_height = dim
    bundle.info.pixel_depth = 0
    return bundle


def export_ktx_faces(bundle: KtxBundle, mip_level: int, cm: Cubemap,
                     compression: Optional[CompressionConfig] = None) -> None:
    """Store the six faces of ``cm`` as RGBM blobs of ``mip_level``."""
    info = bundle.info
    if compression is not None:
        # compressed textures: the internal format alone describes the data
        info.gl_type_size = 1
        info.gl_format = 0
        info.gl_base_internal_format = RGBA

    for face in Face:
        index = KtxBlobIndex(mip_level, 0, int(face))
        rgbm = encode_rgbm(cm.face(face))
        if compression is not None:
            bundle.set_blob(index, compress_texture(compression, rgbm))
            info.gl_internal_format = compression.gl_internal_format
        else:
            bundle.set_blob(index, rgbm.tobytes())


def write_ktx(bundle: KtxBundle, path: Path) -> Path:
    path = Path(path)
    path.write_bytes(bundle.serialize())
    return path


def emit_cubemap(
    cm: Cubemap,
    output_dir: Path,
    config: PipelineConfig,
    *,
    face_prefix: str,
    flat_name: str,
    output_type: Optional[OutputType] = None,
    bundle: Optional[KtxBundle] = None,
    mip_level: int = 0,
    compression: Optional[CompressionConfig] = None,
) -> list[Path]:
    """Write ``cm`` in one output layout and return the files written.

    ``FACES`` writes ``<face_prefix><face><ext>`` per face, ``EQUIRECT``
    and ``OCTAHEDRON`` write a single ``<flat_name><ext>``, ``KTX`` stores
    the faces into ``bundle`` at ``mip_level`` and writes nothing.
    """
    output_type = output_type or config.output_type
    ext = config.image_format.extension
    output_dir = Path(output_dir)

    if output_type is OutputType.KTX:
        assert bundle is not None, "KTX output needs a bundle to collect faces into"
        export_ktx_faces(bundle, mip_level, cm, compression)
        return []

    if output_type is OutputType.EQUIRECT:
        path = output_dir / f"{flat_name}{ext}"
        save_image(path, config.image_format, cubemap_to_equirectangular(cm))
        return [path]

    if output_type is OutputType.OCTAHEDRON:
        path = output_dir / f"{flat_name}{ext}"
        save_image(path, config.image_format, cubemap_to_octahedron(cm))
        return [path]

    written = []
    for face in Face:
        path = output_dir / f"{face_prefix}{face_name(face)}{ext}"
        save_image(path, config.image_format, cm.face(face))
        written.append(path)
    return written
