"""Stage orchestration: environment in, IBL assets out.

Stages run in a fixed order on one mip chain built from the input::

    load / synthesize -> mirror -> seamless -> mip chain
        -> SH -> importance-sampling mips -> roughness prefilter
        -> diffuse irradiance -> face extraction

The DFG look-up table does not depend on the environment and can be
generated on its own.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from math import log2
from pathlib import Path
from typing import Optional

import numpy as np

from cmgen.codec.image_io import load_image, save_image
from cmgen.config import ImageFormat, OutputType, PipelineConfig, ShFile
from cmgen.container.compression import CompressionConfig, parse_compression
from cmgen.cubemap.cubemap import Cubemap, create_cubemap
from cmgen.cubemap.layouts import (
    clamp_radiance,
    cross_to_cubemap,
    equirectangular_to_cubemap,
    generate_uv_grid,
    mirror_cubemap,
    validate_input_raster,
)
from cmgen.cubemap.mipmap import generate_mipmaps
from cmgen.emit import emit_cubemap, export_ktx_faces, new_cubemap_bundle, write_ktx
from cmgen.errors import InputError
from cmgen.ibl.filters import (
    brdf_lobe,
    dfg,
    diffuse_irradiance,
    lod_to_linear_roughness,
    prefilter_sample_counts,
    roughness_filter,
)
from cmgen.sh.spherical_harmonics import (
    compute_irradiance_sh3_bands,
    compute_sh,
    format_sh,
    format_sh_metadata,
    render_prescaled_sh3_bands,
    render_sh,
)

_DFG_TEXT_SUFFIXES = {".h", ".hpp", ".c", ".cpp", ".inc", ".txt"}

_SYNTHETIC_PATTERNS = (
    (re.compile(r"^uv(\d+)"), "uv"),
    (re.compile(r"^u(\d+)"), "u"),
    (re.compile(r"^v(\d+)"), "v"),
    (re.compile(r"^brdf(\d+)"), "brdf"),
)


@dataclass
class PipelineResult:
    levels: list[Cubemap] = field(default_factory=list)
    sh: Optional[np.ndarray] = None
    sh_bands: int = 0
    outputs: list[Path] = field(default_factory=list)


def _log(config: PipelineConfig, message: str) -> None:
    if not config.quiet:
        print(message)


def _output_dir(directory: Path, basename: str) -> Path:
    out = Path(directory) / basename
    out.mkdir(parents=True, exist_ok=True)
    return out


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

def synthesize_environment(name: str, dim: int) -> Cubemap:
    """Procedural environment for a non-existent input named ``name``.

    ``uvN``, ``uN`` and ``vN`` produce UV grids, ``brdfN`` the GGX lobe for
    linear roughness ``(N / log2(dim))^2``; anything else a 1x1 UV grid.
    """
    cm = create_cubemap(dim)
    for pattern, kind in _SYNTHETIC_PATTERNS:
        match = pattern.match(name)
        if match is None:
            continue
        p = int(match.group(1))
        if kind == "uv":
            generate_uv_grid(cm, p, p)
        elif kind == "u":
            generate_uv_grid(cm, p, 1)
        elif kind == "v":
            generate_uv_grid(cm, 1, p)
        else:
            if dim < 2:
                raise InputError(f"cannot render a BRDF lobe into a {dim}x{dim} cubemap")
            brdf_lobe(cm, (p / log2(dim)) ** 2)
        return cm
    generate_uv_grid(cm, 1, 1)
    return cm


def load_environment(path: Path, config: PipelineConfig) -> Cubemap:
    """Base cubemap for ``path``: decoded from disk, or synthesized."""
    path = Path(path)
    dim = config.base_size
    if not path.exists():
        _log(config, f"{path} does not exist; generating UV grid...")
        return synthesize_environment(path.stem, dim)

    _log(config, "Decoding image...")
    raster = load_image(path)
    layout = validate_input_raster(raster)
    clamp_radiance(raster)

    cm = create_cubemap(dim)
    if layout == "cross":
        _log(config, "Loading cross...")
        cross_to_cubemap(cm, raster)
    else:
        _log(config, "Converting equirectangular image...")
        equirectangular_to_cubemap(cm, raster)
    return cm


def build_mip_chain(base: Cubemap, config: PipelineConfig) -> list[Cubemap]:
    if config.mirror:
        _log(config, "Mirroring...")
        mirrored = create_cubemap(base.dim)
        mirror_cubemap(mirrored, base)
        base = mirrored
    else:
        _log(config, "Skipped mirroring.")
    base.make_seamless()
    return generate_mipmaps(base)


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

def spherical_harmonics(basename: str, cm: Cubemap, config: PipelineConfig,
                        result: PipelineResult) -> None:
    bands = 3 if config.sh_shader else config.sh_bands
    if config.sh_shader:
        sh = compute_irradiance_sh3_bands(cm)
    else:
        sh = compute_sh(cm, bands, config.sh_irradiance)

    text = format_sh(sh, bands, config.sh_irradiance, config.sh_shader)
    if config.sh_output:
        print(text, end="")

    if config.sh_file is not ShFile.NONE or config.debug:
        dim = config.size or cm.dim
        preview = create_cubemap(dim)
        if config.sh_shader:
            render_prescaled_sh3_bands(preview, sh)
        else:
            render_sh(preview, sh, bands)

        output_dir = config.sh_filename.parent if config.sh_filename else Path(".")
        output_dir.mkdir(parents=True, exist_ok=True)

        if config.sh_file is ShFile.CROSS:
            fmt = ImageFormat.from_filename(config.sh_filename.name)
            save_image(config.sh_filename, fmt, preview.raster)
            result.outputs.append(config.sh_filename)
        elif config.sh_file is ShFile.TEXT:
            config.sh_filename.write_text(text)
            result.outputs.append(config.sh_filename)

        if config.debug:
            kind = "_i" if config.sh_irradiance else "_r"
            path = output_dir / f"{basename}_sh{kind}.hdr"
            save_image(path, ImageFormat.HDR, preview.raster)
            result.outputs.append(path)

            # the other variant (radiance <-> irradiance) for comparison
            other = compute_sh(cm, bands, not config.sh_irradiance)
            render_sh(preview, other, bands)
            kind = "_r" if config.sh_irradiance else "_i"
            path = output_dir / f"{basename}_sh{kind}.hdr"
            save_image(path, ImageFormat.HDR, preview.raster)
            result.outputs.append(path)

    result.sh = sh
    result.sh_bands = bands


def ibl_mipmap_prefilter(basename: str, levels: list[Cubemap], config: PipelineConfig,
                         result: PipelineResult) -> None:
    """Write the source mip chain used for prefiltered importance sampling."""
    output_dir = _output_dir(config.is_mipmap_dir, basename)
    # a KTX container is only produced for the prefiltered chain
    output_type = OutputType.FACES if config.output_type is OutputType.KTX else None
    for level, cm in enumerate(levels):
        if config.debug:
            path = output_dir / f"{basename}_is_m{level}.hdr"
            save_image(path, ImageFormat.HDR, cm.raster)
            result.outputs.append(path)
        result.outputs += emit_cubemap(
            cm, output_dir, config,
            face_prefix=f"is_m{level}_", flat_name=f"is_m{level}",
            output_type=output_type,
        )


def ibl_roughness_prefilter(basename: str, levels: list[Cubemap], config: PipelineConfig,
                            result: PipelineResult,
                            compression: Optional[CompressionConfig] = None) -> None:
    output_dir = _output_dir(config.prefilter_dir, basename)
    base_exp = int(log2(config.base_size))
    num_levels = base_exp + 1
    counts = prefilter_sample_counts(config.num_samples, num_levels, config.sample_growth_start)

    bundle = None
    if config.output_type is OutputType.KTX:
        bundle = new_cubemap_bundle(num_levels, 1 << base_exp)

    for level in range(num_levels):
        dim = 1 << (base_exp - level)
        linear_roughness = lod_to_linear_roughness(level, num_levels)
        _log(config, f"Level {level}, roughness(lin) = {linear_roughness:.3g}, "
                     f"roughness = {linear_roughness ** 0.5:.3g}")
        start = time.perf_counter()
        dst = create_cubemap(dim)
        roughness_filter(dst, levels, linear_roughness, counts[level])
        dst.make_seamless()
        _log(config, f"  {dim}x{dim}, {counts[level]} samples, "
                     f"{time.perf_counter() - start:.1f}s")

        if config.debug:
            path = output_dir / f"{basename}_roughness_m{level}.hdr"
            save_image(path, ImageFormat.HDR, dst.raster)
            result.outputs.append(path)

        result.outputs += emit_cubemap(
            dst, output_dir, config,
            face_prefix=f"m{level}_", flat_name=f"m{level}",
            bundle=bundle, mip_level=level, compression=compression,
        )

    if bundle is not None:
        if result.sh is not None:
            bundle.set_metadata("sh", format_sh_metadata(result.sh, result.sh_bands))
        result.outputs.append(write_ktx(bundle, output_dir / f"{basename}_ibl.ktx"))


def ibl_diffuse_irradiance(basename: str, levels: list[Cubemap], config: PipelineConfig,
                           result: PipelineResult) -> None:
    output_dir = _output_dir(config.irradiance_dir, basename)
    dst = create_cubemap(config.base_size)
    diffuse_irradiance(dst, levels, config.num_samples)

    # irradiance is always written as individual faces
    result.outputs += emit_cubemap(
        dst, output_dir, config,
        face_prefix="i_", flat_name="i", output_type=OutputType.FACES,
    )

    if config.debug:
        path = output_dir / f"{basename}_diffuse_irradiance.hdr"
        save_image(path, ImageFormat.HDR, dst.raster)
        result.outputs.append(path)

        # SH reconstruction of the sampled result, for comparison
        bands = config.sh_bands or 3
        preview = create_cubemap(dst.dim)
        render_sh(preview, compute_sh(dst, bands, False), bands)
        path = output_dir / f"{basename}_diffuse_irradiance_sh.hdr"
        save_image(path, ImageFormat.HDR, preview.raster)
        result.outputs.append(path)


def extract_faces(basename: str, levels: list[Cubemap], config: PipelineConfig,
                  result: PipelineResult,
                  compression: Optional[CompressionConfig] = None) -> None:
    cm = levels[0]
    if config.extract_blur != 0:
        _log(config, "Blurring...")
        linear_roughness = config.extract_blur * config.extract_blur
        blurred = create_cubemap(config.size or cm.dim)
        roughness_filter(blurred, levels, linear_roughness, config.num_samples)
        blurred.make_seamless()
        cm = blurred

    _log(config, "Extract faces...")
    output_dir = _output_dir(config.extract_dir, basename)
    if config.output_type is OutputType.KTX:
        bundle = new_cubemap_bundle(1, cm.dim)
        export_ktx_faces(bundle, 0, cm, compression)
        result.outputs.append(write_ktx(bundle, output_dir / f"{basename}_skybox.ktx"))
        return

    result.outputs += emit_cubemap(
        cm, output_dir, config, face_prefix="", flat_name="skybox",
    )


# ---------------------------------------------------------------------------
# DFG look-up table
# ---------------------------------------------------------------------------

def format_dfg_text(lut: np.ndarray, filename: Path) -> str:
    """C source for the LUT as RG16F texels, bottom row first."""
    size = lut.shape[0]
    include = Path(filename).suffix.lower() == ".inc"
    halves = lut[::-1, :, :2].astype(np.float16).view(np.uint16)

    parts = [
        f"// generated with: cmgen --ibl-dfg={filename}\n",
        "// DFG LUT stored as an RG16F texture, in GL order\n",
    ]
    if not include:
        parts.append("const uint16_t DFG_LUT[] = {")
    for y in range(size):
        for x in range(size):
            if x % 4 == 0:
                parts.append("\n    ")
            r, g = halves[y, x]
            parts.append(f"0x{r:04x}, 0x{g:04x}, ")
    if not include:
        parts.append("\n};\n")
    parts.append("\n")
    return "".join(parts)


def ibl_lut_dfg(filename: Path, config: PipelineConfig) -> Path:
    filename = Path(filename)
    size = config.size or config.dfg_size
    lut = dfg(size, config.dfg_multiscatter, config.dfg_samples)

    filename.parent.mkdir(parents=True, exist_ok=True)
    if filename.suffix.lower() in _DFG_TEXT_SUFFIXES:
        filename.write_text(format_dfg_text(lut, filename))
    else:
        save_image(filename, ImageFormat.from_filename(filename.name), lut, linear=True)
    return filename


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def run(input_path: Optional[Path], config: PipelineConfig) -> PipelineResult:
    """Run every stage ``config`` enables on ``input_path``."""
    result = PipelineResult()

    # validated even for output types that never compress
    compression = parse_compression(config.compression) if config.compression else None
    if config.output_type is not OutputType.KTX:
        compression = None

    if config.dfg_filename is not None:
        _log(config, "Generating IBL DFG LUT...")
        result.outputs.append(ibl_lut_dfg(config.dfg_filename, config))
        if input_path is None:
            return result

    if input_path is None:
        raise InputError("no input environment given")

    input_path = Path(input_path)
    basename = input_path.stem

    base = load_environment(input_path, config)
    result.levels = build_mip_chain(base, config)

    if config.sh_compute or config.sh_shader:
        _log(config, "Spherical harmonics...")
        spherical_harmonics(basename, result.levels[0], config, result)

    if config.is_mipmap_dir is not None:
        _log(config, "IBL mipmaps for prefiltered importance sampling...")
        ibl_mipmap_prefilter(basename, result.levels, config, result)

    if config.prefilter_dir is not None:
        _log(config, "IBL prefiltering...")
        ibl_roughness_prefilter(basename, result.levels, config, result, compression)

    if config.irradiance_dir is not None:
        _log(config, "IBL diffuse irradiance...")
        ibl_diffuse_irradiance(basename, result.levels, config, result)

    if config.extract_dir is not None:
        extract_faces(basename, result.levels, config, result, compression)

    return result
