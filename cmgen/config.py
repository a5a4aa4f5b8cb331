"""Pipeline configuration.

Every stage receives the same immutable ``PipelineConfig``; nothing is
kept in module-level state.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

from cmgen.errors import InputError

DEFAULT_SIZE = 256
DFG_LUT_DEFAULT_SIZE = 128
DEFAULT_SAMPLES = 1024


class OutputType(enum.Enum):
    FACES = "cubemap"
    EQUIRECT = "equirect"
    OCTAHEDRON = "octahedron"
    KTX = "ktx"

    @classmethod
    def parse(cls, name: str) -> "OutputType":
        if name == "equirectangular":
            return cls.EQUIRECT
        for t in cls:
            if t.value == name:
                return t
        raise InputError(f"unknown output type: {name}")


class ImageFormat(enum.Enum):
    PNG = "png"
    RGBM = "rgbm"
    HDR = "hdr"
    EXR = "exr"

    @property
    def extension(self) -> str:
        # RGBM data is stored in a regular PNG container
        return ".png" if self is ImageFormat.RGBM else f".{self.value}"

    @classmethod
    def from_filename(cls, name: str) -> "ImageFormat":
        suffix = Path(name).suffix.lower().lstrip(".")
        for f in cls:
            if f.value == suffix:
                return f
        raise InputError(f"cannot choose an image format for '{name}'")


class ShFile(enum.Enum):
    NONE = "none"
    CROSS = "cross"
    TEXT = "text"


@dataclass(frozen=True)
class PipelineConfig:
    output_type: OutputType = OutputType.FACES
    image_format: ImageFormat = ImageFormat.PNG
    compression: str = ""

    # 0 means "use the default for the stage"
    size: int = 0
    num_samples: int = DEFAULT_SAMPLES
    mirror: bool = True
    quiet: bool = False
    debug: bool = False

    extract_dir: Optional[Path] = None
    extract_blur: float = 0.0

    sh_bands: int = 0
    sh_output: bool = False
    sh_shader: bool = False
    sh_irradiance: bool = False
    sh_file: ShFile = ShFile.NONE
    sh_filename: Optional[Path] = None

    is_mipmap_dir: Optional[Path] = None
    prefilter_dir: Optional[Path] = None
    irradiance_dir: Optional[Path] = None

    dfg_filename: Optional[Path] = None
    dfg_multiscatter: bool = False
    dfg_size: int = DFG_LUT_DEFAULT_SIZE
    # independent of num_samples, which only drives the environment filters
    dfg_samples: int = DEFAULT_SAMPLES

    # starting at this prefilter level, each level doubles its sample count
    sample_growth_start: int = 2

    @property
    def base_size(self) -> int:
        return self.size or DEFAULT_SIZE

    @property
    def sh_compute(self) -> bool:
        return self.sh_bands > 0


def apply_deploy(config: PipelineConfig, deploy_dir: Path, basename: str) -> PipelineConfig:
    """Options implied by ``--deploy``: 3-band shader SH, faces and prefilter."""
    deploy_dir = Path(deploy_dir)
    return replace(
        config,
        sh_bands=3,
        sh_shader=True,
        sh_irradiance=True,
        sh_output=True,
        sh_file=ShFile.TEXT,
        sh_filename=deploy_dir / basename / "sh.txt",
        extract_dir=deploy_dir,
        prefilter_dir=deploy_dir,
    )


def apply_debug(config: PipelineConfig) -> PipelineConfig:
    """With ``--debug``, prefiltering also dumps the source mip chain."""
    if config.debug and config.prefilter_dir is not None and config.is_mipmap_dir is None:
        return replace(config, is_mipmap_dir=config.prefilter_dir)
    return config
