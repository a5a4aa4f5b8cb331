"""Command-line interface for cmgen, the IBL cubemap generator."""

import argparse
import sys
from pathlib import Path

from cmgen.config import (
    DEFAULT_SAMPLES,
    ImageFormat,
    OutputType,
    PipelineConfig,
    ShFile,
    apply_debug,
    apply_deploy,
)
from cmgen.cubemap.cubemap import is_power_of_two
from cmgen.errors import CmgenError, InputError
from cmgen.pipeline import run

_TYPES = ("cubemap", "equirect", "equirectangular", "octahedron", "ktx")
_FORMATS = ("png", "rgbm", "hdr", "exr", "ktx")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cmgen",
        description="Converts an environment map into cubemap mips, spherical harmonics, "
                    "prefiltered IBL reflections, irradiance and a DFG LUT.",
        epilog="Input may be a 2:1 equirectangular image or a 4:3 / 3:4 cross. A path "
               "that does not exist named uvN, uN, vN or brdfN generates a test pattern.",
    )
    parser.add_argument("input", nargs="?", help="Input environment (.hdr, .exr, .png)")
    parser.add_argument("-q", "--quiet", action="store_true",
                        help="Suppress all non-error output")
    parser.add_argument("-t", "--type", choices=_TYPES, default=None,
                        help="Output type (default: cubemap)")
    parser.add_argument("-f", "--format", choices=_FORMATS, default=None,
                        help="Output file format; ktx implies --type=ktx")
    parser.add_argument("-c", "--compression", default="", metavar="COMPRESSION",
                        help="KTX block compression: astc_[fast|thorough]_[ldr|hdr]_WxH, "
                             "s3tc_rgba_dxt5 or etc_FORMAT_METRIC_EFFORT")
    parser.add_argument("-s", "--size", type=int, default=0,
                        help="Size of the output cubemaps (base level), 256 by default")
    parser.add_argument("-x", "--deploy", type=Path, metavar="DIR",
                        help="Generate everything needed for deployment into DIR")
    parser.add_argument("--extract", type=Path, metavar="DIR",
                        help="Extract faces of the cubemap into DIR")
    parser.add_argument("--extract-blur", type=float, default=0.0, metavar="ROUGHNESS",
                        help="Roughness blur applied before extracting faces")
    parser.add_argument("--no-mirror", action="store_true",
                        help="Skip mirroring (for assets already mirrored)")
    parser.add_argument("--ibl-samples", type=int, default=DEFAULT_SAMPLES, metavar="N",
                        help="Number of samples for IBL integrations (default 1024)")
    parser.add_argument("--ibl-dfg", type=Path, metavar="FILE",
                        help="Compute the DFG LUT (.png, .hdr, .exr, .h, .hpp, .c, .cpp, "
                             ".inc or .txt)")
    parser.add_argument("--ibl-dfg-multiscatter", action="store_true",
                        help="Compute the DFG for multi-scattering GGX")
    parser.add_argument("--ibl-is-mipmap", type=Path, metavar="DIR",
                        help="Mipmaps for prefiltered importance sampling into DIR")
    parser.add_argument("--ibl-ld", type=Path, metavar="DIR",
                        help="Roughness prefilter into DIR")
    parser.add_argument("--ibl-irradiance", type=Path, metavar="DIR",
                        help="Diffuse irradiance into DIR")
    parser.add_argument("--sh", type=int, nargs="?", const=3, default=None, metavar="BANDS",
                        help="SH decomposition of the input (default 3 bands)")
    parser.add_argument("--sh-output", type=Path, metavar="FILE",
                        help="SH output file; .txt writes coefficients, images a preview")
    parser.add_argument("-i", "--sh-irradiance", action="store_true",
                        help="Irradiance SH coefficients")
    parser.add_argument("--sh-shader", action="store_true",
                        help="Pre-scaled irradiance SH for shader code")
    parser.add_argument("-d", "--debug", action="store_true",
                        help="Generate extra data for debugging")
    parser.add_argument("--version", action="version", version="cmgen 0.1.0")
    return parser


def config_from_args(args: argparse.Namespace) -> PipelineConfig:
    """Translate parsed arguments into a ``PipelineConfig``."""
    if args.size and not is_power_of_two(args.size):
        raise InputError("output size must be a power of two")
    if not 0.0 <= args.extract_blur <= 1.0:
        raise InputError("roughness (blur) parameter must be between 0.0 and 1.0")
    if args.ibl_samples < 1:
        raise InputError("--ibl-samples must be at least 1")
    if args.sh is not None and args.sh < 1:
        raise InputError("--sh needs at least one band")

    output_type = OutputType.FACES
    if args.format == "ktx":
        output_type = OutputType.KTX
    elif args.type is not None:
        output_type = OutputType.parse(args.type)

    if args.format not in (None, "ktx"):
        image_format = ImageFormat(args.format)
    elif args.deploy is not None:
        image_format = ImageFormat.RGBM
    else:
        image_format = ImageFormat.PNG

    sh_requested = (args.sh is not None or args.sh_output is not None
                    or args.sh_irradiance or args.sh_shader)
    sh_file = ShFile.NONE
    if args.sh_output is not None:
        sh_file = ShFile.TEXT if args.sh_output.suffix.lower() == ".txt" else ShFile.CROSS
        if sh_file is ShFile.CROSS:
            # fail before any work is done
            ImageFormat.from_filename(args.sh_output.name)

    config = PipelineConfig(
        output_type=output_type,
        image_format=image_format,
        compression=args.compression,
        size=args.size,
        num_samples=args.ibl_samples,
        mirror=not args.no_mirror,
        quiet=args.quiet,
        debug=args.debug,
        extract_dir=args.extract,
        extract_blur=args.extract_blur,
        sh_bands=(args.sh or 3) if sh_requested else 0,
        sh_output=args.sh is not None or args.sh_output is not None,
        sh_shader=args.sh_shader,
        sh_irradiance=args.sh_irradiance or args.sh_shader,
        sh_file=sh_file,
        sh_filename=args.sh_output,
        is_mipmap_dir=args.ibl_is_mipmap,
        prefilter_dir=args.ibl_ld,
        irradiance_dir=args.ibl_irradiance,
        dfg_filename=args.ibl_dfg,
        dfg_multiscatter=args.ibl_dfg_multiscatter,
    )

    if args.deploy is not None and args.input:
        config = apply_deploy(config, args.deploy, Path(args.input).stem)
    return apply_debug(config)


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.input is None and args.ibl_dfg is None:
        parser.print_usage(sys.stderr)
        print("Error: an input environment is required", file=sys.stderr)
        sys.exit(1)

    try:
        config = config_from_args(args)
        run(Path(args.input) if args.input else None, config)
    except (CmgenError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
