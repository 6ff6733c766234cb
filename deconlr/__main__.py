import logging
import sys

import click

from .config import DeconvConfig
from .errors import DeconvError
from .io.stack import ImageStack
from .logging_config import setup_logging
from .pipeline import DeconvLR


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.option("-l", "--log-file", type=click.Path(dir_okay=False), default=None,
              help="Also write the log to this file")
def cli(verbose, log_file):
    '''
    deconlr command line interface
    '''
    setup_logging(logging.DEBUG if verbose else logging.INFO, log_file)


@cli.command()
@click.argument("input", type=click.Path(exists=True, dir_okay=False))
@click.argument("psf", type=click.Path(exists=True, dir_okay=False))
@click.argument("output", type=click.Path(dir_okay=False))
@click.option("--voxel", nargs=3, type=float, required=True,
              help="Raw voxel size dz dy dx (microns)")
@click.option("--psf-voxel", nargs=3, type=float, required=True,
              help="PSF voxel size dz dy dx (microns)")
@click.option("-n", "--iterations", type=int, default=10, show_default=True,
              help="Number of Richardson-Lucy iterations")
@click.option("--device", type=str, default=None,
              help="Torch device (default: cuda if available)")
@click.option("--background", type=float, default=None,
              help="PSF background level (default: estimated)")
@click.option("--otf-fill", type=click.Choice(["zero", "nearest"]), default="zero",
              show_default=True, help="OTF policy outside the PSF support")
@click.option("--eps", type=float, default=1e-6, show_default=True,
              help="Ratio guard relative to the data maximum")
@click.option("--float-output", is_flag=True,
              help="Save float32 instead of the input sample type")
@click.option("--debug-dir", type=click.Path(file_okay=False), default=None,
              help="Directory for diagnostic dumps (aligned PSF, OTF)")
def run(input, psf, output, voxel, psf_voxel, iterations, device, background,
        otf_fill, eps, float_output, debug_dir):
    '''
    Deconvolve INPUT with PSF and write OUTPUT
    '''
    try:
        config = DeconvConfig(
            num_iter=iterations,
            eps=eps,
            device=device,
            background=background,
            otf_fill=otf_fill,
            debug_dir=debug_dir,
            verbose=True,
        )
        volume = ImageStack.load(input)
        psf_stack = ImageStack.load(psf)

        with DeconvLR(config) as decon:
            decon.set_resolution(voxel, psf_voxel)
            decon.set_volume_size(volume.nx, volume.ny, volume.nz)
            decon.set_psf(psf_stack)
            decon.initialize()
            restored = decon.process(volume)

        result = ImageStack(restored)
        if not float_output:
            result = result.astype(volume.dtype)
        result.save(output)
    except DeconvError as exc:
        click.echo(f"Error ({exc.kind.value}): {exc}", err=True)
        sys.exit(2 if exc.recoverable else 3)

    click.echo(f"Restored volume written to {output}")


def main():
    cli(obj=None)


if __name__ == "__main__":
    main()
