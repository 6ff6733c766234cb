"""Tests for TIFF stack I/O and the command line interface."""

import numpy as np
import pytest
import tifffile
from click.testing import CliRunner

from deconlr import ConfigurationError, ImageStack
from deconlr.__main__ import cli
from deconlr.toy import impulse


class TestImageStack:
    def test_save_and_load(self, tmp_path):
        data = np.arange(4 * 5 * 6, dtype=np.uint16).reshape(4, 5, 6)
        path = ImageStack(data).save(tmp_path / "sub" / "stack.tif")

        loaded = ImageStack.load(path)
        assert (loaded.nz, loaded.ny, loaded.nx) == (4, 5, 6)
        assert loaded.dtype == np.uint16
        np.testing.assert_array_equal(loaded.data, data)

    @pytest.mark.parametrize("shape", [(3, 16, 16), (4, 16, 16), (8, 16, 3)])
    def test_few_planes_saved_as_grayscale_stack(self, tmp_path, shape):
        data = np.arange(np.prod(shape), dtype=np.uint16).reshape(shape)
        path = ImageStack(data).save(tmp_path / "stack.tif")

        with tifffile.TiffFile(path) as tif:
            assert tif.pages[0].photometric == tifffile.PHOTOMETRIC.MINISBLACK
            assert len(tif.pages) == shape[0]

        np.testing.assert_array_equal(ImageStack.load(path).data, data)

    def test_single_plane_is_promoted(self):
        assert ImageStack(np.zeros((5, 6))).shape == (1, 5, 6)

    def test_rejects_4d(self):
        with pytest.raises(ConfigurationError):
            ImageStack(np.zeros((2, 2, 2, 2)))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ImageStack.load(tmp_path / "missing.tif")

    def test_float_to_integer_rounds_and_clips(self):
        stack = ImageStack(np.array([[[-3.0, 1.4, 1.6, 70000.0]]], dtype=np.float32))
        converted = stack.astype(np.uint16)
        np.testing.assert_array_equal(converted.data, [[[0, 1, 2, 65535]]])

    def test_integer_to_float(self):
        stack = ImageStack(np.full((2, 2, 2), 7, dtype=np.uint16))
        assert stack.astype(np.float32).dtype == np.float32


@pytest.fixture
def stacks(tmp_path):
    rng = np.random.default_rng(4)
    volume = (100 + rng.integers(0, 50, size=(8, 16, 16))).astype(np.uint16)
    volume_path = tmp_path / "volume.tif"
    psf_path = tmp_path / "psf.tif"
    tifffile.imwrite(volume_path, volume)
    tifffile.imwrite(psf_path, impulse((8, 16, 16)))
    return volume, volume_path, psf_path


class TestCLI:
    def test_run_writes_restored_volume(self, stacks, tmp_path):
        volume, volume_path, psf_path = stacks
        output = tmp_path / "out" / "restored.tif"

        result = CliRunner().invoke(
            cli,
            [
                "run", str(volume_path), str(psf_path), str(output),
                "--voxel", "1", "1", "1",
                "--psf-voxel", "1", "1", "1",
                "-n", "2",
                "--device", "cpu",
            ],
        )

        assert result.exit_code == 0, result.output
        restored = tifffile.imread(output)
        assert restored.dtype == np.uint16
        np.testing.assert_array_equal(restored, volume)

    def test_float_output(self, stacks, tmp_path):
        _, volume_path, psf_path = stacks
        output = tmp_path / "restored.tif"

        result = CliRunner().invoke(
            cli,
            [
                "run", str(volume_path), str(psf_path), str(output),
                "--voxel", "1", "1", "1",
                "--psf-voxel", "1", "1", "1",
                "--device", "cpu",
                "--float-output",
            ],
        )

        assert result.exit_code == 0, result.output
        assert tifffile.imread(output).dtype == np.float32

    def test_degenerate_psf_exit_code(self, stacks, tmp_path):
        _, volume_path, _ = stacks
        flat_psf = tmp_path / "flat.tif"
        tifffile.imwrite(flat_psf, np.full((8, 16, 16), 5.0, dtype=np.float32))

        result = CliRunner().invoke(
            cli,
            [
                "run", str(volume_path), str(flat_psf), str(tmp_path / "o.tif"),
                "--voxel", "1", "1", "1",
                "--psf-voxel", "1", "1", "1",
                "--device", "cpu",
            ],
        )

        assert result.exit_code == 2
        assert "degenerate" in result.output

    def test_invalid_iterations_exit_code(self, stacks, tmp_path):
        _, volume_path, psf_path = stacks

        result = CliRunner().invoke(
            cli,
            [
                "run", str(volume_path), str(psf_path), str(tmp_path / "o.tif"),
                "--voxel", "1", "1", "1",
                "--psf-voxel", "1", "1", "1",
                "-n", "0",
            ],
        )

        assert result.exit_code == 2
        assert "num_iter" in result.output
