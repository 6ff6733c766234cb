"""Tests for volume geometry and run configuration."""

import pytest

from deconlr import (
    MAX_VOLUME_SIZE,
    ConfigurationError,
    DeconvConfig,
    ErrorKind,
    GeometryBuilder,
    VolumeGeometry,
    VolumeSizeExceededError,
)


class TestVolumeSizeBound:
    """set_volume_size enforces the 2048 ceiling at the call."""

    @pytest.mark.parametrize("dims", [(2049, 16, 16), (16, 2049, 16), (16, 16, 4096)])
    def test_axis_above_ceiling_raises(self, dims):
        with pytest.raises(VolumeSizeExceededError, match="exceeds maximum"):
            GeometryBuilder().set_volume_size(*dims)

    def test_ceiling_is_inclusive(self):
        builder = GeometryBuilder().set_volume_size(MAX_VOLUME_SIZE, MAX_VOLUME_SIZE, 1)
        assert builder.has_volume_size

    def test_non_positive_dimension_raises(self):
        with pytest.raises(ConfigurationError):
            GeometryBuilder().set_volume_size(0, 16, 16)

    def test_size_error_is_recoverable_configuration_error(self):
        with pytest.raises(ConfigurationError) as excinfo:
            GeometryBuilder().set_volume_size(3000, 16, 16)
        assert excinfo.value.kind is ErrorKind.CONFIGURATION
        assert excinfo.value.recoverable


class TestVolumeGeometry:
    def test_derived_shapes_even(self):
        geom = VolumeGeometry(
            shape=(64, 128, 256),
            voxel_size=(0.2, 0.1, 0.1),
            psf_voxel_size=(0.1, 0.05, 0.05),
        )
        assert (geom.nz, geom.ny, geom.nx) == (64, 128, 256)
        assert geom.complex_shape == (64, 128, 129)
        assert geom.real_size == 64 * 128 * 256
        assert geom.complex_size == 129 * 128 * 64

    def test_derived_shapes_odd(self):
        geom = VolumeGeometry(
            shape=(5, 6, 7), voxel_size=(1, 1, 1), psf_voxel_size=(1, 1, 1)
        )
        assert geom.complex_shape == (5, 6, 4)
        assert geom.complex_size == 4 * 6 * 5

    def test_voxel_ratio(self):
        geom = VolumeGeometry(
            shape=(8, 8, 8),
            voxel_size=(0.3, 0.1, 0.1),
            psf_voxel_size=(0.1, 0.05, 0.1),
        )
        assert geom.voxel_ratio == pytest.approx((3.0, 2.0, 1.0))

    @pytest.mark.parametrize("spacing", [(0.0, 0.1, 0.1), (0.1, -0.1, 0.1)])
    def test_non_positive_voxel_size_raises(self, spacing):
        with pytest.raises(ConfigurationError, match="positive"):
            VolumeGeometry(shape=(8, 8, 8), voxel_size=spacing, psf_voxel_size=(1, 1, 1))

    def test_geometry_is_immutable(self):
        geom = VolumeGeometry(shape=(8, 8, 8), voxel_size=(1, 1, 1), psf_voxel_size=(1, 1, 1))
        with pytest.raises(AttributeError):
            geom.shape = (16, 16, 16)


class TestGeometryBuilder:
    def test_build_collects_settings(self):
        geom = (
            GeometryBuilder()
            .set_resolution((0.2, 0.1, 0.1), (0.1, 0.1, 0.1))
            .set_volume_size(32, 16, 8)
            .build()
        )
        assert geom.shape == (8, 16, 32)
        assert geom.voxel_size == (0.2, 0.1, 0.1)

    def test_incomplete_build_raises(self):
        builder = GeometryBuilder().set_volume_size(8, 8, 8)
        assert not builder.is_complete
        with pytest.raises(ConfigurationError, match="resolution"):
            builder.build()

    def test_resolution_needs_three_values(self):
        with pytest.raises(ConfigurationError, match="3 values"):
            GeometryBuilder().set_resolution((0.1, 0.1), (0.1, 0.1, 0.1))


class TestDeconvConfig:
    def test_defaults(self):
        config = DeconvConfig()
        assert config.num_iter == 10
        assert config.otf_fill == "zero"

    @pytest.mark.parametrize(
        "kwargs",
        [{"num_iter": 0}, {"num_iter": 2.5}, {"eps": 0.0}, {"background": -1.0}, {"otf_fill": "wrap"}],
    )
    def test_invalid_values_raise(self, kwargs):
        with pytest.raises(ConfigurationError):
            DeconvConfig(**kwargs)

    def test_explicit_cpu_device(self):
        assert DeconvConfig(device="cpu").torch_device.type == "cpu"
