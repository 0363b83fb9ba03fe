import io

import pytest
from PIL import Image

from cityreport.core.errors import DecodeError, EncodeError
from cityreport.services.image_service import (
    ImagePipeline,
    calculate_downsample_factor,
    scaled_dimensions,
)
from conftest import make_jpeg


@pytest.fixture
def pipeline():
    return ImagePipeline()


def _open(data: bytes) -> Image.Image:
    return Image.open(io.BytesIO(data))


class TestDownsampleFactor:
    @pytest.mark.parametrize(
        "size, bounds, expected",
        [
            ((800, 600), (1024, 1024), 1),
            ((2000, 2000), (1024, 1024), 1),
            ((4000, 3000), (1024, 1024), 2),
            ((4096, 4096), (1024, 1024), 4),
            ((8192, 8192), (1024, 1024), 8),
            ((4000, 500), (1024, 1024), 1),
        ],
    )
    def test_factor(self, size, bounds, expected):
        assert calculate_downsample_factor(*size, *bounds) == expected

    def test_decoded_size_stays_above_bounds(self):
        for width, height in [(3000, 4000), (5000, 5000), (2049, 2049), (9000, 3000)]:
            factor = calculate_downsample_factor(width, height, 1024, 1024)
            assert factor & (factor - 1) == 0
            assert width // factor >= 1024 and height // factor >= 1024


class TestScaledDimensions:
    def test_never_upscales(self):
        assert scaled_dimensions(300, 200, 1024, 1024) == (300, 200)

    def test_preserves_aspect_ratio(self):
        assert scaled_dimensions(2000, 1000, 1024, 1024) == (1024, 512)
        assert scaled_dimensions(1000, 3000, 1024, 1024) == (341, 1024)


class TestCompress:
    def test_within_bounds_keeps_dimensions_and_shrinks(self, pipeline):
        source = make_jpeg((200, 100), quality=95)
        result = pipeline.compress(source, quality=80)
        assert (result.width, result.height) == (200, 100)
        assert result.byte_length <= len(source)
        with _open(result.data) as decoded:
            assert decoded.format == "JPEG"
            assert decoded.size == (200, 100)

    def test_low_quality_jpeg_is_never_grown(self, pipeline):
        source = make_jpeg((200, 100), quality=30)
        result = pipeline.compress(source, quality=80)
        assert (result.width, result.height) == (200, 100)
        assert result.byte_length <= len(source)
        assert result.data == source
        assert result.content_type == "image/jpeg"

    def test_small_png_kept_when_jpeg_would_be_larger(self, pipeline):
        image = Image.new("RGB", (200, 100), (10, 20, 30))
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        source = buffer.getvalue()

        result = pipeline.compress(source)
        assert (result.width, result.height) == (200, 100)
        assert result.byte_length <= len(source)
        assert result.content_type == "image/png"

    def test_rotated_source_is_always_reencoded(self, pipeline):
        source = make_jpeg((300, 200), quality=30, exif_orientation=6)
        result = pipeline.compress(source, quality=90)
        assert result.data != source
        assert (result.width, result.height) == (200, 300)
        assert result.content_type == "image/jpeg"

    def test_large_image_scaled_into_box(self, pipeline):
        source = make_jpeg((4000, 3000), noise=False)
        result = pipeline.compress(source)
        assert (result.width, result.height) == (1024, 768)
        with _open(result.data) as decoded:
            assert decoded.size == (1024, 768)

    def test_custom_bounds(self, pipeline):
        result = pipeline.compress(make_jpeg((600, 300), noise=False), max_width=100, max_height=100, quality=50)
        assert (result.width, result.height) == (100, 50)

    @pytest.mark.parametrize("orientation, expected", [(1, (300, 200)), (3, (300, 200)), (6, (200, 300)), (8, (200, 300))])
    def test_exif_rotation(self, pipeline, orientation, expected):
        source = make_jpeg((300, 200), noise=False, exif_orientation=orientation)
        result = pipeline.compress(source)
        assert (result.width, result.height) == expected

    def test_rotate_90_clockwise(self, pipeline):
        image = Image.new("RGB", (40, 20), (255, 255, 255))
        image.paste((255, 0, 0), (0, 0, 20, 20))  # red on the left half
        exif = Image.Exif()
        exif[0x0112] = 6
        buffer = io.BytesIO()
        image.save(buffer, format="JPEG", quality=95, exif=exif.tobytes())

        result = pipeline.compress(buffer.getvalue(), quality=95)
        with _open(result.data) as decoded:
            rgb = decoded.convert("RGB")
            assert decoded.size == (20, 40)
            # left half rotated clockwise ends up on top
            top_r, top_g, _ = rgb.getpixel((10, 5))
            bottom_r, bottom_g, _ = rgb.getpixel((10, 35))
            assert top_r > 200 and top_g < 60
            assert bottom_g > 200

    def test_resized_png_with_alpha_becomes_jpeg(self, pipeline):
        image = Image.new("RGBA", (2048, 2048), (0, 128, 255, 128))
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        result = pipeline.compress(buffer.getvalue())
        assert result.content_type == "image/jpeg"
        with _open(result.data) as decoded:
            assert decoded.size == (1024, 1024)
            assert decoded.format == "JPEG"
            assert decoded.mode == "RGB"

    def test_non_jpeg_large_image_reduced(self, pipeline):
        image = Image.new("RGB", (4096, 2400), (10, 20, 30))
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        result = pipeline.compress(buffer.getvalue())
        assert (result.width, result.height) == (1024, 600)

    def test_profile_preset(self, pipeline):
        result = pipeline.compress_profile_photo(make_jpeg((2000, 1000), noise=False))
        assert (result.width, result.height) == (512, 256)

    @pytest.mark.parametrize("source", [b"", b"not an image at all", make_jpeg((50, 50))[:40]])
    def test_unreadable_source_raises_decode_error(self, pipeline, source):
        with pytest.raises(DecodeError):
            pipeline.compress(source)

    @pytest.mark.parametrize("kwargs", [{"quality": 101}, {"quality": -1}, {"max_width": 0}])
    def test_invalid_arguments(self, pipeline, kwargs):
        with pytest.raises(ValueError):
            pipeline.compress(make_jpeg((10, 10)), **kwargs)

    def test_encode_failure_raises_encode_error(self, pipeline, monkeypatch):
        source = make_jpeg((10, 10))

        def broken_save(self, *args, **kwargs):
            raise OSError("encoder not available")

        monkeypatch.setattr(Image.Image, "save", broken_save)
        with pytest.raises(EncodeError):
            pipeline.compress(source)

    def test_intermediate_images_closed(self, pipeline, monkeypatch):
        source = make_jpeg((3000, 2000), noise=False, exif_orientation=6)
        closed = []
        original_close = Image.Image.close

        def tracking_close(self):
            closed.append(self.size)
            original_close(self)

        monkeypatch.setattr(Image.Image, "close", tracking_close)
        result = pipeline.compress(source)
        # rotated and resized intermediates are both released
        assert (2000, 3000) in closed
        assert (result.width, result.height) in closed


class TestCompressToFile:
    def test_writes_file_and_no_leftovers(self, pipeline, tmp_path):
        path = pipeline.compress_to_file(make_jpeg((300, 300)), tmp_path)
        assert path.parent == tmp_path
        assert path.suffix == ".jpg"
        assert [p.name for p in tmp_path.iterdir()] == [path.name]
        with Image.open(path) as decoded:
            assert decoded.size == (300, 300)

    def test_failure_leaves_no_temp_file(self, pipeline, tmp_path, monkeypatch):
        def broken_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr("cityreport.services.image_service.os.replace", broken_replace)
        with pytest.raises(EncodeError):
            pipeline.compress_to_file(make_jpeg((50, 50)), tmp_path)
        assert list(tmp_path.iterdir()) == []

    def test_unusable_directory_raises_encode_error(self, pipeline, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_bytes(b"")
        with pytest.raises(EncodeError):
            pipeline.compress_to_file(make_jpeg((50, 50)), blocker)
        with pytest.raises(EncodeError):
            pipeline.compress_to_file(make_jpeg((50, 50)), blocker / "nested")
        assert [p.name for p in tmp_path.iterdir()] == ["not-a-dir"]

    def test_passed_through_png_keeps_png_suffix(self, pipeline, tmp_path):
        buffer = io.BytesIO()
        Image.new("RGB", (40, 40), (0, 0, 0)).save(buffer, format="PNG")
        path = pipeline.compress_to_file(buffer.getvalue(), tmp_path)
        assert path.suffix == ".png"
        assert path.read_bytes() == buffer.getvalue()

    def test_decode_error_writes_nothing(self, pipeline, tmp_path):
        with pytest.raises(DecodeError):
            pipeline.compress_to_file(b"garbage", tmp_path)
        assert list(tmp_path.iterdir()) == []
