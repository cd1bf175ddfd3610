"""Unit tests for MediaImportService"""
import pytest

from domain.exceptions import InputValidationError
from services.media_import import MediaImportService


@pytest.fixture
def service():
    return MediaImportService()


class TestImageImport:

    @pytest.mark.unit
    def test_frame_from_file(self, service, create_test_image):
        path = str(create_test_image("start.png"))

        frame = service.frame_from_file(path, "clip-1", "end")

        assert frame.url.startswith("data:image/png;base64,")
        assert frame.owner_id == "clip-1"
        assert frame.frame_type == "end"
        assert frame.source == "upload"

    @pytest.mark.unit
    def test_frame_type_is_validated(self, service, create_test_image):
        with pytest.raises(InputValidationError):
            service.frame_from_file(str(create_test_image("x.png")), "clip-1", "middle")

    @pytest.mark.unit
    def test_reference_from_file_reads_dimensions(self, service, create_test_image):
        path = str(create_test_image("mood_board.png", width=320, height=180))

        reference = service.reference_from_file(path, tags=["palette"])

        assert reference.name == "mood_board"
        assert (reference.width, reference.height) == (320, 180)
        assert reference.tags == ["palette"]

    @pytest.mark.unit
    def test_reference_from_data_url(self, service, png_data_url):
        reference = service.reference_from_data_url(png_data_url, "pasted")

        assert (reference.width, reference.height) == (64, 36)
        assert reference.url == png_data_url

    @pytest.mark.unit
    def test_reference_from_non_image_data_url(self, service):
        with pytest.raises(InputValidationError):
            service.reference_from_data_url("data:text/plain;base64,aGk=", "note")

    @pytest.mark.unit
    def test_unreadable_image_has_no_dimensions(self, service):
        assert service.probe_image_size(b"not an image") == (None, None)

    @pytest.mark.unit
    def test_element_image(self, service, create_test_image):
        image = service.element_image_from_file(str(create_test_image("luna.png")), "element-1")

        assert image.element_id == "element-1"
        assert image.url.startswith("data:image/png")


class TestFileChecks:

    @pytest.mark.unit
    def test_missing_file(self, service, tmp_path):
        with pytest.raises(InputValidationError, match="File not found"):
            service.encode_file(str(tmp_path / "nope.png"))

    @pytest.mark.unit
    def test_unsupported_extension(self, service, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("hello")

        with pytest.raises(InputValidationError, match="Unsupported"):
            service.encode_file(str(path))

    @pytest.mark.unit
    def test_audio_from_file(self, service, tmp_path):
        path = tmp_path / "theme.wav"
        path.write_bytes(b"RIFF0000WAVE")

        track = service.audio_from_file(str(path), duration=12.0)

        assert track.url.startswith("data:audio/")
        assert track.name == "theme.wav"
        assert track.duration == 12.0

    @pytest.mark.unit
    def test_audio_rejects_images(self, service, create_test_image):
        with pytest.raises(InputValidationError):
            service.audio_from_file(str(create_test_image("x.png")))
