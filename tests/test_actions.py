"""Tests for the core flash workflow actions."""

import json

import pytest

from conftest import FakeTransport
from rom_flasher.core.actions import (
    describe_firmware,
    dump_frame_artifacts,
    flash_firmware_file,
    flash_region,
    load_firmware,
    plan_flash,
)
from rom_flasher.core.pacing import PacingPolicy
from rom_flasher.core.safety import SafetyContext
from rom_flasher.errors import ConnectDenied, TransportError, WritePermissionError
from rom_flasher.protocol.rom_loader import build_flash_frames


@pytest.fixture
def firmware(tmp_path):
    path = tmp_path / "firmware.bin"
    path.write_bytes(bytes(range(256)) + b"\xA5" * 44)
    return path


@pytest.fixture
def write_ctx():
    return SafetyContext(write_enabled=True, confirmation_token="WRITE", interactive=False)


class TestLoadFirmware:
    """Image loading and validation."""

    def test_reads_bytes(self, firmware):
        assert len(load_firmware(str(firmware))) == 300

    def test_rejects_non_bin(self, tmp_path):
        path = tmp_path / "firmware.hex"
        path.write_text(":00000001FF")
        with pytest.raises(ValueError, match="Please select a .bin firmware file"):
            load_firmware(str(path))

    def test_uppercase_suffix_accepted(self, tmp_path):
        path = tmp_path / "FIRMWARE.BIN"
        path.write_bytes(b"\x01")
        assert load_firmware(str(path)) == b"\x01"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_firmware(str(tmp_path / "nope.bin"))


class TestDescriptions:
    def test_describe_firmware(self):
        assert describe_firmware("app.bin", 1536) == "File selected: app.bin (1.50 KB)"

    def test_flash_region(self):
        assert flash_region(0x10000, 300) == "0x010000-0x01012C"


class TestPlanFlash:
    """Dry-run planning."""

    def test_metadata(self):
        result = plan_flash(b"\x00" * 300, 0x10000)
        assert result.ok
        assert result.metadata["frame_count"] == 4
        assert result.metadata["data_frames"] == 2
        assert result.metadata["wire_bytes"] == 16 + 260 + 48 + 2
        assert len(result.hashes["sha256"]) == 64
        assert result.warnings == []

    def test_empty_image_warns(self):
        result = plan_flash(b"")
        assert result.metadata["data_frames"] == 0
        assert result.warnings


class TestDumpFrameArtifacts:
    def test_writes_stream_and_manifest(self, tmp_path):
        image = b"\x7F" * 513
        manifest_path = dump_frame_artifacts(image, 0x20000, str(tmp_path / "out"))

        manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
        assert manifest["frame_count"] == 5
        assert manifest["offset"] == "0x20000"
        assert (manifest_path.parent / "image.bin").read_bytes() == image
        frames = (manifest_path.parent / "frames.bin").read_bytes()
        assert frames == b"".join(build_flash_frames(image, 0x20000))


class TestFlashFirmwareFile:
    """End-to-end workflow with write gating."""

    def test_flash_over_loopback(self, firmware, write_ctx):
        calls = []
        result = flash_firmware_file(
            "loop://",
            str(firmware),
            write_ctx,
            pacing=PacingPolicy.immediate(),
            progress_cb=lambda current, total: calls.append((current, total)),
        )

        assert result.ok, result.errors
        assert calls == [(0, 300), (256, 300), (300, 300)]
        assert result.metadata["progress"] == {"current": 300, "total": 300, "percentage": 100}
        assert result.region == "0x010000-0x01012C"
        assert any("File selected: firmware.bin" in line for line in result.logs)
        assert result.logs[-1].endswith("Disconnected from device")

    def test_transport_failure_reported(self, firmware, write_ctx):
        transport = FakeTransport(fail_on_write=2)
        result = flash_firmware_file(
            "fake",
            str(firmware),
            write_ctx,
            pacing=PacingPolicy.immediate(),
            transport=transport,
        )

        assert not result.ok
        assert result.errors == ["write failed"]
        assert transport.events[-1] == "close"
        assert any("[error] Flash error: write failed" in line for line in result.logs)

    def test_write_not_enabled(self, firmware):
        transport = FakeTransport()
        with pytest.raises(WritePermissionError):
            flash_firmware_file("fake", str(firmware), SafetyContext(), transport=transport)
        assert transport.events == []

    def test_token_mismatch(self, firmware):
        ctx = SafetyContext(write_enabled=True, confirmation_token="nope", interactive=False)
        with pytest.raises(WritePermissionError, match="token mismatch"):
            flash_firmware_file("fake", str(firmware), ctx, transport=FakeTransport())

    def test_simulate_sends_nothing(self, firmware):
        transport = FakeTransport()
        result = flash_firmware_file(
            "fake",
            str(firmware),
            SafetyContext(simulate=True),
            transport=transport,
        )
        assert result.ok
        assert result.operation == "plan_flash"
        assert result.port == "fake"
        assert transport.events == []
        assert result.warnings == ["Simulation only: no data was written"]

    def test_result_serializes(self, firmware, write_ctx):
        result = flash_firmware_file(
            "fake",
            str(firmware),
            write_ctx,
            pacing=PacingPolicy.immediate(),
            transport=FakeTransport(),
        )
        data = json.loads(json.dumps(result.to_dict()))
        assert data["ok"] is True
        assert data["metadata"]["baudrate"] == 115200
        assert result.to_summary().startswith("[SUCCESS] flash_firmware")

    def test_disconnect_failure_keeps_flash_error(self, firmware, write_ctx):
        """A close failure after a failed flash is reported alongside it."""

        class CloseFailingTransport(FakeTransport):
            def close(self):
                raise TransportError("close failed")

        result = flash_firmware_file(
            "fake",
            str(firmware),
            write_ctx,
            pacing=PacingPolicy.immediate(),
            transport=CloseFailingTransport(fail_on_write=2),
        )

        assert not result.ok
        assert result.errors == ["write failed", "Disconnect failed: close failed"]

    def test_connect_failure_reported(self, firmware, write_ctx):
        transport = FakeTransport(open_error=ConnectDenied("access denied"))
        result = flash_firmware_file("fake", str(firmware), write_ctx, transport=transport)
        assert not result.ok
        assert result.errors == ["access denied"]
        assert transport.events == []


class TestSafetyContext:
    def test_details_dict(self):
        details = SafetyContext().to_details_dict("loop://", "0x010000-0x01012C", 300, 0x10000)
        assert details == {
            "port": "loop://",
            "target_region": "0x010000-0x01012C",
            "bytes_length": 300,
            "offset": "0x010000",
        }
