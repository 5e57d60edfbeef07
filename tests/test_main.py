"""Tests for the command-line host with the engine client mocked out."""

from unittest.mock import MagicMock, patch

import numpy as np
import pytest
import soundfile as sf

from echoclean.core.config import Settings
from echoclean.core.errors import ValidationError
from echoclean.core.events import ErrorInfo, ProcessResult
from echoclean.main import EXIT_CANCELLED, EXIT_FAILED, EXIT_OK, main


@pytest.fixture
def input_file(tmp_path, wav_bytes):
    path = tmp_path / "in.wav"
    path.write_bytes(wav_bytes(0.5 * np.sin(np.arange(1600) * 0.1)))
    return path


@pytest.fixture
def mock_client():
    with patch("echoclean.main.EngineClient") as cls, \
         patch("echoclean.main.load_settings", return_value=Settings()):
        client = MagicMock()
        client.submit.return_value = "job-1"
        cls.return_value = client
        yield client


def test_success_writes_output(tmp_path, input_file, mock_client, wav_bytes):
    cleaned = wav_bytes(np.zeros(1600))
    mock_client.wait_result.return_value = ProcessResult(
        job_id="job-1", success=True, status="completed", output_bytes=cleaned,
    )
    out_path = tmp_path / "out.wav"

    code = main([str(input_file), str(out_path), "--filter-length", "256", "--step-size", "0.1"])

    assert code == EXIT_OK
    assert out_path.read_bytes() == cleaned
    _, settings = mock_client.submit.call_args.args
    assert settings == {"filter_length": 256, "step_size": 0.1}
    mock_client.close.assert_called_once()


def test_failure_returns_error_code(tmp_path, input_file, mock_client):
    mock_client.wait_result.return_value = ProcessResult(
        job_id="job-1", success=False, status="failed",
        error=ErrorInfo(kind="DivergenceError", message="unstable"),
    )
    out_path = tmp_path / "out.wav"

    assert main([str(input_file), str(out_path)]) == EXIT_FAILED
    assert not out_path.exists()


def test_rejected_settings(tmp_path, input_file, mock_client):
    mock_client.submit.side_effect = ValidationError("bad filter_length")

    assert main([str(input_file), str(tmp_path / "out.wav"), "--filter-length", "100"]) == EXIT_FAILED
    mock_client.close.assert_called_once()


def test_ctrl_c_cancels_job(tmp_path, input_file, mock_client):
    mock_client.wait_result.side_effect = [
        KeyboardInterrupt(),
        ProcessResult(job_id="job-1", success=False, status="cancelled"),
    ]

    assert main([str(input_file), str(tmp_path / "out.wav")]) == EXIT_CANCELLED
    mock_client.cancel.assert_called_once_with("job-1")


def test_normalize_rescales_output(tmp_path, input_file, mock_client, wav_bytes):
    cleaned = 0.05 * np.sin(np.arange(1600) * 0.2)
    mock_client.wait_result.return_value = ProcessResult(
        job_id="job-1", success=True, status="completed", output_bytes=wav_bytes(cleaned),
    )
    out_path = tmp_path / "out.wav"

    assert main([str(input_file), str(out_path), "--normalize", "0.3"]) == EXIT_OK

    written, _ = sf.read(out_path)
    assert np.sqrt(np.mean(written ** 2)) == pytest.approx(0.3, abs=1e-3)


def test_report_logs_output_peak(tmp_path, input_file, mock_client, wav_bytes):
    mock_client.wait_result.return_value = ProcessResult(
        job_id="job-1", success=True, status="completed",
        output_bytes=wav_bytes(np.full(1600, 0.25)),
    )

    with patch("echoclean.main.logger") as log:
        assert main([str(input_file), str(tmp_path / "out.wav")]) == EXIT_OK

    report = next(c.args for c in log.info.call_args_list if "output peak" in c.args[0])
    assert report[2] == pytest.approx(0.25)


def test_non_positive_normalize_is_usage_error(tmp_path, input_file, mock_client):
    with pytest.raises(SystemExit) as exc:
        main([str(input_file), str(tmp_path / "out.wav"), "--normalize", "0"])
    assert exc.value.code == 2
    mock_client.submit.assert_not_called()
