"""Unit tests for the command-line entry point."""

import os
from unittest.mock import Mock, patch

import pytest

from app.config import Settings
from app.main import build_parser, config_from_args, create_orchestrator, main
from genpipe.backends.feedback_store import (
    HeuristicModelSelector,
    RestFeedbackRecorder,
    RestModelSelector,
)
from genpipe.core.models import BatchSummary, DuplicatePolicy, OutputFormat, UnitFailure


@pytest.fixture
def cli_settings():
    """Settings as seen by the CLI, without touching the real environment."""
    mock_settings = Mock()
    mock_settings.enable_gpu = True
    mock_settings.log_level = "INFO"
    mock_settings.output_dir = "outputs"
    with patch('app.main.settings', mock_settings):
        yield mock_settings


@pytest.fixture
def mock_orchestrator():
    with patch('app.main.create_orchestrator') as mock_create:
        orchestrator = Mock()
        orchestrator.run.return_value = BatchSummary(total_units=1, completed=1, skipped=0)
        mock_create.return_value = orchestrator
        yield orchestrator


class TestConfigFromArgs:
    """Tests for turning CLI arguments into a BatchConfig."""

    def test_defaults(self, cli_settings):
        """Test the default batch configuration."""
        config = config_from_args(build_parser().parse_args(["a cat"]))

        assert config.count == 1
        assert config.width == 1024
        assert config.aspect == "1/1"
        assert config.lock_aspect is True
        assert config.output_format == OutputFormat.PNG
        assert config.suppress_watermark is True
        assert config.use_gpu is True
        assert config.unique is False

    def test_all_options(self, cli_settings):
        """Test every option is forwarded."""
        args = build_parser().parse_args([
            "a cat", "-n", "4", "--width", "800", "--height", "600",
            "--format", "jpeg", "--seed", "9", "--allow-logo", "--quality-gate",
            "--quality-retries", "2", "--unique", "--unique-retries", "3",
            "--on-duplicate-exhausted", "fail", "--no-gpu",
        ])

        config = config_from_args(args)

        assert config.count == 4
        assert config.target_size() == (800, 600)
        assert config.lock_aspect is False
        assert config.output_format == OutputFormat.JPEG
        assert config.seed_base == 9
        assert config.suppress_watermark is False
        assert config.quality_gate is True
        assert config.quality_retries == 2
        assert config.unique is True
        assert config.duplicate_retries == 3
        assert config.duplicate_policy == DuplicatePolicy.FAIL_ON_EXHAUSTION
        assert config.use_gpu is False

    def test_gpu_disabled_in_settings(self, cli_settings):
        """Test the settings flag also disables the GPU path."""
        cli_settings.enable_gpu = False

        config = config_from_args(build_parser().parse_args(["a cat"]))

        assert config.use_gpu is False


class TestCreateOrchestrator:
    """Tests for wiring collaborators from settings."""

    def test_without_feedback_store(self, tmp_path):
        """Test the heuristic selector is used without a feedback store."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        orchestrator = create_orchestrator(settings, str(tmp_path))

        assert isinstance(orchestrator.model_selector, HeuristicModelSelector)
        assert orchestrator.feedback is None
        assert orchestrator.client.base_url == "https://image.pollinations.ai"

    def test_with_feedback_store(self, tmp_path):
        """Test REST collaborators are used when the store is configured."""
        env = {"FEEDBACK_URL": "https://store.example", "FEEDBACK_API_KEY": "key"}
        with patch.dict(os.environ, env, clear=True):
            settings = Settings(_env_file=None)

        orchestrator = create_orchestrator(settings, str(tmp_path))

        assert isinstance(orchestrator.model_selector, RestModelSelector)
        assert isinstance(orchestrator.feedback, RestFeedbackRecorder)

    def test_invalid_settings(self, tmp_path):
        """Test a store URL without a key is rejected."""
        with patch.dict(os.environ, {"FEEDBACK_URL": "https://store.example"}, clear=True):
            settings = Settings(_env_file=None)

        with pytest.raises(ValueError):
            create_orchestrator(settings, str(tmp_path))


class TestMain:
    """Tests for the main entry point."""

    def test_success(self, cli_settings, mock_orchestrator, capsys):
        """Test a successful run exits with 0 and prints a summary."""
        assert main(["a cat"]) == 0

        prompts, config = mock_orchestrator.run.call_args.args
        assert prompts == ["a cat"]
        assert config.count == 1
        assert "Completed: 1/1" in capsys.readouterr().out

    def test_multi_prompt(self, cli_settings, mock_orchestrator):
        """Test several prompts are split with the chosen delimiter."""
        main(["a cat | a dog", "--multi", "--delimiter", "pipe"])

        assert mock_orchestrator.run.call_args.args[0] == ["a cat", "a dog"]

    def test_surprise(self, cli_settings, mock_orchestrator):
        """Test --surprise picks a sample prompt."""
        from genpipe.utils.prompts import SAMPLE_PROMPTS

        main(["--surprise"])

        assert mock_orchestrator.run.call_args.args[0][0] in SAMPLE_PROMPTS

    def test_missing_prompt(self, cli_settings, mock_orchestrator):
        """Test a missing prompt is a usage error."""
        with pytest.raises(SystemExit) as exc_info:
            main([])

        assert exc_info.value.code == 2

    def test_nothing_completed(self, cli_settings, mock_orchestrator, capsys):
        """Test exit code 1 when every unit was skipped."""
        mock_orchestrator.run.return_value = BatchSummary(
            total_units=1, completed=0, skipped=1,
            failures=[UnitFailure(prompt="a cat", index=1, reason="HTTP 404")],
        )

        assert main(["a cat"]) == 1
        assert "HTTP 404" in capsys.readouterr().out

    def test_canceled(self, cli_settings, mock_orchestrator):
        """Test exit code 130 when the batch was canceled."""
        mock_orchestrator.run.return_value = BatchSummary(
            total_units=2, completed=1, skipped=0, canceled=True
        )

        assert main(["a cat", "-n", "2"]) == 130

    def test_configuration_error(self, cli_settings):
        """Test exit code 2 on invalid configuration."""
        with patch('app.main.create_orchestrator', side_effect=ValueError("bad config")):
            assert main(["a cat"]) == 2
