"""
Tests for provider construction, configuration assembly and the CLI.
"""

import json
import logging
import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from dash_voice import config as voice_config
from dash_voice.factory import ProviderFactory
from dash_voice.main import main
from dash_voice.models.data_models import ConversationState
from dash_voice.orchestrator import ConversationOrchestrator
from dash_voice.providers.dispatcher import OpenAIChatDispatcher
from dash_voice.providers.speech import WhisperChunkedProvider
from dash_voice.providers.synthesis import LocalTTSProvider


@pytest.fixture
def provider_selection(monkeypatch):
    """Restore module-level provider selection after each test."""
    for name in ('SPEECH_PROVIDER', 'FALLBACK_SPEECH_PROVIDER', 'SYNTHESIS_PROVIDER',
                 'FALLBACK_SYNTHESIS_PROVIDER', 'DISPATCHER'):
        monkeypatch.setattr(voice_config, name, getattr(voice_config, name))
    return monkeypatch


def local_config():
    return {
        'speech': {'provider': 'whisper', 'config': {'api_key': "sk-test"}},
        'fallback_speech': {'provider': 'assemblyai', 'config': {}},
        'synthesis': {'provider': 'local_tts', 'config': {'use_macos_say': False}},
        'fallback_synthesis': None,
        'dispatcher': {'provider': 'openai_chat', 'config': {'api_key': "sk-test"}},
        'voice': {'timing': {'silence_timeout': 1.0}},
    }


class TestProviderFactory:
    """Registry lookups and orchestrator assembly."""

    def test_unknown_providers(self):
        with pytest.raises(ValueError, match="Unsupported speech provider: nope"):
            ProviderFactory.create_speech_provider("nope", {})
        with pytest.raises(ValueError, match="Unsupported synthesis provider"):
            ProviderFactory.create_synthesis_provider("nope", {})
        with pytest.raises(ValueError, match="Unsupported dispatcher"):
            ProviderFactory.create_dispatcher("nope", {})

    def test_available_providers(self):
        assert ProviderFactory.get_available_providers() == {
            'speech': ['assemblyai', 'whisper'],
            'synthesis': ['openai_tts', 'local_tts'],
            'dispatcher': ['http_assistant', 'openai_chat'],
        }

    def test_validate_provider_config(self):
        assert ProviderFactory.validate_provider_config('dispatcher', 'openai_chat', {'api_key': "sk-test"})
        with pytest.raises(ValueError, match="validation failed"):
            ProviderFactory.validate_provider_config('speech', 'whisper', {})
        with pytest.raises(ValueError, match="Invalid provider type"):
            ProviderFactory.validate_provider_config('camera', 'whisper', {})

    @pytest.mark.asyncio
    async def test_create_all_providers_skips_broken_fallback(self, capsys):
        providers = ProviderFactory.create_all_providers(local_config())

        assert isinstance(providers['speech'], WhisperChunkedProvider)
        assert isinstance(providers['synthesis'], LocalTTSProvider)
        assert isinstance(providers['dispatcher'], OpenAIChatDispatcher)
        assert providers['fallback_speech'] is None
        assert providers['fallback_synthesis'] is None
        assert "Speech fallback disabled" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_create_orchestrator(self):
        orchestrator = ProviderFactory.create_orchestrator(local_config())

        assert isinstance(orchestrator, ConversationOrchestrator)
        assert orchestrator.config.timing.silence_timeout == 1.0
        assert orchestrator.state == ConversationState.IDLE

    def test_missing_primary_is_fatal(self):
        config = local_config()
        config['dispatcher'] = {'provider': 'http_assistant', 'config': {}}

        with pytest.raises(ValueError, match="Assistant URL is required"):
            ProviderFactory.create_all_providers(config)


class TestVoiceConfig:
    """Module-level configuration assembly and validation."""

    def test_get_voice_config_sections(self):
        config = voice_config.get_voice_config()

        assert set(config) == {'speech', 'fallback_speech', 'synthesis', 'fallback_synthesis', 'dispatcher', 'voice'}
        assert config['speech']['provider'] == voice_config.SPEECH_PROVIDER
        assert 'timing' in config['voice']

    def test_set_providers(self, provider_selection):
        voice_config.set_providers(speech="whisper", fallback_speech="", dispatcher="openai_chat")
        config = voice_config.get_voice_config()

        assert config['speech']['provider'] == "whisper"
        assert config['fallback_speech'] is None
        assert config['dispatcher'] == {'provider': "openai_chat", 'config': voice_config.OPENAI_CHAT_CONFIG}

    def test_validate_environment_reports_missing_keys(self, provider_selection):
        provider_selection.setattr(voice_config, 'DISPATCHER', "openai_chat")
        provider_selection.setitem(voice_config.OPENAI_CHAT_CONFIG, 'api_key', None)
        provider_selection.setitem(voice_config.WHISPER_CONFIG, 'api_key', None)

        results = voice_config.validate_environment()

        assert not results['valid']
        assert "Missing required: OPENAI_API_KEY (for openai_chat)" in results['errors']
        assert "OPENAI_API_KEY not set (fallback whisper disabled)" in results['warnings']

    def test_validate_environment_valid(self, provider_selection):
        provider_selection.setattr(voice_config, 'DISPATCHER', "openai_chat")
        provider_selection.setitem(voice_config.ASSEMBLYAI_CONFIG, 'api_key', "a" * 32)
        provider_selection.setitem(voice_config.OPENAI_TTS_CONFIG, 'api_key', "sk-test")
        provider_selection.setitem(voice_config.OPENAI_CHAT_CONFIG, 'api_key', "sk-test")
        provider_selection.setitem(voice_config.WHISPER_CONFIG, 'api_key', "sk-test")

        results = voice_config.validate_environment()

        assert results['valid'], results['errors']
        assert results['errors'] == []


class TestCli:
    """Command line entry point."""

    @pytest.fixture(autouse=True)
    def restore_logging(self):
        logger = logging.getLogger("dash_voice")
        handlers, level = list(logger.handlers), logger.level
        yield
        logger.handlers = handlers
        logger.setLevel(level)

    def test_list_providers(self, capsys):
        assert main(["list-providers"]) == 0

        output = json.loads(capsys.readouterr().out)
        assert "whisper" in output['speech']

    def test_config_redacts_keys(self, capsys, provider_selection):
        provider_selection.setitem(voice_config.OPENAI_CHAT_CONFIG, 'api_key', "sk-secret")

        assert main(["config", "--dispatcher", "openai_chat", "--no-fallback"]) == 0

        output = capsys.readouterr().out
        assert "sk-secret" not in output
        data = json.loads(output)
        assert data['dispatcher']['config']['api_key'] == "***"
        assert data['fallback_speech'] is None
