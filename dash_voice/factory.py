"""
Factory for creating provider instances based on configuration.
"""

from typing import Dict, Any, Optional

from .interfaces import (
    SpeechProviderInterface,
    SynthesisProviderInterface,
    LanguageModelDispatcherInterface
)
from .providers.speech import AssemblyAIStreamingProvider, WhisperChunkedProvider
from .providers.synthesis import OpenAITTSProvider, LocalTTSProvider
from .providers.dispatcher import HttpAssistantDispatcher, OpenAIChatDispatcher
from .config_models import VoiceConfig
from .response_cache import ResponseCache, InMemoryResponseStore
from .orchestrator import ConversationOrchestrator


class ProviderFactory:
    """Factory for creating provider instances."""

    SPEECH_PROVIDERS = {
        'assemblyai': AssemblyAIStreamingProvider,
        'whisper': WhisperChunkedProvider,
    }

    SYNTHESIS_PROVIDERS = {
        'openai_tts': OpenAITTSProvider,
        'local_tts': LocalTTSProvider,
    }

    DISPATCHERS = {
        'http_assistant': HttpAssistantDispatcher,
        'openai_chat': OpenAIChatDispatcher,
    }

    @classmethod
    def _registries(cls) -> Dict[str, Dict[str, type]]:
        return {
            'speech': cls.SPEECH_PROVIDERS,
            'synthesis': cls.SYNTHESIS_PROVIDERS,
            'dispatcher': cls.DISPATCHERS,
        }

    @classmethod
    def create_speech_provider(cls,
                               provider_name: str,
                               config: Dict[str, Any]) -> SpeechProviderInterface:
        """
        Create a speech recognition provider instance.

        Args:
            provider_name: Name of the provider to create
            config: Configuration for the provider

        Returns:
            SpeechProviderInterface: Provider instance

        Raises:
            ValueError: If provider name is not supported
        """
        if provider_name not in cls.SPEECH_PROVIDERS:
            available = ', '.join(cls.SPEECH_PROVIDERS.keys())
            raise ValueError(f"Unsupported speech provider: {provider_name}. Available: {available}")
        return cls.SPEECH_PROVIDERS[provider_name](config)

    @classmethod
    def create_synthesis_provider(cls,
                                  provider_name: str,
                                  config: Dict[str, Any]) -> SynthesisProviderInterface:
        """
        Create a speech synthesis provider instance.

        Raises:
            ValueError: If provider name is not supported
        """
        if provider_name not in cls.SYNTHESIS_PROVIDERS:
            available = ', '.join(cls.SYNTHESIS_PROVIDERS.keys())
            raise ValueError(f"Unsupported synthesis provider: {provider_name}. Available: {available}")
        return cls.SYNTHESIS_PROVIDERS[provider_name](config)

    @classmethod
    def create_dispatcher(cls,
                          provider_name: str,
                          config: Dict[str, Any]) -> LanguageModelDispatcherInterface:
        """
        Create a language model dispatcher instance.

        Raises:
            ValueError: If dispatcher name is not supported
        """
        if provider_name not in cls.DISPATCHERS:
            available = ', '.join(cls.DISPATCHERS.keys())
            raise ValueError(f"Unsupported dispatcher: {provider_name}. Available: {available}")
        return cls.DISPATCHERS[provider_name](config)

    @classmethod
    def _create_optional(cls, create, section: Optional[Dict[str, Any]], label: str):
        """Create a fallback provider; a misconfigured fallback is skipped, not fatal."""
        if not section or not section.get('provider'):
            return None
        try:
            return create(section['provider'], section.get('config', {}))
        except ValueError as e:
            print(f"⚠️  {label} fallback disabled: {e}")
            return None

    @classmethod
    def create_all_providers(cls, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create all providers based on configuration.

        Args:
            config: Full configuration dictionary (see config.get_voice_config)

        Returns:
            Dictionary containing all provider instances
        """
        providers = {}

        speech = config.get('speech', {})
        providers['speech'] = cls.create_speech_provider(speech.get('provider'), speech.get('config', {}))
        providers['fallback_speech'] = cls._create_optional(
            cls.create_speech_provider, config.get('fallback_speech'), "Speech"
        )

        synthesis = config.get('synthesis', {})
        providers['synthesis'] = cls.create_synthesis_provider(
            synthesis.get('provider'), synthesis.get('config', {})
        )
        providers['fallback_synthesis'] = cls._create_optional(
            cls.create_synthesis_provider, config.get('fallback_synthesis'), "Synthesis"
        )

        dispatcher = config.get('dispatcher', {})
        providers['dispatcher'] = cls.create_dispatcher(dispatcher.get('provider'), dispatcher.get('config', {}))
        return providers

    @classmethod
    def create_orchestrator(cls, config: Dict[str, Any]) -> ConversationOrchestrator:
        """Assemble a ConversationOrchestrator from a full configuration dictionary."""
        voice_config = VoiceConfig.from_dict(config.get('voice'))
        providers = cls.create_all_providers(config)
        cache = ResponseCache(
            InMemoryResponseStore(voice_config.cache.max_entries, voice_config.cache.ttl),
            enabled=voice_config.cache.enabled
        )
        return ConversationOrchestrator(
            speech_provider=providers['speech'],
            synthesis_provider=providers['synthesis'],
            dispatcher=providers['dispatcher'],
            fallback_speech_provider=providers['fallback_speech'],
            fallback_synthesis_provider=providers['fallback_synthesis'],
            response_cache=cache,
            config=voice_config
        )

    @classmethod
    def get_available_providers(cls) -> Dict[str, list]:
        """
        Get list of all available providers by type.

        Returns:
            Dictionary mapping provider types to available provider names
        """
        return {kind: list(registry.keys()) for kind, registry in cls._registries().items()}

    @classmethod
    def validate_provider_config(cls, provider_type: str, provider_name: str, config: Dict[str, Any]) -> bool:
        """
        Validate a provider configuration by constructing the provider.

        Raises:
            ValueError: If provider type/name is invalid or config is missing required fields
        """
        registries = cls._registries()
        if provider_type not in registries:
            available_types = ', '.join(registries.keys())
            raise ValueError(f"Invalid provider type: {provider_type}. Available: {available_types}")

        registry = registries[provider_type]
        if provider_name not in registry:
            available_names = ', '.join(registry.keys())
            raise ValueError(f"Invalid {provider_type} provider: {provider_name}. Available: {available_names}")

        try:
            registry[provider_name](config)
            return True
        except Exception as e:
            raise ValueError(f"Provider configuration validation failed: {e}")
