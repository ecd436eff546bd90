"""
Configuration for the Dash voice session.
Organized into discrete feature sections for clarity.
"""

import os
from pathlib import Path
from typing import Dict, Any, Optional

from dotenv import load_dotenv

from .config_models import VoiceConfig


# =============================================================================
# SECTION 1: ENVIRONMENT & CREDENTIALS
# =============================================================================

# Load environment variables from the project root
parent_dir = Path(__file__).parent.parent
env_path = parent_dir / ".env"
if env_path.exists():
    load_dotenv(env_path)

ASSEMBLYAI_API_KEY = os.getenv("ASSEMBLYAI_API_KEY")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
DASH_ASSISTANT_URL = os.getenv("DASH_ASSISTANT_URL")
DASH_ASSISTANT_TOKEN = os.getenv("DASH_ASSISTANT_TOKEN")


# =============================================================================
# SECTION 2: PROVIDER SELECTION
# =============================================================================
# Primary providers plus the fallbacks used when a primary fails.

SPEECH_PROVIDER = "assemblyai"              # Options: "assemblyai", "whisper"
FALLBACK_SPEECH_PROVIDER = "whisper"        # Used once if the primary hears nothing
SYNTHESIS_PROVIDER = "openai_tts"           # Options: "openai_tts", "local_tts"
FALLBACK_SYNTHESIS_PROVIDER = "local_tts"   # Used per sentence if the primary fails
DISPATCHER = "http_assistant" if DASH_ASSISTANT_URL else "openai_chat"


# =============================================================================
# SECTION 3: SPEECH RECOGNITION CONFIGURATION
# =============================================================================

ASSEMBLYAI_CONFIG = {
    "api_key": ASSEMBLYAI_API_KEY,
    "sample_rate": 16000,
    "format_turns": True,
    "frames_per_buffer": 1600,
    "latency": "high",
}

WHISPER_CONFIG = {
    "api_key": OPENAI_API_KEY,
    "model": "whisper-1",
    "sample_rate": 16000,
    "chunk_duration": 3.0,          # Seconds of speech between partials
    "silence_threshold": 0.01,      # Energy threshold for silence detection
    "silence_duration": 1.2,        # Seconds of silence that end an utterance
}


# =============================================================================
# SECTION 4: DISPATCHER CONFIGURATION
# =============================================================================

HTTP_ASSISTANT_CONFIG = {
    "url": DASH_ASSISTANT_URL,
    "token": DASH_ASSISTANT_TOKEN,
    "conversations_url": os.getenv("DASH_CONVERSATIONS_URL"),
    "preflight_url": os.getenv("DASH_PREFLIGHT_URL"),
    "timeout": 60,
    "stream": True,
}

OPENAI_CHAT_CONFIG = {
    "api_key": OPENAI_API_KEY,
    "model": "gpt-4o-mini",
    "max_tokens": 400,
    "temperature": 0.7,
    "max_history_messages": 20,
}


# =============================================================================
# SECTION 5: SPEECH SYNTHESIS CONFIGURATION
# =============================================================================

OPENAI_TTS_CONFIG = {
    "api_key": OPENAI_API_KEY,
    "model": "gpt-4o-mini-tts",
    "voice": "nova",
    "speed": 1.0,
    "response_format": "mp3",
    "instructions": "Speak warmly and clearly, with a South African accent.",
}

LOCAL_TTS_CONFIG = {
    "rate": 175,
    "volume": 0.9,
    "voice_id": 0,
    "say_voices": {},
}


# =============================================================================
# SECTION 6: VOICE SESSION CONFIGURATION
# =============================================================================
# Timers, filters, chunking and cache. DASH_* environment variables override
# the defaults (see VoiceConfig.from_env).

VOICE_SETTINGS: Dict[str, Any] = VoiceConfig.from_env().model_dump()


# =============================================================================
# SECTION 7: CONFIGURATION ASSEMBLY
# =============================================================================

_SPEECH_CONFIGS = {
    "assemblyai": ASSEMBLYAI_CONFIG,
    "whisper": WHISPER_CONFIG,
}

_SYNTHESIS_CONFIGS = {
    "openai_tts": OPENAI_TTS_CONFIG,
    "local_tts": LOCAL_TTS_CONFIG,
}

_DISPATCHER_CONFIGS = {
    "http_assistant": HTTP_ASSISTANT_CONFIG,
    "openai_chat": OPENAI_CHAT_CONFIG,
}


def _section(provider: Optional[str], configs: Dict[str, Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not provider:
        return None
    return {"provider": provider, "config": dict(configs.get(provider, {}))}


def get_voice_config() -> Dict[str, Any]:
    """
    Assemble the complete voice configuration.

    Returns:
        Dictionary with provider sections and the 'voice' session settings
    """
    return {
        "speech": _section(SPEECH_PROVIDER, _SPEECH_CONFIGS),
        "fallback_speech": _section(FALLBACK_SPEECH_PROVIDER, _SPEECH_CONFIGS),
        "synthesis": _section(SYNTHESIS_PROVIDER, _SYNTHESIS_CONFIGS),
        "fallback_synthesis": _section(FALLBACK_SYNTHESIS_PROVIDER, _SYNTHESIS_CONFIGS),
        "dispatcher": _section(DISPATCHER, _DISPATCHER_CONFIGS),
        "voice": VOICE_SETTINGS,
    }


# =============================================================================
# SECTION 8: RUNTIME PROVIDER SWITCHING
# =============================================================================

def set_providers(
    speech: Optional[str] = None,
    fallback_speech: Optional[str] = None,
    synthesis: Optional[str] = None,
    fallback_synthesis: Optional[str] = None,
    dispatcher: Optional[str] = None
):
    """Override provider selection at runtime."""
    global SPEECH_PROVIDER, FALLBACK_SPEECH_PROVIDER, SYNTHESIS_PROVIDER
    global FALLBACK_SYNTHESIS_PROVIDER, DISPATCHER

    if speech:
        SPEECH_PROVIDER = speech
    if fallback_speech is not None:
        FALLBACK_SPEECH_PROVIDER = fallback_speech or None
    if synthesis:
        SYNTHESIS_PROVIDER = synthesis
    if fallback_synthesis is not None:
        FALLBACK_SYNTHESIS_PROVIDER = fallback_synthesis or None
    if dispatcher:
        DISPATCHER = dispatcher


# =============================================================================
# SECTION 9: VALIDATION & DIAGNOSTICS
# =============================================================================

def validate_environment() -> Dict[str, Any]:
    """Validate the environment and configuration."""
    results = {"valid": True, "errors": [], "warnings": [], "info": []}

    required = {
        "assemblyai": ("ASSEMBLYAI_API_KEY", ASSEMBLYAI_CONFIG.get("api_key")),
        "whisper": ("OPENAI_API_KEY", WHISPER_CONFIG.get("api_key")),
        "openai_tts": ("OPENAI_API_KEY", OPENAI_TTS_CONFIG.get("api_key")),
        "openai_chat": ("OPENAI_API_KEY", OPENAI_CHAT_CONFIG.get("api_key")),
        "http_assistant": ("DASH_ASSISTANT_URL", HTTP_ASSISTANT_CONFIG.get("url")),
    }

    for provider in (SPEECH_PROVIDER, SYNTHESIS_PROVIDER, DISPATCHER):
        if provider in required:
            var_name, value = required[provider]
            if not value:
                results["errors"].append(f"Missing required: {var_name} (for {provider})")
                results["valid"] = False

    for provider in (FALLBACK_SPEECH_PROVIDER, FALLBACK_SYNTHESIS_PROVIDER):
        if provider in required:
            var_name, value = required[provider]
            if not value:
                results["warnings"].append(f"{var_name} not set (fallback {provider} disabled)")

    if DISPATCHER == "http_assistant" and not DASH_ASSISTANT_TOKEN:
        results["warnings"].append("DASH_ASSISTANT_TOKEN not set (requests are unauthenticated)")

    try:
        voice = VoiceConfig.from_dict(VOICE_SETTINGS)
        results["info"].append(
            f"Silence timeout: {voice.timing.silence_timeout}s, "
            f"language: {voice.session.default_language}"
        )
    except ValueError as e:
        results["errors"].append(f"Invalid voice settings: {e}")
        results["valid"] = False

    return results


def print_config_summary():
    """Print a summary of the current configuration."""
    print("=" * 60)
    print("🔧 Dash Voice Configuration")
    print("=" * 60)
    print(f"Speech: {SPEECH_PROVIDER} (fallback: {FALLBACK_SPEECH_PROVIDER or 'none'})")
    print(f"Synthesis: {SYNTHESIS_PROVIDER} (fallback: {FALLBACK_SYNTHESIS_PROVIDER or 'none'})")
    print(f"Dispatcher: {DISPATCHER}")
    print()

    validation = validate_environment()
    if validation["valid"]:
        print("✅ Configuration Valid")
    else:
        print("❌ Configuration Issues:")
        for error in validation["errors"]:
            print(f"  - {error}")

    if validation["warnings"]:
        print("\n⚠️  Warnings:")
        for warning in validation["warnings"]:
            print(f"  - {warning}")

    for info in validation["info"]:
        print(f"ℹ️  {info}")

    print("=" * 60)
