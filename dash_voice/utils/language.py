"""
Supported conversation languages and the per-language assistant prompt.
"""

from typing import Dict, Optional

from ..models.data_models import LanguageProfile, VoiceParams


SUPPORTED_LANGUAGES: Dict[str, LanguageProfile] = {
    'en': LanguageProfile(code='en', bcp47='en-ZA', name='English', default_voice='en-ZA-LeahNeural'),
    'af': LanguageProfile(code='af', bcp47='af-ZA', name='Afrikaans', default_voice='af-ZA-AdriNeural'),
    'zu': LanguageProfile(code='zu', bcp47='zu-ZA', name='isiZulu', default_voice='zu-ZA-ThandoNeural'),
    'xh': LanguageProfile(code='xh', bcp47='xh-ZA', name='isiXhosa', default_voice='xh-ZA-Online'),
    'nso': LanguageProfile(code='nso', bcp47='nso-ZA', name='Sepedi', default_voice='nso-ZA-Online'),
}

DEFAULT_LANGUAGE = 'en'


def get_language_profile(language: Optional[str]) -> LanguageProfile:
    """
    Resolve a short code ("zu") or BCP-47 tag ("zu-ZA") to a profile.

    Unknown languages fall back to English.
    """
    if not language:
        return SUPPORTED_LANGUAGES[DEFAULT_LANGUAGE]
    key = language.strip().lower()
    if key in SUPPORTED_LANGUAGES:
        return SUPPORTED_LANGUAGES[key]
    for profile in SUPPORTED_LANGUAGES.values():
        if profile.bcp47.lower() == key:
            return profile
    short = key.split('-')[0]
    return SUPPORTED_LANGUAGES.get(short, SUPPORTED_LANGUAGES[DEFAULT_LANGUAGE])


def voice_params_for(profile: LanguageProfile, rate: float = 1.0, pitch: float = 1.0) -> VoiceParams:
    return VoiceParams(language=profile.bcp47, voice=profile.default_voice, rate=rate, pitch=pitch)


def generate_language_prompt(profile: LanguageProfile) -> str:
    """System prompt telling the assistant which language to answer in."""
    return (
        f"You are Dash, an AI assistant for educators. Respond in {profile.name} "
        f"({profile.bcp47}) unless the user explicitly requests a different language. "
        "Keep responses concise and clear for voice interaction."
    )
