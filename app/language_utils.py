from babel import Locale, UnknownLocaleError

import logging
import re

logger = logging.getLogger(__name__)


def _parse_locale(value: str) -> Locale:
    """Parse a code like 'es', 'pt-BR', 'zh_Hans_CN' or 'b+sr+Latn' with Babel."""
    normalized_code = re.sub(r"^b\+", "", value.strip())
    normalized_code = re.sub(r"[-+]", "_", normalized_code)
    return Locale.parse(normalized_code)


def _lookup_language_name(value: str):
    """Find the language code whose English name matches ``value``."""
    wanted = value.strip().lower()
    for code, name in Locale("en").languages.items():
        if name.lower() == wanted:
            return code, name
    return None


def get_language_name(language: str) -> str:
    """
    Get the English display name to use in translation prompts.

    Args:
        language: A language code ('es', 'pt-BR', 'zh_CN') or an English
                  language name ('german', 'Spanish').

    Returns:
        The language name, with region when the code carries one
        (e.g. 'Portuguese (Brazil)'). Unknown input is returned with its first
        letter capitalized.
    """
    if not language or not language.strip():
        return language

    match = _lookup_language_name(language)
    if match:
        return match[1]

    try:
        locale = _parse_locale(language)
        return locale.get_display_name(locale="en")
    except (ValueError, UnknownLocaleError) as e:
        logger.warning(f"Could not determine language name for '{language}': {e}")
        value = language.strip()
        return value[0].upper() + value[1:]


def get_language_code(language: str) -> str:
    """
    Get the BCP-47 code to write into the XLIFF target-language attribute.

    Args:
        language: A language code or an English language name.

    Returns:
        Codes such as 'es', 'pt-BR' or 'zh-Hans-CN'. Unknown input is returned
        unchanged.
    """
    if not language or not language.strip():
        return language

    match = _lookup_language_name(language)
    if match:
        return match[0].replace("_", "-")

    try:
        locale = _parse_locale(language)
    except (ValueError, UnknownLocaleError) as e:
        logger.warning(f"Could not determine language code for '{language}': {e}")
        return language

    parts = [locale.language]
    if locale.script:
        parts.append(locale.script)
    if locale.territory:
        parts.append(locale.territory)
    return "-".join(parts)
