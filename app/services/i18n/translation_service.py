"""
Locale catalog loading for outbound notifications.

Catalogs live in app/locales/<locale>/<namespace>.json as flat key -> message
maps with ``{param}`` placeholders. A locale tag falls back to its base
language and then to the default locale; a key missing from a catalog falls
back to the default catalog and finally to the key itself.
"""

import asyncio
import json
from pathlib import Path

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

LOCALES_PATH = Path(__file__).resolve().parent.parent.parent / "locales"
DEFAULT_NAMESPACE = "common"


class TranslationError(Exception):
    """Raised when a catalog exists but cannot be parsed."""

    def __init__(self, message: str, locale: str | None = None):
        super().__init__(message)
        self.locale = locale


class Translator:
    """Callable bound to one resolved locale: ``t("key", name="Jane")``."""

    def __init__(self, locale: str, catalog: dict[str, str], fallback: dict[str, str] | None = None):
        self.locale = locale
        self._catalog = catalog
        self._fallback = fallback or {}

    def __call__(self, key: str, **params) -> str:
        message = self._catalog.get(key) or self._fallback.get(key) or key
        if not params:
            return message
        try:
            return message.format(**params)
        except (KeyError, IndexError, ValueError):
            logger.warning("Translation placeholder mismatch", key=key, locale=self.locale)
            return message

    def __repr__(self) -> str:
        return f"Translator(locale={self.locale!r})"


def normalize_locale(locale: str | None, default: str | None = None) -> str:
    """'pt_BR' / 'PT-br' -> 'pt-BR'; empty -> default."""
    fallback = default or settings.DEFAULT_LOCALE
    if not locale or not locale.strip():
        return fallback
    parts = locale.strip().replace("_", "-").split("-")
    language = parts[0].lower()
    if len(parts) == 1:
        return language
    return f"{language}-{parts[1].upper()}"


class TranslationService:
    """Loads catalogs from disk once per (locale, namespace) and hands out Translators."""

    def __init__(self, locales_path: Path = LOCALES_PATH, default_locale: str | None = None):
        self.locales_path = locales_path
        self.default_locale = default_locale or settings.DEFAULT_LOCALE
        self._cache: dict[tuple[str, str], dict[str, str] | None] = {}

    def _read_catalog(self, locale: str, namespace: str) -> dict[str, str] | None:
        path = self.locales_path / locale / f"{namespace}.json"
        if not path.is_file():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise TranslationError(f"Invalid catalog {path}: {e}", locale=locale) from e
        if not isinstance(data, dict):
            raise TranslationError(f"Catalog {path} is not a JSON object", locale=locale)
        return {str(k): str(v) for k, v in data.items()}

    async def _load(self, locale: str, namespace: str) -> dict[str, str] | None:
        key = (locale, namespace)
        if key in self._cache:
            return self._cache[key]
        self._cache[key] = await asyncio.to_thread(self._read_catalog, locale, namespace)
        return self._cache[key]

    def candidates(self, locale: str | None) -> list[str]:
        """Lookup order for a requested locale tag."""
        tag = normalize_locale(locale, self.default_locale)
        chain = [tag]
        base = tag.split("-")[0]
        if base != tag:
            chain.append(base)
        if self.default_locale not in chain:
            chain.append(self.default_locale)
        return chain

    async def get_translation(
        self, locale: str | None, namespace: str = DEFAULT_NAMESPACE
    ) -> Translator:
        """
        Resolve a Translator for ``locale``.

        Args:
            locale: Requested tag, may be None or unsupported
            namespace: Catalog file name without extension

        Returns:
            Translator bound to the first catalog found in the fallback chain
        """
        fallback = await self._load(self.default_locale, namespace) or {}

        for candidate in self.candidates(locale):
            catalog = await self._load(candidate, namespace)
            if catalog is not None:
                if candidate != normalize_locale(locale, self.default_locale):
                    logger.debug(
                        "Locale fell back", requested=locale, resolved=candidate, namespace=namespace
                    )
                return Translator(candidate, catalog, fallback)

        logger.warning("No catalog found for locale", requested=locale, namespace=namespace)
        return Translator(self.default_locale, {}, fallback)


translation_service = TranslationService()


async def get_translation(locale: str | None, namespace: str = DEFAULT_NAMESPACE) -> Translator:
    """Module-level shortcut around the shared TranslationService."""
    return await translation_service.get_translation(locale, namespace)
