"""Locale detection and lightweight translation helpers for the ephfleet CLI.

The module centralises locale selection so every command shares the same
language settings. ``EPHFLEET_LANG`` wins; otherwise the POSIX environment
variables (``LC_ALL``, ``LC_MESSAGES``, ``LANG``) are inspected, followed by
``locale.getlocale`` as a fallback.

When nothing yields a result and the CLI runs interactively, the user is
prompted to select a language. Otherwise English is used.
"""

from __future__ import annotations

import locale
import os
from typing import Dict, Optional

__all__ = [
    "_",
    "get_locale",
    "initialize_locale",
    "set_locale",
]

_SUPPORTED_LOCALES = {"en", "pl"}


def is_supported_locale(code: str) -> bool:
    """Check if the given locale is supported."""
    return code in _SUPPORTED_LOCALES


_CURRENT_LOCALE: Optional[str] = None

_TRANSLATIONS: Dict[str, Dict[str, str]] = {
    "pl": {
        "[WARN] Failed to save configuration: {error}": "[WARN] Nie udało się zapisać konfiguracji: {error}",
        "{label} (optional)": "{label} (opcjonalne)",
        "{label} (optional) – leave blank to keep existing value": "{label} (opcjonalne) – pozostaw puste, aby zachować obecną wartość",
        "Providers to configure": "Dostawcy do skonfigurowania",
        "Use a duration such as 12h, 90m or 1h30m": "Podaj czas, np. 12h, 90m lub 1h30m",
        "Lifetime must be longer than zero": "Czas życia musi być dłuższy niż zero",
        "Enter a positive whole number": "Podaj dodatnią liczbę całkowitą",
        "Invalid entry: {items}": "Nieprawidłowa wartość: {items}",
        "[bold]ephfleet configuration[/bold]": "[bold]Konfiguracja ephfleet[/bold]",
        "Accept the configuration above?": "Czy zaakceptować powyższą konfigurację?",
        "[yellow]Reopening configuration prompts...[/yellow]": "[yellow]Ponownie otwieram kreator konfiguracji...[/yellow]",
        "Provide required values. Leave blank to skip or keep the current value.": "Wprowadź wymagane dane. Pozostaw puste, aby pominąć lub zachować obecną wartość.",
        "Save configuration to {path}?": "Zapisać konfigurację do pliku {path}?",
        "Configuration": "Konfiguracja",
        "Key": "Klucz",
        "Value": "Wartość",
        "Field": "Pole",
        "n/a": "n/d",
        "None": "Brak",
        "none": "brak",
        "Owner override": "Nadpisany właściciel",
        "State directory": "Katalog stanu",
        "AWS profile": "Profil AWS",
        "AWS regions": "Regiony AWS",
        "AWS machine type": "Typ maszyny AWS",
        "GCE projects": "Projekty GCE",
        "GCE projects (comma separated)": "Projekty GCE (oddzielone przecinkami)",
        "GCE zones": "Strefy GCE",
        "GCE default project": "Domyślny projekt GCE",
        "GCE machine type": "Typ maszyny GCE",
        "GCE DNS zone": "Strefa DNS w GCE",
        "GCE DNS domain": "Domena DNS w GCE",
        "Azure locations": "Lokalizacje Azure",
        "Azure machine type": "Typ maszyny Azure",
        "Maximum concurrency": "Maksymalna współbieżność",
        "Azure subscription": "Subskrypcja Azure",
        "SSH user": "Użytkownik SSH",
        "SSH private key": "Prywatny klucz SSH",
        "Default lifetime": "Domyślny czas życia",
        "Slack token": "Token Slack",
        "Ephemeral multi-cloud cluster manager": "Menadżer efemerycznych klastrów w wielu chmurach",
        "Manage ephfleet configuration files": "Zarządzaj plikami konfiguracji ephfleet",
        "Configuration file already exists: {path}": "Plik konfiguracji już istnieje: {path}",
        "Configuration saved to {path}": "Konfiguracja zapisana do {path}",
        "Error: {error}": "Błąd: {error}",
        "Operation summary": "Podsumowanie operacji",
        "Operation cancelled": "Operacja anulowana",
        "Cluster": "Klaster",
        "Clusters": "Klastry",
        "Name": "Nazwa",
        "Nodes": "Węzły",
        "Providers": "Dostawcy",
        "Created": "Utworzono",
        "Expires in": "Wygasa za",
        "expired": "wygasł",
        "Lifetime": "Czas życia",
        "Machine type": "Typ maszyny",
        "provider default": "domyślny dostawcy",
        "Filesystem": "System plików",
        "VM": "VM",
        "Public IP": "Publiczny IP",
        "Private IP": "Prywatny IP",
        "Locality": "Lokalizacja",
        "Failures": "Błędy",
        "Error": "Błąd",
        "Output": "Wyjście",
        "{count} VM(s) with malformed names": "Maszyny z niepoprawną nazwą: {count}",
        "VMs with malformed names: {names}": "Maszyny z niepoprawną nazwą: {names}",
        "[green]Cluster {name} created with {count} node(s)[/green]": "[green]Klaster {name} utworzony, liczba węzłów: {count}[/green]",
        "[green]Cluster {name} destroyed[/green]": "[green]Klaster {name} usunięty[/green]",
        "[green]Cluster {name} now expires in {remaining}[/green]": "[green]Klaster {name} wygaśnie za {remaining}[/green]",
        "Destroy all of your clusters?": "Usunąć wszystkie Twoje klastry?",
        "No clusters destroyed": "Nie usunięto żadnego klastra",
        "Cluster {name} reset": "Klaster {name} zrestartowany",
        "No expired clusters": "Brak wygasłych klastrów",
        "would destroy": "do usunięcia",
        "destroyed": "usunięte",
        "Orphaned key pair: {name}": "Osierocona para kluczy: {name}",
        "Started {count} node(s)": "Uruchomiono węzły: {count}",
        "Stopped {count} node(s)": "Zatrzymano węzły: {count}",
        "Wiped {count} node(s)": "Wyczyszczono węzły: {count}",
    },
}


def _normalize(language: str) -> str:
    """Collapse language identifiers to the supported subset."""

    slug = language.replace("-", "_").lower()
    if slug.startswith("pl"):
        return "pl"
    return "en"


def _detect_locale_posix() -> Optional[str]:
    """Derive locale from POSIX environment variables or locale settings."""

    for variable in ("LC_ALL", "LC_MESSAGES", "LANG"):
        value = os.environ.get(variable)
        if value:
            return value
    try:
        default_locale = locale.getlocale()
    except (AttributeError, ValueError):  # pragma: no cover - platform quirks
        return None
    if default_locale and default_locale[0]:
        return default_locale[0]
    return None


def detect_locale() -> Optional[str]:
    """Return the detected locale code normalised to the supported set."""

    override = os.environ.get("EPHFLEET_LANG")
    if override:
        return _normalize(override)

    detected = _detect_locale_posix()
    if detected:
        return _normalize(detected)
    return None


def set_locale(locale_code: str) -> str:
    """Force the application locale to the desired language."""

    global _CURRENT_LOCALE
    normalized = _normalize(locale_code)
    _CURRENT_LOCALE = normalized
    return _CURRENT_LOCALE


def initialize_locale(*, interactive: bool = True) -> str:
    """Ensure a locale is selected, prompting the user if necessary."""

    global _CURRENT_LOCALE
    if _CURRENT_LOCALE:
        return _CURRENT_LOCALE

    detected = detect_locale()
    if detected:
        _CURRENT_LOCALE = detected
        return _CURRENT_LOCALE

    if interactive:
        import questionary

        choice = questionary.select(
            "Select language",
            choices=[
                questionary.Choice("English", value="en"),
                questionary.Choice("Polski", value="pl"),
            ],
        ).ask()
        _CURRENT_LOCALE = _normalize(choice or "en")
        return _CURRENT_LOCALE

    _CURRENT_LOCALE = "en"
    return _CURRENT_LOCALE


def get_locale() -> str:
    """Return the active locale, defaulting to English."""

    return _CURRENT_LOCALE or "en"


def _(message: Optional[str]) -> str:
    """Translate the provided message to the currently active locale."""

    if message is None:
        return ""
    active = get_locale()
    if active == "en":
        return message
    catalogue = _TRANSLATIONS.get(active, {})
    return catalogue.get(message, message)
