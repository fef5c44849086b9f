"""Interactive ``config init`` wizard.

The wizard asks which providers to set up, then only asks the questions of
those providers. Region and zone lists are offered as checkboxes seeded with
the provider defaults and the values already configured.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Union

import questionary
from rich.console import Console

from ephfleet_core import AppConfig, with_overrides
from ephfleet_core.localization import _
from ephfleet_core.timeutil import parse_lifetime
from services.aws import DEFAULT_REGIONS as AWS_REGIONS
from services.azure import DEFAULT_LOCATIONS as AZURE_LOCATIONS
from services.gce import DEFAULT_ZONES as GCE_ZONES
from ui.formatters import config_summary_table

_LIST_ITEM = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

Validation = Union[bool, str]


def validate_lifetime(text: str) -> Validation:
    if not text.strip():
        return True
    try:
        lifetime = parse_lifetime(text)
    except ValueError:
        return _("Use a duration such as 12h, 90m or 1h30m")
    if not lifetime:
        return _("Lifetime must be longer than zero")
    return True


def validate_concurrency(text: str) -> Validation:
    value = text.strip()
    if not value:
        return True
    if not value.isdigit() or int(value) < 1:
        return _("Enter a positive whole number")
    return True


def validate_list(text: str) -> Validation:
    """Accept blank input or a comma separated list of identifiers."""

    if not text.strip():
        return True
    bad = [item for item in split_list(text) if not _LIST_ITEM.match(item)]
    if bad or text.strip().endswith(","):
        return _("Invalid entry: {items}").format(items=", ".join(bad) or "''")
    return True


def split_list(text: Optional[str]) -> list[str]:
    return [item.strip() for item in (text or "").split(",") if item.strip()]


@dataclass(frozen=True)
class _Question:
    name: str
    label: str
    kind: str = "text"
    choices: tuple[str, ...] = ()


_GENERAL = (
    _Question("username", "Owner override"),
    _Question("lifetime", "Default lifetime", kind="lifetime"),
    _Question("max_concurrency", "Maximum concurrency", kind="count"),
    _Question("ssh_user", "SSH user"),
    _Question("ssh_key_path", "SSH private key"),
)

_PROVIDERS: dict[str, tuple[_Question, ...]] = {
    "aws": (
        _Question("aws_profile", "AWS profile"),
        _Question("aws_regions", "AWS regions", kind="choices", choices=AWS_REGIONS),
        _Question("aws_machine_type", "AWS machine type"),
    ),
    "gce": (
        _Question("gce_projects", "GCE projects (comma separated)", kind="list"),
        _Question("gce_default_project", "GCE default project"),
        _Question("gce_zones", "GCE zones", kind="choices", choices=GCE_ZONES),
        _Question("gce_machine_type", "GCE machine type"),
        _Question("gce_dns_zone", "GCE DNS zone"),
        _Question("gce_dns_domain", "GCE DNS domain"),
    ),
    "azure": (
        _Question("azure_subscription", "Azure subscription"),
        _Question("azure_locations", "Azure locations", kind="choices", choices=AZURE_LOCATIONS),
        _Question("azure_machine_type", "Azure machine type"),
    ),
}

_SECRETS = (_Question("slack_token", "Slack token", kind="secret"),)


def configured_providers(config: AppConfig) -> list[str]:
    """Return the providers with at least one setting in ``config``."""

    return [
        provider
        for provider, questions in _PROVIDERS.items()
        if any(getattr(config, question.name) for question in questions)
    ]


def prompt_app_config(config: AppConfig, console: Optional[Console] = None) -> AppConfig:
    """Walk the user through the configuration until they accept the summary."""

    console = console or Console()
    console.print(_("[bold]ephfleet configuration[/bold]"))
    console.print(_("Provide required values. Leave blank to skip or keep the current value."))

    current = config
    while True:
        selected = questionary.checkbox(
            _("Providers to configure"),
            choices=[
                questionary.Choice(name, checked=name in configured_providers(current))
                for name in _PROVIDERS
            ],
        ).ask()
        questions = list(_GENERAL)
        for provider in selected or ():
            questions.extend(_PROVIDERS[provider])
        questions.extend(_SECRETS)

        updated = with_overrides(current, **{q.name: _ask(q, getattr(current, q.name)) for q in questions})
        console.print(config_summary_table(updated))
        if questionary.confirm(_("Accept the configuration above?"), default=True).ask():
            return updated
        console.print(_("[yellow]Reopening configuration prompts...[/yellow]"))
        current = updated


def _ask(question: _Question, current: object) -> object:
    label = _(question.label)
    if question.kind == "secret":
        hint = _("{label} (optional) – leave blank to keep existing value") if current else _("{label} (optional)")
        answer = questionary.password(hint.format(label=label)).ask()
        return (answer or "").strip() or current

    if question.kind == "choices":
        existing = split_list(str(current or ""))
        options = list(question.choices) + [item for item in existing if item not in question.choices]
        picked = questionary.checkbox(
            label,
            choices=[questionary.Choice(item, checked=item in existing) for item in options],
        ).ask()
        if picked is None:
            return current
        return ",".join(picked) or None

    validate = {
        "lifetime": validate_lifetime,
        "count": validate_concurrency,
        "list": validate_list,
    }.get(question.kind, lambda text: True)
    answer = questionary.text(
        _("{label} (optional)").format(label=label),
        default="" if current is None else str(current),
        validate=validate,
    ).ask()
    if answer is None:
        return current
    value = answer.strip()
    if not value:
        return None
    if question.kind == "count":
        return int(value)
    if question.kind == "list":
        return ",".join(split_list(value))
    return value
