"""Helpers for backends driven through their vendor command-line tools."""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
from typing import Any, Sequence

from ephfleet_core.errors import ProviderError

logger = logging.getLogger(__name__)


def tool_available(binary: str) -> bool:
    return shutil.which(binary) is not None


def run_command(provider: str, args: Sequence[str], *, input_text: str | None = None, timeout: int = 600) -> str:
    """Run a vendor CLI command and return stdout, raising ``ProviderError``."""

    logger.debug("Running provider command", extra={"provider": provider, "args": list(args)})
    try:
        completed = subprocess.run(
            list(args),
            input=input_text,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=True,
        )
    except FileNotFoundError as exc:
        raise ProviderError(provider, f"{args[0]} is not installed") from exc
    except subprocess.TimeoutExpired as exc:
        raise ProviderError(provider, f"{' '.join(args[:3])} timed out after {timeout}s") from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        raise ProviderError(provider, f"{' '.join(args[:3])} failed: {stderr}") from exc
    return completed.stdout


def run_json(provider: str, args: Sequence[str], *, timeout: int = 600) -> Any:
    """Run a vendor CLI command producing JSON and decode its output."""

    output = run_command(provider, args, timeout=timeout)
    if not output.strip():
        return []
    try:
        return json.loads(output)
    except ValueError as exc:
        raise ProviderError(provider, f"unparseable output from {args[0]}") from exc
