"""Load the persona prompt and crisis keyword list from versioned policy data."""

from __future__ import annotations

import logging
import tomllib
from importlib import resources
from pathlib import Path

from pydantic import BaseModel, ValidationError

from .models import CrisisResource

logger = logging.getLogger(__name__)

SUPPORTED_VERSIONS = {1}


class PolicyError(ValueError):
    """Raised when a policy file is missing or malformed."""


class Policy(BaseModel):
    version: int
    persona_prompt: str
    fallback_reply: str
    crisis_message: str
    crisis_keywords: list[str]
    crisis_resources: list[CrisisResource] = []


def _read_bundled() -> str:
    return resources.files("companion").joinpath("resources", "policy.toml").read_text(
        encoding="utf-8"
    )


def load_policy(path: str | Path | None = None) -> Policy:
    """Load a policy file, or the bundled one when no path is given."""
    try:
        if path is None:
            source = "bundled policy"
            raw = _read_bundled()
        else:
            source = str(path)
            raw = Path(path).read_text(encoding="utf-8")
        data = tomllib.loads(raw)
    except FileNotFoundError as e:
        raise PolicyError(f"Policy file not found: {path}") from e
    except tomllib.TOMLDecodeError as e:
        raise PolicyError(f"Policy file is not valid TOML ({source}): {e}") from e

    version = data.get("version")
    if version not in SUPPORTED_VERSIONS:
        raise PolicyError(f"Unsupported policy version {version!r} in {source}")

    persona = data.get("persona", {})
    crisis = data.get("crisis", {})
    try:
        policy = Policy(
            version=version,
            persona_prompt=persona.get("prompt"),
            fallback_reply=persona.get("fallback_reply"),
            crisis_message=crisis.get("message"),
            crisis_keywords=crisis.get("keywords"),
            crisis_resources=crisis.get("resources", []),
        )
    except ValidationError as e:
        raise PolicyError(f"Incomplete policy in {source}: {e}") from e

    if not policy.crisis_keywords:
        raise PolicyError(f"Policy {source} has an empty crisis keyword list")

    logger.info(
        "Loaded %s v%d (%d crisis keywords)",
        source,
        policy.version,
        len(policy.crisis_keywords),
    )
    return policy
