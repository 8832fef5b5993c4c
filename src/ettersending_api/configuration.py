from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

from .errors import ConfigurationError
from .models import AttachmentForwarding, SubmissionType

CONFIG_PATH = Path(__file__).resolve().parent / "config.yaml"

DISPATCH_STRATEGIES = ["http", "queue"]


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    if not CONFIG_PATH.exists():  # pragma: no cover - packaging defect
        raise FileNotFoundError(f"Default config not found at {CONFIG_PATH}")
    load_dotenv()
    return OmegaConf.load(CONFIG_PATH)


def get_default_config_container(resolve: bool = False) -> Dict[str, Any]:
    config = _load_default_config()
    return OmegaConf.to_container(config, resolve=resolve, enum_to_str=True)  # type: ignore[return-value]


def make_runtime_config(overrides: Optional[Dict[str, Any]] = None) -> DictConfig:
    """
    Build the effective configuration.

    Environment variables are interpolated from the packaged defaults, then
    ``overrides`` are merged on top. The base is in struct mode, so an
    override for a key that does not exist raises instead of being ignored.
    """
    base = OmegaConf.create(get_default_config_container(resolve=True))
    OmegaConf.set_struct(base, True)

    merged = DictConfig(OmegaConf.merge(base, OmegaConf.create(overrides or {})))
    check_config(merged)
    return merged


def check_config(config: DictConfig) -> None:
    strategy = config.dispatch.strategy
    if strategy not in DISPATCH_STRATEGIES:
        raise ConfigurationError(f"Ukjent dispatch.strategy '{strategy}', må være en av {DISPATCH_STRATEGIES}")

    try:
        AttachmentForwarding(config.submission.attachment_forwarding)
    except ValueError as exc:
        raise ConfigurationError(
            f"Ukjent submission.attachment_forwarding '{config.submission.attachment_forwarding}'"
        ) from exc

    description_types_required(config)


def description_types_required(config: DictConfig) -> FrozenSet[SubmissionType]:
    names: List[str] = list(config.submission.description_required_for)
    try:
        return frozenset(SubmissionType(name) for name in names)
    except ValueError as exc:
        raise ConfigurationError(f"Ukjent søknadstype i submission.description_required_for: {names}") from exc


def description_required_predicate(config: DictConfig) -> Callable[[SubmissionType], bool]:
    required = description_types_required(config)
    return lambda submission_type: submission_type in required


def optional_string(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None
