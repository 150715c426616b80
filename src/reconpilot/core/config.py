"""3-layer configuration system for reconpilot.

Loads and merges configuration from:
1. Default settings (built-in)
2. Project config (.reconpilot/config.yaml)
3. CLI parameters (override)
"""

from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_DIR = ".reconpilot"

DEFAULT_CONFIG: dict = {
    "project": {
        "id": "",
        "target": "",
        "scope": [],
        "plan": "free",
    },
    "queue": {
        "max_concurrent": 3,
        "history_size": 500,
        "critical_tools": ["nmap", "trufflehog"],
    },
    "executor": {
        "timeout_seconds": 60,
        "real_execution": True,
        "ttl_seconds": {
            "default": 60,
            "rate_limited": 300,
        },
    },
    "cache": {
        "sweep_interval_seconds": 300,
        "api_response_ttl_seconds": 600,
    },
    "decision": {
        "auto_execute_confidence": 0.8,
        "action_confidence": 0.7,
        "safe_tools": ["subfinder", "httpx", "waybackurls", "gau", "dnsx"],
        "history_size": 10,
    },
    "credentials": {
        "shodan": "SHODAN_API_KEY",
        "securitytrails": "SECURITYTRAILS_API_KEY",
        "censys": "CENSYS_API_KEY",
        "virustotal": "VIRUSTOTAL_API_KEY",
        "builtwith": "BUILTWITH_API_KEY",
    },
    "persistence": {
        "directory": "",
    },
    "ai": {
        "provider": "stub",
        "temperature": 0.1,
        "timeout_seconds": 120,
        "retry_attempts": 3,
        "retry_delay_seconds": 5,
        "max_tokens": 1000,
        "openai": {
            "model": "gpt-4o",
            "basic_model": "gpt-4o-mini",
            "api_key_env": "OPENAI_API_KEY",
        },
        "anthropic": {
            "model": "claude-sonnet-4-5-20250929",
            "basic_model": "claude-haiku-4-5-20251001",
            "api_key_env": "ANTHROPIC_API_KEY",
        },
        "ollama": {
            "endpoint": "http://localhost:11434",
            "model": "llama3.1:70b",
            "basic_model": "llama3.1:8b",
        },
        "stub": {},
    },
}


def deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dicts. Arrays are replaced, not merged."""
    result = {}
    for key in base:
        result[key] = base[key]
    for key, value in override.items():
        base_value = result.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            result[key] = deep_merge(base_value, value)
        else:
            result[key] = value
    return result


def load_project_config(project_path: Path) -> dict:
    """Load project configuration from .reconpilot/config.yaml."""
    config_path = project_path / CONFIG_DIR / "config.yaml"
    if not config_path.exists():
        return {}
    try:
        content = config_path.read_text(encoding="utf-8-sig")  # utf-8-sig strips BOM
        loaded = yaml.safe_load(content) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Ignoring unreadable config %s: %s", config_path, e)
        return {}
    if not isinstance(loaded, dict):
        logger.warning("Ignoring config %s: top level is not a mapping", config_path)
        return {}
    return loaded


def get_effective_config(
    project_path: Optional[Path] = None,
    cli_overrides: Optional[dict] = None,
) -> dict:
    """Get the fully resolved configuration."""
    config = copy.deepcopy(DEFAULT_CONFIG)

    if project_path is not None:
        project_config = load_project_config(project_path)
        if project_config:
            config = deep_merge(config, project_config)
        config["_project_path"] = str(project_path)

    if cli_overrides:
        config = deep_merge(config, cli_overrides)

    return config


def initialize_project(
    project_path: Path,
    target: str = "",
    plan: str = "free",
    provider: str = "stub",
) -> Path:
    """Create .reconpilot/config.yaml in a project directory if missing."""
    cc_dir = project_path / CONFIG_DIR
    (cc_dir / "runs").mkdir(parents=True, exist_ok=True)

    config_path = cc_dir / "config.yaml"
    if not config_path.exists():
        document = {
            "project": {
                "id": project_path.resolve().name,
                "target": target,
                "scope": [target] if target else [],
                "plan": plan,
            },
            "ai": {"provider": provider},
            "persistence": {"directory": str(Path(CONFIG_DIR) / "runs")},
        }
        config_path.write_text(
            "# reconpilot project configuration\n"
            + yaml.safe_dump(document, sort_keys=False),
            encoding="utf-8",
        )
    return config_path
