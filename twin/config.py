"""Global configuration for twin.

Handles loading configuration from ~/.config/twin/config.toml with profile
support via the TWIN_PROFILE environment variable, plus the per-project
file layout (TwinPaths).
"""

import os
import shlex
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

DEFAULT_AGENT_ARGS = [
    "--print",
    "--dangerously-skip-permissions",
    "--output-format",
    "stream-json",
    "--verbose",
]


@dataclass
class GlobalConfig:
    """Global twin configuration loaded from ~/.config/twin/config.toml."""

    agent_command: str = "claude"
    agent_args: List[str] = field(default_factory=lambda: list(DEFAULT_AGENT_ARGS))
    llm_command: str = "claude"
    llm_args: List[str] = field(default_factory=lambda: ["--print"])
    llm_timeout_s: int = 600
    retry_delays_s: List[float] = field(default_factory=lambda: [10.0, 30.0])
    heartbeat_s: float = 5.0
    lock_retries: int = 5
    lock_retry_delay_s: float = 1.0
    plan_retries: int = 2
    plan_retry_delay_s: float = 15.0
    default_max_items: int = 5
    twin_home: str = "~/.twin"
    log_level: str = "WARNING"
    _profile_name: str = "default"

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "GlobalConfig":
        """Load configuration from TOML file.

        Args:
            config_path: Optional path to config file. Defaults to
                ~/.config/twin/config.toml

        Returns:
            GlobalConfig instance with loaded or default values.
        """
        if config_path is None:
            config_path = Path.home() / ".config" / "twin" / "config.toml"

        config_dict: Dict[str, Any] = {}

        toml_data = _load_toml(config_path) if config_path.exists() else None
        if toml_data:
            config_dict.update(
                {k: v for k, v in toml_data.items() if not isinstance(v, dict)}
            )
            if "default" in toml_data:
                config_dict.update(toml_data["default"])

            profile_name = os.environ.get("TWIN_PROFILE", "")
            if profile_name and profile_name in toml_data.get("profiles", {}):
                config_dict.update(toml_data["profiles"][profile_name])
                config_dict["_profile_name"] = profile_name

        _apply_env_overrides(config_dict)

        valid_fields = {f.name for f in fields(cls)}
        filtered_dict = {k: v for k, v in config_dict.items() if k in valid_fields}

        return cls(**filtered_dict)

    @property
    def agent_argv(self) -> List[str]:
        """Full argv used to spawn the coding agent."""
        return shlex.split(self.agent_command) + list(self.agent_args)

    @property
    def llm_argv(self) -> List[str]:
        """Full argv used for one-shot model calls."""
        return shlex.split(self.llm_command) + list(self.llm_args)

    @property
    def twin_home_path(self) -> Path:
        return Path(os.path.expanduser(self.twin_home))


def _apply_env_overrides(config_dict: Dict[str, Any]) -> None:
    """Apply TWIN_* environment overrides on top of file values."""
    env_map = {
        "TWIN_AGENT_COMMAND": "agent_command",
        "TWIN_LLM_COMMAND": "llm_command",
        "TWIN_HOME": "twin_home",
        "TWIN_LOG_LEVEL": "log_level",
    }
    for env_key, field_name in env_map.items():
        if env_key in os.environ:
            config_dict[field_name] = os.environ[env_key]


def _load_toml(path: Path) -> Optional[Dict[str, Any]]:
    """Load TOML file, trying tomllib then tomli.

    Args:
        path: Path to the TOML file.

    Returns:
        Parsed TOML data as a dict, or None if parsing failed.
    """
    try:
        import tomllib
    except ImportError:
        import tomli as tomllib

    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (tomllib.TOMLDecodeError, OSError):
        return None


_global_config: Optional[GlobalConfig] = None


def get_global_config() -> GlobalConfig:
    """Get the global configuration singleton.

    Returns:
        The global GlobalConfig instance, loading if necessary.
    """
    global _global_config
    if _global_config is None:
        _global_config = GlobalConfig.load()
    return _global_config


def reload_global_config() -> GlobalConfig:
    """Force reload of global configuration.

    Returns:
        The newly loaded GlobalConfig instance.
    """
    global _global_config
    _global_config = GlobalConfig.load()
    return _global_config


@dataclass
class TwinPaths:
    """Project-level file layout for twin.

    Contains paths to every file the build loop and its collaborators read
    or write for one project directory. Created via from_repo().
    """

    repo_root: Path
    twin_home: Path
    prd_file: Path
    progress_file: Path
    synthesis_file: Path
    steer_file: Path
    run_marker: Path
    product_file: Path
    memory_file: Path
    status_file: Path

    @classmethod
    def from_repo(
        cls, repo_root: Path, config: Optional[GlobalConfig] = None
    ) -> "TwinPaths":
        """Create TwinPaths from a project root path.

        Args:
            repo_root: Path to the project root.
            config: Global config; defaults to the singleton.

        Returns:
            TwinPaths instance with all paths configured.
        """
        config = config or get_global_config()
        repo_root = Path(repo_root)
        return cls(
            repo_root=repo_root,
            twin_home=config.twin_home_path,
            prd_file=repo_root / "prd.json",
            progress_file=repo_root / "progress.md",
            synthesis_file=repo_root / "synthesis.md",
            steer_file=repo_root / "steer.md",
            run_marker=repo_root / ".twin-build.pid",
            product_file=repo_root / "product.md",
            memory_file=repo_root / "project-memory.md",
            status_file=repo_root / "status.md",
        )


__all__ = [
    "DEFAULT_AGENT_ARGS",
    "GlobalConfig",
    "TwinPaths",
    "get_global_config",
    "reload_global_config",
]
