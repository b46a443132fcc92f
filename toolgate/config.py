"""
Application configuration loaded from environment variables.

Uses pydantic-settings so every field can be set from a TOOLGATE_-prefixed
environment variable or a .env file. This covers how the server process runs
(host, port, logging), where it finds its project, and how it reaches the
remote site. Which tools are exposed is NOT configured here: that lives in the
project manifest (toolgate.yaml) and role files, which operators edit and
version alongside the project.

Core modules never import `settings` directly; they take explicit arguments.
Only the server entry point and the CLI read it.
"""

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Server configuration with environment variable bindings.

    Each field maps to an environment variable with the TOOLGATE_ prefix, e.g.
    `project_root` reads TOOLGATE_PROJECT_ROOT. Dict fields such as `features`
    are given as JSON: TOOLGATE_FEATURES='{"WP_SEO_AUDIT_ENABLED": true}'.
    """

    # --- Server settings ---

    # "0.0.0.0" is needed inside containers; use "127.0.0.1" for local-only.
    host: str = "0.0.0.0"
    port: int = 8080

    # Maps to Python's logging levels.
    log_level: str = "info"

    # --- Project settings ---

    # Directory holding toolgate.yaml, roles/ and the runtime state marker.
    project_root: Path = Path(".")

    # Per-user role directory (the "global" tier). None = ~/.toolgate/roles.
    global_roles_dir: Path | None = None

    # Role to activate at startup, as if set with `scripts/role.py use`.
    role: str | None = None

    # Feature flags. The manifest's `features` section overrides these.
    features: dict[str, bool] = {}

    # --- Remote site settings ---

    # Base URL of the site, e.g. https://example.com. Empty disables the
    # content tools' network access and capability auto-detection.
    site_url: str = ""
    site_user: str = ""

    # Application password for site_user. Sent as HTTP Basic auth.
    site_app_password: str = ""

    # Seconds before a request to the site is abandoned.
    request_timeout: float = 30.0

    model_config = {
        "env_prefix": "TOOLGATE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


# Singleton instance: import this from entry points only.
settings = Settings()
