"""Environment variable utilities."""

from __future__ import annotations

from pathlib import Path


def load_dotenv(filepath: str = ".env") -> dict[str, str]:
    """Load environment variables from a .env file.

    Bare ``KEY`` lines with no value are left out of the result.

    Args:
        filepath: Path to .env file (default: ".env")

    Returns:
        Dictionary of environment variables from the file

    Raises:
        FileNotFoundError: If the .env file doesn't exist

    Example:
        env_vars = {
            **load_dotenv(".env"),
            **load_dotenv(".env.local"),
            "OVERRIDE": "value",
        }
        defaults = SandboxDefaults(environment_variables=env_vars)
    """
    from dotenv import dotenv_values

    if not Path(filepath).is_file():
        raise FileNotFoundError(f"No such .env file: {filepath}")

    return {key: value for key, value in dotenv_values(filepath).items() if value is not None}
