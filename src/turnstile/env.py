import os
from typing import Union

from .types import AuthConfig, ClientConfig, RetryConfig

# Accepted spellings for credentials_method, normalised to the config literal
_METHOD_ALIASES = {
    "": "none",
    "none": "none",
    "static_token": "static_token",
    "statictoken": "static_token",
    "static": "static_token",
    "client_credentials": "client_credentials",
    "clientcredentials": "client_credentials",
}


def _parse_env_file(env_path: str) -> dict[str, str]:
    """Parse a simple .env file into a dict without modifying os.environ.

    Supports basic KEY=VALUE pairs, ignoring comments and blank lines.
    Surrounding single/double quotes are stripped if present.
    """
    values: dict[str, str] = {}
    try:
        with open(env_path) as f:
            for raw_line in f:
                line = raw_line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                key, val = line.split("=", 1)
                key = key.strip()
                val = val.strip().strip('"').strip("'")
                if key:
                    values[key] = val
    except FileNotFoundError:
        # A missing file just means "nothing to augment"
        pass
    return values


def _parse_headers(raw: str) -> dict[str, str]:
    headers: dict[str, str] = {}
    for part in raw.split(","):
        if "=" not in part:
            continue
        name, value = part.split("=", 1)
        if name.strip():
            headers[name.strip()] = value.strip()
    return headers


def _int(env_map: dict[str, str], var: str, default: int) -> int:
    raw = env_map.get(var)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{var} must be an integer, got {raw!r}") from None


def load_config_from_env(
    prefix: str = "TURNSTILE_", env_path: Union[str, None] = None
) -> ClientConfig:
    """Build a ClientConfig from ``<prefix>``-named environment variables.

    Variables (all optional): BASE_URL, CREDENTIALS_METHOD, TOKEN, CLIENT_ID,
    CLIENT_SECRET, TOKEN_URL, SCOPE, MAX_RETRY, MIN_WAIT_MS, TIMEOUT_S,
    AUTH_HEADER, AUTH_SCHEME and DEFAULT_HEADERS ("Name=Value,Other=Value").

    If 'env_path' is provided, variables from the .env file augment lookups
    without mutating the process environment; the real environment wins.
    """
    file_env = _parse_env_file(env_path) if env_path else {}
    env_map: dict[str, str] = {**file_env, **os.environ}

    def get(name: str) -> Union[str, None]:
        value = env_map.get(prefix + name)
        return value if value else None

    method_raw = (get("CREDENTIALS_METHOD") or "none").strip().lower()
    method = _METHOD_ALIASES.get(method_raw)
    if method is None:
        raise ValueError(f"{prefix}CREDENTIALS_METHOD has unknown value {method_raw!r}")

    defaults = RetryConfig()
    retry = RetryConfig(
        max_retry=_int(env_map, prefix + "MAX_RETRY", defaults.max_retry),
        min_wait_ms=_int(env_map, prefix + "MIN_WAIT_MS", defaults.min_wait_ms),
    )
    timeout_raw = get("TIMEOUT_S")
    try:
        timeout_s = float(timeout_raw) if timeout_raw else 30.0
    except ValueError:
        raise ValueError(f"{prefix}TIMEOUT_S must be a number, got {timeout_raw!r}") from None

    return ClientConfig(
        base_url=get("BASE_URL") or "",
        default_headers=_parse_headers(get("DEFAULT_HEADERS") or ""),
        credentials_method=method,
        token=get("TOKEN"),
        client_id=get("CLIENT_ID"),
        client_secret=get("CLIENT_SECRET"),
        token_url=get("TOKEN_URL"),
        scope=get("SCOPE"),
        timeout_s=timeout_s,
        retry=retry,
        auth=AuthConfig(
            header=get("AUTH_HEADER") or "Authorization",
            scheme=get("AUTH_SCHEME") or "Bearer",
        ),
    )
