# config.py — sane config with loud failures

import os

# Hard requirements. Fail fast if any are missing.
REQUIRED = [
    "DATABASE_URL",
    "JWT_SECRET",
]

# Optional knobs with defaults that won't sandbag you at runtime.
DEFAULTS = {
    # Access tokens
    "JWT_ALGO": "HS256",
    "ACCESS_TOKEN_EXPIRE_MINUTES": 43200,   # 30 days

    # Request handling
    "REQUEST_TIMEOUT_MS": 5000,   # 0 = no deadline
    "DEFAULT_PAGE_LIMIT": 20,
    "MAX_PAGE_LIMIT": 100,

    # Apply the private/quarantine refinement to list endpoints too
    "LIST_OWNERSHIP_REFINEMENT": False,

    # Storage
    "AUTO_CREATE_SCHEMA": True,

    # Operations
    "LOG_LEVEL": "INFO",
    "PORT": 8000,
    "CORS_ALLOW_ORIGINS": "*",   # comma-separated
    "BOOTSTRAP_SUPERADMIN_EMAIL": None,
    "BOOTSTRAP_SUPERADMIN_PASSWORD": None,
}

SUPPORTED_JWT_ALGOS = ["HS256", "HS384", "HS512"]
LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

_TRUE = ('true', '1', 'yes', 'on')


def load_config():
    """
    Load env config, erroring clearly if anything critical is missing.
    Returns a dict of required + defaults (with types normalized).
    """
    missing = [k for k in REQUIRED if not os.getenv(k)]
    if missing:
        missing_list = ', '.join(missing)
        raise RuntimeError(
            f"Missing required environment variables: {missing_list}. "
            f"Please check your .env file and ensure all required variables are set."
        )

    cfg = {k: os.getenv(k) for k in REQUIRED}

    for k, v in DEFAULTS.items():
        val = os.getenv(k, v)

        # Type conversion and validation
        if k == "JWT_ALGO":
            if val not in SUPPORTED_JWT_ALGOS:
                raise RuntimeError(f"JWT_ALGO must be one of {SUPPORTED_JWT_ALGOS}, got: {val}")
        elif k in {"LIST_OWNERSHIP_REFINEMENT", "AUTO_CREATE_SCHEMA"}:
            val = val.lower() in _TRUE if isinstance(val, str) else bool(val)
        elif k in {"ACCESS_TOKEN_EXPIRE_MINUTES", "DEFAULT_PAGE_LIMIT", "MAX_PAGE_LIMIT", "PORT"}:
            try:
                val = int(val)
                if val <= 0:
                    raise ValueError(f"{k} must be a positive integer")
            except (ValueError, TypeError):
                raise RuntimeError(f"{k} must be a positive integer, got: {val}")
        elif k == "REQUEST_TIMEOUT_MS":
            try:
                val = int(val)
                if val < 0:
                    raise ValueError("REQUEST_TIMEOUT_MS must be non-negative")
            except (ValueError, TypeError):
                raise RuntimeError(f"REQUEST_TIMEOUT_MS must be a non-negative integer, got: {val}")
        elif k == "LOG_LEVEL":
            val = str(val).upper()
            if val not in LOG_LEVELS:
                raise RuntimeError(f"LOG_LEVEL must be one of {LOG_LEVELS}, got: {val}")
        elif k == "CORS_ALLOW_ORIGINS":
            val = [origin.strip() for origin in str(val).split(",") if origin.strip()]
        elif k in {"BOOTSTRAP_SUPERADMIN_EMAIL", "BOOTSTRAP_SUPERADMIN_PASSWORD"}:
            val = val or None

        cfg[k] = val

    if cfg["DEFAULT_PAGE_LIMIT"] > cfg["MAX_PAGE_LIMIT"]:
        raise RuntimeError(
            f"DEFAULT_PAGE_LIMIT ({cfg['DEFAULT_PAGE_LIMIT']}) cannot exceed "
            f"MAX_PAGE_LIMIT ({cfg['MAX_PAGE_LIMIT']})"
        )
    if bool(cfg["BOOTSTRAP_SUPERADMIN_EMAIL"]) != bool(cfg["BOOTSTRAP_SUPERADMIN_PASSWORD"]):
        raise RuntimeError(
            "BOOTSTRAP_SUPERADMIN_EMAIL and BOOTSTRAP_SUPERADMIN_PASSWORD must be set together"
        )

    return cfg


def get_debug_config(cfg=None):
    """
    Get configuration for debug endpoint.
    Returns sanitized config (no secrets, database password masked).
    """
    import time
    from sqlalchemy.engine import make_url

    cfg = cfg if cfg is not None else load_config()

    # Remove sensitive keys
    sanitized = {
        k: v for k, v in cfg.items()
        if not any(secret in k.upper() for secret in ["KEY", "SECRET", "PASSWORD", "TOKEN"])
        or k == "ACCESS_TOKEN_EXPIRE_MINUTES"
    }

    if sanitized.get("DATABASE_URL"):
        sanitized["DATABASE_URL"] = make_url(sanitized["DATABASE_URL"]).render_as_string(hide_password=True)

    # Add metadata
    sanitized["_metadata"] = {
        "version": "1.0",
        "environment": os.getenv("ENVIRONMENT", "development"),
        "loaded_at": time.time()
    }

    return sanitized
