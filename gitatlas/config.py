"""Configuration management for gitatlas."""

import os
import multiprocessing
from typing import Optional
from dataclasses import dataclass


def _default_home() -> str:
    return os.path.join(os.path.expanduser('~'), '.config', 'gitatlas')


def _env_int(name: str, value: Optional[int], default: int, minimum: int = 1) -> int:
    """Resolve an integer setting: CLI value, then env var, then default.

    Raises:
        ValueError: If the value is not an integer or below ``minimum``
    """
    if value is None:
        raw = os.getenv(name)
        if raw is None or raw.strip() == '':
            return default
        try:
            value = int(raw)
        except ValueError:
            raise ValueError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_float(name: str, value: Optional[float], default: float) -> float:
    if value is None:
        raw = os.getenv(name)
        if raw is None or raw.strip() == '':
            return default
        try:
            value = float(raw)
        except ValueError:
            raise ValueError(f"{name} must be a number, got {raw!r}")
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


@dataclass
class Config:
    """Configuration for gitatlas.

    Merges environment variables with CLI arguments.
    CLI arguments take precedence over environment variables.
    """

    home: str
    store_dir: str
    max_workers: int
    max_fetches: int = 8
    per_host_fetches: int = 2
    fetch_timeout: float = 60.0
    fetch_attempts: int = 3
    history_depth: int = 10000
    keep: int = 20
    head_policy: str = "canonical"
    sequential: bool = False

    @classmethod
    def from_env_and_args(
        cls,
        home: Optional[str] = None,
        store_dir: Optional[str] = None,
        max_workers: Optional[int] = None,
        max_fetches: Optional[int] = None,
        per_host_fetches: Optional[int] = None,
        fetch_timeout: Optional[float] = None,
        fetch_attempts: Optional[int] = None,
        history_depth: Optional[int] = None,
        keep: Optional[int] = None,
        head_policy: Optional[str] = None,
        sequential: bool = False
    ) -> 'Config':
        """Create config from environment variables and CLI arguments.

        CLI arguments override environment variables.

        Args:
            home: Configuration directory (overrides GITATLAS_HOME)
            store_dir: Snapshot store root (overrides GITATLAS_STORE)
            max_workers: Repository worker pool size (overrides GITATLAS_WORKERS)
            max_fetches: Global concurrent fetch limit
            per_host_fetches: Concurrent fetch limit per host
            fetch_timeout: Seconds allowed per fetch attempt
            fetch_attempts: Maximum attempts per remote
            history_depth: Commits of ancestry captured per snapshot
            keep: Snapshots kept per key when pruning
            head_policy: Name of the primary head policy
            sequential: Force sequential processing

        Returns:
            Config instance

        Raises:
            ValueError: If a setting is invalid
        """
        final_home = os.path.expanduser(home or os.getenv('GITATLAS_HOME') or _default_home())
        final_store = os.path.expanduser(
            store_dir or os.getenv('GITATLAS_STORE') or os.path.join(final_home, 'store')
        )

        from .policies import policy_registry
        final_policy = head_policy or os.getenv('GITATLAS_HEAD_POLICY') or 'canonical'
        if final_policy not in policy_registry:
            available = ', '.join(policy_registry.list_names())
            raise ValueError(f"Unknown head policy: {final_policy}. Available: {available}")

        return cls(
            home=final_home,
            store_dir=final_store,
            max_workers=_env_int('GITATLAS_WORKERS', max_workers, multiprocessing.cpu_count()),
            max_fetches=_env_int('GITATLAS_MAX_FETCHES', max_fetches, 8),
            per_host_fetches=_env_int('GITATLAS_PER_HOST_FETCHES', per_host_fetches, 2),
            fetch_timeout=_env_float('GITATLAS_FETCH_TIMEOUT', fetch_timeout, 60.0),
            fetch_attempts=_env_int('GITATLAS_FETCH_ATTEMPTS', fetch_attempts, 3),
            history_depth=_env_int('GITATLAS_HISTORY_DEPTH', history_depth, 10000),
            keep=_env_int('GITATLAS_KEEP', keep, 20),
            head_policy=final_policy,
            sequential=sequential
        )
