"""Primary head policies, discovered from this package."""

from .base import HeadPolicy, most_recent
from ..core.registry import Registry

policy_registry: Registry[HeadPolicy] = Registry(
    base_class=HeadPolicy,
    package='gitatlas.policies',
    exclude=['base']
)


def get_policy(name: str, **kwargs) -> HeadPolicy:
    """Instantiate a registered head policy by name.

    Raises:
        KeyError: If no policy has that name
    """
    return policy_registry.get_or_raise(name)(**kwargs)


__all__ = [
    'HeadPolicy',
    'most_recent',
    'policy_registry',
    'get_policy',
]
