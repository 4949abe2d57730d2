"""
Invite Key Generation

Groups are joined with a short code: 8 characters of uppercase base-36
(0-9, A-Z), easy to read out or type on a phone.

The generator draws random codes until one is not already in use. The loop
is capped (20 attempts by default) and raises KeyGenerationExhaustedError
instead of spinning forever. With 36^8 possible codes the cap is never
reached in practice; reaching it means the lookup is broken.

IMPORTANT: Checking for a collision and then saving is not atomic. The
storage backend's uniqueness check on save is what actually guarantees
uniqueness; this loop only makes a conflicting save unlikely.
"""

import secrets
import string
from collections.abc import Callable, Container
from typing import Optional, Union

from tenacity import (
    AsyncRetrying,
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
)

from groupledger.config import get_settings
from groupledger.services.storage import GroupStorageInterface


INVITE_KEY_ALPHABET = string.digits + string.ascii_uppercase

KeyLookup = Union[Container[str], Callable[[str], bool]]


class InviteKeyError(Exception):
    """Base exception for invite key allocation."""

    http_status = 500


class InviteKeyCollision(InviteKeyError):
    """A generated key is already taken. Triggers another attempt."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Invite key already in use: {key}")


class KeyGenerationExhaustedError(InviteKeyError):
    """No unused key was found within the attempt limit."""

    http_status = 503

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(
            f"Could not generate a unique invite key after {attempts} attempts, try again"
        )


def generate_invite_key(length: Optional[int] = None) -> str:
    """Draw one random uppercase base-36 key."""
    if length is None:
        length = get_settings().app.invite_key_length
    return "".join(secrets.choice(INVITE_KEY_ALPHABET) for _ in range(length))


def _resolve_limits(
    max_attempts: Optional[int],
    key_factory: Optional[Callable[[], str]],
) -> tuple[int, Callable[[], str]]:
    settings = get_settings().app
    if max_attempts is None:
        max_attempts = settings.invite_key_max_attempts
    if key_factory is None:
        length = settings.invite_key_length
        key_factory = lambda: generate_invite_key(length)  # noqa: E731
    return max_attempts, key_factory


def _as_predicate(existing_keys_lookup: KeyLookup) -> Callable[[str], bool]:
    if callable(existing_keys_lookup):
        return existing_keys_lookup
    return lambda key: key in existing_keys_lookup


def generate_unique_invite_key(
    existing_keys_lookup: KeyLookup,
    *,
    max_attempts: Optional[int] = None,
    key_factory: Optional[Callable[[], str]] = None,
) -> str:
    """
    Generate a key not present in existing_keys_lookup.

    Args:
        existing_keys_lookup: Container of used keys, or a predicate
            returning True when a key is taken
        max_attempts: Attempt cap (default from settings)
        key_factory: Key source (default: random base-36 keys)

    Raises:
        KeyGenerationExhaustedError: every attempt collided
    """
    max_attempts, key_factory = _resolve_limits(max_attempts, key_factory)
    is_taken = _as_predicate(existing_keys_lookup)

    try:
        for attempt in Retrying(
            stop=stop_after_attempt(max_attempts),
            retry=retry_if_exception_type(InviteKeyCollision),
        ):
            with attempt:
                key = key_factory()
                if is_taken(key):
                    raise InviteKeyCollision(key)
    except RetryError as e:
        raise KeyGenerationExhaustedError(max_attempts) from e

    return key


async def allocate_invite_key(
    group_storage: GroupStorageInterface,
    *,
    max_attempts: Optional[int] = None,
    key_factory: Optional[Callable[[], str]] = None,
) -> str:
    """
    Async variant of generate_unique_invite_key that checks storage.

    Storage errors are not retried; they propagate unchanged.

    Raises:
        KeyGenerationExhaustedError: every attempt collided
    """
    max_attempts, key_factory = _resolve_limits(max_attempts, key_factory)

    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            retry=retry_if_exception_type(InviteKeyCollision),
        ):
            with attempt:
                key = key_factory()
                if await group_storage.invite_key_exists(key):
                    raise InviteKeyCollision(key)
    except RetryError as e:
        raise KeyGenerationExhaustedError(max_attempts) from e

    return key
