"""Keyring-backed storage for price oracle API keys.

Secrets live in the system keychain under :data:`SERVICE_NAME`. The
``keyring`` import is deferred so the ledger runs without a keychain
backend; lookups then simply find nothing.
"""

import logging

logger = logging.getLogger(__name__)

SERVICE_NAME = "portfolio-ledger"

# Settings fields that may be sourced from the keychain
CREDENTIAL_KEYS: frozenset[str] = frozenset({"COINGECKO_API_KEY"})


def _load_keyring():
    try:
        import keyring
    except ImportError:
        return None
    return keyring


def get_credential(key: str) -> str | None:
    """Stored value for ``key``, or None when absent or unreadable."""
    keyring = _load_keyring()
    if keyring is None:
        return None
    try:
        return keyring.get_password(SERVICE_NAME, key)
    except Exception:
        logger.debug("Keychain read failed for %s", key, exc_info=True)
        return None


def set_credential(key: str, value: str) -> bool:
    """Save ``value`` under ``key``.

    Returns False for keys outside :data:`CREDENTIAL_KEYS`, blank values,
    or when the keychain refuses the write.
    """
    if key not in CREDENTIAL_KEYS:
        logger.warning("Refusing to store unknown credential %s", key)
        return False
    if not value.strip():
        logger.warning("Refusing to store blank value for %s", key)
        return False

    keyring = _load_keyring()
    if keyring is None:
        logger.warning("keyring unavailable; %s not stored", key)
        return False
    try:
        keyring.set_password(SERVICE_NAME, key, value)
    except Exception:
        logger.warning("Keychain write failed for %s", key, exc_info=True)
        return False
    logger.info("Stored %s in keychain", key)
    return True


def delete_credential(key: str) -> bool:
    if key not in CREDENTIAL_KEYS:
        logger.warning("Refusing to delete unknown credential %s", key)
        return False

    keyring = _load_keyring()
    if keyring is None:
        return False
    try:
        keyring.delete_password(SERVICE_NAME, key)
    except Exception:
        logger.debug("Keychain delete failed for %s", key, exc_info=True)
        return False
    logger.info("Removed %s from keychain", key)
    return True
