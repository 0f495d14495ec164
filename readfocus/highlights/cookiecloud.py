"""
CookieCloud client: pulls the WeRead cookie jar a browser extension synced to a
self-hosted CookieCloud server, decrypting it when the server stores it
encrypted. Every failure degrades to ``None`` so the credential chain can fall
through to the next source.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
from typing import Any, Dict, List, Optional, Protocol, Tuple

import httpx
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from pydantic import ValidationError

from .errors import DecryptionFailure
from .models import Credential
from .wire import CookieCloudDocument, CookieItem

logger = logging.getLogger(__name__)

WEREAD_DOMAINS = ("weread.qq.com", ".weread.qq.com")
STORE_TIMEOUT_SECONDS = 10.0
OPENSSL_SALT_HEADER = b"Salted__"


class Decryptor(Protocol):
    def decrypt(self, blob: str, key: str) -> bytes:
        ...


def evp_bytes_to_key(passphrase: bytes, salt: bytes, key_len: int = 32, iv_len: int = 16) -> Tuple[bytes, bytes]:
    """
    OpenSSL's legacy EVP_BytesToKey with MD5 and a single iteration, the KDF
    CryptoJS applies when AES is given a string passphrase.
    """
    derived = b""
    block = b""
    while len(derived) < key_len + iv_len:
        block = hashlib.md5(block + passphrase + salt).digest()
        derived += block
    return derived[:key_len], derived[key_len : key_len + iv_len]


class OpenSSLAesDecryptor:
    """
    Decrypts base64 "Salted__" envelopes (AES-256-CBC, PKCS#7) as produced by
    ``CryptoJS.AES.encrypt(text, passphrase)``.
    """

    def decrypt(self, blob: str, key: str) -> bytes:
        try:
            raw = base64.b64decode(blob, validate=False)
        except (ValueError, TypeError) as exc:
            raise DecryptionFailure("Ciphertext is not valid base64") from exc
        if not raw.startswith(OPENSSL_SALT_HEADER) or len(raw) < 32:
            raise DecryptionFailure("Ciphertext is missing the salted envelope header")
        salt = raw[8:16]
        body = raw[16:]
        if len(body) % 16:
            raise DecryptionFailure("Ciphertext length is not a multiple of the block size")

        aes_key, iv = evp_bytes_to_key(key.encode("utf-8"), salt)
        decryptor = Cipher(algorithms.AES(aes_key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(body) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        try:
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError as exc:
            raise DecryptionFailure("Bad padding; the password is probably wrong") from exc


def derive_store_key(store_id: str, password: str) -> str:
    return hashlib.md5(f"{store_id}-{password}".encode("utf-8")).hexdigest()[:16]


def decode_cookie_map(plaintext: bytes) -> Dict[str, Any]:
    try:
        text = plaintext.decode("utf-8").strip()
    except UnicodeDecodeError as exc:
        raise DecryptionFailure("Decrypted payload is not UTF-8") from exc
    if not text:
        raise DecryptionFailure("Decryption resulted in an empty payload")
    if not text.startswith(("{", "[", '"')):
        raise DecryptionFailure("Decrypted payload is not JSON")
    try:
        decoded = json.loads(text)
        # Some clients upload the JSON document as a JSON string.
        if isinstance(decoded, str):
            decoded = json.loads(decoded)
    except ValueError as exc:
        raise DecryptionFailure("Decrypted payload is not valid JSON") from exc
    if not isinstance(decoded, dict):
        raise DecryptionFailure("Decrypted payload is not a JSON object")
    inner = decoded.get("cookie_data")
    if isinstance(inner, dict):
        decoded = inner
    return decoded


def cookies_for_weread(cookie_map: Dict[str, Any]) -> Optional[Credential]:
    entries = None
    for domain in WEREAD_DOMAINS:
        if isinstance(cookie_map.get(domain), list):
            entries = cookie_map[domain]
            break
    if entries is None:
        logger.warning(
            "[CookieCloud] WeRead domain not found in synced data (domains: %s)",
            ", ".join(sorted(cookie_map.keys())),
        )
        return None

    pairs: List[Tuple[str, str]] = []
    for raw in entries:
        try:
            item = CookieItem.model_validate(raw)
        except ValidationError:
            continue
        pairs.append((item.name, item.value))
    if not pairs:
        logger.warning("[CookieCloud] WeRead domain present but has no cookies")
        return None
    logger.info("[CookieCloud] Loaded %s cookies for WeRead", len(pairs))
    return Credential(tuple(pairs))


class EncryptedStoreClient:
    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        decryptor: Optional[Decryptor] = None,
        timeout: float = STORE_TIMEOUT_SECONDS,
    ):
        self.client = client
        self.decryptor = decryptor or OpenSSLAesDecryptor()
        self.timeout = timeout

    def fetch(self, host: str, store_id: str, password: Optional[str] = None) -> Optional[Credential]:
        url = f"{host.rstrip('/')}/get/{store_id}"
        logger.info("[CookieCloud] Fetching from %s", url)
        payload = self._get_json(url)
        if payload is None:
            return None

        try:
            document = CookieCloudDocument.model_validate(payload)
        except ValidationError:
            logger.error("[CookieCloud] Unexpected document shape from %s", url)
            return None

        if document.encrypted:
            if not password:
                logger.error("[CookieCloud] Data is encrypted but no password is configured")
                return None
            blob = document.encrypted
            if not isinstance(blob, str):
                blob = json.dumps(blob)
            try:
                plaintext = self.decryptor.decrypt(blob, derive_store_key(store_id, password))
                cookie_map = decode_cookie_map(plaintext)
            except DecryptionFailure as exc:
                logger.error("[CookieCloud] Decryption failed: %s", exc)
                return None
        else:
            cookie_map = document.cookie_data
            if not cookie_map:
                logger.warning("[CookieCloud] Response has no cookie_data field")
                return None

        return cookies_for_weread(cookie_map)

    def _get_json(self, url: str) -> Optional[Any]:
        try:
            if self.client is not None:
                response = self.client.get(url, timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout, trust_env=False) as client:
                    response = client.get(url)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.error("[CookieCloud] Server responded with status %s", status)
            if status in (502, 503, 504):
                logger.error("[CookieCloud] The CookieCloud server looks unreachable or down")
        except httpx.HTTPError as exc:
            logger.error("[CookieCloud] Connection failed: %s", exc)
        except ValueError:
            logger.error("[CookieCloud] Response from %s is not JSON", url)
        return None
