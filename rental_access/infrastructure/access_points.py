"""Access point provisioning.

An access point is a directory named by an unguessable token under
``access_points_root``. It holds one symlink per media asset of a
rental, so the delivery layer can stay a generic static file server:
a request resolves only while the token directory exists. Revocation
is a single rename followed by cleanup.
"""
import asyncio
import hashlib
import hmac
import logging
import os
import re
import shutil
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Optional, Union
from uuid import uuid4

from rental_access.config import settings
from rental_access.domain.exceptions import (
    AccessPointNotFoundException,
    ProvisionFailureException,
)
from rental_access.domain.models import MediaAsset, MediaAssets

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"^[0-9a-f]{32}$")


def new_access_token() -> str:
    """Unguessable access point name."""
    return uuid4().hex


def _epoch(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


class AccessPointProvisioner(ABC):
    """Abstract access point provisioner interface."""

    @abstractmethod
    async def grant(
        self, token: str, assets: MediaAssets, expires_at: datetime
    ) -> Dict[MediaAsset, str]:
        """Expose the present assets under the token, returning one URL per asset."""
        pass

    @abstractmethod
    async def revoke(self, token: str) -> None:
        """Idempotent teardown."""
        pass

    @abstractmethod
    async def resolve(self, token: str, asset: Union[MediaAsset, str]) -> str:
        """Real path behind a public request."""
        pass

    @abstractmethod
    async def streaming_urls(self, token: str, expires_at: datetime) -> Dict[MediaAsset, str]:
        """Signed URLs of the assets currently exposed by the token."""
        pass

    @abstractmethod
    async def list_tokens(self) -> Dict[str, datetime]:
        """Existing tokens with their creation time."""
        pass

    @abstractmethod
    def verify(
        self,
        token: str,
        filename: str,
        exp: int,
        sig: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """Check a signed URL issued by this provisioner."""
        pass


class SymlinkAccessPointProvisioner(AccessPointProvisioner):
    """Access points as symlink directories on the media volume."""

    def __init__(
        self,
        root: str = settings.access_points_root,
        media_root: str = settings.media_root,
        base_url: str = settings.streaming_base_url,
        signing_secret: str = settings.streaming_signing_secret,
    ):
        self.root = root
        self.media_root = media_root
        self.base_url = base_url.rstrip("/")
        self._secret = signing_secret.encode("utf-8")

    @staticmethod
    def _valid_token(token: str) -> bool:
        return bool(token) and _TOKEN_RE.match(token) is not None

    def _path(self, token: str) -> str:
        return os.path.join(self.root, token)

    def _sign(self, token: str, filename: str, exp: int) -> str:
        to_sign = f"/{token}/{filename}|{exp}".encode("utf-8")
        return hmac.new(self._secret, to_sign, hashlib.sha256).hexdigest()

    def _url(self, token: str, asset: MediaAsset, exp: int) -> str:
        sig = self._sign(token, asset.filename, exp)
        return f"{self.base_url}/{token}/{asset.filename}?exp={exp}&sig={sig}"

    # ---------- grant ----------

    def _grant_sync(self, token: str, assets: MediaAssets) -> list:
        if not self._valid_token(token):
            raise ProvisionFailureException("malformed token")

        sources = {}
        for asset, relative_path in assets.present().items():
            source = os.path.join(self.media_root, relative_path)
            if not os.path.isfile(source):
                raise ProvisionFailureException(f"{asset.value} asset is missing on disk")
            sources[asset] = source

        os.makedirs(self.root, exist_ok=True)
        target = self._path(token)
        if os.path.lexists(target):
            raise ProvisionFailureException("token already in use")

        # Links are built aside and renamed in, so a token never resolves half-built
        staging = tempfile.mkdtemp(prefix=".staging-", dir=self.root)
        try:
            for asset, source in sources.items():
                os.symlink(source, os.path.join(staging, asset.filename))
            os.rename(staging, target)
        except OSError as e:
            shutil.rmtree(staging, ignore_errors=True)
            raise ProvisionFailureException(str(e)) from e

        return list(sources)

    async def grant(
        self, token: str, assets: MediaAssets, expires_at: datetime
    ) -> Dict[MediaAsset, str]:
        linked = await asyncio.to_thread(self._grant_sync, token, assets)
        exp = _epoch(expires_at)
        logger.info(f"Granted access point with {len(linked)} asset(s)")
        return {asset: self._url(token, asset, exp) for asset in linked}

    # ---------- revoke ----------

    def _revoke_sync(self, token: str) -> None:
        if not self._valid_token(token):
            return
        tombstone = os.path.join(self.root, f".revoked-{token}-{uuid4().hex}")
        try:
            os.rename(self._path(token), tombstone)
        except FileNotFoundError:
            return
        try:
            shutil.rmtree(tombstone)
        except OSError as e:
            # Token no longer resolves; the leftover is inert
            logger.warning(f"Could not remove revoked access point: {e}")

    async def revoke(self, token: str) -> None:
        await asyncio.to_thread(self._revoke_sync, token)

    # ---------- resolve ----------

    def _resolve_sync(self, token: str, asset: Union[MediaAsset, str]) -> str:
        if not isinstance(asset, MediaAsset):
            asset = MediaAsset.from_filename(asset)
        if asset is None or not self._valid_token(token):
            raise AccessPointNotFoundException()

        link = os.path.join(self._path(token), asset.filename)
        if not os.path.islink(link):
            raise AccessPointNotFoundException()
        real_path = os.path.realpath(link)
        if not os.path.isfile(real_path):
            raise AccessPointNotFoundException()
        return real_path

    async def resolve(self, token: str, asset: Union[MediaAsset, str]) -> str:
        return await asyncio.to_thread(self._resolve_sync, token, asset)

    # ---------- listing ----------

    def _exposed_assets_sync(self, token: str) -> list:
        try:
            names = os.listdir(self._path(token))
        except (FileNotFoundError, NotADirectoryError):
            return []
        assets = [MediaAsset.from_filename(name) for name in names]
        return [asset for asset in MediaAsset if asset in assets]

    async def streaming_urls(self, token: str, expires_at: datetime) -> Dict[MediaAsset, str]:
        if not self._valid_token(token):
            return {}
        assets = await asyncio.to_thread(self._exposed_assets_sync, token)
        exp = _epoch(expires_at)
        return {asset: self._url(token, asset, exp) for asset in assets}

    def _list_tokens_sync(self) -> Dict[str, datetime]:
        try:
            entries = list(os.scandir(self.root))
        except FileNotFoundError:
            return {}
        tokens = {}
        for entry in entries:
            if self._valid_token(entry.name) and entry.is_dir(follow_symlinks=False):
                created = datetime.fromtimestamp(entry.stat(follow_symlinks=False).st_mtime, tz=timezone.utc)
                tokens[entry.name] = created.replace(tzinfo=None)
        return tokens

    async def list_tokens(self) -> Dict[str, datetime]:
        return await asyncio.to_thread(self._list_tokens_sync)

    # ---------- delivery-side check ----------

    def verify(
        self,
        token: str,
        filename: str,
        exp: int,
        sig: str,
        now: Optional[datetime] = None,
    ) -> bool:
        if not self._valid_token(token):
            return False
        now = now or datetime.now(timezone.utc)
        if exp <= _epoch(now):
            return False
        expected = self._sign(token, filename, exp)
        return hmac.compare_digest(expected, sig)
