"""
Credential store collaborators.

The publish and metrics layers never look credentials up on their own:
they are handed a store and ask it for one ``Credentials`` value per
(user, network). Token refresh and decryption happen before this point.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Protocol

from src.content.models import Credentials, Network

if TYPE_CHECKING:
    from config.settings import Settings


class CredentialStore(Protocol):
    def get(self, user_id: str, network: Network) -> Optional[Credentials]:
        ...


class InMemoryCredentialStore:
    """Credentials keyed by (user_id, network)."""

    def __init__(self) -> None:
        self._items: dict[tuple[str, Network], Credentials] = {}

    def put(self, user_id: str, credentials: Credentials) -> None:
        self._items[(user_id, credentials.network)] = credentials

    def get(self, user_id: str, network: Network) -> Optional[Credentials]:
        return self._items.get((user_id, network))


class SettingsCredentialStore:
    """
    Single-tenant store backed by application settings.

    Every user resolves to the same configured accounts; a network with no
    configured secret resolves to None.
    """

    def __init__(self, settings: "Settings") -> None:
        self._by_network: dict[Network, Credentials] = {}
        s = settings
        if s.bluesky_handle and s.bluesky_app_password:
            self._by_network[Network.BLUESKY] = Credentials(
                network=Network.BLUESKY,
                identifier=s.bluesky_handle,
                password=s.bluesky_app_password,
                service_url=s.bluesky_service_url,
            )
        if s.instagram_access_token:
            self._by_network[Network.INSTAGRAM] = Credentials(
                network=Network.INSTAGRAM, access_token=s.instagram_access_token
            )
        if s.facebook_access_token:
            self._by_network[Network.FACEBOOK] = Credentials(
                network=Network.FACEBOOK, access_token=s.facebook_access_token
            )
        if s.tiktok_access_token:
            self._by_network[Network.TIKTOK] = Credentials(
                network=Network.TIKTOK, access_token=s.tiktok_access_token
            )
        if s.twitter_access_token and s.twitter_access_secret:
            self._by_network[Network.TWITTER] = Credentials(
                network=Network.TWITTER,
                consumer_key=s.twitter_api_key,
                consumer_secret=s.twitter_api_secret,
                access_token=s.twitter_access_token,
                access_secret=s.twitter_access_secret,
                bearer_token=s.twitter_bearer_token,
            )

    def get(self, user_id: str, network: Network) -> Optional[Credentials]:
        return self._by_network.get(network)
