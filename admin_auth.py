"""
Admin gate

A single shared plaintext password unlocks the admin surface. The unlocked
state is a "true" flag kept in local storage under a fixed key; there is no
hashing and no expiry. Replace with real authentication before exposing the
admin surface beyond a trusted device.
"""
from typing import MutableMapping, Optional

import config

AUTH_KEY = "restaurant_admin_auth"


class AdminAuth:
    def __init__(self, storage: Optional[MutableMapping[str, str]] = None, password: Optional[str] = None):
        self._storage = {} if storage is None else storage
        self._password = config.ADMIN_PASSWORD if password is None else password

    @property
    def is_authenticated(self) -> bool:
        return self._storage.get(AUTH_KEY) == "true"

    def login(self, password: str) -> bool:
        if password == self._password:
            self._storage[AUTH_KEY] = "true"
            return True
        return False

    def logout(self):
        self._storage.pop(AUTH_KEY, None)
