"""Stock locations: the central Store and individual Vans."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from fluid_kernel.exceptions import ValidationError

STORE_KEY = "store"
_VAN_PREFIX = "van:"


@dataclass(frozen=True)
class Location:
    """
    Either the Store (``van_stock_id is None``) or one Van.

    ``key`` is the persisted form: ``"store"`` or ``"van:<uuid>"``.
    """

    van_stock_id: UUID | None = None

    @classmethod
    def store(cls) -> Location:
        return cls(None)

    @classmethod
    def van(cls, van_stock_id: UUID) -> Location:
        if van_stock_id is None:
            raise ValidationError("van_stock_id", "is required for a van location")
        return cls(van_stock_id)

    @classmethod
    def from_key(cls, key: str) -> Location:
        if key == STORE_KEY:
            return cls.store()
        if key.startswith(_VAN_PREFIX):
            return cls.van(UUID(key[len(_VAN_PREFIX):]))
        raise ValidationError("location", f"unknown location key {key!r}")

    @property
    def is_store(self) -> bool:
        return self.van_stock_id is None

    @property
    def is_van(self) -> bool:
        return self.van_stock_id is not None

    @property
    def key(self) -> str:
        if self.van_stock_id is None:
            return STORE_KEY
        return f"{_VAN_PREFIX}{self.van_stock_id}"

    def __str__(self) -> str:
        return "Store" if self.is_store else f"Van {self.van_stock_id}"
