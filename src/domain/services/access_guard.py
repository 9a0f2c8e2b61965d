from __future__ import annotations

from src.domain.entities.image import ImageEntity


class AccessGuard:
    """Ownership/visibility predicate applied before every metadata operation.

    Both checks fail closed: a missing image or identity never grants access.
    """

    @staticmethod
    def can_read(identity: str | None, image: ImageEntity | None) -> bool:
        if image is None:
            return False
        if image.is_public:
            return True
        return bool(identity) and identity == image.owner_id

    @staticmethod
    def can_write(identity: str | None, image: ImageEntity | None) -> bool:
        if image is None or not identity:
            return False
        return identity == image.owner_id
