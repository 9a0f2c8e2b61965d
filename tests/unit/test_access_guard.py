from datetime import UTC, datetime

from src.domain.entities.image import ImageEntity, Visibility
from src.domain.services.access_guard import AccessGuard


def make_image(owner="u1", visibility=Visibility.PRIVATE) -> ImageEntity:
    now = datetime.now(UTC)
    return ImageEntity(
        id="img1",
        owner_id=owner,
        visibility=visibility,
        title="a",
        format="jpeg",
        size=10,
        width=2,
        height=2,
        created_at=now,
        updated_at=now,
    )


def test_anonymous_cannot_read_private():
    assert AccessGuard.can_read(None, make_image()) is False
    assert AccessGuard.can_read("", make_image()) is False


def test_anyone_can_read_public():
    image = make_image(visibility=Visibility.PUBLIC)
    assert AccessGuard.can_read(None, image) is True
    assert AccessGuard.can_read("u2", image) is True


def test_owner_reads_private_and_others_do_not():
    image = make_image()
    assert AccessGuard.can_read("u1", image) is True
    assert AccessGuard.can_read("u2", image) is False


def test_write_requires_owner_even_when_public():
    image = make_image(visibility=Visibility.PUBLIC)
    assert AccessGuard.can_write("u1", image) is True
    assert AccessGuard.can_write("u2", image) is False
    assert AccessGuard.can_write(None, image) is False


def test_missing_image_fails_closed():
    assert AccessGuard.can_read("u1", None) is False
    assert AccessGuard.can_write("u1", None) is False
