from datetime import timedelta

from sqlmodel import select

from audisell.core.clock import utcnow
from audisell.models.carousel import Carousel, CarouselStatus
from audisell.models.usage import UsageAction, UsageLog
from audisell.services import storage
from audisell.services.cleanup import cleanup_old_images


def _carousel_with_slides(session, user, age_days, slides=2):
    carousel = Carousel(
        user_id=user.id,
        status=CarouselStatus.COMPLETED,
        created_at=utcnow() - timedelta(days=age_days),
    )
    carousel.image_urls = storage.store_slides(user.id, carousel.id, ["<svg/>"] * slides)
    session.add(carousel)
    session.commit()
    return carousel


def test_cleanup_removes_only_expired_slides(session, make_user, media_root):
    user = make_user()
    old = _carousel_with_slides(session, user, age_days=45, slides=3)
    recent = _carousel_with_slides(session, user, age_days=2)

    summary = cleanup_old_images(session)
    assert summary["retention_days"] == 30
    assert summary["carousels_cleaned"] == 1
    assert summary["files_deleted"] == 3
    assert summary["errors"] == 0

    session.refresh(old)
    session.refresh(recent)
    assert old.image_urls is None
    assert old.status == CarouselStatus.COMPLETED
    assert len(recent.image_urls) == 2
    assert not (media_root / storage.carousel_prefix(user.id, old.id)).exists()

    log = session.exec(select(UsageLog).where(UsageLog.action == UsageAction.CLEANUP_OLD_IMAGES.value)).one()
    assert log.status == "success"
    assert log.details["files_deleted"] == 3


def test_cleanup_custom_retention(session, make_user, media_root):
    user = make_user()
    _carousel_with_slides(session, user, age_days=5)
    assert cleanup_old_images(session, retention_days=3)["carousels_cleaned"] == 1


def test_cleanup_counts_storage_errors(session, make_user, media_root, monkeypatch):
    user = make_user()
    carousel = _carousel_with_slides(session, user, age_days=60)

    def _fail(prefix):
        raise OSError("permission denied")

    monkeypatch.setattr(storage, "delete_prefix", _fail)
    summary = cleanup_old_images(session)
    assert summary["errors"] == 1
    assert summary["carousels_cleaned"] == 0
    session.refresh(carousel)
    assert carousel.image_urls

    log = session.exec(select(UsageLog)).one()
    assert log.status == "partial"


def test_worker_cleanup_task(session, make_user, media_root, celery_eager):
    from worker.tasks.maintenance import cleanup_old_images as cleanup_task

    user = make_user()
    _carousel_with_slides(session, user, age_days=90)
    summary = cleanup_task.delay().get()
    assert summary["carousels_cleaned"] == 1
