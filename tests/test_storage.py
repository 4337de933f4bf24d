from uuid import uuid4

import pytest

from audisell.services import storage


@pytest.mark.parametrize(
    "mime, ext",
    [
        ("audio/webm;codecs=opus", "webm"),
        ("audio/mpeg", "mp3"),
        ("audio/mp4", "m4a"),
        ("audio/wav", "wav"),
        ("audio/ogg", "ogg"),
        (None, "webm"),
        ("application/octet-stream", "webm"),
    ],
)
def test_audio_extension(mime, ext):
    assert storage.audio_extension(mime) == ext


def test_store_slides_writes_numbered_files(media_root):
    uid, cid = uuid4(), uuid4()
    urls = storage.store_slides(uid, cid, ["<svg>1</svg>", "<svg>2</svg>"])

    assert len(urls) == 2
    assert urls[0].startswith(f"/media/carousel-images/{uid}/{cid}/slide-1.svg?t=")
    assert (media_root / "carousel-images" / str(uid) / str(cid) / "slide-2.svg").read_text() == "<svg>2</svg>"


def test_key_from_url_inverts_public_url():
    key = "carousel-images/u/c/slide-1.svg"
    assert storage.key_from_url(storage.public_url(key)) == key
    assert storage.key_from_url(storage.public_url(key, cache_bust=False)) == key


def test_delete_prefix_counts_files(media_root):
    uid, cid = uuid4(), uuid4()
    storage.store_slides(uid, cid, ["a", "b", "c"])
    assert storage.delete_prefix(storage.carousel_prefix(uid, cid)) == 3
    assert storage.delete_prefix(storage.carousel_prefix(uid, cid)) == 0


def test_keys_cannot_escape_media_root(media_root):
    with pytest.raises(ValueError):
        storage.save_bytes("../outside.txt", b"x")


def test_delete_key(media_root):
    storage.save_bytes("audio/u/c.webm", b"abc")
    assert storage.exists("audio/u/c.webm")
    assert storage.delete_key("audio/u/c.webm") is True
    assert storage.delete_key("audio/u/c.webm") is False
