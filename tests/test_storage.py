import pytest
import requests

from civic_issues.storage import ImageStorage, cleanup_images


class DummyResponse:
    def __init__(self, status_code=200):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"status {self.status_code}")


def test_public_id_keeps_folder_path():
    storage = ImageStorage("https://storage.example.com/images", folder="lok-awaaz/issues")
    ref = "https://res.example.com/demo/image/upload/v1712/lok-awaaz/issues/abc123.jpg"
    assert storage.public_id(ref) == "lok-awaaz/issues/abc123"
    assert storage.public_id("https://elsewhere.example.com/x/y/photo.png") == "photo"


def test_delete_calls_storage_api(monkeypatch):
    calls = []

    def fake_delete(url, headers=None, timeout=None):
        calls.append((url, headers, timeout))
        return DummyResponse()

    monkeypatch.setattr("civic_issues.storage.requests.delete", fake_delete)
    storage = ImageStorage("https://storage.example.com/images/", api_key="k", folder="lok-awaaz/issues", timeout=3)
    storage.delete("https://cdn.example.com/lok-awaaz/issues/abc.jpg")

    assert calls == [
        ("https://storage.example.com/images/lok-awaaz/issues/abc", {"Authorization": "Bearer k"}, 3)
    ]


def test_delete_raises_on_error_status(monkeypatch):
    monkeypatch.setattr(
        "civic_issues.storage.requests.delete", lambda *args, **kwargs: DummyResponse(500)
    )
    with pytest.raises(requests.HTTPError):
        ImageStorage("https://storage.example.com").delete("a.jpg")


def test_unconfigured_storage_is_a_no_op(monkeypatch):
    def unexpected(*args, **kwargs):
        raise AssertionError("requests.delete should not be called")

    monkeypatch.setattr("civic_issues.storage.requests.delete", unexpected)
    ImageStorage(None).delete("https://cdn.example.com/a.jpg")


def test_cleanup_continues_after_failures():
    class FlakyStorage(ImageStorage):
        def delete(self, reference):
            if "bad" in reference:
                raise requests.ConnectionError("down")

    deleted = cleanup_images(FlakyStorage(None), ["good-1.jpg", "bad.jpg", "good-2.jpg"])
    assert deleted == 2
