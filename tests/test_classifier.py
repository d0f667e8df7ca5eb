"""
Tests for URL classification.
"""
import pytest

from video_pipeline.classifier import classify, find_url
from video_pipeline.models import Platform


class TestClassify:

    @pytest.mark.parametrize("text,platform", [
        ("https://youtu.be/abc123", Platform.YOUTUBE),
        ("https://www.youtube.com/watch?v=dQw4w9WgXcQ", Platform.YOUTUBE),
        ("check this https://m.youtube.com/shorts/xyz out", Platform.YOUTUBE),
        ("https://www.facebook.com/watch/?v=1234567890", Platform.FACEBOOK),
        ("https://fb.watch/abcDEF/", Platform.FACEBOOK),
        ("https://www.linkedin.com/posts/someone_activity-123", Platform.LINKEDIN),
        ("https://www.tiktok.com/@user/video/7234567890", Platform.TIKTOK),
        ("https://vm.tiktok.com/ZMabc/", Platform.TIKTOK),
        ("HTTPS://WWW.YOUTUBE.COM/watch?v=abc", Platform.YOUTUBE),
    ])
    def test_supported_platforms(self, text, platform):
        assert classify(text) == platform

    @pytest.mark.parametrize("text", [
        "",
        None,
        "hello there",
        "https://www.instagram.com/reel/abc/",
        "https://vimeo.com/123",
        "https://notyoutube.com/watch?v=abc",
        "https://youtube.com.evil.example/watch?v=abc",
        "mailto:someone@youtube.com",
        "fakefacebook.com/video",
    ])
    def test_everything_else_is_unknown(self, text):
        assert classify(text) == Platform.UNKNOWN

    def test_deterministic(self):
        text = "https://www.tiktok.com/@user/video/1"
        assert {classify(text) for _ in range(5)} == {Platform.TIKTOK}


class TestFindUrl:

    def test_extracts_url_from_surrounding_text(self):
        assert find_url("look: https://youtu.be/abc123 nice") == (Platform.YOUTUBE, "https://youtu.be/abc123")

    def test_adds_scheme_when_missing(self):
        assert find_url("youtu.be/abc123") == (Platform.YOUTUBE, "https://youtu.be/abc123")

    def test_earliest_url_wins(self):
        text = "https://www.tiktok.com/@a/video/1 and https://youtu.be/abc"
        platform, url = find_url(text)
        assert platform == Platform.TIKTOK
        assert url == "https://www.tiktok.com/@a/video/1"

    def test_none_without_supported_url(self):
        assert find_url("https://example.com/video.mp4") is None
