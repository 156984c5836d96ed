from aniwatch.utils.format_utils import format_progress, format_time, is_image_url, parse_episode_number


def test_format_time_minutes():
    assert format_time(0) == "00:00"
    assert format_time(65) == "01:05"
    assert format_time(59.6) == "01:00"


def test_format_time_hours():
    assert format_time(3600) == "01:00:00"
    assert format_time(3725) == "01:02:05"


def test_format_time_negative_is_zero():
    assert format_time(-5) == "00:00"


def test_format_progress():
    assert format_progress(90, 1440) == "01:30 / 24:00"
    assert format_progress(90, 1440, paused=True) == "01:30 / 24:00 (Paused)"


def test_is_image_url():
    assert is_image_url("https://cdn.example.com/posters/a.JPG")
    assert is_image_url("http://example.com/x.webp")
    assert not is_image_url("ftp://example.com/x.png")
    assert not is_image_url("https://example.com/poster")
    assert not is_image_url("poster.png")
    assert not is_image_url(None)


def test_parse_episode_number():
    assert parse_episode_number("3. Bölüm") == 3
    assert parse_episode_number("Episode 7.5") == 7.5
    assert parse_episode_number("OVA") is None
