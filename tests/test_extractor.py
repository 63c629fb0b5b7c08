from datetime import datetime

import pytest

from xhs_api.extractor import (
    collect_media,
    extract_description,
    extract_publish_time,
    extract_urls_from_html,
    format_epoch,
    normalize_explicit_date,
    parse_post_details,
)
from xhs_api.models import NoteMetadata

from conftest import note_page


def test_markup_fallback_without_state():
    html = '<html><body><img class="cover" src="https://x.xhscdn.com/a.jpg"></body></html>'
    descriptors = parse_post_details(html)

    assert len(descriptors) == 1
    assert descriptors[0].url == "https://x.xhscdn.com/a.jpg"
    assert descriptors[0].metadata == NoteMetadata()


def test_markup_fallback_is_permissive():
    html = (
        '<img src="https://sns-img-qc.xhscdn.com/decor/banner">'
        '<p>https://example.com/extra/photo.png</p>'
        '<img src="/static/logo.svg">'
    )
    urls = extract_urls_from_html(html)

    assert urls == ["https://sns-img-qc.xhscdn.com/decor/banner", "https://example.com/extra/photo.png"]


def test_note_detail_map_shape():
    state = {
        "note": {
            "noteDetailMap": {
                "64f0": {
                    "note": {
                        "title": "Sunset",
                        "user": {"nickname": "alice", "redId": "12345"},
                        "time": 1700000000000,
                        "imageList": [
                            {"urlDefault": "https://sns-webpic-qc.xhscdn.com/1/2/a!nd"},
                            {"traceId": "trace99"},
                            {"infoList": [{"imageScene": "WB_DFT", "url": "https://sns-webpic-qc.xhscdn.com/1/2/c"}]},
                        ],
                    }
                }
            }
        }
    }
    descriptors = parse_post_details(note_page(state))

    assert [d.url for d in descriptors] == [
        "https://sns-webpic-qc.xhscdn.com/1/2/a!nd",
        "https://sns-img-qc.xhscdn.com/trace99",
        "https://sns-webpic-qc.xhscdn.com/1/2/c",
    ]
    metadata = descriptors[0].metadata
    assert metadata.title == "Sunset"
    assert metadata.user_name == "alice"
    assert metadata.user_id == "12345"
    assert metadata.publish_time == datetime.fromtimestamp(1700000000).strftime("%y-%m-%d")


def test_top_level_detail_map_and_feed_shapes():
    detail_state = {"noteDetailMap": {"x": {"note": {"images": [{"url": "https://a.xhscdn.com/1"}]}}}}
    feed_state = {"feed": {"items": [{"imageList": [{"originUrl": "https://a.xhscdn.com/2"}]}]}}

    assert [d.url for d in parse_post_details("", detail_state)] == ["https://a.xhscdn.com/1"]
    assert [d.url for d in parse_post_details("", feed_state)] == ["https://a.xhscdn.com/2"]


def test_root_treated_as_note():
    state = {"title": "Root", "cover": {"url": "https://a.xhscdn.com/cover"}}
    descriptors = parse_post_details("", state)

    assert [d.url for d in descriptors] == ["https://a.xhscdn.com/cover"]
    assert descriptors[0].metadata.title == "Root"


def test_video_origin_key_preferred():
    note = {
        "video": {
            "consumer": {"originVideoKey": "pre_post/1040g2t0"},
            "media": {"stream": {"h264": [{"masterUrl": "https://sns-video-hw.xhscdn.com/stream/h264.mp4"}]}},
            "url": "https://sns-video-hw.xhscdn.com/plain.mp4",
        }
    }
    assert [d.url for d in collect_media(note)] == ["https://sns-video-bd.xhscdn.com/pre_post/1040g2t0"]


def test_video_stream_then_plain_url():
    streams = {"video": {"media": {"stream": {"h264": [{"masterUrl": "https://v/1.mp4"}, "https://v/2.mp4"]}}}}
    plain = {"video": {"url": "https://v/3.mp4"}}

    assert [d.url for d in collect_media(streams)] == ["https://v/1.mp4", "https://v/2.mp4"]
    assert [d.url for d in collect_media(plain)] == ["https://v/3.mp4"]


def test_live_photo_stream_follows_still():
    note = {
        "imageList": [
            {
                "urlDefault": "https://a.xhscdn.com/still",
                "stream": {"h264": [{"masterUrl": "https://v.xhscdn.com/live.mp4"}]},
            }
        ]
    }
    assert [d.url for d in collect_media(note)] == ["https://a.xhscdn.com/still", "https://v.xhscdn.com/live.mp4"]


def test_duplicate_urls_within_note_removed():
    state = {"imageList": [{"url": "https://a.xhscdn.com/1"}, {"url": "https://a.xhscdn.com/1"}]}
    assert len(parse_post_details("", state)) == 1


def test_state_without_media_falls_back_to_markup():
    html = note_page({"note": {"note": {"title": "empty"}}}) + '<img src="https://a.xhscdn.com/x.jpg">'
    assert [d.url for d in parse_post_details(html)] == ["https://a.xhscdn.com/x.jpg"]


def test_nothing_found():
    assert parse_post_details("<html></html>") == []


@pytest.mark.parametrize("value", [42, 999_999_999, 946_684_799, True])
def test_implausible_epochs_rejected(value):
    assert extract_publish_time({"time": value}) is None


def test_epoch_seconds_and_millis_accepted():
    expected = datetime.fromtimestamp(1700000000).strftime("%y-%m-%d")
    assert extract_publish_time({"time": 1700000000}) == expected
    assert extract_publish_time({"createTime": 1700000000000}) == expected
    assert format_epoch(1700000000.5) == expected


def test_text_dates_take_precedence_over_epochs():
    note = {"time": 1700000000, "timeText": "2021-03-04"}
    assert extract_publish_time(note) == "21-03-04"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("23-01-02", "23-01-02"),
        ("Posted 2023-01-02 in Shanghai", "23-01-02"),
        ("20230102", "23-01-02"),
        ("yesterday", None),
        ("", None),
    ],
)
def test_normalize_explicit_date(raw, expected):
    assert normalize_explicit_date(raw) == expected


def test_extract_description():
    state = {"note": {"noteDetailMap": {"a": {"note": {"desc": "Trip notes #travel", "title": "Trip"}}}}}
    assert extract_description(note_page(state)) == "Trip notes #travel"
    assert extract_description("<html></html>") is None
