from overrides import resolve_enabled_feeds

FEEDS = [
    {"id": 1, "title": "Tech", "category": {"id": 10, "title": "News"}},
    {"id": 2, "title": "Science", "category": {"id": 10, "title": "News"}},
    {"id": 3, "title": "Cooking", "category": {"id": 20, "title": "Life"}},
    {"id": 4, "title": "Uncategorized"},
]


def test_feed_on_enables_single_feed():
    assert resolve_enabled_feeds({"feeds": {"3": "on"}}, FEEDS) == {3}


def test_group_on_enables_all_member_feeds():
    assert resolve_enabled_feeds({"groups": {"10": "on"}}, FEEDS) == {1, 2}


def test_feed_off_beats_group_on():
    overrides = {"feeds": {"2": "off"}, "groups": {"10": "on"}}
    assert resolve_enabled_feeds(overrides, FEEDS) == {1}


def test_feed_on_beats_group_off():
    overrides = {"feeds": {"1": "on"}, "groups": {"10": "off"}}
    assert resolve_enabled_feeds(overrides, FEEDS) == {1}


def test_unlisted_feeds_default_to_disabled():
    assert resolve_enabled_feeds({"feeds": {}, "groups": {"99": "on"}}, FEEDS) == set()


def test_unknown_values_count_as_absent():
    overrides = {"feeds": {"1": "maybe"}, "groups": {"10": "on"}}
    assert resolve_enabled_feeds(overrides, FEEDS) == {1, 2}


def test_integer_keys_are_accepted():
    assert resolve_enabled_feeds({"feeds": {3: "on"}, "groups": {20: "off"}}, FEEDS) == {3}


def test_missing_overrides_yield_nothing():
    assert resolve_enabled_feeds(None, FEEDS) == set()
    assert resolve_enabled_feeds({}, FEEDS) == set()
