from studio.sanitize import sanitize_payload


def test_blank_strings_become_none_recursively():
    payload = {
        "prompt": "",
        "name": "   ",
        "audio_url": "https://x/a.wav",
        "meta": {"motion": "", "fps": 30, "inner": {"note": "\t"}},
    }
    assert sanitize_payload(payload) == {
        "prompt": None,
        "name": None,
        "audio_url": "https://x/a.wav",
        "meta": {"motion": None, "fps": 30, "inner": {"note": None}},
    }


def test_lists_and_scalars_pass_through():
    turns = [{"text": ""}, ""]
    out = sanitize_payload({"dialogue": turns, "flag": False, "count": 0})
    assert out["dialogue"] is turns
    assert out["flag"] is False
    assert out["count"] == 0
    assert sanitize_payload("keep") == "keep"
