import asyncio
from urllib.parse import parse_qs, urlencode, urlsplit

from conftest import PLAYER_URL
from playercipher.decipher.base import PipelineState
from playercipher.decipher.cache import functions_key
from playercipher.decipher.resolver import (
    decipher_formats, extract_functions, get_functions, set_download_url, set_query_param,
)

MEDIA_URL = "https://rr1.example.com/videoplayback?id=1&n=abc123&itag=18"


class RecordingScript:
    """Script double returning a fixed value and logging its calls."""

    def __init__(self, result, calls=None):
        self.result = result
        self.calls = [] if calls is None else calls

    def run(self, context):
        self.calls.append(dict(context))
        return self.result


class CountingFetcher:
    def __init__(self, body, delay=0, fail=False):
        self.body = body
        self.delay = delay
        self.fail = fail
        self.requests = []

    async def get(self, url, *, base_url=None, headers=None):
        self.requests.append((url, base_url, headers))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("player unavailable")
        return self.body


def _query(url):
    return parse_qs(urlsplit(url).query)


def _cipher(sig="abcd", sp="sig", url=MEDIA_URL):
    return urlencode({"s": sig, "sp": sp, "url": url})


# ── set_download_url ──────────────────

def test_plain_url_skips_decipher():
    decipher = RecordingScript("SHOULD-NOT-BE-USED")
    n_script = RecordingScript("xyz")
    fmt = {"url": MEDIA_URL, "signatureCipher": _cipher()}

    set_download_url(fmt, decipher, n_script)

    assert decipher.calls == []
    assert n_script.calls == [{"ncode": "abc123"}]
    assert _query(fmt["url"])["n"] == ["xyz"]
    assert "sig" not in _query(fmt["url"])
    assert "signatureCipher" not in fmt


def test_cipher_deciphers_then_transforms():
    calls = []
    decipher = RecordingScript("dcba", calls)
    n_script = RecordingScript("xyz", calls)
    fmt = {"signatureCipher": _cipher(sp="signature")}

    set_download_url(fmt, decipher, n_script)

    assert calls == [{"sig": "abcd"}, {"ncode": "abc123"}]
    query = _query(fmt["url"])
    assert query["signature"] == ["dcba"]
    assert query["n"] == ["xyz"]
    assert query["itag"] == ["18"]
    assert "signatureCipher" not in fmt


def test_legacy_cipher_field_defaults_sp():
    fmt = {"cipher": _cipher(sp="")}
    set_download_url(fmt, RecordingScript("dcba"), None)
    assert _query(fmt["url"])["sig"] == ["dcba"]
    assert _query(fmt["url"])["n"] == ["abc123"]
    assert "cipher" not in fmt


def test_cipher_without_decipher_script():
    fmt = {"signatureCipher": _cipher()}
    set_download_url(fmt, None, None)
    assert fmt["url"] == MEDIA_URL


def test_failed_decipher_keeps_url():
    fmt = {"signatureCipher": _cipher()}
    set_download_url(fmt, RecordingScript(None), None)
    assert fmt["url"] == MEDIA_URL


def test_n_unchanged_warns_and_applies(caplog):
    fmt = {"url": MEDIA_URL}
    set_download_url(fmt, None, RecordingScript("abc123"))
    assert "possibly short-circuited" in caplog.text
    assert _query(fmt["url"])["n"] == ["abc123"]


def test_n_exception_tag_warns_and_applies(caplog):
    fmt = {"url": MEDIA_URL}
    set_download_url(fmt, None, RecordingScript("enhanced_except_gZ8B-_w8_abc123"))
    assert "did not complete due to exception" in caplog.text
    assert _query(fmt["url"])["n"] == ["enhanced_except_gZ8B-_w8_abc123"]


def test_n_null_result_keeps_url():
    fmt = {"url": MEDIA_URL}
    set_download_url(fmt, None, RecordingScript(None))
    assert fmt["url"] == MEDIA_URL


def test_n_non_string_result_is_stringified():
    for result, expected in [(["x", "y"], "x,y"), (True, "true"), (42, "42"), (7.0, "7")]:
        fmt = {"url": MEDIA_URL}
        set_download_url(fmt, None, RecordingScript(result))
        assert _query(fmt["url"])["n"] == [expected]


def test_n_falsy_result_keeps_url():
    for result in (0, False, "", float("nan")):
        fmt = {"url": MEDIA_URL}
        set_download_url(fmt, None, RecordingScript(result))
        assert fmt["url"] == MEDIA_URL


def test_url_without_n():
    n_script = RecordingScript("zzz")
    fmt = {"url": "https://rr1.example.com/videoplayback?id=1"}
    set_download_url(fmt, None, n_script)
    assert n_script.calls == []
    assert fmt["url"] == "https://rr1.example.com/videoplayback?id=1"


def test_malformed_url_is_preserved(caplog):
    fmt = {"url": "not a url?n=1"}
    set_download_url(fmt, None, RecordingScript("x"))
    assert fmt["url"] == "not a url?n=1"
    assert "Error applying n transform" in caplog.text


def test_format_without_any_url():
    fmt = {"itag": 18}
    set_download_url(fmt, None, None)
    assert fmt == {"itag": 18}


def test_set_query_param_replaces_first_and_drops_repeats():
    url = set_query_param("https://h.example/p?a=1&n=x&b=2&n=y", "n", "z z")
    assert url == "https://h.example/p?a=1&n=z+z&b=2"
    assert set_query_param("https://h.example/p", "sig", "s") == "https://h.example/p?sig=s"


# ── extraction + memoization ──────────────────

def test_soft_failure_without_markers(state, caplog):
    assert tuple(extract_functions("var a=1;", state)) == (None, None)
    assert tuple(extract_functions("var b=2;", state)) == (None, None)
    assert caplog.text.count("Could not parse decipher function") == 1
    assert caplog.text.count("Could not parse n transform function") == 1
    assert state.decipher_warned and state.n_transform_warned


def test_empty_body(state):
    assert tuple(extract_functions("", state)) == (None, None)


def test_extraction_idempotent(player_js, state):
    first = extract_functions(player_js, state)
    second = extract_functions(player_js, state)
    assert first.decipher.code == second.decipher.code
    assert first.n_transform.code == second.n_transform.code
    assert first.decipher.run({"sig": "abcdef"}) == second.decipher.run({"sig": "abcdef"})


def test_get_functions_memoizes(player_js, state):
    key = functions_key(PLAYER_URL)
    first = get_functions(key, player_js, state)
    second = get_functions(key, None, state)
    assert second is first
    assert state.cache.get(key) is first


# ── decipher_formats ──────────────────

def test_decipher_formats_end_to_end(player_js, state):
    fetcher = CountingFetcher(player_js)
    formats = [
        {"itag": 18, "signatureCipher": _cipher(sig="abcdef")},
        {"itag": 22, "url": MEDIA_URL},
        {"itag": 99},
    ]

    result = asyncio.run(decipher_formats(formats, PLAYER_URL, fetcher, state=state))

    assert len(result) == 2
    by_itag = {fmt["itag"]: url for url, fmt in result.items()}
    assert _query(by_itag[18])["sig"] == ["eacbd"]
    assert _query(by_itag[18])["n"] == ["321cba"]
    assert _query(by_itag[22])["n"] == ["321cba"]
    assert "url" not in formats[2]
    assert fetcher.requests[0][0] == PLAYER_URL


def test_second_call_hits_cache(player_js, state):
    fetcher = CountingFetcher(player_js)

    async def _run():
        await decipher_formats([{"url": MEDIA_URL}], PLAYER_URL, fetcher, state=state)
        entry = state.cache.get(functions_key(PLAYER_URL))
        await decipher_formats([{"url": MEDIA_URL}], PLAYER_URL, fetcher, state=state)
        return entry

    entry = asyncio.run(_run())
    assert len(fetcher.requests) == 1
    assert state.cache.get(functions_key(PLAYER_URL)) is entry


def test_concurrent_first_calls_share_extraction(player_js, state):
    fetcher = CountingFetcher(player_js, delay=0.05)

    async def _run():
        return await asyncio.gather(*[
            decipher_formats([{"url": MEDIA_URL}], PLAYER_URL, fetcher, state=state)
            for _ in range(3)
        ])

    results = asyncio.run(_run())
    assert len(fetcher.requests) == 1
    assert all(len(r) == 1 for r in results)


def test_fetch_failure_is_not_cached(player_js, state, caplog):
    failing = CountingFetcher(player_js, fail=True)
    assert asyncio.run(decipher_formats([{"url": MEDIA_URL}], PLAYER_URL, failing, state=state)) == {}
    assert "Error deciphering formats" in caplog.text
    assert functions_key(PLAYER_URL) not in state.cache

    working = CountingFetcher(player_js)
    result = asyncio.run(decipher_formats([{"url": MEDIA_URL}], PLAYER_URL, working, state=state))
    assert len(result) == 1
    assert len(working.requests) == 1


def test_headers_and_base_url_forwarded(player_js, state):
    fetcher = CountingFetcher(player_js)
    asyncio.run(decipher_formats([], PLAYER_URL, fetcher, headers={"Referer": "x"}, state=state))
    url, base_url, headers = fetcher.requests[0]
    assert base_url.startswith("https://")
    assert headers == {"Referer": "x"}


def test_separate_states_are_isolated(player_js):
    fetcher = CountingFetcher(player_js)
    for _ in range(2):
        asyncio.run(decipher_formats([], PLAYER_URL, fetcher, state=PipelineState()))
    assert len(fetcher.requests) == 2
