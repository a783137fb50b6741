from edgeroute.worker.session import BrowsingSession, PageCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_page_cache_evicts_least_recently_used():
    cache = PageCache(maxsize=2, ttl=300)
    cache.put('/a', b'a')
    cache.put('/b', b'b')
    assert cache.get('/a') == b'a'
    cache.put('/c', b'c')

    assert '/b' not in cache
    assert '/a' in cache and '/c' in cache
    assert len(cache) == 2


def test_page_cache_entries_expire():
    clock = FakeClock()
    cache = PageCache(maxsize=5, ttl=300, clock=clock)
    cache.put('/feed', b'feed')

    clock.now += 299
    assert cache.get('/feed') == b'feed'

    clock.now += 2
    assert cache.get('/feed') is None
    assert '/feed' not in cache


def test_page_cache_stats():
    cache = PageCache()
    cache.put('/a', b'a')
    cache.get('/a')
    cache.get('/missing')
    stats = cache.get_stats()
    assert stats['hits'] == 1
    assert stats['misses'] == 1
    assert stats['hit_rate'] == '50.0%'


def test_install_prompt_is_taken_once():
    session = BrowsingSession()
    prompt = object()
    session.defer_install_prompt(prompt)
    assert session.take_install_prompt() is prompt
    assert session.take_install_prompt() is None


def test_scroll_positions():
    session = BrowsingSession()
    assert session.scroll_position('/feed') == 0
    session.remember_scroll('/feed', 640)
    assert session.scroll_position('/feed') == 640


def test_claim_and_clear():
    session = BrowsingSession()
    session.claim('BUILD_1')
    session.pages.put('/feed', b'feed')
    session.remember_scroll('/feed', 10)
    session.defer_install_prompt('prompt')

    session.clear()
    assert len(session.pages) == 0
    assert session.scroll_positions == {}
    assert session.deferred_install_prompt is None
    assert session.controller_version == 'BUILD_1'


def test_session_from_config(config):
    config.set('worker.page_cache_size', 2)
    session = BrowsingSession.from_config(config)
    assert session.pages.maxsize == 2
    assert session.pages.ttl == 300
