import httpx

from edgeroute.worker.fallback import FallbackChain, empty_response


def _ok(text):
    async def attempt():
        return httpx.Response(200, text=text)
    return attempt


async def _miss():
    return None


async def _offline():
    raise httpx.ConnectError('offline')


async def test_first_success_wins():
    calls = []

    def track(label, attempt):
        async def wrapped():
            calls.append(label)
            return await attempt()
        return wrapped

    chain = FallbackChain('test', [
        ('a', track('a', _ok('first'))),
        ('b', track('b', _ok('second'))),
    ])
    response = await chain.run()
    assert response.text == 'first'
    assert chain.resolved_by == 'a'
    assert calls == ['a']


async def test_failures_and_misses_are_skipped_in_order():
    chain = FallbackChain('test', [('offline', _offline), ('miss', _miss), ('net', _ok('late'))])
    response = await chain.run()
    assert response.text == 'late'
    assert chain.resolved_by == 'net'
    assert chain.names == ['offline', 'miss', 'net']


async def test_terminal_response_when_everything_fails():
    chain = FallbackChain('test', [('offline', _offline), ('miss', _miss)])
    response = await chain.run()
    assert response.status_code == 504
    assert response.content == b''
    assert chain.resolved_by == 'terminal'


async def test_custom_terminal():
    chain = FallbackChain('test', [('offline', _offline)], terminal=lambda: empty_response(502, 'video/mp4'))
    response = await chain.run()
    assert response.status_code == 502
    assert response.headers['Content-Type'] == 'video/mp4'


async def test_error_status_is_still_a_response():
    async def not_found():
        return httpx.Response(404)

    chain = FallbackChain('test', [('net', not_found), ('never', _ok('x'))])
    response = await chain.run()
    assert response.status_code == 404
    assert chain.resolved_by == 'net'
