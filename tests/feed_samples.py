from urllib.error import HTTPError

RSS_NAMESPACES = (
    'xmlns:content="http://purl.org/rss/1.0/modules/content/" '
    'xmlns:dc="http://purl.org/dc/elements/1.1/" '
    'xmlns:media="http://search.yahoo.com/mrss/" '
    'xmlns:atom="http://www.w3.org/2005/Atom"'
)


def rss_item(title, body="<p>Plain text body.</p>", link=None, pub_date="Wed, 01 Jan 2025 12:00:00 GMT", extra=""):
    link = link or "https://letters.substack.com/p/" + title.lower().replace(" ", "-")
    return f"""
        <item>
          <title>{title}</title>
          <link>{link}</link>
          <pubDate>{pub_date}</pubDate>
          <dc:creator>Item Author</dc:creator>
          <content:encoded><![CDATA[{body}]]></content:encoded>
          {extra}
        </item>"""


def rss_document(*items, title="Example Letters"):
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" {RSS_NAMESPACES}>
  <channel>
    <title>{title}</title>
    <description>A newsletter</description>
    <link>https://letters.substack.com</link>
    {''.join(items)}
  </channel>
</rss>""".encode("utf-8")


class FakeResponse:
    def __init__(self, body, status=200):
        self._body = body
        self._status = status

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return None

    def getcode(self):
        return self._status

    def read(self):
        return self._body


def _respond(url, outcome):
    if isinstance(outcome, int):
        raise HTTPError(url, outcome, "scripted failure", None, None)
    if isinstance(outcome, BaseException):
        raise outcome
    return FakeResponse(outcome)


class FakeOpener:
    """Replays outcomes in order and repeats the last one.

    bytes are served as a 200 body, an int is raised as that HTTP status and
    an exception instance is raised as-is.
    """

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def __call__(self, request, timeout=None):
        self.calls.append(request.full_url)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        return _respond(request.full_url, outcome)


class RoutingOpener:
    def __init__(self, routes):
        self.routes = routes
        self.calls = []

    def __call__(self, request, timeout=None):
        self.calls.append(request.full_url)
        return _respond(request.full_url, self.routes[request.full_url])


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds
