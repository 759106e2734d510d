import pytest

from conftest import FakeClock, StubFetcher
from services.metadata_cache import MetadataCache, RateLimited
from services.remote_fetcher import FetchTimeout

pytestmark = pytest.mark.anyio

STAMPS = ["202410231400", "202410231430", "202410231410", "202410231420"]


@pytest.fixture
def listings(fetcher: StubFetcher, clock: FakeClock) -> MetadataCache:
    for stamp in STAMPS:
        fetcher.publish(f"IDR023.T.{stamp}.png")
        fetcher.publish(f"IDR0231.T.{stamp}.png")
    fetcher.publish("IDR713.T.202410231430.png")
    fetcher.publish("IDR023.T.2024102314.png")
    return MetadataCache(fetcher, refresh_interval=600, clock=clock)


async def test_first_listing_hits_origin_then_serves_cache(
    listings: MetadataCache, fetcher: StubFetcher, clock: FakeClock
) -> None:
    first = await listings.list("IDR023")
    assert first.from_cache is False
    assert first.rate_limited is False
    assert first.next_refresh_in == 600
    assert first.timestamps == sorted(STAMPS, reverse=True)

    clock.advance(300)
    second = await listings.list("IDR023")
    assert second.from_cache is True
    assert second.rate_limited is False
    assert second.next_refresh_in == 300
    assert second.timestamps == first.timestamps
    assert fetcher.list_calls == 1


async def test_limit_truncates_newest_first(listings: MetadataCache) -> None:
    result = await listings.list("IDR023", limit=2)
    assert result.timestamps == ["202410231430", "202410231420"]

    cached = await listings.list("IDR023", limit=3)
    assert cached.from_cache is True
    assert cached.timestamps == ["202410231430", "202410231420", "202410231410"]


async def test_force_bypasses_cache_and_limiter(
    listings: MetadataCache, fetcher: StubFetcher, clock: FakeClock
) -> None:
    await listings.list("IDR023")
    fetcher.publish("IDR023.T.202410231440.png")
    clock.advance(10)

    forced = await listings.list("IDR023", force=True)
    assert forced.from_cache is False
    assert forced.timestamps[0] == "202410231440"
    assert fetcher.list_calls == 2


async def test_listing_is_refreshed_after_interval(
    listings: MetadataCache, fetcher: StubFetcher, clock: FakeClock
) -> None:
    await listings.list("IDR023")
    fetcher.publish("IDR023.T.202410231440.png")

    clock.advance(599)
    assert (await listings.list("IDR023")).timestamps[0] == "202410231430"

    clock.advance(1)
    refreshed = await listings.list("IDR023")
    assert refreshed.from_cache is False
    assert refreshed.timestamps[0] == "202410231440"


async def test_resolutions_share_one_refresh_budget(
    listings: MetadataCache, fetcher: StubFetcher, clock: FakeClock
) -> None:
    await listings.list("IDR023")
    clock.advance(120)

    with pytest.raises(RateLimited) as excinfo:
        await listings.list("IDR023", resolution=64)
    assert excinfo.value.retry_after == 480
    assert excinfo.value.radar_id == "IDR023"
    assert "Please wait 480 seconds" in str(excinfo.value)
    assert fetcher.list_calls == 1

    other = await listings.list("IDR713")
    assert other.timestamps == ["202410231430"]


async def test_rate_limited_listing_serves_stale_set(
    listings: MetadataCache, fetcher: StubFetcher, clock: FakeClock
) -> None:
    await listings.list("IDR023", resolution=64)
    clock.advance(590)
    await listings.list("IDR023", force=True)

    clock.advance(20)
    stale = await listings.list("IDR023", resolution=64)
    assert stale.rate_limited is True
    assert stale.from_cache is True
    assert stale.next_refresh_in == 580
    assert stale.timestamps == sorted(STAMPS, reverse=True)
    assert fetcher.list_calls == 2


async def test_failed_refresh_keeps_previous_state(
    listings: MetadataCache, fetcher: StubFetcher, clock: FakeClock
) -> None:
    await listings.list("IDR023")
    fetcher.error = FetchTimeout("FTP LIST timed out")

    with pytest.raises(FetchTimeout):
        await listings.list("IDR023", force=True)

    fetcher.error = None
    cached = await listings.list("IDR023")
    assert cached.from_cache is True
    assert listings.stats() == {"active_radars": 1, "entries": 1}


async def test_limiter_helpers(listings: MetadataCache, clock: FakeClock) -> None:
    assert listings.can_refresh("IDR023") is True
    assert listings.seconds_until_refresh("IDR023") == 0

    await listings.list("IDR023")
    clock.advance(0.5)
    assert listings.can_refresh("IDR023") is False
    assert listings.seconds_until_refresh("IDR023") == 600

    listings.clear()
    assert listings.can_refresh("IDR023") is True
    assert listings.stats() == {"active_radars": 0, "entries": 0}
