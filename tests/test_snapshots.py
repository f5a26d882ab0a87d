from datetime import datetime, timedelta

import pytest

from compete_tracker.history import (
    MAX_PAST_SNAPSHOTS,
    Competitor,
    ListedItem,
    ProductMetrics,
    SellerMetrics,
    SellerSnapshot,
    TrackedProduct,
    rotate,
)

START = datetime(2025, 1, 1, 12, 0, 0)


def seller_metrics(**overrides):
    values = {
        "store_url": "https://www.ebay.ca/str/acme",
        "seller_name": "Acme",
        "feedback": "99.5% positive feedback",
        "items_sold": 1200,
        "followers": 300,
    }
    values.update(overrides)
    return SellerMetrics(**values)


def test_first_rotation_sets_current_without_history():
    competitor = Competitor(store_url="https://www.ebay.ca/str/acme")

    updated = rotate(competitor, seller_metrics(), START)

    assert updated.current_snapshot.followers == 300
    assert updated.current_snapshot.items_sold == 1200
    assert updated.current_snapshot.rating == 99.5
    assert updated.current_snapshot.timestamp == START
    assert updated.past_snapshots == []
    assert updated.last_checked == START
    assert updated.name == "Acme"
    assert updated.avg_rating == 99.5


def test_history_stays_bounded_over_many_rotations():
    competitor = Competitor(store_url="https://www.ebay.ca/str/acme")

    for i in range(20):
        previous = competitor.current_snapshot
        competitor = rotate(competitor, seller_metrics(followers=i), START + timedelta(minutes=i))

        assert len(competitor.past_snapshots) <= MAX_PAST_SNAPSHOTS
        if previous is not None:
            assert competitor.past_snapshots[0] == previous

    assert len(competitor.past_snapshots) == MAX_PAST_SNAPSHOTS
    assert competitor.current_snapshot.followers == 19
    # Most recent first, oldest dropped
    assert [s.followers for s in competitor.past_snapshots] == [18, 17, 16, 15, 14, 13, 12]


def test_full_history_rotation_drops_oldest_and_heads_with_old_current():
    past = [
        SellerSnapshot(followers=100 - i, timestamp=START - timedelta(days=i + 1))
        for i in range(MAX_PAST_SNAPSHOTS)
    ]
    current = SellerSnapshot(followers=101, timestamp=START)
    competitor = Competitor(
        store_url="https://www.ebay.ca/str/acme",
        current_snapshot=current,
        past_snapshots=past,
    )

    updated = rotate(competitor, seller_metrics(followers=150), START + timedelta(days=1))

    assert len(updated.past_snapshots) == 7
    assert updated.past_snapshots[0] == current
    assert updated.past_snapshots[1:] == past[:6]
    assert updated.current_snapshot.followers == 150


def test_rotate_leaves_input_untouched():
    competitor = Competitor(
        store_url="https://www.ebay.ca/str/acme",
        current_snapshot=SellerSnapshot(followers=1, timestamp=START),
    )
    before = competitor.model_dump()

    rotate(competitor, seller_metrics(), START + timedelta(hours=1))

    assert competitor.model_dump() == before


def test_snapshots_are_immutable():
    snapshot = SellerSnapshot(followers=1, timestamp=START)

    with pytest.raises(Exception):
        snapshot.followers = 2


def test_known_attributes_are_never_nulled():
    competitor = Competitor(
        store_url="https://www.ebay.ca/str/acme",
        name="Acme",
        logo="https://img.test/logo.png",
        description="Surplus goods",
        followers=250,
        first_ten_items=[ListedItem(title="Lamp", link="https://e.test/1")],
    )

    sparse = SellerMetrics(feedback="98% positive feedback", seller_name="  ")
    updated = rotate(competitor, sparse, START)

    assert updated.name == "Acme"
    assert updated.logo == "https://img.test/logo.png"
    assert updated.description == "Surplus goods"
    assert updated.first_ten_items[0].title == "Lamp"
    assert updated.feedback == "98% positive feedback"
    # Missing metric falls back to the known value
    assert updated.current_snapshot.followers == 250
    assert updated.followers == 250


def test_product_rotation_updates_price_and_stock():
    product = TrackedProduct(product_url="https://www.ebay.ca/itm/123", price=20.0, competitor="Acme")

    metrics = ProductMetrics(
        price=18.5,
        original_price=25.0,
        currency="CAD",
        quantity_available=0,
        watchers_count=4,
        last_24_hours="3 sold in the last 24 hours",
        images=["https://img.test/a.jpg", "https://img.test/b.jpg"],
    )
    updated = rotate(product, metrics, START)

    assert updated.current_snapshot.price == 18.5
    assert updated.current_snapshot.last_24_hours == "3 sold in the last 24 hours"
    assert updated.stock == "Out of Stock"
    assert updated.image == "https://img.test/a.jpg"
    assert updated.competitor == "Acme"
    assert updated.is_discounted is True
    assert updated.discount_percent == 26


def test_empty_metrics_raise_before_anything_is_built():
    competitor = Competitor(store_url="https://www.ebay.ca/str/acme")

    with pytest.raises(ValueError):
        rotate(competitor, SellerMetrics(seller_name="Acme"), START)


def test_metrics_kind_mismatch_raises_type_error():
    competitor = Competitor(store_url="https://www.ebay.ca/str/acme")

    with pytest.raises(TypeError):
        rotate(competitor, ProductMetrics(price=1.0), START)
