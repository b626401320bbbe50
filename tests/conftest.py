"""
Test fixtures for pricevault tests.

Provides database session fixtures, sample assets and stub HTTP helpers.
"""

from datetime import date, datetime, timezone
from typing import Callable, Dict, Generator, List

import httpx
import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from app.models.asset import Asset, AssetType
from app.models.snapshot import PriceSnapshot  # noqa: F401  (registers the table)


# In-memory SQLite for unit tests (fast, isolated)
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def test_engine():
    """Create a test database engine with in-memory SQLite."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def test_session(test_engine) -> Generator[Session, None, None]:
    """Provide a test database session."""
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def sample_assets(test_session: Session) -> List[Asset]:
    """
    One asset per resolution path, all in portfolio 1 and never priced:

    1: raw card with a provider id
    2: graded card (PSA 10)
    3: sealed product
    4: card tethered to a vendor detail page
    5: manually priced card
    """
    assets = [
        Asset(
            id=1,
            portfolio_id=1,
            external_id="xy-1",
            name="Charizard",
            set_name="Base Set",
            asset_type=AssetType.CARD.value,
            purchase_price=30.0,
            purchase_date=date(2024, 1, 1),
        ),
        Asset(
            id=2,
            portfolio_id=1,
            name="Pikachu Illustrator",
            asset_type=AssetType.CARD.value,
            psa_grade="PSA 10",
            purchase_price=100.0,
            purchase_date=date(2024, 2, 1),
        ),
        Asset(
            id=3,
            portfolio_id=1,
            external_id="etb-151",
            name="Scarlet & Violet 151 Elite Trainer Box",
            asset_type=AssetType.SEALED.value,
            purchase_price=50.0,
            quantity=2,
            purchase_date=date(2024, 3, 1),
        ),
        Asset(
            id=4,
            portfolio_id=1,
            name="Blastoise",
            asset_type=AssetType.CARD.value,
            pc_url="https://www.pricecharting.com/game/pokemon-base-set/blastoise-2",
            pc_grade_field="grade10",
            purchase_price=80.0,
        ),
        Asset(
            id=5,
            portfolio_id=1,
            name="Mewtwo",
            asset_type=AssetType.CARD.value,
            manual_price=True,
            current_price=12.0,
            price_updated_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            purchase_price=10.0,
        ),
    ]
    for asset in assets:
        test_session.add(asset)
    test_session.commit()
    for asset in assets:
        test_session.refresh(asset)
    return assets


def make_transport(routes: Dict[str, Callable[[httpx.Request], httpx.Response]]) -> httpx.MockTransport:
    """
    MockTransport dispatching on URL path. Unknown paths return 404.
    Every request is appended to `transport.requests`.
    """
    requests: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        route = routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, text="not found")
        return route(request)

    transport = httpx.MockTransport(handler)
    transport.requests = requests  # type: ignore[attr-defined]
    return transport


@pytest.fixture
def transport_factory():
    return make_transport


# PriceCharting page fixtures

SEARCH_PAGE_HTML = """
<html><body>
<table id="games_table"><tbody>
<tr id="product-12345" data-product="12345">
  <td class="photo"><img src="https://storage.googleapis.com/images.pricecharting.com/abc123/60.jpg"></td>
  <td class="title">
    <a href="https://www.pricecharting.com/game/pokemon-base-set/charizard-4">Charizard #4</a>
    <div class="console-in-title"><a href="/console/pokemon-base-set">Pokemon Base Set</a></div>
  </td>
  <td class="price numeric used_price"><span class="js-price">$350.00</span></td>
  <td class="price numeric cib_price"><span class="js-price">$500.00</span></td>
  <td class="price numeric new_price"><span class="js-price">$0.00</span></td>
</tr>
<tr id="product-999">
  <td class="title">Listing without a product link</td>
</tr>
<tr id="product-67890" data-product="67890">
  <td class="title">
    <a href="https://www.pricecharting.com/game/pokemon-base-set-2/charizard-4">Charizard #4</a>
    <div class="console-in-title"><a href="/console/pokemon-base-set-2">Pokemon Base Set 2</a></div>
  </td>
  <td class="price numeric used_price"><span class="js-price">$120.00</span></td>
  <td class="price numeric cib_price"><span class="js-price">$180.00</span></td>
  <td class="price numeric new_price"><span class="js-price">$240.00</span></td>
</tr>
</tbody></table>
</body></html>
"""

DETAIL_PAGE_HTML = """
<html>
<head><title>Charizard #4 Prices | Pokemon Base Set</title></head>
<body>
<h1 id="product_name" class="chart_title">Charizard #4 Prices</h1>
<a href="/console/pokemon-base-set">Pokemon Base Set</a>
<img src="https://storage.googleapis.com/images.pricecharting.com/abc123/240.jpg">
<script>VGPC.product = {product_id: "12345"};</script>
<table id="price_data"><tr>
  <td id="used_price"><span class="price js-price">$350.00</span></td>
  <td id="complete_price"><span class="price js-price">$500.00</span></td>
  <td id="new_price"><span class="price js-price">$650.00</span></td>
  <td id="graded_price"><span class="price js-price">$1,200.00</span></td>
  <td id="box_only_price"><span class="price js-price">$2,000.00</span></td>
  <td id="manual_only_price"><span class="price js-price">-</span></td>
</tr></table>
</body></html>
"""


@pytest.fixture
def search_page_html() -> str:
    return SEARCH_PAGE_HTML


@pytest.fixture
def detail_page_html() -> str:
    return DETAIL_PAGE_HTML
