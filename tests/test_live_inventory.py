"""Integration test that fetches a live csgo.exchange inventory."""
from __future__ import annotations

import os
import sys
from decimal import Decimal
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from inventory_pricer import (  # noqa: E402
    CatalogRecord,
    InventoryPricer,
    InventorySource,
    PriceStore,
    Settings,
    SourceUnavailable,
    build_descriptors,
    generate_candidates,
    parse_inventory_html,
    render_inventory,
    resolve_steam_id,
)

STEAM_ID = os.getenv("INVENTORY_TEST_STEAM_ID", "")
COOKIE = os.getenv("CSGO_EXCHANGE_COOKIE", "")

pytestmark = pytest.mark.skipif(
    not (STEAM_ID and COOKIE),
    reason="INVENTORY_TEST_STEAM_ID и CSGO_EXCHANGE_COOKIE не заданы",
)


def test_live_inventory_fetch_and_price(tmp_path, capsys):
    settings = Settings(
        cookie=COOKIE,
        request_timeout=30.0,
        database_url=f"sqlite:///{tmp_path / 'live.db'}",
    )
    source = InventorySource(settings)
    try:
        markup = source.fetch(resolve_steam_id(STEAM_ID))
        elements = parse_inventory_html(markup)
    except SourceUnavailable as exc:
        pytest.skip(f"csgo.exchange недоступен: {exc}")
    descriptors = build_descriptors(elements)
    # Каталог из первого кандидата каждого предмета: всё должно найтись.
    store = PriceStore.from_settings(settings)
    try:
        store.create_schema()
        catalog = {
            name: CatalogRecord(name, Decimal("1.00"), "https://example.com/icon.png")
            for name in (generate_candidates(d)[0] for d in descriptors)
        }
        store.load_prices(list(catalog.values()))
        items = InventoryPricer(settings, store, source).price_markup(markup)
    finally:
        store.dispose()
    render_inventory(items, settings.currency)
    captured = capsys.readouterr()
    # Re-emit captured console output so pytest -s displays the live table.
    print(captured.out)
    assert len(items) == len(descriptors)
    assert all(item.found for item in items)
